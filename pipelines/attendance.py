"""Shared attendance capture pipeline for CLI and GUI entry points."""
from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional
from uuid import uuid4

import numpy as np

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pipelines.confirmation import ConfirmationGate, ConfirmationState, GateOutcome
from utils.camera import CameraConstraints, CameraStream, ResourceGuard
from utils.cancellation import CancelToken
from utils.errors import (
    CaptureError,
    DuplicateAttendanceError,
    RecorderError,
    SessionClosedError,
    TransientRecorderError,
)
from utils.logging import append_attendance_log
from utils.paths import data_path, logs_path
from utils.race import race
from utils.recognition import FrameScanner, RecognitionResult
from utils.records import AttendanceRecorder, Direction, RecordAck, StudentDirectory
from utils.schedule import is_early_departure, is_late_entry

LOGGER = logging.getLogger(__name__)

DEFAULT_ROSTER = data_path("roster.json")
DEFAULT_ATTENDANCE_BOOK = data_path("attendance_book.json")
DEFAULT_ATTENDANCE_LOG = logs_path("attendance_log.csv")

DEFAULT_COMMIT_ATTEMPTS = 3
DEFAULT_COMMIT_BACKOFF = 0.5
MAX_ACQUIRE_RETRIES = 2


class SessionStatus(str, Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    READY = "ready"
    RECOGNIZING = "recognizing"
    CONFIRMING = "confirming"
    COMMITTING = "committing"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass
class AttendanceEvent:
    student_id: str
    school_id: str
    direction: Direction
    timestamp: datetime
    source_session_id: str
    is_late: bool = False
    early_departure: bool = False
    student_name: str = ""
    source: str = "camera"
    symbology: str = ""


@dataclass
class CaptureSession:
    session_id: str = field(default_factory=lambda: uuid4().hex)
    status: SessionStatus = SessionStatus.IDLE
    started_at: Optional[datetime] = None
    last_error: Optional[BaseException] = None
    scans_recorded: int = 0
    pending_events: List[AttendanceEvent] = field(default_factory=list)


@dataclass
class SessionCallbacks:
    """Extensible hooks for UI layers to observe session progress.

    Every hook runs on the event loop thread; GUI layers must hop back to
    their own thread before touching widgets.
    """

    on_frame: Optional[Callable[[np.ndarray], None]] = None
    on_stage_change: Optional[Callable[[SessionStatus], None]] = None
    on_status: Optional[Callable[[str], None]] = None
    on_confirmation: Optional[Callable[[Optional[ConfirmationState]], None]] = None
    on_recorded: Optional[Callable[[AttendanceEvent, RecordAck], None]] = None
    on_error: Optional[Callable[[BaseException], None]] = None


class CaptureController:
    """Owns one capture session from acquisition to teardown.

    The camera stream is held only while ``run`` is executing and is released
    exactly once on every exit path. ``close`` may be called at any time from
    the loop thread (``close_threadsafe`` from any other thread).
    """

    def __init__(
        self,
        guard: ResourceGuard,
        scanner: FrameScanner,
        directory: StudentDirectory,
        recorder: AttendanceRecorder,
        *,
        school_id: str,
        constraints: Optional[CameraConstraints] = None,
        gate: Optional[ConfirmationGate] = None,
        callbacks: Optional[SessionCallbacks] = None,
        single_shot: bool = False,
        commit_attempts: int = DEFAULT_COMMIT_ATTEMPTS,
        commit_backoff: float = DEFAULT_COMMIT_BACKOFF,
        attendance_log: Optional[Path] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.guard = guard
        self.scanner = scanner
        self.directory = directory
        self.recorder = recorder
        self.school_id = school_id
        self.constraints = constraints or CameraConstraints()
        self.gate = gate or ConfirmationGate()
        if self.gate.on_change is None:
            self.gate.on_change = self._confirmation_changed
        self.callbacks = callbacks or SessionCallbacks()
        self.single_shot = single_shot
        self.commit_attempts = max(1, int(commit_attempts))
        self.commit_backoff = max(0.0, float(commit_backoff))
        self.attendance_log = Path(attendance_log) if attendance_log else None
        self._clock = clock

        self.session = CaptureSession()
        self._token = CancelToken()
        self._closed: Optional[asyncio.Event] = None
        self._results: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stream: Optional[CameraStream] = None
        self._running = False

    # ------------------------------------------------------------------ public API
    @property
    def status(self) -> SessionStatus:
        return self.session.status

    @property
    def closed(self) -> bool:
        return self._token.cancelled

    async def run(self) -> CaptureSession:
        """Acquire the camera and scan until closed; return the finished session."""
        if self.session.status is not SessionStatus.IDLE:
            raise SessionClosedError(f"Session {self.session.session_id} already started")
        self._loop = asyncio.get_running_loop()
        self._closed = asyncio.Event()
        self._results = asyncio.Queue(maxsize=1)
        self._token.add_callback(self._closed.set)
        self.session.started_at = self._clock()
        self._running = True
        self.scanner.forget()

        producer: Optional[asyncio.Task] = None
        try:
            self._set_status(SessionStatus.ACQUIRING)
            try:
                stream = await self._interruptible(
                    self.guard.acquire(self.constraints), discard=self.guard.release
                )
            except SessionClosedError:
                return self.session
            self._stream = stream
            self._set_status(SessionStatus.READY)
            self._report_status(
                f"Camera ready at {stream.resolution[0]}x{stream.resolution[1]}"
            )

            producer = asyncio.ensure_future(self._scan(stream))
            self._resume_recognition()
            while True:
                try:
                    result = await self._interruptible(self._next_result(producer))
                except SessionClosedError:
                    break
                if result is None:
                    break
                try:
                    finished = await self._process(result)
                except SessionClosedError:
                    break
                if finished:
                    break
        except BaseException as exc:
            if not isinstance(exc, (asyncio.CancelledError, SessionClosedError)):
                self._fail(exc)
            raise
        finally:
            if producer is not None:
                producer.cancel()
                await asyncio.gather(producer, return_exceptions=True)
            self._release()
            self._running = False
            self._token.cancel("session ended")
            if self.session.status is not SessionStatus.FAILED:
                self._set_status(SessionStatus.CLOSED)
        return self.session

    def close(self, reason: str = "closed") -> None:
        """Tear the session down from any state."""
        if self._token.cancel(reason):
            LOGGER.info("Closing capture session %s (%s)", self.session.session_id, reason)
        if self.session.status is SessionStatus.IDLE:
            self._set_status(SessionStatus.CLOSED)

    def close_threadsafe(self, reason: str = "closed") -> None:
        if self._loop is None:
            self.close(reason)
            return
        self._loop.call_soon_threadsafe(self.close, reason)

    def submit_manual(self, identifier: str) -> bool:
        """Feed a typed ID into the same confirmation path as a scanned card."""
        text = (identifier or "").strip()
        if not text or self._results is None or self._token.cancelled:
            return False
        if self.session.status not in (
            SessionStatus.RECOGNIZING,
            SessionStatus.CONFIRMING,
            SessionStatus.COMMITTING,
        ):
            return False
        return self._offer(RecognitionResult.manual(text))

    async def flush_pending(self) -> int:
        """Retry events whose writes failed transiently; return how many were written.

        Events leave ``pending_events`` only once the recorder has answered, so
        a flush interrupted by ``close`` keeps them for the next attempt.
        """
        written = 0
        for event in list(self.session.pending_events):
            try:
                ack = await self._write(event)
            except TransientRecorderError as exc:
                LOGGER.warning("Pending %s for %s still failing: %s", event.direction.value, event.student_id, exc)
                continue
            except RecorderError as exc:
                LOGGER.error("Dropping pending %s for %s: %s", event.direction.value, event.student_id, exc)
                self.session.pending_events.remove(event)
                self._report_error(exc)
                continue
            if self._running and self._token.cancelled:
                # Late answer during teardown; the event is retried on the next flush.
                raise SessionClosedError(self._token.reason or "closed")
            self.session.pending_events.remove(event)
            self._recorded(event, ack)
            written += 1
        return written

    # ------------------------------------------------------------------ scanning
    async def _scan(self, stream: CameraStream) -> None:
        async for scan in self.scanner.frames(stream, self._token):
            if self.callbacks.on_frame is not None:
                self.callbacks.on_frame(scan.frame)
            if scan.candidate is not None:
                self._offer(RecognitionResult.from_candidate(scan.candidate))

    def _offer(self, result: RecognitionResult) -> bool:
        assert self._results is not None
        try:
            self._results.put_nowait(result)
        except asyncio.QueueFull:
            LOGGER.debug("Dropping %s; a result is already queued", result.student_id)
            return False
        return True

    async def _next_result(self, producer: asyncio.Task) -> Optional[RecognitionResult]:
        assert self._results is not None
        getter = asyncio.ensure_future(self._results.get())
        try:
            await asyncio.wait({getter, producer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not getter.done():
                getter.cancel()
        if getter.done() and not getter.cancelled():
            return getter.result()
        # The producer only stops on its own when the stream ends or fails.
        producer.result()
        return None

    def _pause_recognition(self) -> None:
        self.scanner.detecting = False

    def _resume_recognition(self) -> None:
        self.scanner.detecting = True
        self._set_status(SessionStatus.RECOGNIZING)

    # ------------------------------------------------------------------ per-result flow
    async def _process(self, result: RecognitionResult) -> bool:
        """Look up, confirm and commit one result; return True to end the session."""
        self._token.raise_if_cancelled()
        try:
            student = await self._interruptible(self.directory.get_student(result.student_id))
        except RecorderError as exc:
            LOGGER.warning("Lookup failed for %s: %s", result.student_id, exc)
            self._report_error(exc)
            return False

        self._pause_recognition()
        self._set_status(SessionStatus.CONFIRMING)
        late = is_late_entry(self._clock(), student.expected_entry)
        outcome = await self._interruptible(self.gate.present(result, student, is_late=late))
        if outcome is GateOutcome.CANCELLED:
            self._report_status(f"Cancelled: {student.full_name}")
            self._resume_recognition()
            return False

        moment = self._clock()
        direction = Direction(outcome.value)
        event = AttendanceEvent(
            student_id=student.student_id,
            school_id=self.school_id,
            direction=direction,
            timestamp=moment,
            source_session_id=self.session.session_id,
            is_late=direction is Direction.ENTRY and is_late_entry(moment, student.expected_entry),
            early_departure=direction is Direction.EXIT and is_early_departure(moment, student.expected_exit),
            student_name=student.full_name,
            source=result.source,
            symbology=result.symbology,
        )
        # Recognition stays paused until the recorder has answered.
        self._set_status(SessionStatus.COMMITTING)
        committed = await self._commit(event)
        if committed and self.session.pending_events:
            await self._interruptible(self.flush_pending())
        if committed and self.single_shot:
            self.close("single-shot complete")
            return True
        self._resume_recognition()
        return False

    async def _commit(self, event: AttendanceEvent) -> bool:
        delay = self.commit_backoff
        for attempt in range(1, self.commit_attempts + 1):
            try:
                ack = await self._interruptible(self._write(event))
            except TransientRecorderError as exc:
                if attempt >= self.commit_attempts:
                    LOGGER.error(
                        "Giving up on %s for %s after %d attempts: %s",
                        event.direction.value,
                        event.student_id,
                        attempt,
                        exc,
                    )
                    self.session.pending_events.append(event)
                    self._report_error(exc)
                    return False
                LOGGER.warning("Attendance write failed (attempt %d/%d): %s", attempt, self.commit_attempts, exc)
                await self._interruptible(asyncio.sleep(delay))
                delay *= 2
                continue
            except RecorderError as exc:
                LOGGER.warning("Attendance write rejected for %s: %s", event.student_id, exc)
                self._report_error(exc)
                return False
            self._recorded(event, ack)
            return True
        return False

    async def _write(self, event: AttendanceEvent) -> RecordAck:
        try:
            return await self.recorder.record(
                event.student_id,
                event.school_id,
                event.direction,
                event.timestamp,
                session_id=event.source_session_id,
                is_late=event.is_late,
                early_departure=event.early_departure,
            )
        except DuplicateAttendanceError as exc:
            LOGGER.info("%s for %s was already recorded", event.direction.value.capitalize(), event.student_id)
            if isinstance(exc.ack, RecordAck):
                return exc.ack
            return RecordAck(
                record_id="",
                student_id=event.student_id,
                direction=event.direction,
                timestamp=event.timestamp,
                duplicate=True,
            )

    def _recorded(self, event: AttendanceEvent, ack: RecordAck) -> None:
        if not ack.duplicate:
            self.session.scans_recorded += 1
        self.session.last_error = None
        if self.attendance_log is not None:
            append_attendance_log(
                self.attendance_log,
                {
                    "timestamp": event.timestamp.isoformat(),
                    "session_id": event.source_session_id,
                    "student_id": event.student_id,
                    "student_name": event.student_name,
                    "direction": event.direction.value,
                    "source": event.source,
                    "symbology": event.symbology,
                    "is_late": event.is_late,
                    "status": ack.status,
                    "record_id": ack.record_id,
                    "duplicate": ack.duplicate,
                },
            )
        suffix = " (already recorded)" if ack.duplicate else ""
        self._report_status(f"{event.direction.value.capitalize()} recorded: {event.student_name or event.student_id}{suffix}")
        if self.callbacks.on_recorded is not None:
            self.callbacks.on_recorded(event, ack)

    # ------------------------------------------------------------------ internals
    async def _interruptible(
        self, awaitable: Awaitable[Any], *, discard: Optional[Callable[[Any], None]] = None
    ) -> Any:
        """Await ``awaitable`` unless the session closes first.

        A result that arrives after the token was cancelled is handed to
        ``discard`` and never applied.
        """
        if self._token.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise SessionClosedError(self._token.reason or "closed")
        result = await race(awaitable, self._wait_closed())
        if self._token.cancelled:
            if discard is not None:
                discard(result)
            raise SessionClosedError(self._token.reason or "closed")
        return result

    async def _wait_closed(self) -> None:
        assert self._closed is not None
        await self._closed.wait()
        raise SessionClosedError(self._token.reason or "closed")

    def _release(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            self.guard.release(stream)

    def _fail(self, exc: BaseException) -> None:
        self.session.last_error = exc
        self._set_status(SessionStatus.FAILED)
        if isinstance(exc, CaptureError):
            LOGGER.error("Capture failed: %s", exc)
        else:
            LOGGER.exception("Capture session failed")
        if self.callbacks.on_error is not None:
            self.callbacks.on_error(exc)

    def _report_error(self, exc: BaseException) -> None:
        self.session.last_error = exc
        self._report_status(str(exc))
        if self.callbacks.on_error is not None:
            self.callbacks.on_error(exc)

    def _report_status(self, message: str) -> None:
        LOGGER.info(message)
        if self.callbacks.on_status is not None:
            self.callbacks.on_status(message)

    def _set_status(self, status: SessionStatus) -> None:
        if self.session.status is status:
            return
        LOGGER.debug("Session %s: %s -> %s", self.session.session_id, self.session.status.value, status.value)
        self.session.status = status
        if self.callbacks.on_stage_change is not None:
            self.callbacks.on_stage_change(status)

    def _confirmation_changed(self, state: Optional[ConfirmationState]) -> None:
        if self.callbacks.on_confirmation is not None:
            self.callbacks.on_confirmation(state)


__all__ = [
    "AttendanceEvent",
    "CaptureController",
    "CaptureSession",
    "DEFAULT_ATTENDANCE_BOOK",
    "DEFAULT_ATTENDANCE_LOG",
    "DEFAULT_COMMIT_ATTEMPTS",
    "DEFAULT_COMMIT_BACKOFF",
    "DEFAULT_ROSTER",
    "MAX_ACQUIRE_RETRIES",
    "SessionCallbacks",
    "SessionStatus",
]
