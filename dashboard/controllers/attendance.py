from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Optional

from pipelines.attendance import MAX_ACQUIRE_RETRIES, CaptureController, SessionCallbacks, SessionStatus
from pipelines.confirmation import ConfirmationGate
from utils.errors import CaptureError, SessionClosedError
from utils.records import AttendanceBook, RosterDirectory
from utils.services import build_constraints, create_services

from dashboard.configuration import ScannerConfig

LOGGER = logging.getLogger(__name__)


class AttendanceSessionController:
    """Run capture sessions on a private asyncio loop thread.

    Button handlers call the public methods from the Tk thread; every call is
    forwarded into the loop with ``call_soon_threadsafe``.
    """

    def __init__(self, config: ScannerConfig) -> None:
        self.config = config
        self.directory: Optional[RosterDirectory] = None
        self.recorder: Optional[AttendanceBook] = None
        self.capture: Optional[CaptureController] = None
        self.gate: Optional[ConfirmationGate] = None
        self._services = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._error_handler: Optional[Callable[[BaseException], None]] = None
        self._finished_handler: Optional[Callable[[], None]] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def load_services(self) -> None:
        if self._services is not None:
            return
        args = self.config.to_pipeline_args()
        self._services = create_services(args)
        self.directory, self.recorder = self._services[0], self._services[1]

    def start(
        self,
        callbacks: SessionCallbacks,
        *,
        on_error: Optional[Callable[[BaseException], None]] = None,
        on_finished: Optional[Callable[[], None]] = None,
    ) -> None:
        if self.running:
            return
        self.load_services()
        self._stop.clear()
        self._error_handler = on_error
        self._finished_handler = on_finished
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, args=(callbacks,), daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 3.0) -> None:
        self._stop.set()
        capture = self.capture
        if capture is not None:
            self._call(capture.close, "operator stop")
        thread = self._thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        self._thread = None

    # ------------------------------------------------------------------ operator actions
    def confirm_entry(self) -> None:
        if self.gate is not None:
            self._call(self.gate.confirm_entry)

    def confirm_exit(self) -> None:
        if self.gate is not None:
            self._call(self.gate.confirm_exit)

    def cancel_confirmation(self) -> None:
        if self.gate is not None:
            self._call(self.gate.cancel)

    def submit_manual(self, identifier: str) -> None:
        if self.capture is not None:
            self._call(self.capture.submit_manual, identifier)

    def flush_pending(self) -> None:
        capture, loop = self.capture, self._loop
        if capture is None or loop is None or loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(capture.flush_pending(), loop)

    def pending_count(self) -> int:
        capture = self.capture
        return len(capture.session.pending_events) if capture is not None else 0

    def export_csv(self, path: Path, *, day: Optional[str] = None) -> int:
        self.load_services()
        assert self.recorder is not None
        return self.recorder.export_csv(path, day=day)

    # ------------------------------------------------------------------ loop thread
    def _call(self, func: Callable[..., Any], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(func, *args)
        except RuntimeError:
            LOGGER.debug("Session loop already closed; dropped %s", getattr(func, "__name__", func))

    def _run_loop(self, callbacks: SessionCallbacks) -> None:
        loop = self._loop
        assert loop is not None
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self._run_sessions(callbacks))
        except Exception as exc:
            self._handle_run_exception(exc)
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            self.gate = None
            handler = self._finished_handler
            if handler is not None:
                handler()

    async def _run_sessions(self, callbacks: SessionCallbacks) -> None:
        assert self._services is not None
        directory, recorder, scanner, guard = self._services
        args = self.config.to_pipeline_args()
        acquired = threading.Event()

        def stage_change(stage: SessionStatus) -> None:
            if stage is SessionStatus.READY:
                acquired.set()
            if callbacks.on_stage_change:
                callbacks.on_stage_change(stage)

        wrapped = replace(callbacks, on_stage_change=stage_change)
        for attempt in range(MAX_ACQUIRE_RETRIES + 1):
            if self._stop.is_set():
                return
            self.gate = ConfirmationGate(args.minimum_wait)
            self.capture = CaptureController(
                guard,
                scanner,
                directory,
                recorder,
                school_id=args.school_id or directory.school_id,
                constraints=build_constraints(args),
                gate=self.gate,
                callbacks=wrapped,
                single_shot=args.single_shot,
                commit_attempts=args.commit_attempts,
                commit_backoff=args.commit_backoff,
                attendance_log=Path(args.attendance_log),
            )
            if self._stop.is_set():
                self.capture.close("operator stop")
            try:
                await self.capture.run()
                return
            except SessionClosedError:
                return
            except CaptureError as exc:
                if exc.retryable and not acquired.is_set() and attempt < MAX_ACQUIRE_RETRIES and not self._stop.is_set():
                    LOGGER.warning("%s Retrying (%d/%d)...", exc, attempt + 1, MAX_ACQUIRE_RETRIES)
                    if callbacks.on_status:
                        callbacks.on_status(f"{exc} Retrying ({attempt + 1}/{MAX_ACQUIRE_RETRIES})...")
                    continue
                self._handle_run_exception(exc)
                return

    def _handle_run_exception(self, exc: BaseException) -> None:
        self._stop.set()
        handler = self._error_handler
        if handler:
            try:
                handler(exc)
            finally:
                self._error_handler = None

    def shutdown(self) -> None:
        self.stop()
        self._services = None


__all__ = ["AttendanceSessionController"]
