import asyncio
import csv
import threading
from datetime import datetime

import pytest

from conftest import MORNING, FakeCapture, FakeDirectory, FakeOpener, FakeRecorder, make_guard, make_student
from pipelines.attendance import SessionCallbacks, SessionStatus
from utils.camera import ResourceGuard
from utils.errors import (
    CameraDeviceError,
    CameraPermissionError,
    SessionClosedError,
    StudentNotFoundError,
    TransientRecorderError,
)
from utils.records import AttendanceBook, Direction

FULL_SESSION = [
    SessionStatus.ACQUIRING,
    SessionStatus.READY,
    SessionStatus.RECOGNIZING,
    SessionStatus.CONFIRMING,
    SessionStatus.COMMITTING,
    SessionStatus.RECOGNIZING,
    SessionStatus.CLOSED,
]


def run_session(controller, timeout=5):
    return asyncio.wait_for(controller.run(), timeout)


def confirm_on_open(holder, action="confirm_entry"):
    """Confirmation listener that presses ``action`` as soon as a card opens."""

    def on_confirmation(state):
        if state is not None and state.remaining_seconds == state.minimum_wait_seconds:
            asyncio.get_running_loop().call_soon(getattr(holder["controller"].gate, action))

    return on_confirmation


def test_entry_pressed_during_countdown_is_recorded(make_controller, recognizer, recorder, opener):
    recognizer.push("S123")
    stages, pressed_at = [], []
    holder = {}

    def on_confirmation(state):
        if state is not None and state.remaining_seconds == 3 and not pressed_at:
            pressed_at.append(state.remaining_seconds)
            asyncio.get_running_loop().call_soon(holder["controller"].gate.confirm_entry)

    def on_stage(stage):
        stages.append(stage)
        if stage is SessionStatus.RECOGNIZING and recorder.calls:
            asyncio.get_running_loop().call_soon(holder["controller"].close, "done")

    async def scenario():
        holder["controller"] = make_controller(
            callbacks=SessionCallbacks(on_stage_change=on_stage, on_confirmation=on_confirmation)
        )
        return await run_session(holder["controller"])

    session = asyncio.run(scenario())

    assert pressed_at == [3]
    assert stages == FULL_SESSION
    assert session.scans_recorded == 1
    call = recorder.calls[0]
    assert call["student_id"] == "S123"
    assert call["direction"] is Direction.ENTRY
    assert call["session_id"] == session.session_id
    assert call["is_late"] is False
    assert opener.captures[0].release_count == 1


def test_cancel_is_ignored_until_countdown_ends(make_controller, recognizer, recorder, opener):
    recognizer.push("S123")
    cancel_results, stages = [], []
    holder = {}

    def on_confirmation(state):
        if state is None:
            return
        gate = holder["controller"].gate
        if state.remaining_seconds == 4:
            cancel_results.append(gate.cancel())
        elif state.remaining_seconds == 0:
            asyncio.get_running_loop().call_soon(lambda: cancel_results.append(gate.cancel()))

    def on_stage(stage):
        stages.append(stage)
        if stages.count(SessionStatus.RECOGNIZING) == 2:
            asyncio.get_running_loop().call_soon(holder["controller"].close, "done")

    async def scenario():
        holder["controller"] = make_controller(
            callbacks=SessionCallbacks(on_stage_change=on_stage, on_confirmation=on_confirmation)
        )
        return await run_session(holder["controller"])

    session = asyncio.run(scenario())

    assert cancel_results == [False, True]
    assert recorder.calls == []
    assert session.scans_recorded == 0
    assert SessionStatus.COMMITTING not in stages
    assert stages[-2:] == [SessionStatus.RECOGNIZING, SessionStatus.CLOSED]
    assert opener.captures[0].release_count == 1


def test_duplicate_write_counts_as_success(make_controller, recognizer, opener):
    recognizer.push("S123")
    book = AttendanceBook()
    acks = []
    holder = {}

    def on_recorded(event, ack):
        acks.append(ack)
        controller = holder["controller"]
        if len(acks) == 1:
            assert controller.submit_manual("S123")
        else:
            asyncio.get_running_loop().call_soon(controller.close, "done")

    async def scenario():
        holder["controller"] = make_controller(
            recorder_override=book,
            callbacks=SessionCallbacks(on_recorded=on_recorded, on_confirmation=confirm_on_open(holder)),
        )
        return await run_session(holder["controller"])

    session = asyncio.run(scenario())

    assert [ack.duplicate for ack in acks] == [False, True]
    assert acks[0].record_id == acks[1].record_id
    assert session.scans_recorded == 1
    assert session.last_error is None
    assert len(book.records) == 1


def test_transient_failures_are_retried(make_controller, recognizer, opener):
    recognizer.push("S123")
    recorder = FakeRecorder(transient_failures=2)
    holder = {}

    def on_recorded(event, ack):
        asyncio.get_running_loop().call_soon(holder["controller"].close, "done")

    async def scenario():
        holder["controller"] = make_controller(
            recorder_override=recorder,
            commit_attempts=3,
            callbacks=SessionCallbacks(on_recorded=on_recorded, on_confirmation=confirm_on_open(holder)),
        )
        return await run_session(holder["controller"])

    session = asyncio.run(scenario())

    assert len(recorder.calls) == 3
    assert session.scans_recorded == 1
    assert session.pending_events == []


def test_exhausted_retries_are_kept_and_flushed_after_next_success(make_controller, recognizer, opener):
    recognizer.push("S123")
    recorder = FakeRecorder(transient_failures=3)
    directory = FakeDirectory(make_student("S123"), make_student("S200", "Omar Haddad"))
    recorded, errors = [], []
    holder = {}

    def on_error(exc):
        errors.append(exc)
        if isinstance(exc, TransientRecorderError):
            holder["controller"].submit_manual("S200")

    def on_recorded(event, ack):
        recorded.append(event.student_id)
        if len(recorded) == 2:
            asyncio.get_running_loop().call_soon(holder["controller"].close, "done")

    async def scenario():
        holder["controller"] = make_controller(
            directory=directory,
            recorder_override=recorder,
            commit_attempts=2,
            callbacks=SessionCallbacks(
                on_error=on_error,
                on_recorded=on_recorded,
                on_confirmation=confirm_on_open(holder),
            ),
        )
        return await run_session(holder["controller"])

    session = asyncio.run(scenario())

    assert recorded == ["S200", "S123"]
    assert len(errors) == 1
    assert session.pending_events == []
    assert session.scans_recorded == 2
    assert len(recorder.calls) == 5


def test_pending_events_can_be_flushed_after_the_session(make_controller, recognizer, opener):
    recognizer.push("S123")
    recorder = FakeRecorder(transient_failures=1)
    holder = {}

    def on_error(exc):
        asyncio.get_running_loop().call_soon(holder["controller"].close, "done")

    async def scenario():
        controller = holder["controller"] = make_controller(
            recorder_override=recorder,
            commit_attempts=1,
            callbacks=SessionCallbacks(on_error=on_error, on_confirmation=confirm_on_open(holder)),
        )
        session = await run_session(controller)
        assert len(session.pending_events) == 1
        written = await controller.flush_pending()
        return session, written

    session, written = asyncio.run(scenario())

    assert written == 1
    assert session.pending_events == []
    assert session.scans_recorded == 1
    assert session.status is SessionStatus.CLOSED


def test_unknown_student_is_reported_and_scanning_continues(make_controller, recognizer, recorder, opener):
    recognizer.push("S404")
    errors = []
    holder = {}

    def on_error(exc):
        errors.append(exc)
        recognizer.push("S123")

    def on_recorded(event, ack):
        asyncio.get_running_loop().call_soon(holder["controller"].close, "done")

    async def scenario():
        holder["controller"] = make_controller(
            callbacks=SessionCallbacks(
                on_error=on_error,
                on_recorded=on_recorded,
                on_confirmation=confirm_on_open(holder),
            )
        )
        return await run_session(holder["controller"])

    session = asyncio.run(scenario())

    assert isinstance(errors[0], StudentNotFoundError)
    assert errors[0].identifier == "S404"
    assert [call["student_id"] for call in recorder.calls] == ["S123"]
    assert session.status is SessionStatus.CLOSED


def test_single_shot_closes_after_first_record_and_writes_audit_log(make_controller, recognizer, recorder, opener, tmp_path):
    recognizer.push("S123")
    log_path = tmp_path / "attendance_log.csv"
    holder = {}

    async def scenario():
        holder["controller"] = make_controller(
            single_shot=True,
            attendance_log=log_path,
            callbacks=SessionCallbacks(on_confirmation=confirm_on_open(holder)),
        )
        return await run_session(holder["controller"])

    session = asyncio.run(scenario())

    assert session.status is SessionStatus.CLOSED
    assert session.scans_recorded == 1
    assert opener.captures[0].release_count == 1
    with log_path.open(encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))
    assert len(rows) == 1
    assert rows[0]["student_id"] == "S123"
    assert rows[0]["direction"] == "entry"
    assert rows[0]["record_id"] == "rec-1"


def test_late_entry_and_early_exit_flags(make_controller, recognizer, recorder, opener):
    recognizer.push("S123")
    late_morning = datetime(2026, 3, 2, 8, 15).astimezone()
    shown = []
    holder = {}

    def on_confirmation(state):
        if state is not None and state.remaining_seconds == state.minimum_wait_seconds:
            shown.append(state.is_late)
            asyncio.get_running_loop().call_soon(holder["controller"].gate.confirm_entry)

    async def scenario():
        holder["controller"] = make_controller(
            single_shot=True,
            clock=lambda: late_morning,
            callbacks=SessionCallbacks(on_confirmation=on_confirmation),
        )
        await run_session(holder["controller"])

    asyncio.run(scenario())
    assert shown == [True]
    assert recorder.calls[0]["is_late"] is True

    recognizer.push("S123")
    afternoon = datetime(2026, 3, 2, 14, 0).astimezone()

    async def leave():
        holder["controller"] = make_controller(
            single_shot=True,
            clock=lambda: afternoon,
            callbacks=SessionCallbacks(on_confirmation=confirm_on_open(holder, "confirm_exit")),
        )
        await run_session(holder["controller"])

    asyncio.run(leave())
    exit_call = recorder.calls[1]
    assert exit_call["direction"] is Direction.EXIT
    assert exit_call["early_departure"] is True
    assert exit_call["is_late"] is False


def test_close_during_acquisition_releases_late_stream(make_controller):
    gate = threading.Event()
    opener = FakeOpener(gate=gate)
    stages = []

    async def scenario():
        controller = make_controller(
            guard=make_guard(opener),
            callbacks=SessionCallbacks(on_stage_change=stages.append),
        )
        task = asyncio.ensure_future(controller.run())
        for _ in range(200):
            if opener.calls:
                break
            await asyncio.sleep(0.01)
        controller.close("operator stop")
        session = await asyncio.wait_for(task, 2)
        gate.set()
        for _ in range(200):
            if opener.captures and opener.captures[0].release_count:
                break
            await asyncio.sleep(0.01)
        return session

    session = asyncio.run(scenario())

    assert stages == [SessionStatus.ACQUIRING, SessionStatus.CLOSED]
    assert session.status is SessionStatus.CLOSED
    assert opener.captures[0].release_count == 1


def test_close_while_confirming_releases_camera(make_controller, recognizer, recorder, opener):
    recognizer.push("S123")
    holder = {}
    changes = []

    def on_confirmation(state):
        changes.append(state)
        if state is not None:
            asyncio.get_running_loop().call_soon(holder["controller"].close, "operator stop")

    async def scenario():
        holder["controller"] = make_controller(callbacks=SessionCallbacks(on_confirmation=on_confirmation))
        return await run_session(holder["controller"])

    session = asyncio.run(scenario())

    assert session.status is SessionStatus.CLOSED
    assert changes[-1] is None
    assert recorder.calls == []
    assert opener.captures[0].release_count == 1


def test_camera_failure_marks_session_failed_and_releases(make_controller):
    opener = FakeOpener(lambda: FakeCapture(fail_reads=True))
    errors = []

    async def scenario():
        controller = make_controller(guard=make_guard(opener), callbacks=SessionCallbacks(on_error=errors.append))
        with pytest.raises(CameraDeviceError):
            await run_session(controller)
        return controller

    controller = asyncio.run(scenario())

    assert controller.status is SessionStatus.FAILED
    assert isinstance(controller.session.last_error, CameraDeviceError)
    assert errors == [controller.session.last_error]
    assert opener.captures[0].release_count == 1


def test_permission_error_fails_session_without_opening(make_controller, opener):
    def deny(source):
        raise CameraPermissionError("Camera permission denied for /dev/video0.", source=source)

    guard = ResourceGuard(opener=opener, capability_probe=lambda: True, access_check=deny)

    async def scenario():
        controller = make_controller(guard=guard)
        with pytest.raises(CameraPermissionError):
            await run_session(controller)
        return controller

    controller = asyncio.run(scenario())
    assert controller.status is SessionStatus.FAILED
    assert opener.calls == []


def test_session_cannot_be_reused(make_controller):
    async def scenario():
        controller = make_controller()
        controller.close("not needed")
        assert controller.status is SessionStatus.CLOSED
        assert not controller.submit_manual("S123")
        with pytest.raises(SessionClosedError):
            await controller.run()

    asyncio.run(scenario())


def test_fixed_clock_is_used_for_session_start(make_controller, recognizer):
    recognizer.push("S123")
    holder = {}

    async def scenario():
        holder["controller"] = make_controller(
            single_shot=True,
            callbacks=SessionCallbacks(on_confirmation=confirm_on_open(holder)),
        )
        return await run_session(holder["controller"])

    session = asyncio.run(scenario())
    assert session.started_at == MORNING


class HeldRecorder(FakeRecorder):
    """FakeRecorder whose ``hold_call``-th write waits until ``released`` is set."""

    def __init__(self, *, hold_call: int, **kwargs) -> None:
        super().__init__(**kwargs)
        self.hold_call = hold_call
        self.released = None
        self.held = []

    async def record(self, student_id, school_id, direction, timestamp, **kwargs):
        if len(self.calls) + 1 == self.hold_call:
            self.released = asyncio.Event()
            self.held.append(student_id)
            try:
                await self.released.wait()
            except asyncio.CancelledError:
                self.held.append("cancelled")
                raise
        return await super().record(student_id, school_id, direction, timestamp, **kwargs)


def test_recognition_stays_paused_until_commit_finishes(make_controller, recognizer, opener):
    recognizer.push("S123")
    directory = FakeDirectory(make_student("S123"), make_student("S200", "Omar Haddad"))
    seen = {}
    holder = {}

    class SlowRecorder(FakeRecorder):
        async def record(self, student_id, school_id, direction, timestamp, **kwargs):
            if not self.calls:
                await asyncio.sleep(0.05)
                recognizer.push("S200")
                await asyncio.sleep(0.2)
                seen["detecting"] = holder["controller"].scanner.detecting
                seen["waiting"] = list(recognizer.pending)
            return await super().record(student_id, school_id, direction, timestamp, **kwargs)

    recorder = SlowRecorder()

    def on_stage(stage):
        if stage is SessionStatus.COMMITTING:
            seen.setdefault("committing", holder["controller"].scanner.detecting)

    def on_recorded(event, ack):
        if len(recorder.acks) == 2:
            asyncio.get_running_loop().call_soon(holder["controller"].close, "done")

    async def scenario():
        holder["controller"] = make_controller(
            directory=directory,
            recorder_override=recorder,
            callbacks=SessionCallbacks(
                on_stage_change=on_stage,
                on_recorded=on_recorded,
                on_confirmation=confirm_on_open(holder),
            ),
        )
        return await run_session(holder["controller"])

    session = asyncio.run(scenario())

    assert seen["committing"] is False
    assert seen["detecting"] is False
    assert seen["waiting"] == ["S200"]
    assert [call["student_id"] for call in recorder.calls] == ["S123", "S200"]
    assert session.scans_recorded == 2


def test_close_during_pending_flush_releases_camera_and_keeps_event(make_controller, recognizer, opener, tmp_path):
    recognizer.push("S123")
    directory = FakeDirectory(make_student("S123"), make_student("S200", "Omar Haddad"))
    # Call 1 fails (S123 goes pending), call 2 writes S200, call 3 is the flush of S123.
    recorder = HeldRecorder(hold_call=3, transient_failures=1)
    log_path = tmp_path / "attendance_log.csv"
    recorded = []
    holder = {}

    def on_error(exc):
        if isinstance(exc, TransientRecorderError):
            holder["controller"].submit_manual("S200")

    def on_recorded(event, ack):
        recorded.append(event.student_id)

    async def scenario():
        controller = holder["controller"] = make_controller(
            directory=directory,
            recorder_override=recorder,
            commit_attempts=1,
            attendance_log=log_path,
            callbacks=SessionCallbacks(
                on_error=on_error,
                on_recorded=on_recorded,
                on_confirmation=confirm_on_open(holder),
            ),
        )
        task = asyncio.ensure_future(run_session(controller))
        while recorder.released is None:
            await asyncio.sleep(0.01)
        assert controller.status is SessionStatus.COMMITTING
        controller.close("operator stop")
        return await task

    session = asyncio.run(scenario())

    assert session.status is SessionStatus.CLOSED
    assert opener.captures[0].release_count == 1
    assert recorder.held == ["S123", "cancelled"]
    assert recorded == ["S200"]
    assert [event.student_id for event in session.pending_events] == ["S123"]
    with log_path.open(encoding="utf-8", newline="") as handle:
        assert [row["student_id"] for row in csv.DictReader(handle)] == ["S200"]


def test_one_card_at_a_time_and_extra_results_are_dropped(make_controller, recognizer, recorder, opener):
    recognizer.push("S123")
    directory = FakeDirectory(
        make_student("S123"),
        make_student("S200", "Omar Haddad"),
        make_student("S300", "Lina Saleh"),
    )
    cards, offered = [], []
    holder = {}

    def on_confirmation(state):
        controller = holder["controller"]
        if state is None:
            cards.append("closed")
            return
        if state.remaining_seconds != state.minimum_wait_seconds:
            return
        cards.append(state.student.student_id)
        if state.student.student_id == "S123":
            offered.append(controller.submit_manual("S200"))
            offered.append(controller.submit_manual("S300"))
        asyncio.get_running_loop().call_soon(controller.gate.confirm_entry)

    def on_recorded(event, ack):
        if len(recorder.acks) == 2:
            asyncio.get_running_loop().call_soon(holder["controller"].close, "done")

    async def scenario():
        holder["controller"] = make_controller(
            directory=directory,
            callbacks=SessionCallbacks(on_confirmation=on_confirmation, on_recorded=on_recorded),
        )
        return await run_session(holder["controller"])

    session = asyncio.run(scenario())

    assert offered == [True, False]
    assert cards == ["S123", "closed", "S200", "closed"]
    assert directory.lookups == ["S123", "S200"]
    assert session.scans_recorded == 2
    assert opener.captures[0].release_count == 1


def test_close_while_committing_discards_write(make_controller, recognizer, opener, tmp_path):
    recognizer.push("S123")
    recorder = HeldRecorder(hold_call=1)
    log_path = tmp_path / "attendance_log.csv"
    recorded = []
    holder = {}

    async def scenario():
        controller = holder["controller"] = make_controller(
            recorder_override=recorder,
            attendance_log=log_path,
            callbacks=SessionCallbacks(
                on_recorded=lambda event, ack: recorded.append(event),
                on_confirmation=confirm_on_open(holder),
            ),
        )
        task = asyncio.ensure_future(run_session(controller))
        while recorder.released is None:
            await asyncio.sleep(0.01)
        assert controller.status is SessionStatus.COMMITTING
        controller.close("operator stop")
        return await task

    session = asyncio.run(scenario())

    assert session.status is SessionStatus.CLOSED
    assert recorder.held == ["S123", "cancelled"]
    assert recorded == []
    assert session.scans_recorded == 0
    assert not log_path.exists()
    assert opener.captures[0].release_count == 1


def test_shared_scanner_forgets_last_card_between_sessions(make_controller, recognizer, recorder):
    holder = {}

    async def scenario(scanner=None):
        controller = holder["controller"] = make_controller(
            single_shot=True,
            callbacks=SessionCallbacks(on_confirmation=confirm_on_open(holder)),
        )
        if scanner is not None:
            controller.scanner = scanner
        await run_session(controller)
        return controller.scanner

    recognizer.push("S123")
    scanner = asyncio.run(scenario())
    recognizer.push("S123")
    asyncio.run(scenario(scanner))

    assert [call["student_id"] for call in recorder.calls] == ["S123", "S123"]
