from __future__ import annotations

import threading
import time
from collections import deque
from datetime import datetime, time as clock_time
from typing import Deque, Dict, Iterable, List, Optional

import cv2
import numpy as np
import pytest

from pipelines.attendance import CaptureController, SessionCallbacks
from pipelines.confirmation import ConfirmationGate
from utils.camera import CameraConstraints, ResourceGuard
from utils.errors import StudentNotFoundError, TransientRecorderError
from utils.recognition import FrameScanner, RecognitionCandidate
from utils.records import Direction, RecordAck, StudentProfile

SCHOOL_ID = "school-1"
# 07:30 local time, before the 08:00 default start.
MORNING = datetime(2026, 3, 2, 7, 30).astimezone()


class FakeCapture:
    """Stand-in for ``cv2.VideoCapture`` that counts releases."""

    def __init__(self, width: int = 1280, height: int = 720, fps: float = 30.0, *, fail_reads: bool = False) -> None:
        self.width = width
        self.height = height
        self.fps = fps
        self.fail_reads = fail_reads
        self.release_count = 0
        self._lock = threading.Lock()

    def isOpened(self) -> bool:
        return self.release_count == 0

    def get(self, prop: int) -> float:
        if prop == cv2.CAP_PROP_FRAME_WIDTH:
            return float(self.width)
        if prop == cv2.CAP_PROP_FRAME_HEIGHT:
            return float(self.height)
        if prop == cv2.CAP_PROP_FPS:
            return float(self.fps)
        return 0.0

    def read(self):
        time.sleep(0.001)
        if self.fail_reads or self.release_count:
            return False, None
        return True, np.zeros((8, 8, 3), dtype=np.uint8)

    def release(self) -> None:
        with self._lock:
            self.release_count += 1


class FakeOpener:
    """Callable matching ``open_video_source``; optionally blocks until ``gate`` is set."""

    def __init__(self, capture_factory=FakeCapture, *, gate: Optional[threading.Event] = None, error: Optional[BaseException] = None) -> None:
        self.capture_factory = capture_factory
        self.gate = gate
        self.error = error
        self.captures: List[FakeCapture] = []
        self.calls: List[tuple] = []

    def __call__(self, source, width, height, fps):
        self.calls.append((source, width, height, fps))
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if self.error is not None:
            raise self.error
        capture = self.capture_factory()
        self.captures.append(capture)
        return capture


class FakeRecognizer:
    """Returns queued identifiers one per detection, then nothing."""

    def __init__(self, identifiers: Iterable[str] = ()) -> None:
        self.pending: Deque[str] = deque(identifiers)
        self.calls = 0

    def push(self, identifier: str) -> None:
        self.pending.append(identifier)

    def detect(self, frame: np.ndarray) -> Optional[RecognitionCandidate]:
        self.calls += 1
        if not self.pending:
            return None
        identifier = self.pending.popleft()
        return RecognitionCandidate(identifier=identifier, payload=identifier)


class FakeDirectory:
    def __init__(self, *students: StudentProfile) -> None:
        self.students: Dict[str, StudentProfile] = {student.student_id: student for student in students}
        self.lookups: List[str] = []

    async def get_student(self, identifier: str) -> StudentProfile:
        self.lookups.append(identifier)
        try:
            return self.students[identifier]
        except KeyError:
            raise StudentNotFoundError(f"Student ID not found in records: {identifier}", identifier=identifier) from None


class FakeRecorder:
    """Accepts every write after ``transient_failures`` temporary errors."""

    def __init__(self, *, transient_failures: int = 0) -> None:
        self.transient_failures = transient_failures
        self.calls: List[dict] = []
        self.acks: List[RecordAck] = []

    async def record(self, student_id, school_id, direction, timestamp, *, session_id=None, is_late=False, early_departure=False):
        self.calls.append(
            {
                "student_id": student_id,
                "school_id": school_id,
                "direction": Direction(direction),
                "timestamp": timestamp,
                "session_id": session_id,
                "is_late": is_late,
                "early_departure": early_departure,
            }
        )
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise TransientRecorderError("backend unavailable")
        ack = RecordAck(
            record_id=f"rec-{len(self.acks) + 1}",
            student_id=student_id,
            direction=Direction(direction),
            timestamp=timestamp,
        )
        self.acks.append(ack)
        return ack


def make_student(student_id: str = "S123", name: str = "Amina Yusuf", **overrides) -> StudentProfile:
    values = dict(
        id=f"id-{student_id}",
        student_id=student_id,
        full_name=name,
        class_name="Grade 5",
        section="B",
        expected_entry=clock_time(8, 0),
        expected_exit=clock_time(15, 0),
    )
    values.update(overrides)
    return StudentProfile(**values)


def make_guard(opener: Optional[FakeOpener] = None, *, timeout: float = 2.0) -> ResourceGuard:
    return ResourceGuard(
        timeout=timeout,
        opener=opener or FakeOpener(),
        capability_probe=lambda: True,
        access_check=lambda source: None,
    )


@pytest.fixture
def student() -> StudentProfile:
    return make_student()


@pytest.fixture
def opener() -> FakeOpener:
    return FakeOpener()


@pytest.fixture
def recognizer() -> FakeRecognizer:
    return FakeRecognizer()


@pytest.fixture
def recorder() -> FakeRecorder:
    return FakeRecorder()


@pytest.fixture
def make_controller(opener, recognizer, recorder, student):
    """Build a controller wired to fakes; keyword overrides replace any part."""

    def factory(
        *,
        callbacks: Optional[SessionCallbacks] = None,
        directory=None,
        recorder_override=None,
        guard: Optional[ResourceGuard] = None,
        minimum_wait: int = 5,
        clock=lambda: MORNING,
        **kwargs,
    ) -> CaptureController:
        scanner = FrameScanner(recognizer, scan_interval=0, repeat_cooldown=60)
        gate = ConfirmationGate(minimum_wait, tick_interval=0.01)
        kwargs.setdefault("commit_backoff", 0.0)
        return CaptureController(
            guard or make_guard(opener),
            scanner,
            directory or FakeDirectory(student),
            recorder_override or recorder,
            school_id=SCHOOL_ID,
            constraints=CameraConstraints(source=0, width=1280, height=720),
            gate=gate,
            callbacks=callbacks,
            clock=clock,
            **kwargs,
        )

    return factory
