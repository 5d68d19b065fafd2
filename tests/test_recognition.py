import asyncio

import numpy as np
import pytest

from conftest import FakeCapture, FakeRecognizer
from utils.camera import CameraStream
from utils.cancellation import CancelToken
from utils.errors import CameraDeviceError, SessionClosedError
from utils.recognition import CodeRecognizer, FrameScanner, RecognitionCandidate, RecognitionResult, identifier_from_payload


class ManualClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def make_stream(capture=None):
    return CameraStream(capture or FakeCapture(), source=0, resolution=(8, 8))


async def collect(scanner, stream, token, count):
    found = []
    async for scan in scanner.frames(stream, token):
        found.append(scan.candidate.identifier if scan.candidate else None)
        if len(found) == count:
            token.cancel("enough")
    return found


@pytest.mark.parametrize(
    "payload, expected",
    [
        ("S123", "S123"),
        ("  S123\n", "S123"),
        ('{"student_id": "S123", "name": "Amina"}', "S123"),
        ('{"studentId": 77}', "77"),
        ('{"id": "S9"}', "S9"),
        ('{"name": "no id"}', None),
        ("{broken", None),
        ("", None),
    ],
)
def test_identifier_from_payload(payload, expected):
    assert identifier_from_payload(payload) == expected


def test_manual_result_is_tagged():
    result = RecognitionResult.manual(" S123 ")

    assert result.student_id == "S123"
    assert result.source == "manual"
    assert result.symbology == "manual"


def test_candidate_result_keeps_payload():
    candidate = RecognitionCandidate(identifier="S123", payload='{"id": "S123"}', symbology="qr_code")

    result = RecognitionResult.from_candidate(candidate)

    assert result.raw_payload == '{"id": "S123"}'
    assert result.source == "camera"
    assert result.recognized_at.tzinfo is not None


def test_same_identifier_is_suppressed_within_cooldown():
    clock = ManualClock()
    recognizer = FakeRecognizer(["S123", "S123", "S200"])
    scanner = FrameScanner(recognizer, scan_interval=0, repeat_cooldown=3.0, clock=clock)

    found = asyncio.run(collect(scanner, make_stream(), CancelToken(), 4))

    assert found == ["S123", None, "S200", None]


def test_forget_allows_immediate_repeat():
    clock = ManualClock()
    recognizer = FakeRecognizer(["S123"])
    scanner = FrameScanner(recognizer, scan_interval=0, repeat_cooldown=3.0, clock=clock)
    stream = make_stream()

    assert asyncio.run(collect(scanner, stream, CancelToken(), 1)) == ["S123"]
    recognizer.push("S123")
    scanner.forget()
    assert asyncio.run(collect(scanner, stream, CancelToken(), 1)) == ["S123"]


def test_detection_paused_still_yields_frames():
    recognizer = FakeRecognizer(["S123"])
    scanner = FrameScanner(recognizer, scan_interval=0)
    scanner.detecting = False

    found = asyncio.run(collect(scanner, make_stream(), CancelToken(), 3))

    assert found == [None, None, None]
    assert recognizer.calls == 0


def test_scan_interval_throttles_recognizer():
    clock = ManualClock()
    recognizer = FakeRecognizer()
    scanner = FrameScanner(recognizer, scan_interval=1.0, clock=clock)

    asyncio.run(collect(scanner, make_stream(), CancelToken(), 5))

    assert recognizer.calls == 1


def test_recognizer_errors_are_skipped():
    class Flaky(FakeRecognizer):
        def detect(self, frame):
            self.calls += 1
            if self.calls == 1:
                raise ValueError("corrupt frame")
            return super().detect(frame)

    recognizer = Flaky(["S123"])
    scanner = FrameScanner(recognizer, scan_interval=0)

    found = asyncio.run(collect(scanner, make_stream(), CancelToken(), 1))

    assert found == ["S123"]


def test_dead_camera_raises_device_error():
    scanner = FrameScanner(FakeRecognizer(), max_read_failures=3)

    with pytest.raises(CameraDeviceError):
        asyncio.run(collect(scanner, make_stream(FakeCapture(fail_reads=True)), CancelToken(), 1))


def test_stopped_stream_ends_iteration():
    stream = make_stream()
    stream.stop()
    scanner = FrameScanner(FakeRecognizer())

    assert asyncio.run(collect(scanner, stream, CancelToken(), 1)) == []


def test_code_recognizer_finds_nothing_on_blank_frame():
    recognizer = CodeRecognizer(enable_barcodes=False)

    assert recognizer.symbologies == ("qr_code",)
    assert recognizer.detect(np.zeros((120, 160, 3), dtype=np.uint8)) is None


def test_cancel_token_runs_callbacks_once():
    token = CancelToken()
    calls = []
    token.add_callback(lambda: calls.append("first"))

    assert token.cancel("stop")
    assert not token.cancel("again")
    token.add_callback(lambda: calls.append("late"))

    assert calls == ["first", "late"]
    assert token.reason == "stop"
    with pytest.raises(SessionClosedError, match="stop"):
        token.raise_if_cancelled()
