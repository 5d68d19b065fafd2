import asyncio
import threading

import pytest

from conftest import FakeCapture, FakeOpener, make_guard
from utils.camera import CameraConstraints, ResourceGuard, is_secure_source, select_camera_source, source_kind
from utils.errors import (
    AcquisitionTimeoutError,
    CameraDeviceError,
    CameraPermissionError,
    InsecureSourceError,
    UnsupportedSourceError,
)

HD = CameraConstraints(source=0, width=1280, height=720)


def test_acquire_then_release_closes_capture_once():
    opener = FakeOpener()
    guard = make_guard(opener)

    stream = asyncio.run(guard.acquire(HD))

    assert stream.active
    assert stream.resolution == (1280, 720)
    guard.release(stream)
    guard.release(stream)
    stream.stop()
    assert not stream.active
    assert opener.captures[0].release_count == 1


def test_lower_resolution_is_accepted():
    opener = FakeOpener(lambda: FakeCapture(640, 480))
    guard = make_guard(opener)

    stream = asyncio.run(guard.acquire(CameraConstraints(source=0, facing_mode="environment", width=1280, height=720)))

    assert stream.resolution == (640, 480)
    assert stream.requested == (1280, 720)
    assert opener.calls == [(0, 1280, 720, None)]
    stream.stop()


def test_timeout_releases_late_stream():
    gate = threading.Event()
    opener = FakeOpener(gate=gate)
    guard = make_guard(opener, timeout=0.05)

    async def scenario():
        with pytest.raises(AcquisitionTimeoutError) as excinfo:
            await guard.acquire(HD)
        assert opener.captures == []
        gate.set()
        for _ in range(200):
            if opener.captures and opener.captures[0].release_count:
                break
            await asyncio.sleep(0.01)
        return excinfo.value

    error = asyncio.run(scenario())
    assert error.retryable
    assert "too long" in error.remediation
    assert opener.captures[0].release_count == 1


def test_source_is_free_again_after_timeout_settles():
    gate = threading.Event()
    opener = FakeOpener(gate=gate)
    guard = make_guard(opener, timeout=0.05)

    async def scenario():
        with pytest.raises(AcquisitionTimeoutError):
            await guard.acquire(HD)
        gate.set()
        for _ in range(200):
            if opener.captures and opener.captures[0].release_count:
                break
            await asyncio.sleep(0.01)
        return await guard.acquire(HD)

    stream = asyncio.run(scenario())
    assert stream.active
    stream.stop()
    assert opener.captures[1].release_count == 1


def test_cancelled_acquisition_releases_stream_when_it_arrives():
    gate = threading.Event()
    opener = FakeOpener(gate=gate)
    guard = make_guard(opener)

    async def scenario():
        task = asyncio.ensure_future(guard.acquire(HD))
        await asyncio.sleep(0.02)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        gate.set()
        for _ in range(200):
            if opener.captures and opener.captures[0].release_count:
                break
            await asyncio.sleep(0.01)

    asyncio.run(scenario())
    assert opener.captures[0].release_count == 1


def test_insecure_remote_source_is_rejected_before_opening():
    opener = FakeOpener()
    guard = make_guard(opener)

    with pytest.raises(InsecureSourceError) as excinfo:
        asyncio.run(guard.acquire(CameraConstraints(source="http://camera.example.com/stream")))

    assert opener.calls == []
    assert "https://" in excinfo.value.remediation


def test_unsupported_sources():
    opener = FakeOpener()
    guard = ResourceGuard(opener=opener, capability_probe=lambda: False, access_check=lambda source: None)

    with pytest.raises(UnsupportedSourceError):
        asyncio.run(guard.acquire(HD))
    with pytest.raises(UnsupportedSourceError):
        guard.check_environment("gopher://camera.local/feed")
    assert opener.calls == []


def test_permission_denied_surfaces_without_opening():
    opener = FakeOpener()

    def deny(source):
        raise CameraPermissionError("Camera permission denied for /dev/video0.", source=source)

    guard = ResourceGuard(opener=opener, capability_probe=lambda: True, access_check=deny)

    with pytest.raises(CameraPermissionError) as excinfo:
        asyncio.run(guard.acquire(HD))
    assert not excinfo.value.retryable
    assert opener.calls == []


def test_unopened_capture_is_released_and_reported():
    closed = FakeCapture()
    closed.release_count = 1
    opener = FakeOpener(lambda: closed)
    guard = make_guard(opener)

    with pytest.raises(CameraDeviceError):
        asyncio.run(guard.acquire(HD))
    assert closed.release_count == 2


def test_busy_source_rejected_until_released():
    opener = FakeOpener()
    guard = make_guard(opener)

    async def scenario():
        first = await guard.acquire(HD)
        with pytest.raises(CameraDeviceError, match="already in use"):
            await guard.acquire(HD)
        first.stop()
        return await guard.acquire(HD)

    second = asyncio.run(scenario())
    assert len(opener.captures) == 2
    second.stop()


@pytest.mark.parametrize(
    "source, expected",
    [
        (0, "device"),
        ("1", "device"),
        ("/dev/video2", "device"),
        ("csi://0", "csi"),
        ("clips/gate.mp4", "file"),
        ("https://cam.local/feed", "network"),
        ("ftp://cam.local/feed", "unknown"),
    ],
)
def test_source_kind(source, expected):
    assert source_kind(source) == expected


def test_plain_streams_only_allowed_from_loopback():
    assert is_secure_source("rtsps://gate-camera/stream")
    assert is_secure_source("http://127.0.0.1:8080/video")
    assert not is_secure_source("rtsp://10.0.0.5/stream")
    assert is_secure_source(0)


def test_explicit_source_wins_over_facing_mode():
    assert select_camera_source("2", "user") == 2
    assert select_camera_source("clips/gate.mp4") == "clips/gate.mp4"
