"""Camera acquisition with a hard deadline and guaranteed release."""
from __future__ import annotations

import asyncio
import logging
import os
import platform
import threading
from concurrent.futures import Executor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Set, Tuple, Union
from urllib.parse import parse_qs, urlsplit

import cv2
import numpy as np

from .errors import (
    AcquisitionTimeoutError,
    CameraDeviceError,
    CameraPermissionError,
    InsecureSourceError,
    UnsupportedSourceError,
)
from .race import deadline, race

LOGGER = logging.getLogger(__name__)

CSI_PREFIX = "csi://"
DEFAULT_FPS = 30
DEFAULT_FLIP = 0
DEFAULT_WIDTH = 1280
DEFAULT_HEIGHT = 720
ACQUIRE_TIMEOUT_SECONDS = 7.0

SECURE_SCHEMES = {"https", "rtsps"}
PLAIN_SCHEMES = {"http", "rtsp", "rtmp", "udp", "tcp"}
LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}
ENVIRONMENT_HINTS = ("back", "rear", "environment", "world")
USER_HINTS = ("front", "user", "facetime", "integrated")
V4L2_SYSFS = Path("/sys/class/video4linux")

SourceType = Union[int, str, Path]


@dataclass(frozen=True)
class CameraConstraints:
    """What the caller would like; the device may deliver less."""

    source: Optional[SourceType] = None
    facing_mode: str = "environment"
    width: Optional[int] = DEFAULT_WIDTH
    height: Optional[int] = DEFAULT_HEIGHT
    fps: Optional[float] = None


class CameraStream:
    """Exclusive handle on an open capture; ``stop`` is idempotent."""

    def __init__(
        self,
        capture: cv2.VideoCapture,
        *,
        source: SourceType,
        resolution: Tuple[int, int],
        requested: Tuple[Optional[int], Optional[int]] = (None, None),
        fps: float = 0.0,
        on_stop: Optional[Callable[[], None]] = None,
    ) -> None:
        self._capture: Optional[cv2.VideoCapture] = capture
        self.source = source
        self.resolution = resolution
        self.requested = requested
        self.fps = fps
        self._on_stop = on_stop
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._capture is not None

    def read(self) -> Optional[np.ndarray]:
        with self._lock:
            capture = self._capture
            if capture is None:
                return None
            ok, frame = capture.read()
        if not ok:
            return None
        return frame

    def stop(self) -> None:
        with self._lock:
            capture, self._capture = self._capture, None
            if capture is None:
                return
        try:
            capture.release()
        finally:
            on_stop, self._on_stop = self._on_stop, None
            if on_stop is not None:
                on_stop()
        LOGGER.info("Camera %s released", self.source)


Opener = Callable[[SourceType, Optional[int], Optional[int], Optional[float]], cv2.VideoCapture]


class ResourceGuard:
    """Acquire and release the camera; never keeps a reference to a handed-out stream."""

    def __init__(
        self,
        *,
        timeout: float = ACQUIRE_TIMEOUT_SECONDS,
        opener: Optional[Opener] = None,
        capability_probe: Optional[Callable[[], bool]] = None,
        access_check: Optional[Callable[[SourceType], None]] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self.timeout = timeout
        self._opener = opener or open_video_source
        self._capability_probe = capability_probe or camera_backends_available
        self._access_check = access_check or check_device_access
        self._executor = executor
        self._busy_sources: Set[str] = set()

    def check_environment(self, source: SourceType) -> None:
        """Synchronous precondition checks; raise before any async work starts."""
        if not is_secure_source(source):
            raise InsecureSourceError(
                f"Insecure connection: camera source {source} must use https:// or rtsps:// unless it is local.",
                source=source,
            )
        kind = source_kind(source)
        if kind == "unknown":
            raise UnsupportedSourceError(f"Camera source {source} is not supported.", source=source)
        if kind == "device" and not self._capability_probe():
            raise UnsupportedSourceError("Camera access is not supported by this OpenCV build.", source=source)
        if kind == "csi" and not _is_linux():
            raise UnsupportedSourceError("CSI cameras are only available on Linux (Jetson).", source=source)

    async def acquire(self, constraints: CameraConstraints) -> CameraStream:
        source = select_camera_source(constraints.source, constraints.facing_mode)
        self.check_environment(source)
        key = str(source)
        if key in self._busy_sources:
            raise CameraDeviceError(f"Camera {source} is already in use by another session.", source=source)
        self._busy_sources.add(key)

        loop = asyncio.get_running_loop()
        pending = loop.run_in_executor(self._executor, self._open, source, constraints)

        def discard(stream: CameraStream) -> None:
            LOGGER.warning("Camera %s resolved after it was abandoned; releasing it", source)
            self.release(stream)

        try:
            stream = await race(
                pending,
                deadline(
                    self.timeout,
                    lambda: AcquisitionTimeoutError(
                        f"Camera start timed out after {self.timeout:g} seconds.", source=source
                    ),
                ),
                cleanup=discard,
            )
        except BaseException:
            if pending.done():
                self._busy_sources.discard(key)
            else:
                pending.add_done_callback(lambda _: self._busy_sources.discard(key))
            raise
        LOGGER.info(
            "Camera %s opened at %dx%d%s",
            source,
            stream.resolution[0],
            stream.resolution[1],
            f" @ {stream.fps:.2f} FPS" if stream.fps > 0 else "",
        )
        return stream

    @staticmethod
    def release(stream: Optional[CameraStream]) -> None:
        if stream is None:
            return
        stream.stop()

    def _open(self, source: SourceType, constraints: CameraConstraints) -> CameraStream:
        key = str(source)
        self._access_check(source)
        capture = self._opener(source, constraints.width, constraints.height, constraints.fps)
        if capture is None or not capture.isOpened():
            if capture is not None:
                capture.release()
            raise CameraDeviceError(f"Unable to open camera source: {source}", source=source)

        raw_width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        raw_height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
        resolved_width = max(1, raw_width if raw_width > 0 else (constraints.width or 0))
        resolved_height = max(1, raw_height if raw_height > 0 else (constraints.height or 0))
        fps_value = capture.get(cv2.CAP_PROP_FPS)
        actual_fps = float(fps_value) if fps_value and fps_value > 0 else 0.0

        if (
            constraints.width
            and constraints.height
            and (resolved_width != constraints.width or resolved_height != constraints.height)
        ):
            LOGGER.info(
                "Requested %dx%d but camera delivered %dx%d",
                constraints.width,
                constraints.height,
                resolved_width,
                resolved_height,
            )
        return CameraStream(
            capture,
            source=source,
            resolution=(resolved_width, resolved_height),
            requested=(constraints.width, constraints.height),
            fps=actual_fps,
            on_stop=lambda: self._busy_sources.discard(key),
        )


# ---------------------------------------------------------------------- source rules
def source_kind(source: SourceType) -> str:
    if isinstance(source, int):
        return "device"
    if isinstance(source, Path):
        return "file"
    text = str(source).strip()
    if text.isdigit():
        return "device"
    if text.startswith(CSI_PREFIX):
        return "csi"
    if text.startswith("/dev/video"):
        return "device"
    scheme = urlsplit(text).scheme.lower()
    if not scheme or len(scheme) == 1:
        # A single-letter scheme is a Windows drive letter.
        return "file"
    if scheme == "file":
        return "file"
    if scheme in SECURE_SCHEMES or scheme in PLAIN_SCHEMES:
        return "network"
    return "unknown"


def is_secure_source(source: SourceType) -> bool:
    """Local cameras and files are trusted; remote streams must be encrypted."""
    if source_kind(source) != "network":
        return True
    parts = urlsplit(str(source).strip())
    if parts.scheme.lower() in SECURE_SCHEMES:
        return True
    return (parts.hostname or "").lower() in LOOPBACK_HOSTS


def camera_backends_available() -> bool:
    try:
        return bool(cv2.videoio_registry.getCameraBackends())
    except AttributeError:
        return hasattr(cv2, "VideoCapture")


def select_camera_source(source: Optional[SourceType], facing_mode: str = "environment") -> SourceType:
    """Return ``source`` as given, or pick a device matching ``facing_mode``."""
    if source is not None and str(source).strip() != "":
        if isinstance(source, str) and source.strip().isdigit():
            return int(source.strip())
        return source
    names = _v4l2_device_names()
    hints = ENVIRONMENT_HINTS if facing_mode == "environment" else USER_HINTS
    for index, name in sorted(names.items()):
        lowered = name.lower()
        if any(hint in lowered for hint in hints):
            LOGGER.debug("Selected /dev/video%d (%s) for facing mode %s", index, name, facing_mode)
            return index
    return min(names) if names else 0


def _v4l2_device_names() -> Dict[int, str]:
    names: Dict[int, str] = {}
    if not V4L2_SYSFS.is_dir():
        return names
    for entry in V4L2_SYSFS.glob("video*"):
        suffix = entry.name[len("video") :]
        if not suffix.isdigit():
            continue
        try:
            names[int(suffix)] = (entry / "name").read_text(encoding="utf-8").strip()
        except OSError:
            continue
    return names


def check_device_access(source: SourceType) -> None:
    if not _is_linux() or source_kind(source) != "device":
        return
    text = str(source)
    node = Path(text) if text.startswith("/dev/") else Path(f"/dev/video{int(text)}")
    if not node.exists():
        raise CameraDeviceError(f"No camera found at {node}.", source=source)
    if not os.access(node, os.R_OK | os.W_OK):
        raise CameraPermissionError(f"Camera permission denied for {node}.", source=source)


# ---------------------------------------------------------------------- capture opening
def gstreamer_pipeline(
    capture_width: int,
    capture_height: int,
    framerate: int = DEFAULT_FPS,
    flip_method: int = DEFAULT_FLIP,
) -> str:
    """Compose a GStreamer pipeline string for Jetson CSI cameras."""
    return (
        "nvarguscamerasrc ! "
        f"video/x-raw(memory:NVMM), width=(int){capture_width}, height=(int){capture_height}, "
        f"framerate=(fraction){framerate}/1 ! "
        f"nvvidconv flip-method={flip_method} ! "
        f"video/x-raw, width=(int){capture_width}, height=(int){capture_height}, format=(string)BGRx ! "
        "videoconvert ! "
        "video/x-raw, format=(string)BGR ! appsink drop=True"
    )


def open_video_source(
    source: SourceType,
    width: Optional[int] = None,
    height: Optional[int] = None,
    fps: Optional[float] = None,
) -> cv2.VideoCapture:
    """Open a capture and ask for the preferred size; the device has the last word."""
    width = int(width) if width and width > 0 else None
    height = int(height) if height and height > 0 else None
    fps = float(fps) if fps and fps > 0 else None

    if isinstance(source, str) and source.startswith(CSI_PREFIX):
        return _open_csi_capture(source, width or DEFAULT_WIDTH, height or DEFAULT_HEIGHT, fps)

    capture_source: SourceType = str(source) if isinstance(source, Path) else source
    capture = cv2.VideoCapture(capture_source)
    if capture.isOpened():
        if width:
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, float(width))
        if height:
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, float(height))
        if fps:
            capture.set(cv2.CAP_PROP_FPS, fps)
    return capture


def _open_csi_capture(source: str, width: int, height: int, fps: Optional[float]) -> cv2.VideoCapture:
    sensor_id, params = _parse_csi_source(source)
    framerate = _int_param(params, "framerate", "fps", default=int(fps) if fps else DEFAULT_FPS)
    flip_method = _int_param(params, "flip_method", "flip", default=DEFAULT_FLIP)
    pipeline = gstreamer_pipeline(width, height, framerate=framerate, flip_method=flip_method)
    if sensor_id is not None:
        pipeline = pipeline.replace("nvarguscamerasrc", f"nvarguscamerasrc sensor-id={sensor_id}", 1)
    return cv2.VideoCapture(pipeline, cv2.CAP_GSTREAMER)


def _parse_csi_source(source: str) -> Tuple[Optional[int], Dict[str, str]]:
    spec = source[len(CSI_PREFIX) :]
    sensor_part, _, query_part = spec.partition("?")
    params = {key: values[-1] for key, values in parse_qs(query_part, keep_blank_values=True).items()}
    sensor_part = sensor_part.strip("/")
    sensor_id = int(sensor_part) if sensor_part.isdigit() else None
    return sensor_id, params


def _int_param(params: Dict[str, str], *names: str, default: int) -> int:
    for name in names:
        if params.get(name):
            try:
                return int(params[name])
            except ValueError:
                continue
    return default


def _is_linux() -> bool:
    return platform.system().lower() == "linux"


__all__ = [
    "ACQUIRE_TIMEOUT_SECONDS",
    "CameraConstraints",
    "CameraStream",
    "ResourceGuard",
    "camera_backends_available",
    "check_device_access",
    "is_secure_source",
    "open_video_source",
    "select_camera_source",
    "source_kind",
]
