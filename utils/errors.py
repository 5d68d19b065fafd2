"""Error taxonomy for the capture pipeline and its collaborators."""
from __future__ import annotations

from typing import Optional

INSECURE = "insecure"
UNSUPPORTED = "unsupported"
PERMISSION_DENIED = "permission-denied"
TIMEOUT = "timeout"
DEVICE_ERROR = "device-error"

_REMEDIATION: dict[str, str] = {
    INSECURE: "Camera streams from other hosts must use an encrypted connection (https:// or rtsps://).",
    UNSUPPORTED: "This camera source is not supported on this machine. Check the source setting or the OpenCV build.",
    PERMISSION_DENIED: "Camera permission denied. Grant access to the video device (e.g. add the user to the 'video' group) and retry.",
    TIMEOUT: "Camera took too long to start. Please try again.",
    DEVICE_ERROR: "Unable to access camera. Check that it is connected and not used by another application.",
}


def remediation_for(kind: str) -> str:
    return _REMEDIATION.get(kind, _REMEDIATION[DEVICE_ERROR])


class AttendanceError(Exception):
    """Base class for every error raised by the attendance station."""


class CaptureError(AttendanceError):
    """Camera acquisition failure; ``kind`` selects the remediation copy."""

    kind: str = DEVICE_ERROR
    retryable: bool = False

    def __init__(self, message: str, *, source: object = None) -> None:
        super().__init__(message)
        self.source = source

    @property
    def remediation(self) -> str:
        return remediation_for(self.kind)


class InsecureSourceError(CaptureError):
    kind = INSECURE


class UnsupportedSourceError(CaptureError):
    kind = UNSUPPORTED


class CameraPermissionError(CaptureError):
    kind = PERMISSION_DENIED


class AcquisitionTimeoutError(CaptureError):
    kind = TIMEOUT
    retryable = True


class CameraDeviceError(CaptureError):
    kind = DEVICE_ERROR
    retryable = True


class RecognizerError(AttendanceError):
    """A frame could not be read or decoded; scanning continues."""


class GateBusyError(AttendanceError):
    """A confirmation is already open for this session."""


class SessionClosedError(AttendanceError):
    """The capture session was torn down while work was in flight."""


class RecorderError(AttendanceError):
    """Failure reported by the attendance recorder or the student directory."""


class DuplicateAttendanceError(RecorderError):
    """The same event was already recorded inside the duplicate window."""

    def __init__(self, message: str, *, ack: Optional[object] = None) -> None:
        super().__init__(message)
        self.ack = ack


class StudentNotFoundError(RecorderError):
    def __init__(self, message: str, *, identifier: Optional[str] = None) -> None:
        super().__init__(message)
        self.identifier = identifier


class TransientRecorderError(RecorderError):
    """Temporary failure; the same call may be retried."""


__all__ = [
    "INSECURE",
    "UNSUPPORTED",
    "PERMISSION_DENIED",
    "TIMEOUT",
    "DEVICE_ERROR",
    "remediation_for",
    "AttendanceError",
    "CaptureError",
    "InsecureSourceError",
    "UnsupportedSourceError",
    "CameraPermissionError",
    "AcquisitionTimeoutError",
    "CameraDeviceError",
    "RecognizerError",
    "GateBusyError",
    "SessionClosedError",
    "RecorderError",
    "DuplicateAttendanceError",
    "StudentNotFoundError",
    "TransientRecorderError",
]
