from .camera import (
    ACQUIRE_TIMEOUT_SECONDS,
    CameraConstraints,
    CameraStream,
    ResourceGuard,
    open_video_source,
)
from .cancellation import CancelToken
from .logging import append_attendance_log, configure_logging
from .race import deadline, race
from .recognition import (
    CodeRecognizer,
    FrameScanner,
    RecognitionResult,
    ScanFrame,
)
from .records import (
    AttendanceBook,
    Direction,
    RecordAck,
    RosterDirectory,
    StudentProfile,
)

__all__ = [
    'ACQUIRE_TIMEOUT_SECONDS',
    'CameraConstraints',
    'CameraStream',
    'ResourceGuard',
    'open_video_source',
    'CancelToken',
    'append_attendance_log',
    'configure_logging',
    'deadline',
    'race',
    'CodeRecognizer',
    'FrameScanner',
    'RecognitionResult',
    'ScanFrame',
    'AttendanceBook',
    'Direction',
    'RecordAck',
    'RosterDirectory',
    'StudentProfile',
]
