"""Reusable Tkinter widgets for the attendance dashboard."""

from .control_panel import ControlPanel
from .frame_display import FrameDisplay
from .log_panel import AttendanceLog
from .session_controls import ManualEntryPanel, SessionButtons
from .status_panel import StatusPanel
from .verification_card import VerificationCard

__all__ = [
    "AttendanceLog",
    "ControlPanel",
    "FrameDisplay",
    "ManualEntryPanel",
    "SessionButtons",
    "StatusPanel",
    "VerificationCard",
]
