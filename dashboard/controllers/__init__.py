"""Controllers coordinating the capture pipeline and UI state."""

from .attendance import AttendanceSessionController

__all__ = ["AttendanceSessionController"]
