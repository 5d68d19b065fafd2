from __future__ import annotations

import logging
import traceback
from typing import Optional, Tuple

import tkinter as tk
from tkinter import messagebox

from utils.errors import CaptureError, RecorderError, StudentNotFoundError, TransientRecorderError

LOGGER = logging.getLogger(__name__)


def format_exception(exc: BaseException) -> str:
    return "".join(traceback.format_exception(exc.__class__, exc, exc.__traceback__))


def describe_error(exc: BaseException) -> Tuple[str, str]:
    """Dialog title and operator-facing message for ``exc``."""
    if isinstance(exc, CaptureError):
        return "Camera error", f"{exc}\n\n{exc.remediation}"
    if isinstance(exc, StudentNotFoundError):
        return "Student not found", str(exc)
    if isinstance(exc, TransientRecorderError):
        return "Attendance not saved", f"{exc}\n\nThe event was kept and will be retried."
    if isinstance(exc, RecorderError):
        return "Attendance error", str(exc)
    return "Session error", format_exception(exc)


def show_error_dialog(title: str, message: str, *, parent: Optional[tk.Misc] = None) -> None:
    """Mirror UI error dialogs to the log for easier debugging."""
    LOGGER.error("%s: %s", title, message)
    messagebox.showerror(title, message, parent=parent)


__all__ = ["describe_error", "format_exception", "show_error_dialog"]
