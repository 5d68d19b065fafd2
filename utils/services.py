"""Factories for the directory, recorder, recognizer and camera guard."""
from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Tuple

from .camera import CameraConstraints, ResourceGuard
from .recognition import CodeRecognizer, FrameScanner
from .records import AttendanceBook, RosterDirectory


def create_services(args) -> Tuple[RosterDirectory, AttendanceBook, FrameScanner, ResourceGuard]:
    directory = RosterDirectory.from_file(Path(args.roster), school_id=args.school_id)
    recorder = AttendanceBook(
        Path(args.attendance_book),
        duplicate_window=timedelta(seconds=max(0.0, float(args.duplicate_window))),
    )
    scanner = FrameScanner(
        CodeRecognizer(enable_barcodes=not getattr(args, "no_barcodes", False)),
        scan_interval=args.scan_interval,
        repeat_cooldown=args.repeat_cooldown,
    )
    guard = ResourceGuard(timeout=args.acquire_timeout)
    return directory, recorder, scanner, guard


def build_constraints(args) -> CameraConstraints:
    width = args.camera_width if getattr(args, "camera_width", 0) and args.camera_width > 0 else None
    height = args.camera_height if getattr(args, "camera_height", 0) and args.camera_height > 0 else None
    return CameraConstraints(
        source=args.source,
        facing_mode=getattr(args, "facing", "environment"),
        width=width,
        height=height,
        fps=getattr(args, "fps", None),
    )


__all__ = ["build_constraints", "create_services"]
