"""Command-line argument builders for project entry points."""
from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional, Sequence

from .camera import ACQUIRE_TIMEOUT_SECONDS, DEFAULT_HEIGHT, DEFAULT_WIDTH
from .recognition import DEFAULT_REPEAT_COOLDOWN, DEFAULT_SCAN_INTERVAL


def build_parser(
    *,
    default_roster: Path,
    default_attendance_book: Path,
    default_attendance_log: Path,
    description: str = "Gate attendance scanner: scan ID cards and record entry/exit.",
) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=description)

    capture_group = parser.add_argument_group("Capture settings")
    capture_group.add_argument(
        "--source",
        default=None,
        help="Camera index (e.g. 0), /dev/videoN, csi://0 for Jetson, a video file, or an https/rtsps stream. "
        "Defaults to the camera matching --facing.",
    )
    capture_group.add_argument(
        "--facing",
        choices=["environment", "user"],
        default="environment",
        help="Preferred camera when --source is not given.",
    )
    capture_group.add_argument(
        "--camera-width",
        type=int,
        default=DEFAULT_WIDTH,
        help="Preferred camera capture width in pixels (0 = leave camera default).",
    )
    capture_group.add_argument(
        "--camera-height",
        type=int,
        default=DEFAULT_HEIGHT,
        help="Preferred camera capture height in pixels (0 = leave camera default).",
    )
    capture_group.add_argument(
        "--fps",
        type=float,
        default=None,
        help="Requested capture frame rate.",
    )
    capture_group.add_argument(
        "--acquire-timeout",
        type=float,
        default=ACQUIRE_TIMEOUT_SECONDS,
        help="Seconds to wait for the camera to start before giving up.",
    )

    scan_group = parser.add_argument_group("Scanning")
    scan_group.add_argument(
        "--scan-interval",
        type=float,
        default=DEFAULT_SCAN_INTERVAL,
        help="Seconds between decode attempts; frames keep flowing in between.",
    )
    scan_group.add_argument(
        "--repeat-cooldown",
        type=float,
        default=DEFAULT_REPEAT_COOLDOWN,
        help="Ignore the same card for this many seconds after it was read.",
    )
    scan_group.add_argument(
        "--no-barcodes",
        action="store_true",
        help="Only decode QR codes.",
    )
    scan_group.add_argument(
        "--minimum-wait",
        type=int,
        default=5,
        help="Seconds before the confirmation card can be cancelled.",
    )
    scan_group.add_argument(
        "--single-shot",
        action="store_true",
        help="Close the session after the first recorded event.",
    )

    records_group = parser.add_argument_group("Records")
    records_group.add_argument(
        "--roster",
        default=str(default_roster),
        help="JSON roster with school, batches and students.",
    )
    records_group.add_argument(
        "--attendance-book",
        default=str(default_attendance_book),
        help="JSON file storing attendance records.",
    )
    records_group.add_argument(
        "--attendance-log",
        default=str(default_attendance_log),
        help="Path to append recorded events (CSV, or JSON lines for other suffixes).",
    )
    records_group.add_argument(
        "--school-id",
        default=None,
        help="School identifier stamped on every record (defaults to the roster's school id).",
    )
    records_group.add_argument(
        "--duplicate-window",
        type=float,
        default=300.0,
        help="Seconds within which a repeated entry/exit counts as a duplicate.",
    )
    records_group.add_argument(
        "--commit-attempts",
        type=int,
        default=3,
        help="Attempts for a record write that fails transiently.",
    )
    records_group.add_argument(
        "--commit-backoff",
        type=float,
        default=0.5,
        help="Initial delay in seconds between record write attempts (doubles each retry).",
    )

    logging_group = parser.add_argument_group("Logging")
    logging_group.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level.",
    )
    logging_group.add_argument(
        "--log-file",
        default=None,
        help="Optional rotating log file.",
    )
    return parser


def parse_main_args(
    *,
    default_roster: Path,
    default_attendance_book: Path,
    default_attendance_log: Path,
    argv: Optional[Sequence[str]] = None,
) -> argparse.Namespace:
    parser = build_parser(
        default_roster=default_roster,
        default_attendance_book=default_attendance_book,
        default_attendance_log=default_attendance_log,
    )
    args = parser.parse_args(list(argv) if argv is not None else None)
    if args.minimum_wait < 0:
        parser.error("--minimum-wait must be >= 0")
    if args.commit_attempts < 1:
        parser.error("--commit-attempts must be >= 1")
    return args


__all__ = ["build_parser", "parse_main_args"]
