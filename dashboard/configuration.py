from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from types import SimpleNamespace
from typing import Optional, Union

from pipelines.attendance import DEFAULT_ATTENDANCE_BOOK, DEFAULT_ATTENDANCE_LOG, DEFAULT_ROSTER
from utils.cli import build_parser

CLI_DEFAULTS = build_parser(
    default_roster=DEFAULT_ROSTER,
    default_attendance_book=DEFAULT_ATTENDANCE_BOOK,
    default_attendance_log=DEFAULT_ATTENDANCE_LOG,
).parse_args([])

DEFAULT_CAMERA_WIDTH = int(CLI_DEFAULTS.camera_width or 0)
DEFAULT_CAMERA_HEIGHT = int(CLI_DEFAULTS.camera_height or 0)


@dataclass
class ScannerConfig:
    source: Optional[Union[str, int]] = None
    facing_mode: str = "environment"
    width: Optional[int] = DEFAULT_CAMERA_WIDTH or None
    height: Optional[int] = DEFAULT_CAMERA_HEIGHT or None
    fps: Optional[float] = None
    school_id: Optional[str] = None
    roster: Path = Path(DEFAULT_ROSTER)
    attendance_book: Path = Path(DEFAULT_ATTENDANCE_BOOK)
    attendance_log: Path = Path(DEFAULT_ATTENDANCE_LOG)
    minimum_wait: int = int(CLI_DEFAULTS.minimum_wait)
    scan_interval: float = float(CLI_DEFAULTS.scan_interval)
    repeat_cooldown: float = float(CLI_DEFAULTS.repeat_cooldown)
    enable_barcodes: bool = True
    single_shot: bool = False

    def to_pipeline_args(self) -> SimpleNamespace:
        """Same namespace shape as ``utils.cli.parse_main_args`` produces."""
        defaults = CLI_DEFAULTS
        return SimpleNamespace(
            source=self.source,
            facing=self.facing_mode,
            camera_width=self.width or 0,
            camera_height=self.height or 0,
            fps=self.fps,
            acquire_timeout=defaults.acquire_timeout,
            scan_interval=self.scan_interval,
            repeat_cooldown=self.repeat_cooldown,
            no_barcodes=not self.enable_barcodes,
            minimum_wait=self.minimum_wait,
            single_shot=self.single_shot,
            roster=str(self.roster),
            attendance_book=str(self.attendance_book),
            attendance_log=str(self.attendance_log),
            school_id=self.school_id or None,
            duplicate_window=defaults.duplicate_window,
            commit_attempts=defaults.commit_attempts,
            commit_backoff=defaults.commit_backoff,
        )


__all__ = [
    "CLI_DEFAULTS",
    "DEFAULT_CAMERA_HEIGHT",
    "DEFAULT_CAMERA_WIDTH",
    "ScannerConfig",
]
