"""Logging helpers for the attendance station."""
from __future__ import annotations

import csv
import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Iterable, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

CSV_FIELDS: tuple[str, ...] = (
    "timestamp",
    "session_id",
    "student_id",
    "student_name",
    "direction",
    "source",
    "symbology",
    "is_late",
    "status",
    "record_id",
    "duplicate",
)


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Console logging plus an optional size-rotated file."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    formatter = logging.Formatter(LOG_FORMAT)
    if not any(isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler) for handler in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]")
        )
        root.addHandler(file_handler)


def append_attendance_log(path: Path, entry: Dict[str, object]) -> None:
    """Append an attendance record as CSV (preferred) or JSONL."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == ".csv":
        _append_csv(path, entry, CSV_FIELDS)
    else:
        _append_jsonl(path, entry)


def _append_jsonl(path: Path, entry: Dict[str, object]) -> None:
    with path.open("a", encoding="utf-8") as log_file:
        json.dump(entry, log_file, default=str)
        log_file.write("\n")


def _append_csv(path: Path, entry: Dict[str, object], fieldnames: Iterable[str]) -> None:
    fieldnames = tuple(fieldnames)
    write_header = not path.exists() or path.stat().st_size == 0
    normalized = {field: entry.get(field) for field in fieldnames}
    with path.open("a", encoding="utf-8", newline="") as csv_file:
        writer = csv.DictWriter(csv_file, fieldnames=fieldnames)
        if write_header:
            writer.writeheader()
        writer.writerow(normalized)


__all__ = ["append_attendance_log", "configure_logging", "CSV_FIELDS"]
