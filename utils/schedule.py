"""Expected entry/exit times and the late/early rules derived from them."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time
from typing import Iterable, Mapping, Optional

DEFAULT_SCHOOL_START = time(8, 0)
DEFAULT_SCHOOL_END = time(15, 0)


@dataclass(frozen=True)
class ExpectedTimes:
    entry: time
    exit: time
    entry_source: str = "School Default"
    exit_source: str = "School Default"


def parse_clock(value: object, fallback: Optional[time] = None) -> Optional[time]:
    """Parse ``HH:MM`` (or ``HH:MM:SS``); return ``fallback`` when unparsable."""
    if isinstance(value, time):
        return value
    text = str(value or "").strip()
    if not text:
        return fallback
    parts = text.split(":")
    try:
        hh = int(parts[0])
        mm = int(parts[1]) if len(parts) > 1 else 0
        ss = int(parts[2]) if len(parts) > 2 else 0
        return time(hh, mm, ss)
    except (ValueError, IndexError):
        return fallback


def resolve_expected_times(
    student: Mapping[str, object],
    batches: Iterable[Mapping[str, object]],
    school: Optional[Mapping[str, object]] = None,
) -> ExpectedTimes:
    """Custom student timing beats the student's batch, which beats the school default."""
    school = school or {}
    entry = parse_clock(school.get("school_start_time"), DEFAULT_SCHOOL_START)
    exit_ = parse_clock(school.get("school_end_time"), DEFAULT_SCHOOL_END)
    entry_source = exit_source = "School Default"

    batch_index = {str(batch.get("id")): batch for batch in batches}
    batch_ids = student.get("batch_ids") or []
    if not isinstance(batch_ids, (list, tuple)):
        batch_ids = [batch_ids]
    if not batch_ids and student.get("batch_id"):
        batch_ids = [student.get("batch_id")]
    batch = next((batch_index[str(bid)] for bid in batch_ids if str(bid) in batch_index), None)
    if batch is not None:
        label = f"Batch: {batch.get('batch_name') or batch.get('id')}"
        batch_entry = parse_clock(batch.get("entry_time"))
        batch_exit = parse_clock(batch.get("exit_time"))
        if batch_entry is not None:
            entry, entry_source = batch_entry, label
        if batch_exit is not None:
            exit_, exit_source = batch_exit, label

        timings = student.get("student_batch_timings") or []
        custom = timings[0] if isinstance(timings, list) and timings else {}
        if isinstance(custom, Mapping):
            custom_entry = parse_clock(custom.get("custom_entry_time"))
            custom_exit = parse_clock(custom.get("custom_exit_time"))
            if custom_entry is not None:
                entry, entry_source = custom_entry, "Custom Student Timing"
            if custom_exit is not None:
                exit_, exit_source = custom_exit, "Custom Student Timing"

    return ExpectedTimes(entry=entry, exit=exit_, entry_source=entry_source, exit_source=exit_source)


def _local_clock(moment: datetime) -> time:
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.time()


def is_late_entry(moment: datetime, expected_entry: time) -> bool:
    """Arriving at or after the expected entry time counts as late."""
    return _local_clock(moment) >= expected_entry


def is_early_departure(moment: datetime, expected_exit: time) -> bool:
    return _local_clock(moment) < expected_exit


__all__ = [
    "DEFAULT_SCHOOL_END",
    "DEFAULT_SCHOOL_START",
    "ExpectedTimes",
    "is_early_departure",
    "is_late_entry",
    "parse_clock",
    "resolve_expected_times",
]
