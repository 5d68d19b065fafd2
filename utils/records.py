"""Student directory and attendance recorder collaborators.

The capture pipeline only depends on the two protocols below. ``RosterDirectory``
and ``AttendanceBook`` are the local JSON-backed implementations used by the
CLI and the dashboard; a networked backend can be dropped in by implementing
the same coroutines.
"""
from __future__ import annotations

import csv
import json
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple
from uuid import uuid4

from .errors import DuplicateAttendanceError, StudentNotFoundError, TransientRecorderError
from .schedule import DEFAULT_SCHOOL_END, DEFAULT_SCHOOL_START, resolve_expected_times

LOGGER = logging.getLogger(__name__)

DUPLICATE_WINDOW = timedelta(minutes=5)


class Direction(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"


@dataclass(frozen=True)
class StudentProfile:
    """Identity snapshot shown on the confirmation card."""

    id: str
    student_id: str
    full_name: str
    class_name: str = ""
    section: str = ""
    father_name: str = ""
    mother_name: str = ""
    photo: str = ""
    expected_entry: time = DEFAULT_SCHOOL_START
    expected_exit: time = DEFAULT_SCHOOL_END
    timing_source: str = "School Default"

    @property
    def class_label(self) -> str:
        if self.class_name and self.section:
            return f"{self.class_name} - {self.section}"
        return self.class_name or self.section


@dataclass(frozen=True)
class RecordAck:
    record_id: str
    student_id: str
    direction: Direction
    timestamp: datetime
    status: str = "present"
    duplicate: bool = False


class StudentDirectory(Protocol):
    async def get_student(self, identifier: str) -> StudentProfile:
        ...


class AttendanceRecorder(Protocol):
    async def record(
        self,
        student_id: str,
        school_id: str,
        direction: Direction,
        timestamp: datetime,
        *,
        session_id: Optional[str] = None,
        is_late: bool = False,
        early_departure: bool = False,
    ) -> RecordAck:
        ...


# ---------------------------------------------------------------------- directory
class RosterDirectory:
    """Read-only roster loaded from JSON: ``{"school": {}, "batches": [], "students": []}``."""

    def __init__(self, payload: Optional[Dict[str, Any]] = None, *, school_id: Optional[str] = None) -> None:
        payload = payload or {}
        school = payload.get("school") if isinstance(payload.get("school"), dict) else {}
        self.school: Dict[str, Any] = dict(school)
        self.school_id = str(school_id or self.school.get("id") or "")
        self.batches: List[Dict[str, Any]] = [b for b in payload.get("batches", []) if isinstance(b, dict)]
        self._students: Dict[str, Dict[str, Any]] = {}
        for raw in payload.get("students", []):
            if not isinstance(raw, dict) or not raw.get("student_id"):
                continue
            if self.school_id and raw.get("school_id") and str(raw["school_id"]) != self.school_id:
                continue
            self._students[str(raw["student_id"]).strip()] = raw

    @classmethod
    def from_file(cls, path: Path, *, school_id: Optional[str] = None) -> "RosterDirectory":
        try:
            payload = json.loads(Path(path).read_text(encoding="utf-8"))
        except FileNotFoundError:
            LOGGER.warning("Roster %s not found; every scan will be rejected", path)
            payload = {}
        if not isinstance(payload, dict):
            raise ValueError(f"Roster {path} must contain a JSON object")
        return cls(payload, school_id=school_id)

    def __len__(self) -> int:
        return len(self._students)

    async def get_student(self, identifier: str) -> StudentProfile:
        key = (identifier or "").strip()
        raw = self._students.get(key)
        if raw is None:
            raise StudentNotFoundError(f"Student ID not found in records: {key}", identifier=key)
        times = resolve_expected_times(raw, self.batches, self.school)
        return StudentProfile(
            id=str(raw.get("id") or key),
            student_id=key,
            full_name=str(raw.get("full_name") or key),
            class_name=str(raw.get("class") or raw.get("class_name") or ""),
            section=str(raw.get("section") or ""),
            father_name=str(raw.get("father_name") or ""),
            mother_name=str(raw.get("mother_name") or ""),
            photo=str(raw.get("student_photo") or raw.get("photo") or ""),
            expected_entry=times.entry,
            expected_exit=times.exit,
            timing_source=times.entry_source,
        )


# ---------------------------------------------------------------------- recorder
class AttendanceBook:
    """JSON attendance store with a duplicate window.

    Entry always opens a new record; Exit closes the most recent open record
    of the same day. Repeating either within ``duplicate_window`` raises
    ``DuplicateAttendanceError`` carrying the original acknowledgement.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        *,
        duplicate_window: timedelta = DUPLICATE_WINDOW,
    ) -> None:
        self.path = Path(path) if path is not None else None
        self.duplicate_window = duplicate_window
        self.records: List[Dict[str, Any]] = []
        self._load()

    def _load(self) -> None:
        if self.path is None:
            return
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            payload = {}
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Attendance book %s unreadable, starting empty: %s", self.path, exc)
            payload = {}
        raw_records = payload.get("records") if isinstance(payload, dict) else []
        if isinstance(raw_records, list):
            self.records = [self._normalize(entry) for entry in raw_records if isinstance(entry, dict)]

    def _save(self) -> None:
        if self.path is None:
            return
        payload = {"version": 1, "records": self.records}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_name(self.path.name + ".tmp")
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as exc:
            raise TransientRecorderError(f"Unable to write attendance book: {exc}") from exc

    @staticmethod
    def _normalize(entry: Dict[str, Any]) -> Dict[str, Any]:
        normalized = dict(entry)
        normalized["id"] = str(entry.get("id") or uuid4().hex)
        normalized["student_id"] = str(entry.get("student_id") or "")
        normalized["school_id"] = str(entry.get("school_id") or "")
        normalized["attendance_date"] = str(entry.get("attendance_date") or "")
        normalized["entry_time"] = entry.get("entry_time")
        normalized["exit_time"] = entry.get("exit_time")
        normalized["status"] = str(entry.get("status") or "present")
        normalized["is_late"] = bool(entry.get("is_late"))
        return normalized

    async def record(
        self,
        student_id: str,
        school_id: str,
        direction: Direction,
        timestamp: datetime,
        *,
        session_id: Optional[str] = None,
        is_late: bool = False,
        early_departure: bool = False,
    ) -> RecordAck:
        direction = Direction(direction)
        moment = _as_utc(timestamp)
        day = moment.astimezone().date().isoformat()
        if direction is Direction.ENTRY:
            return self._record_entry(student_id, school_id, moment, day, session_id=session_id, is_late=is_late)
        return self._record_exit(student_id, school_id, moment, day, early_departure=early_departure)

    def _record_entry(
        self,
        student_id: str,
        school_id: str,
        moment: datetime,
        day: str,
        *,
        session_id: Optional[str],
        is_late: bool,
    ) -> RecordAck:
        recent = self._latest(student_id, school_id, day)
        if recent is not None:
            entered = _parse_moment(recent["entry_time"])
            if entered is not None and abs(moment - entered) < self.duplicate_window:
                ack = self._ack(recent, Direction.ENTRY, entered, duplicate=True)
                raise DuplicateAttendanceError(f"Entry already recorded for {student_id}", ack=ack)
        record = self._normalize(
            {
                "student_id": student_id,
                "school_id": school_id,
                "attendance_date": day,
                "entry_time": moment.isoformat(),
                "exit_time": None,
                "status": "present",
                "is_late": is_late,
                "session_id": session_id,
            }
        )
        self.records.append(record)
        self._commit(record)
        LOGGER.info("Entry recorded for %s", student_id)
        return self._ack(record, Direction.ENTRY, moment)

    def _record_exit(
        self,
        student_id: str,
        school_id: str,
        moment: datetime,
        day: str,
        *,
        early_departure: bool,
    ) -> RecordAck:
        latest = self._latest(student_id, school_id, day)
        if latest is not None and latest.get("exit_time"):
            exited = _parse_moment(latest["exit_time"])
            if exited is not None and abs(moment - exited) < self.duplicate_window:
                ack = self._ack(latest, Direction.EXIT, exited, duplicate=True)
                raise DuplicateAttendanceError(f"Exit already recorded for {student_id}", ack=ack)
        open_record = next(
            (
                record
                for record in reversed(self.records)
                if record["student_id"] == student_id
                and record["school_id"] == school_id
                and record["attendance_date"] == day
                and not record.get("exit_time")
            ),
            None,
        )
        if open_record is None:
            raise StudentNotFoundError(
                "No open entry found for this student today; cannot record an exit without a corresponding entry.",
                identifier=student_id,
            )
        previous = (open_record.get("exit_time"), open_record["status"])
        open_record["exit_time"] = moment.isoformat()
        if early_departure:
            open_record["status"] = "early_departure"
        try:
            self._commit(open_record)
        except TransientRecorderError:
            open_record["exit_time"], open_record["status"] = previous
            raise
        LOGGER.info("Exit recorded for %s", student_id)
        return self._ack(open_record, Direction.EXIT, moment)

    def _commit(self, record: Dict[str, Any]) -> None:
        try:
            self._save()
        except TransientRecorderError:
            if record.get("exit_time") is None and record in self.records:
                self.records.remove(record)
            raise

    def _latest(self, student_id: str, school_id: str, day: str) -> Optional[Dict[str, Any]]:
        for record in reversed(self.records):
            if record["student_id"] == student_id and record["school_id"] == school_id and record["attendance_date"] == day:
                return record
        return None

    @staticmethod
    def _ack(record: Dict[str, Any], direction: Direction, moment: datetime, *, duplicate: bool = False) -> RecordAck:
        return RecordAck(
            record_id=record["id"],
            student_id=record["student_id"],
            direction=direction,
            timestamp=moment,
            status=record["status"],
            duplicate=duplicate,
        )

    def records_for(self, day: Optional[str] = None) -> List[Dict[str, Any]]:
        day = day or datetime.now().date().isoformat()
        return [dict(record) for record in self.records if record["attendance_date"] == day]

    def count_for(self, day: Optional[str] = None) -> int:
        return len(self.records_for(day))

    def export_csv(self, export_path: Path, *, day: Optional[str] = None) -> int:
        rows = self.records_for(day) if day else [dict(record) for record in self.records]
        if not rows:
            return 0
        export_path.parent.mkdir(parents=True, exist_ok=True)
        header: Tuple[str, ...] = ("attendance_date", "student_id", "entry_time", "exit_time", "status", "is_late")
        with export_path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(header)
            for row in rows:
                writer.writerow([row.get(column, "") for column in header])
        return len(rows)


def _as_utc(moment: datetime) -> datetime:
    # Naive timestamps are taken as local time.
    return moment.astimezone(timezone.utc)


def _parse_moment(value: object) -> Optional[datetime]:
    if not value:
        return None
    try:
        return _as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


__all__ = [
    "AttendanceBook",
    "AttendanceRecorder",
    "Direction",
    "DUPLICATE_WINDOW",
    "RecordAck",
    "RosterDirectory",
    "StudentDirectory",
    "StudentProfile",
]
