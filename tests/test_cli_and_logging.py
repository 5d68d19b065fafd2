import json
from pathlib import Path

import pytest

from utils.cli import parse_main_args
from utils.logging import append_attendance_log
from utils.services import build_constraints

DEFAULTS = dict(
    default_roster=Path("data/roster.json"),
    default_attendance_book=Path("data/attendance_book.json"),
    default_attendance_log=Path("logs/attendance_log.csv"),
)


def test_defaults_match_station_policy():
    args = parse_main_args(argv=[], **DEFAULTS)

    assert args.minimum_wait == 5
    assert args.acquire_timeout == 7.0
    assert args.commit_attempts == 3
    assert args.duplicate_window == 300.0
    assert args.facing == "environment"
    assert args.roster == str(Path("data/roster.json"))


def test_constraints_from_arguments():
    args = parse_main_args(argv=["--source", "2", "--camera-width", "0", "--fps", "15"], **DEFAULTS)

    constraints = build_constraints(args)

    assert constraints.source == "2"
    assert constraints.width is None
    assert constraints.height == 720
    assert constraints.fps == 15.0


@pytest.mark.parametrize("argv", [["--minimum-wait", "-1"], ["--commit-attempts", "0"], ["--facing", "side"]])
def test_invalid_arguments_exit(argv):
    with pytest.raises(SystemExit):
        parse_main_args(argv=argv, **DEFAULTS)


def test_attendance_log_csv_writes_header_once(tmp_path):
    path = tmp_path / "logs" / "attendance_log.csv"

    append_attendance_log(path, {"student_id": "S123", "direction": "entry", "ignored": "x"})
    append_attendance_log(path, {"student_id": "S200", "direction": "exit"})

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("timestamp,session_id,student_id")
    assert len(lines) == 3
    assert "ignored" not in lines[0]


def test_attendance_log_jsonl_for_other_suffixes(tmp_path):
    path = tmp_path / "attendance_log.jsonl"

    append_attendance_log(path, {"student_id": "S123", "duplicate": False})

    assert json.loads(path.read_text(encoding="utf-8")) == {"student_id": "S123", "duplicate": False}
