"""Shared path utilities for logs and local data files."""
from __future__ import annotations

import os
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
LOGS_ROOT = PROJECT_ROOT / "logs"
_DATA_ENV_VAR = "GATE_SCANNER_DATA"


def resolve_data_root() -> Path:
    """Data directory, overridable through ``GATE_SCANNER_DATA``."""
    env_value = os.environ.get(_DATA_ENV_VAR)
    if env_value:
        return Path(env_value).expanduser()
    return PROJECT_ROOT / "data"


def data_path(*parts: str) -> Path:
    """Return a path inside the data directory."""
    return resolve_data_root().joinpath(*parts)


def logs_path(*parts: str) -> Path:
    """Return a path inside the project logs directory."""
    return LOGS_ROOT.joinpath(*parts)


__all__ = [
    "PROJECT_ROOT",
    "LOGS_ROOT",
    "data_path",
    "logs_path",
    "resolve_data_root",
]
