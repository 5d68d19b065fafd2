from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional

LOGGER = logging.getLogger(__name__)

SETTINGS_VERSION = 1


@dataclass
class AppSettings:
    """Operator-editable station settings, kept as form strings until validated."""

    source: str = ""
    facing_mode: str = "environment"
    resolution_preset: str = "1280 x 720 (HD)"
    school_id: str = ""
    roster_path: str = ""
    attendance_book_path: str = ""
    minimum_wait: str = "5"
    scan_interval: str = "1.0"
    repeat_cooldown: str = "3.0"
    enable_barcodes: bool = True
    single_shot: bool = False
    window_geometry: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["version"] = SETTINGS_VERSION
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "AppSettings":
        settings = cls()
        for item in fields(cls):
            if item.name not in payload:
                continue
            value = payload[item.name]
            current = getattr(settings, item.name)
            if isinstance(current, bool):
                value = value if isinstance(value, bool) else str(value).lower() in ("1", "true", "yes")
            elif isinstance(current, str):
                value = "" if value is None else str(value)
            setattr(settings, item.name, value)
        return settings


class SettingsStore:
    """Settings JSON next to the app; unreadable files fall back to defaults."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> AppSettings:
        if not self.path.exists():
            return AppSettings()
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Ignoring unreadable settings %s: %s", self.path, exc)
            return AppSettings()
        if not isinstance(payload, dict):
            LOGGER.warning("Ignoring settings %s: expected a JSON object", self.path)
            return AppSettings()
        return AppSettings.from_dict(payload)

    def save(self, settings: AppSettings) -> bool:
        staging = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            staging.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
            staging.replace(self.path)
        except OSError as exc:
            LOGGER.warning("Could not save settings to %s: %s", self.path, exc)
            return False
        return True


__all__ = ["AppSettings", "SettingsStore"]
