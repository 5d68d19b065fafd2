from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Optional, Tuple, Union

Dims = Tuple[Optional[int], Optional[int]]

# Combobox label -> requested capture size; (None, None) leaves the camera default.
RESOLUTION_PRESETS: Dict[str, Dims] = {
    "Camera default": (None, None),
    "640 x 480 (VGA)": (640, 480),
    "1280 x 720 (HD)": (1280, 720),
    "1920 x 1080 (Full HD)": (1920, 1080),
}

LIVE_FEED_SIZE = (960, 540)
UI_PAD = 12


def _resolve_source(text: str) -> Optional[Union[int, str]]:
    """Blank picks the camera by facing mode; digits select a device index."""
    value = (text or "").strip()
    if not value:
        return None
    return int(value) if value.isdigit() else value


def _local_clock_label(value: object) -> str:
    """ISO timestamp from the attendance book rendered as a local ``hh:mm AM`` label."""
    raw = str(value or "").strip()
    if not raw:
        return ""
    try:
        moment = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return raw
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone().strftime("%I:%M %p").lstrip("0")


def _resolution_value(label: str) -> Dims:
    return RESOLUTION_PRESETS.get(label, (None, None))


__all__ = [
    "_local_clock_label",
    "_resolution_value",
    "_resolve_source",
    "Dims",
    "LIVE_FEED_SIZE",
    "RESOLUTION_PRESETS",
    "UI_PAD",
]
