"""Overlay helpers for the OpenCV scanner window."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import cv2
import numpy as np

Color = Tuple[int, int, int]
LineSpec = Union[str, Tuple[str, Color]]

GREEN: Color = (80, 200, 80)
AMBER: Color = (0, 190, 255)
RED: Color = (60, 60, 230)
GREY: Color = (200, 200, 200)


@dataclass
class PanelStyle:
    """Visual configuration for overlay panels."""

    font: int = cv2.FONT_HERSHEY_SIMPLEX
    font_scale: float = 0.65
    text_color: Color = (255, 255, 255)
    bg_color: Color = (0, 0, 0)
    alpha: float = 0.6
    padding: int = 12
    margin: int = 16
    thickness: int = 2
    line_spacing: int = 8
    title_scale: float = 0.85


def _blend_rect(frame: np.ndarray, top_left: Tuple[int, int], bottom_right: Tuple[int, int], style: PanelStyle) -> None:
    overlay = frame.copy()
    cv2.rectangle(overlay, top_left, bottom_right, style.bg_color, -1)
    cv2.addWeighted(overlay, style.alpha, frame, 1 - style.alpha, 0, dst=frame)


def draw_text_panel(
    frame: np.ndarray,
    lines: Sequence[LineSpec],
    *,
    anchor: str = "top-left",
    title: Optional[str] = None,
    style: Optional[PanelStyle] = None,
) -> np.ndarray:
    """Render a translucent multi-line panel in one corner of ``frame``."""
    style = style or PanelStyle()
    rows: list[Tuple[str, Color, float, int]] = []
    if title:
        rows.append((title, style.text_color, style.title_scale, cv2.getTextSize(title, style.font, style.title_scale, style.thickness)[0][1]))
    for entry in lines:
        text, color = entry if isinstance(entry, tuple) else (entry, style.text_color)
        if text:
            rows.append((text, color, style.font_scale, cv2.getTextSize(text, style.font, style.font_scale, style.thickness)[0][1]))
    if not rows:
        return frame

    width = max(cv2.getTextSize(text, style.font, scale, style.thickness)[0][0] for text, _, scale, _ in rows)
    panel_w = width + style.padding * 2
    panel_h = sum(row[3] for row in rows) + style.line_spacing * (len(rows) - 1) + style.padding * 2
    h, w = frame.shape[:2]
    panel_w = min(panel_w, w - style.margin * 2)
    panel_h = min(panel_h, h - style.margin * 2)

    right = anchor.endswith("right")
    bottom = anchor.startswith("bottom")
    x = w - panel_w - style.margin if right else style.margin
    y = h - panel_h - style.margin if bottom else style.margin
    x, y = max(0, x), max(0, y)
    _blend_rect(frame, (x, y), (x + panel_w, y + panel_h), style)

    cursor = y + style.padding
    for text, color, scale, height in rows:
        cursor += height
        cv2.putText(frame, text, (x + style.padding, cursor), style.font, scale, color, style.thickness)
        cursor += style.line_spacing
    return frame


def draw_center_banner(
    frame: np.ndarray,
    text: str,
    *,
    position: str = "bottom",
    color: Optional[Color] = None,
    style: Optional[PanelStyle] = None,
) -> np.ndarray:
    """Single-line banner centered horizontally near the top or bottom edge."""
    if not text:
        return frame
    style = style or PanelStyle(font_scale=0.8, margin=28)
    h, w = frame.shape[:2]
    (tw, th), _ = cv2.getTextSize(text, style.font, style.font_scale, style.thickness)
    rect_w, rect_h = tw + style.padding * 2, th + style.padding * 2
    x = max(0, (w - rect_w) // 2)
    y = style.margin if position.startswith("top") else h - rect_h - style.margin
    y = max(0, min(y, h - rect_h))
    _blend_rect(frame, (x, y), (x + rect_w, y + rect_h), style)
    cv2.putText(
        frame,
        text,
        (x + style.padding, y + rect_h - style.padding),
        style.font,
        style.font_scale,
        color or style.text_color,
        style.thickness,
    )
    return frame


def draw_confirmation_card(frame: np.ndarray, state) -> np.ndarray:
    """Student details, countdown and key hints for an open confirmation."""
    student = state.student
    lines: list[LineSpec] = [f"ID: {student.student_id}"]
    if student.class_label:
        lines.append(f"Class: {student.class_label}")
    if student.father_name:
        lines.append(f"Father: {student.father_name}")
    lines.append(f"Expected entry {student.expected_entry:%H:%M} / exit {student.expected_exit:%H:%M}")
    if state.is_late:
        lines.append(("LATE ENTRY", RED))
    if state.override_allowed:
        lines.append(("[E] Entry   [X] Exit   [C] Cancel", GREEN))
    else:
        lines.append((f"[E] Entry   [X] Exit   ({state.cancel_label})", AMBER))
    return draw_text_panel(frame, lines, anchor="top-right", title=student.full_name)


__all__ = [
    "AMBER",
    "GREEN",
    "GREY",
    "PanelStyle",
    "RED",
    "draw_center_banner",
    "draw_confirmation_card",
    "draw_text_panel",
]
