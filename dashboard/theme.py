from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import tkinter as tk
from tkinter import ttk
from tkinter import font as tkfont

from dashboard.utils import LIVE_FEED_SIZE, UI_PAD


FontSpec = Tuple[str, int, str]


@dataclass
class ThemeConfig:
    family: str = "TkDefaultFont"
    base_size: int = 12
    heading_size: int = 14
    title_size: int = 18
    countdown_size: int = 28
    ui_pad: int = UI_PAD
    live_feed_size: Tuple[int, int] = LIVE_FEED_SIZE
    late_color: str = "#c0392b"
    on_time_color: str = "#1e8449"
    error_color: str = "#a93226"
    font_scale: float = 1.0


class ThemeManager:
    """Fonts, spacing and the gate's colour-coded ttk styles."""

    def __init__(self, config: Optional[ThemeConfig] = None) -> None:
        self.config = config or ThemeConfig()
        cfg = self.config
        self._fonts: Dict[str, FontSpec] = {
            "base": self._sized(cfg.base_size, "normal"),
            "label": self._sized(cfg.base_size, "normal"),
            "label-bold": self._sized(cfg.base_size, "bold"),
            "heading": self._sized(cfg.heading_size, "bold"),
            "title": self._sized(cfg.title_size, "bold"),
            "countdown": self._sized(cfg.countdown_size, "bold"),
        }

    def _sized(self, size: int, weight: str) -> FontSpec:
        scale = max(0.5, self.config.font_scale)
        return (self.config.family, max(6, int(round(size * scale))), weight)

    def apply(self, root: tk.Misc) -> None:
        for name, role in (("TkDefaultFont", "base"), ("TkTextFont", "base"), ("TkHeadingFont", "heading")):
            try:
                family, size, weight = self.font(role)
                tkfont.nametofont(name).configure(family=family, size=size, weight=weight)
            except tk.TclError:
                continue
        style = ttk.Style(root)
        style.configure(".", font=self.font("base"))
        style.configure("TNotebook.Tab", padding=(14, 6), font=self.font("label-bold"))
        # Arrival status on the confirmation card.
        style.configure("Late.TLabel", foreground=self.config.late_color, font=self.font("label-bold"))
        style.configure("OnTime.TLabel", foreground=self.config.on_time_color, font=self.font("label-bold"))
        style.configure("Error.TLabel", foreground=self.config.error_color, font=self.font("heading"))
        # Entry and Exit stay large; they are never disabled while a card is open.
        for name in ("Entry.TButton", "Exit.TButton"):
            style.configure(name, font=self.font("heading"), padding=(18, 10))

    def font(self, role: str = "base") -> FontSpec:
        return self._fonts.get(role, self._fonts["base"])

    def pad(self, role: str = "default") -> int:
        if role == "inner":
            return max(2, self.config.ui_pad // 2)
        return self.config.ui_pad

    @property
    def live_feed_size(self) -> Tuple[int, int]:
        return self.config.live_feed_size


__all__ = ["ThemeConfig", "ThemeManager"]
