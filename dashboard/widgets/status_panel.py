from __future__ import annotations

import tkinter as tk
from tkinter import ttk

from dashboard.theme import ThemeManager

STAGE_LABELS = {
    "idle": "Camera off",
    "acquiring": "Starting camera...",
    "ready": "Camera ready",
    "recognizing": "Scanning for ID cards",
    "confirming": "Waiting for operator",
    "committing": "Saving attendance...",
    "failed": "Camera error",
    "closed": "Camera off",
}


class StatusPanel(ttk.Frame):
    """Header strip: session stage, last message and today's record count."""

    def __init__(self, master: tk.Misc, *, theme: ThemeManager) -> None:
        super().__init__(master)
        self.theme = theme
        self.columnconfigure(1, weight=1)
        self.stage_var = tk.StringVar(value=STAGE_LABELS["idle"])
        self.message_var = tk.StringVar(value="Press Start to open the camera.")
        self.count_var = tk.StringVar(value="0 records today")

        self._stage_label = ttk.Label(self, textvariable=self.stage_var, font=theme.font("heading"))
        self._stage_label.grid(row=0, column=0, sticky="w", padx=(0, theme.pad()))
        ttk.Label(self, textvariable=self.message_var, font=theme.font("label")).grid(row=0, column=1, sticky="w")
        ttk.Label(self, textvariable=self.count_var, font=theme.font("label-bold")).grid(row=0, column=2, sticky="e")

    def set_stage(self, stage: str) -> None:
        self.stage_var.set(STAGE_LABELS.get(stage, stage.capitalize()))
        self._stage_label.configure(style="Error.TLabel" if stage == "failed" else "TLabel")

    def set_status(self, text: str) -> None:
        self.message_var.set(text)

    def set_scans(self, count: int) -> None:
        self.count_var.set(f"{count} record{'s' if count != 1 else ''} today")
