from __future__ import annotations

import tkinter as tk
from tkinter import ttk
from typing import Callable, Optional

from dashboard.theme import ThemeManager


class SessionButtons(ttk.Frame):
    """Start/stop controls for the live session."""

    def __init__(self, master: tk.Misc, *, theme: Optional[ThemeManager] = None) -> None:
        super().__init__(master)
        pad = theme.pad("inner") if theme else 6
        self.start_button = ttk.Button(self, text="Start Scanning", width=18)
        self.start_button.grid(row=0, column=0, padx=(0, pad))
        self.stop_button = ttk.Button(self, text="Stop Scanning", width=18)
        self.stop_button.grid(row=0, column=1, padx=(pad, 0))
        self.stop_button.state(["disabled"])
        self.columnconfigure((0, 1), weight=1)

    def configure_start(self, command: Callable[[], None]) -> None:
        self.start_button.config(command=command)

    def configure_stop(self, command: Callable[[], None]) -> None:
        self.stop_button.config(command=command)

    def set_running(self, running: bool) -> None:
        self.start_button.state(["disabled"] if running else ["!disabled"])
        self.stop_button.state(["!disabled"] if running else ["disabled"])


class ManualEntryPanel(ttk.Frame):
    """Type a student ID when a card cannot be scanned."""

    def __init__(
        self,
        master: tk.Misc,
        *,
        on_submit: Callable[[str], None],
        theme: Optional[ThemeManager] = None,
    ) -> None:
        super().__init__(master)
        pad = theme.pad("inner") if theme else 6
        self._on_submit = on_submit
        self.id_var = tk.StringVar()
        ttk.Label(self, text="Student ID").grid(row=0, column=0, sticky="w", padx=(0, pad))
        self.entry = ttk.Entry(self, textvariable=self.id_var, width=24)
        self.entry.grid(row=0, column=1, sticky="ew")
        self.entry.bind("<Return>", lambda _event: self._submit())
        self.button = ttk.Button(self, text="Look Up", command=self._submit)
        self.button.grid(row=0, column=2, padx=(pad, 0))
        self.columnconfigure(1, weight=1)
        self.set_enabled(False)

    def _submit(self) -> None:
        identifier = self.id_var.get().strip()
        if not identifier:
            return
        self.id_var.set("")
        self._on_submit(identifier)

    def set_enabled(self, enabled: bool) -> None:
        state = ["!disabled"] if enabled else ["disabled"]
        self.entry.state(state)
        self.button.state(state)
