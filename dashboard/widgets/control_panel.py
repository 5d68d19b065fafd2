from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

import tkinter as tk
from tkinter import filedialog, messagebox, ttk

from dashboard.configuration import CLI_DEFAULTS, ScannerConfig
from dashboard.settings import AppSettings, SettingsStore
from dashboard.utils import RESOLUTION_PRESETS, _resolution_value, _resolve_source


def _default_error_dialog(title: str, message: str, *, parent: Optional[tk.Misc] = None) -> None:
    messagebox.showerror(title, message, parent=parent)


class ControlPanel(ttk.Frame):
    """Scanner settings tab; ``build_config`` validates the form."""

    def __init__(
        self,
        master: tk.Misc,
        *,
        settings_store: SettingsStore,
        initial_settings: AppSettings,
        on_settings_saved: Optional[Callable[[AppSettings], None]] = None,
        show_error_dialog: Optional[Callable[..., None]] = None,
    ) -> None:
        super().__init__(master)
        self._on_settings_saved = on_settings_saved or (lambda settings: None)
        self._show_error_dialog = show_error_dialog or _default_error_dialog
        self._settings_store = settings_store
        self._current_settings = initial_settings

        self.source_var = tk.StringVar()
        self.facing_var = tk.StringVar()
        self.resolution_var = tk.StringVar()
        self.school_id_var = tk.StringVar()
        self.roster_var = tk.StringVar()
        self.book_var = tk.StringVar()
        self.minimum_wait_var = tk.StringVar()
        self.scan_interval_var = tk.StringVar()
        self.repeat_cooldown_var = tk.StringVar()
        self.barcodes_var = tk.BooleanVar()
        self.single_shot_var = tk.BooleanVar()
        self._apply_settings(initial_settings)
        self._build()

    def _build(self) -> None:
        self.columnconfigure((0, 1), weight=1)

        capture_frame = ttk.LabelFrame(self, text="Camera")
        capture_frame.grid(row=0, column=0, sticky="nsew", padx=(0, 8))
        capture_frame.columnconfigure(0, weight=1)
        ttk.Label(capture_frame, text="Camera source (blank = auto)").grid(row=0, column=0, sticky="w")
        ttk.Entry(capture_frame, textvariable=self.source_var).grid(row=1, column=0, sticky="ew", pady=(0, 6))
        ttk.Label(capture_frame, text="Preferred camera").grid(row=2, column=0, sticky="w")
        ttk.Combobox(
            capture_frame, textvariable=self.facing_var, values=("environment", "user"), state="readonly"
        ).grid(row=3, column=0, sticky="ew", pady=(0, 6))
        ttk.Label(capture_frame, text="Resolution").grid(row=4, column=0, sticky="w")
        ttk.Combobox(
            capture_frame,
            textvariable=self.resolution_var,
            values=list(RESOLUTION_PRESETS),
            state="readonly",
        ).grid(row=5, column=0, sticky="ew")

        scan_frame = ttk.LabelFrame(self, text="Scanning")
        scan_frame.grid(row=0, column=1, sticky="nsew", padx=(8, 0))
        scan_frame.columnconfigure(1, weight=1)
        rows = (
            ("Cancel available after (s)", self.minimum_wait_var),
            ("Scan interval (s)", self.scan_interval_var),
            ("Repeat cooldown (s)", self.repeat_cooldown_var),
        )
        for index, (label, variable) in enumerate(rows):
            ttk.Label(scan_frame, text=label).grid(row=index, column=0, sticky="w", pady=2)
            ttk.Entry(scan_frame, textvariable=variable, width=8).grid(row=index, column=1, sticky="w", pady=2)
        ttk.Checkbutton(scan_frame, text="Read 1D barcodes", variable=self.barcodes_var).grid(
            row=len(rows), column=0, columnspan=2, sticky="w"
        )
        ttk.Checkbutton(scan_frame, text="Stop after one record", variable=self.single_shot_var).grid(
            row=len(rows) + 1, column=0, columnspan=2, sticky="w"
        )

        records_frame = ttk.LabelFrame(self, text="Records")
        records_frame.grid(row=1, column=0, columnspan=2, sticky="ew", pady=(12, 0))
        records_frame.columnconfigure(1, weight=1)
        ttk.Label(records_frame, text="School ID").grid(row=0, column=0, sticky="w")
        ttk.Entry(records_frame, textvariable=self.school_id_var).grid(row=0, column=1, sticky="ew", pady=2)
        ttk.Label(records_frame, text="Roster").grid(row=1, column=0, sticky="w")
        ttk.Entry(records_frame, textvariable=self.roster_var).grid(row=1, column=1, sticky="ew", pady=2)
        ttk.Button(records_frame, text="Browse", command=lambda: self._browse(self.roster_var)).grid(row=1, column=2)
        ttk.Label(records_frame, text="Attendance book").grid(row=2, column=0, sticky="w")
        ttk.Entry(records_frame, textvariable=self.book_var).grid(row=2, column=1, sticky="ew", pady=2)
        ttk.Button(records_frame, text="Browse", command=lambda: self._browse(self.book_var)).grid(row=2, column=2)

        ttk.Button(self, text="Save Settings", command=self.save_settings).grid(row=2, column=1, sticky="e", pady=(12, 0))

    def _browse(self, variable: tk.StringVar) -> None:
        chosen = filedialog.askopenfilename(parent=self, filetypes=[("JSON", "*.json"), ("All files", "*")])
        if chosen:
            variable.set(chosen)

    def _apply_settings(self, settings: AppSettings) -> None:
        self.source_var.set(settings.source)
        self.facing_var.set(settings.facing_mode)
        self.resolution_var.set(settings.resolution_preset)
        self.school_id_var.set(settings.school_id)
        self.roster_var.set(settings.roster_path or str(CLI_DEFAULTS.roster))
        self.book_var.set(settings.attendance_book_path or str(CLI_DEFAULTS.attendance_book))
        self.minimum_wait_var.set(settings.minimum_wait)
        self.scan_interval_var.set(settings.scan_interval)
        self.repeat_cooldown_var.set(settings.repeat_cooldown)
        self.barcodes_var.set(settings.enable_barcodes)
        self.single_shot_var.set(settings.single_shot)

    def collect_settings(self) -> AppSettings:
        return AppSettings(
            source=self.source_var.get().strip(),
            facing_mode=self.facing_var.get() or "environment",
            resolution_preset=self.resolution_var.get(),
            school_id=self.school_id_var.get().strip(),
            roster_path=self.roster_var.get().strip(),
            attendance_book_path=self.book_var.get().strip(),
            minimum_wait=self.minimum_wait_var.get().strip(),
            scan_interval=self.scan_interval_var.get().strip(),
            repeat_cooldown=self.repeat_cooldown_var.get().strip(),
            enable_barcodes=bool(self.barcodes_var.get()),
            single_shot=bool(self.single_shot_var.get()),
            window_geometry=self._current_settings.window_geometry,
        )

    def save_settings(self) -> None:
        settings = self.collect_settings()
        if not self._settings_store.save(settings):
            self._show_error_dialog("Settings not saved", f"Could not write {self._settings_store.path}.", parent=self)
            return
        self._current_settings = settings
        self._on_settings_saved(settings)

    def build_config(self) -> Optional[ScannerConfig]:
        try:
            minimum_wait = int(self.minimum_wait_var.get())
            scan_interval = float(self.scan_interval_var.get())
            repeat_cooldown = float(self.repeat_cooldown_var.get())
            if minimum_wait < 0 or scan_interval < 0 or repeat_cooldown < 0:
                raise ValueError("Timings must not be negative.")
        except ValueError as exc:
            self._show_error_dialog("Invalid settings", f"Check the scanning timings: {exc}", parent=self)
            return None
        width, height = _resolution_value(self.resolution_var.get())
        return ScannerConfig(
            source=_resolve_source(self.source_var.get()),
            facing_mode=self.facing_var.get() or "environment",
            width=width,
            height=height,
            school_id=self.school_id_var.get().strip() or None,
            roster=Path(self.roster_var.get().strip() or CLI_DEFAULTS.roster),
            attendance_book=Path(self.book_var.get().strip() or CLI_DEFAULTS.attendance_book),
            minimum_wait=minimum_wait,
            scan_interval=scan_interval,
            repeat_cooldown=repeat_cooldown,
            enable_barcodes=bool(self.barcodes_var.get()),
            single_shot=bool(self.single_shot_var.get()),
        )
