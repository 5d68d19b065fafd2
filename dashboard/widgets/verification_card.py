from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

import tkinter as tk
from PIL import Image, ImageOps, ImageTk
from tkinter import ttk

from dashboard.theme import ThemeManager
from pipelines.confirmation import ConfirmationState

LOGGER = logging.getLogger(__name__)

PHOTO_SIZE = (140, 170)


class VerificationCard(ttk.LabelFrame):
    """Student details plus Cancel / Entry / Exit for an open confirmation.

    Entry and Exit are enabled for the whole countdown; Cancel stays disabled
    and reads "Wait Ns" until the countdown reaches zero.
    """

    def __init__(
        self,
        master: tk.Misc,
        *,
        on_entry: Callable[[], None],
        on_exit: Callable[[], None],
        on_cancel: Callable[[], None],
        theme: ThemeManager,
    ) -> None:
        super().__init__(master, text="Verify Student")
        self.theme = theme
        pad = theme.pad()
        self.columnconfigure(1, weight=1)
        self._photo: Optional[ImageTk.PhotoImage] = None

        self.photo_label = ttk.Label(self, anchor="center")
        self.photo_label.grid(row=0, column=0, rowspan=6, padx=pad, pady=pad, sticky="n")
        self.name_var = tk.StringVar()
        self.id_var = tk.StringVar()
        self.class_var = tk.StringVar()
        self.parents_var = tk.StringVar()
        self.timing_var = tk.StringVar()
        self.late_var = tk.StringVar()
        ttk.Label(self, textvariable=self.name_var, font=theme.font("title")).grid(row=0, column=1, sticky="w")
        ttk.Label(self, textvariable=self.id_var).grid(row=1, column=1, sticky="w")
        ttk.Label(self, textvariable=self.class_var).grid(row=2, column=1, sticky="w")
        ttk.Label(self, textvariable=self.parents_var).grid(row=3, column=1, sticky="w")
        ttk.Label(self, textvariable=self.timing_var).grid(row=4, column=1, sticky="w")
        self.late_label = ttk.Label(self, textvariable=self.late_var, style="OnTime.TLabel")
        self.late_label.grid(row=5, column=1, sticky="w")

        self.countdown_var = tk.StringVar()
        ttk.Label(self, textvariable=self.countdown_var, font=theme.font("countdown")).grid(
            row=0, column=2, rowspan=2, padx=pad, sticky="ne"
        )

        buttons = ttk.Frame(self)
        buttons.grid(row=6, column=0, columnspan=3, sticky="ew", padx=pad, pady=pad)
        buttons.columnconfigure((0, 1, 2), weight=1)
        self.cancel_button = ttk.Button(buttons, text="Cancel", command=on_cancel)
        self.cancel_button.grid(row=0, column=0, sticky="ew", padx=(0, pad))
        self.entry_button = ttk.Button(buttons, text="Entry", style="Entry.TButton", command=on_entry)
        self.entry_button.grid(row=0, column=1, sticky="ew", padx=pad)
        self.exit_button = ttk.Button(buttons, text="Exit", style="Exit.TButton", command=on_exit)
        self.exit_button.grid(row=0, column=2, sticky="ew", padx=(pad, 0))

    def show(self, state: ConfirmationState) -> None:
        student = state.student
        self.name_var.set(student.full_name)
        self.id_var.set(f"Student ID: {student.student_id}")
        self.class_var.set(f"Class: {student.class_label}" if student.class_label else "")
        parents = " / ".join(name for name in (student.father_name, student.mother_name) if name)
        self.parents_var.set(f"Parents: {parents}" if parents else "")
        self.timing_var.set(
            f"Expected {student.expected_entry:%H:%M} - {student.expected_exit:%H:%M} ({student.timing_source})"
        )
        if state.is_late:
            self.late_var.set("Late entry")
            self.late_label.configure(style="Late.TLabel")
        else:
            self.late_var.set("On time")
            self.late_label.configure(style="OnTime.TLabel")
        self._load_photo(student.photo)
        self.update_countdown(state)

    def update_countdown(self, state: ConfirmationState) -> None:
        self.countdown_var.set("" if state.override_allowed else str(state.remaining_seconds))
        self.cancel_button.configure(text=state.cancel_label)
        self.cancel_button.state(["!disabled"] if state.override_allowed else ["disabled"])
        self.entry_button.state(["!disabled"])
        self.exit_button.state(["!disabled"])

    def _load_photo(self, photo: str) -> None:
        self._photo = None
        self.photo_label.configure(image="")
        if not photo:
            return
        path = Path(photo)
        if not path.is_file():
            LOGGER.debug("Student photo %s not found locally", photo)
            return
        try:
            image = ImageOps.contain(Image.open(path).convert("RGB"), PHOTO_SIZE)
        except OSError as exc:
            LOGGER.warning("Could not load student photo %s: %s", path, exc)
            return
        self._photo = ImageTk.PhotoImage(image)
        self.photo_label.configure(image=self._photo)
