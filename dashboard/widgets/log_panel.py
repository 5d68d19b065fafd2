from __future__ import annotations

from collections.abc import Iterable
from typing import Callable, Optional

import tkinter as tk
from tkinter import ttk

from dashboard.utils import _local_clock_label

MAX_ROWS = 500


class AttendanceLog(ttk.Frame):
    """Today's attendance records with entry/exit times."""

    COLUMNS = ("student_id", "entry_time", "exit_time", "status", "late")
    HEADINGS = {
        "student_id": "Student ID",
        "entry_time": "Entry",
        "exit_time": "Exit",
        "status": "Status",
        "late": "Late",
    }

    def __init__(
        self,
        master: tk.Misc,
        *,
        on_refresh: Optional[Callable[[], None]] = None,
        on_export: Optional[Callable[[], None]] = None,
    ) -> None:
        super().__init__(master)
        toolbar = ttk.Frame(self)
        toolbar.grid(row=0, column=0, columnspan=2, sticky="ew", pady=(0, 6))
        self.title_var = tk.StringVar(value="Today")
        ttk.Label(toolbar, textvariable=self.title_var).pack(side="left")
        if on_export is not None:
            ttk.Button(toolbar, text="Export CSV", command=on_export).pack(side="right")
        if on_refresh is not None:
            ttk.Button(toolbar, text="Refresh", command=on_refresh).pack(side="right", padx=(0, 6))

        self.tree = ttk.Treeview(self, columns=self.COLUMNS, show="headings", height=14)
        for col in self.COLUMNS:
            self.tree.heading(col, text=self.HEADINGS[col])
            self.tree.column(col, anchor="w")
        vsb = ttk.Scrollbar(self, orient="vertical", command=self.tree.yview)
        self.tree.configure(yscrollcommand=vsb.set)
        self.tree.grid(row=1, column=0, sticky="nsew")
        vsb.grid(row=1, column=1, sticky="ns")
        self.columnconfigure(0, weight=1)
        self.rowconfigure(1, weight=1)

    def set_title(self, text: str) -> None:
        self.title_var.set(text)

    def clear(self) -> None:
        for item in self.tree.get_children():
            self.tree.delete(item)

    def load_records(self, records: Iterable[dict[str, object]]) -> None:
        self.clear()
        ordered = sorted(records, key=lambda record: str(record.get("entry_time") or ""), reverse=True)
        for record in ordered[:MAX_ROWS]:
            self.tree.insert(
                "",
                "end",
                iid=str(record.get("id") or ""),
                values=(
                    record.get("student_id", ""),
                    _local_clock_label(record.get("entry_time")),
                    _local_clock_label(record.get("exit_time")),
                    str(record.get("status") or "").replace("_", " "),
                    "yes" if record.get("is_late") else "",
                ),
            )
