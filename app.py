#!/usr/bin/env python3
"""Gate attendance dashboard: live scanner, confirmation card and today's log."""
import atexit
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import tkinter as tk
from tkinter import filedialog, messagebox, ttk

from dashboard.configuration import ScannerConfig
from dashboard.controllers import AttendanceSessionController
from dashboard.services.errors import describe_error, show_error_dialog
from dashboard.settings import AppSettings, SettingsStore
from dashboard.theme import ThemeConfig, ThemeManager
from dashboard.widgets import (
    AttendanceLog,
    ControlPanel,
    FrameDisplay,
    ManualEntryPanel,
    SessionButtons,
    StatusPanel,
    VerificationCard,
)
from pipelines.attendance import AttendanceEvent, SessionCallbacks, SessionStatus
from pipelines.confirmation import ConfirmationState
from utils.errors import CaptureError
from utils.logging import configure_logging
from utils.overlay import AMBER
from utils.paths import logs_path
from utils.records import RecordAck

LOGGER = logging.getLogger("dashboard")

SETTINGS_PATH = Path("app_settings.json")
EXPORTS_DIR = logs_path("exports")


class DashboardApp:
    def __init__(self) -> None:
        self.settings_store = SettingsStore(SETTINGS_PATH)
        self.app_settings = self.settings_store.load()

        self.theme = ThemeManager(config=ThemeConfig())
        self.root = tk.Tk()
        self.root.title("Gate Attendance")
        self.root.geometry(self.app_settings.window_geometry or "1400x860")
        self.theme.apply(self.root)
        self.controller: Optional[AttendanceSessionController] = None
        self._config: Optional[ScannerConfig] = None
        self._shown_state: Optional[ConfirmationState] = None
        self._cleanup_done = False
        atexit.register(self._cleanup_resources)

        pad = self.theme.pad("outer")
        self.status_panel = StatusPanel(self.root, theme=self.theme)
        self.status_panel.pack(fill="x", padx=pad, pady=(pad, pad // 2))

        notebook = ttk.Notebook(self.root)
        notebook.pack(fill="both", expand=True, padx=pad, pady=(0, pad))
        self.notebook = notebook

        self.session_tab = ttk.Frame(notebook)
        self.session_tab.columnconfigure(0, weight=3)
        self.session_tab.columnconfigure(1, weight=2)
        self.session_tab.rowconfigure(0, weight=1)
        notebook.add(self.session_tab, text="Live Scanner")

        video_frame = ttk.LabelFrame(self.session_tab, text="Live Feed")
        video_frame.grid(row=0, column=0, sticky="nsew", padx=pad, pady=pad)
        live_w, live_h = self.theme.live_feed_size
        feed_container = ttk.Frame(video_frame, width=live_w, height=live_h)
        feed_container.grid(row=0, column=0, sticky="nsew", padx=4, pady=4)
        feed_container.grid_propagate(False)
        video_label = ttk.Label(feed_container, anchor="center")
        video_label.place(relx=0.5, rely=0.5, anchor="center")
        self.video_display = FrameDisplay(video_label, target_size=(live_w, live_h))
        self.video_display.start()

        side = ttk.Frame(self.session_tab)
        side.grid(row=0, column=1, sticky="nsew", padx=(0, pad), pady=pad)
        side.columnconfigure(0, weight=1)
        self.verification_card = VerificationCard(
            side,
            on_entry=self._confirm_entry,
            on_exit=self._confirm_exit,
            on_cancel=self._cancel_confirmation,
            theme=self.theme,
        )
        self.verification_card.grid(row=0, column=0, sticky="new")
        self.verification_card.grid_remove()
        self.idle_hint = ttk.Label(side, text="Show an ID card to the camera.", anchor="center")
        self.idle_hint.grid(row=0, column=0, sticky="new", pady=pad)

        self.manual_entry = ManualEntryPanel(side, on_submit=self._submit_manual, theme=self.theme)
        self.manual_entry.grid(row=1, column=0, sticky="ew", pady=(pad, 0))

        footer = ttk.Frame(self.session_tab)
        footer.grid(row=1, column=0, columnspan=2, sticky="ew", padx=pad, pady=(0, pad))
        footer.columnconfigure(0, weight=1)
        self.session_buttons = SessionButtons(footer, theme=self.theme)
        self.session_buttons.grid(row=0, column=0)
        self.session_buttons.configure_start(self._start_session)
        self.session_buttons.configure_stop(self._stop_session)

        log_tab = ttk.Frame(notebook)
        notebook.add(log_tab, text="Attendance Log")
        self.log_panel = AttendanceLog(log_tab, on_refresh=self._refresh_log, on_export=self._export_log)
        self.log_panel.pack(fill="both", expand=True, padx=pad, pady=pad)

        settings_tab = ttk.Frame(notebook)
        notebook.add(settings_tab, text="Settings")
        self.settings_tab = settings_tab
        self.control_panel = ControlPanel(
            settings_tab,
            settings_store=self.settings_store,
            initial_settings=self.app_settings,
            on_settings_saved=self._handle_settings_saved,
            show_error_dialog=show_error_dialog,
        )
        self.control_panel.pack(fill="both", expand=True, padx=pad, pady=pad)

        self.root.protocol("WM_DELETE_WINDOW", self._on_close)
        self.root.after(100, self._refresh_log)

    def run(self) -> None:
        self.root.mainloop()

    # ------------------------------------------------------------------ session lifecycle
    def _ensure_controller(self) -> Optional[AttendanceSessionController]:
        config = self.control_panel.build_config()
        if config is None:
            self.notebook.select(self.settings_tab)
            return None
        controller = self.controller
        if controller is None or self._config != config:
            if controller is not None:
                controller.shutdown()
            controller = AttendanceSessionController(config)
            self.controller = controller
            self._config = config
        try:
            controller.load_services()
        except (OSError, ValueError) as exc:
            show_error_dialog("Records error", f"Could not load the roster or attendance book:\n{exc}", parent=self.root)
            self.controller = None
            return None
        return controller

    def _start_session(self) -> None:
        controller = self._ensure_controller()
        if controller is None or controller.running:
            return
        callbacks = SessionCallbacks(
            on_frame=self.video_display.submit,
            on_stage_change=lambda stage: self._ui_call(self._handle_stage, stage),
            on_status=lambda text: self._ui_call(self.status_panel.set_status, text),
            on_confirmation=lambda state: self._ui_call(self._handle_confirmation, state),
            on_recorded=lambda event, ack: self._ui_call(self._handle_recorded, event, ack),
            on_error=lambda exc: self._ui_call(self._handle_session_error, exc),
        )
        self.session_buttons.set_running(True)
        self.status_panel.set_status("Starting camera...")
        controller.start(
            callbacks,
            on_error=lambda exc: self._ui_call(self._report_fatal_error, exc),
            on_finished=lambda: self._ui_call(self._handle_session_finished),
        )

    def _stop_session(self) -> None:
        controller = self.controller
        if controller is not None:
            controller.stop()
        self._handle_session_finished()

    def _handle_session_finished(self) -> None:
        self.session_buttons.set_running(False)
        self.manual_entry.set_enabled(False)
        self._handle_confirmation(None)
        self.video_display.set_border(None)
        self.video_display.clear()
        self.status_panel.set_stage("idle")
        controller = self.controller
        if controller is not None and controller.pending_count():
            self.status_panel.set_status(f"Stopped with {controller.pending_count()} unsaved event(s).")

    # ------------------------------------------------------------------ callbacks (Tk thread)
    def _handle_stage(self, stage: SessionStatus) -> None:
        self.status_panel.set_stage(stage.value)
        self.video_display.set_border(AMBER if stage is SessionStatus.CONFIRMING else None)
        self.manual_entry.set_enabled(stage in (SessionStatus.RECOGNIZING, SessionStatus.CONFIRMING))

    def _handle_confirmation(self, state: Optional[ConfirmationState]) -> None:
        if state is None:
            self._shown_state = None
            self.verification_card.grid_remove()
            self.idle_hint.grid()
            return
        if state is self._shown_state:
            self.verification_card.update_countdown(state)
            return
        self._shown_state = state
        self.idle_hint.grid_remove()
        self.verification_card.show(state)
        self.verification_card.grid()

    def _handle_recorded(self, event: AttendanceEvent, ack: RecordAck) -> None:
        self._refresh_log()

    def _handle_session_error(self, exc: BaseException) -> None:
        if isinstance(exc, CaptureError):
            return
        title, _ = describe_error(exc)
        self.status_panel.set_status(f"{title}: {exc}")

    def _report_fatal_error(self, exc: BaseException) -> None:
        self._handle_session_finished()
        self.status_panel.set_status("Session ended due to an error.")
        title, message = describe_error(exc)
        show_error_dialog(title, message, parent=self.root)

    # ------------------------------------------------------------------ operator actions
    def _confirm_entry(self) -> None:
        if self.controller is not None:
            self.controller.confirm_entry()

    def _confirm_exit(self) -> None:
        if self.controller is not None:
            self.controller.confirm_exit()

    def _cancel_confirmation(self) -> None:
        if self.controller is not None:
            self.controller.cancel_confirmation()

    def _submit_manual(self, identifier: str) -> None:
        if self.controller is not None:
            self.controller.submit_manual(identifier)

    # ------------------------------------------------------------------ attendance log
    def _refresh_log(self) -> None:
        controller = self.controller or self._ensure_controller()
        if controller is None or controller.recorder is None:
            return
        today = datetime.now().date().isoformat()
        records = controller.recorder.records_for(today)
        self.log_panel.set_title(f"Today ({today})")
        self.log_panel.load_records(records)
        self.status_panel.set_scans(len(records))

    def _export_log(self) -> None:
        controller = self.controller or self._ensure_controller()
        if controller is None:
            return
        EXPORTS_DIR.mkdir(parents=True, exist_ok=True)
        today = datetime.now().date().isoformat()
        target = filedialog.asksaveasfilename(
            parent=self.root,
            initialdir=str(EXPORTS_DIR),
            initialfile=f"attendance_{today}.csv",
            defaultextension=".csv",
            filetypes=[("CSV", "*.csv")],
        )
        if not target:
            return
        try:
            count = controller.export_csv(Path(target), day=today)
        except OSError as exc:
            show_error_dialog("Export failed", str(exc), parent=self.root)
            return
        if count == 0:
            messagebox.showinfo("Nothing to export", "No attendance records for today.", parent=self.root)
            return
        messagebox.showinfo("Export complete", f"Saved {count} record(s) to {target}", parent=self.root)

    # ------------------------------------------------------------------ helpers
    def _handle_settings_saved(self, settings: AppSettings) -> None:
        self.app_settings = settings

    def _ui_call(self, func, *args, **kwargs) -> None:
        if func is None or self.root is None:
            return
        try:
            if not self.root.winfo_exists():
                return
            self.root.after(0, lambda f=func, a=args, kw=kwargs: f(*a, **kw))
        except (tk.TclError, RuntimeError):
            pass

    def _on_close(self) -> None:
        try:
            settings = self.control_panel.collect_settings()
            settings.window_geometry = self.root.geometry()
            self.settings_store.save(settings)
        except tk.TclError:
            pass
        self._cleanup_resources()
        self.root.destroy()

    def _cleanup_resources(self) -> None:
        if self._cleanup_done:
            return
        self._cleanup_done = True
        controller, self.controller = self.controller, None
        if controller is not None:
            controller.shutdown()
        self.video_display.stop()


def main() -> None:
    configure_logging("INFO", logs_path("dashboard.log"))
    DashboardApp().run()


if __name__ == "__main__":
    main()
