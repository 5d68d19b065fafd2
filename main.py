#!/usr/bin/env python3
"""Gate attendance scanner with an OpenCV preview window (CLI entry point)."""
from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pipelines.attendance import (
    DEFAULT_ATTENDANCE_BOOK,
    DEFAULT_ATTENDANCE_LOG,
    DEFAULT_ROSTER,
    MAX_ACQUIRE_RETRIES,
    CaptureController,
    SessionCallbacks,
    SessionStatus,
)
from pipelines.confirmation import ConfirmationGate, ConfirmationState
from utils.cli import parse_main_args
from utils.errors import CaptureError
from utils.logging import configure_logging
from utils.overlay import AMBER, GREY, draw_center_banner, draw_confirmation_card, draw_text_panel
from utils.services import build_constraints, create_services

LOGGER = logging.getLogger("main")

WINDOW_NAME = "Gate Attendance"
WINDOW_WIDTH_LIMIT = 1280
WINDOW_HEIGHT_LIMIT = 720
KEY_ESC = 27


class ScannerWindow:
    """Renders the latest frame with overlays and maps keys to gate actions."""

    def __init__(self, gate: ConfirmationGate, *, window_name: str = WINDOW_NAME) -> None:
        self.gate = gate
        self.window_name = window_name
        self.frame: Optional[np.ndarray] = None
        self.confirmation: Optional[ConfirmationState] = None
        self.stage = SessionStatus.IDLE
        self.message = ""
        self.scans_recorded = 0
        self.acquired = False
        self._window_ready = False

    def callbacks(self) -> SessionCallbacks:
        return SessionCallbacks(
            on_frame=self._set_frame,
            on_stage_change=self._set_stage,
            on_status=self._set_message,
            on_confirmation=self._set_confirmation,
            on_recorded=lambda event, ack: self._count(ack),
        )

    def _set_frame(self, frame: np.ndarray) -> None:
        self.frame = frame

    def _set_stage(self, stage: SessionStatus) -> None:
        if stage is SessionStatus.READY:
            self.acquired = True
        self.stage = stage

    def _set_message(self, message: str) -> None:
        self.message = message

    def _set_confirmation(self, state: Optional[ConfirmationState]) -> None:
        self.confirmation = state

    def _count(self, ack) -> None:
        if not ack.duplicate:
            self.scans_recorded += 1

    def render(self) -> None:
        if self.frame is None:
            return
        display = self.frame.copy()
        draw_text_panel(
            display,
            [f"Stage: {self.stage.value}", f"Recorded: {self.scans_recorded}"],
            anchor="top-left",
        )
        if self.confirmation is not None:
            draw_confirmation_card(display, self.confirmation)
            hint = "Confirm with E (entry) or X (exit)"
            draw_center_banner(display, hint, position="bottom", color=AMBER)
        else:
            draw_center_banner(display, self.message or "Show an ID card to the camera", position="bottom", color=GREY)
        if not self._window_ready:
            h, w = display.shape[:2]
            scale = min(WINDOW_WIDTH_LIMIT / w, WINDOW_HEIGHT_LIMIT / h, 1.0)
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
            cv2.resizeWindow(self.window_name, max(1, int(w * scale)), max(1, int(h * scale)))
            self._window_ready = True
        cv2.imshow(self.window_name, display)

    def handle_key(self, key: int, controller: CaptureController) -> None:
        if key in (KEY_ESC, ord("q")):
            controller.close("operator quit")
        elif key == ord("e"):
            self.gate.confirm_entry()
        elif key == ord("x"):
            self.gate.confirm_exit()
        elif key == ord("c"):
            if not self.gate.cancel() and self.confirmation is not None:
                self.message = f"Cancel available in {self.confirmation.remaining_seconds}s"

    async def pump(self, controller: CaptureController, interval: float = 0.015) -> None:
        while not controller.closed:
            self.render()
            key = cv2.waitKey(1) & 0xFF
            if key != 0xFF:
                self.handle_key(key, controller)
            await asyncio.sleep(interval)


async def run_scanner(args) -> int:
    directory, recorder, scanner, guard = create_services(args)
    school_id = args.school_id or directory.school_id
    constraints = build_constraints(args)

    for attempt in range(MAX_ACQUIRE_RETRIES + 1):
        gate = ConfirmationGate(args.minimum_wait)
        window = ScannerWindow(gate)
        controller = CaptureController(
            guard,
            scanner,
            directory,
            recorder,
            school_id=school_id,
            constraints=constraints,
            gate=gate,
            callbacks=window.callbacks(),
            single_shot=args.single_shot,
            commit_attempts=args.commit_attempts,
            commit_backoff=args.commit_backoff,
            attendance_log=Path(args.attendance_log),
        )
        pump = asyncio.ensure_future(window.pump(controller))
        try:
            session = await controller.run()
        except CaptureError as exc:
            if exc.retryable and not window.acquired and attempt < MAX_ACQUIRE_RETRIES:
                LOGGER.warning("%s Retrying (%d/%d)...", exc, attempt + 1, MAX_ACQUIRE_RETRIES)
                continue
            LOGGER.error("%s %s", exc, exc.remediation)
            return 1
        finally:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)
            cv2.destroyAllWindows()

        if session.pending_events:
            await controller.flush_pending()
        if session.pending_events:
            LOGGER.warning("%d attendance event(s) could not be written", len(session.pending_events))
        LOGGER.info("Session closed after %d recorded event(s)", session.scans_recorded)
        return 0
    return 1


def main() -> None:
    args = parse_main_args(
        default_roster=DEFAULT_ROSTER,
        default_attendance_book=DEFAULT_ATTENDANCE_BOOK,
        default_attendance_log=DEFAULT_ATTENDANCE_LOG,
    )
    configure_logging(args.log_level, Path(args.log_file) if args.log_file else None)
    try:
        exit_code = asyncio.run(run_scanner(args))
    except KeyboardInterrupt:
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
