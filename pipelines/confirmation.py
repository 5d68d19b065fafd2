"""Confirmation card shown between a scan and the attendance write."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from utils.errors import GateBusyError
from utils.recognition import RecognitionResult
from utils.records import StudentProfile

LOGGER = logging.getLogger(__name__)

MINIMUM_WAIT_SECONDS = 5


class GateOutcome(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"
    CANCELLED = "cancelled"


@dataclass
class ConfirmationState:
    student: StudentProfile
    result: RecognitionResult
    minimum_wait_seconds: int = MINIMUM_WAIT_SECONDS
    remaining_seconds: int = MINIMUM_WAIT_SECONDS
    is_late: bool = False

    @property
    def override_allowed(self) -> bool:
        return self.remaining_seconds <= 0

    @property
    def cancel_label(self) -> str:
        if self.override_allowed:
            return "Cancel"
        return f"Wait {self.remaining_seconds}s"


class ConfirmationGate:
    """Holds at most one open confirmation and resolves it exactly once.

    Entry and Exit resolve the gate at any time. Cancel is refused until the
    countdown reaches zero. ``on_change`` receives the state on open and on
    every tick, and ``None`` when the card closes.
    """

    def __init__(
        self,
        minimum_wait: int = MINIMUM_WAIT_SECONDS,
        *,
        tick_interval: float = 1.0,
        on_change: Optional[Callable[[Optional[ConfirmationState]], None]] = None,
    ) -> None:
        self.minimum_wait = max(0, int(minimum_wait))
        self.tick_interval = tick_interval
        self.on_change = on_change
        self._state: Optional[ConfirmationState] = None
        self._outcome: Optional[asyncio.Future] = None
        self._countdown: Optional[asyncio.Task] = None

    @property
    def state(self) -> Optional[ConfirmationState]:
        return self._state

    @property
    def countdown_active(self) -> bool:
        return self._countdown is not None and not self._countdown.done()

    async def present(
        self,
        result: RecognitionResult,
        student: StudentProfile,
        *,
        is_late: bool = False,
    ) -> GateOutcome:
        if self._state is not None:
            raise GateBusyError("A confirmation is already open")
        loop = asyncio.get_running_loop()
        state = ConfirmationState(
            student=student,
            result=result,
            minimum_wait_seconds=self.minimum_wait,
            remaining_seconds=self.minimum_wait,
            is_late=is_late,
        )
        self._state = state
        self._outcome = loop.create_future()
        self._countdown = asyncio.ensure_future(self._run_countdown(state))
        self._notify(state)
        try:
            outcome = await self._outcome
        finally:
            countdown, self._countdown = self._countdown, None
            if countdown is not None:
                countdown.cancel()
            self._state = None
            self._outcome = None
            self._notify(None)
        LOGGER.info("Confirmation for %s resolved: %s", student.student_id, outcome.value)
        return outcome

    async def _run_countdown(self, state: ConfirmationState) -> None:
        while state.remaining_seconds > 0:
            await asyncio.sleep(self.tick_interval)
            state.remaining_seconds -= 1
            self._notify(state)

    def cancel(self) -> bool:
        """Dismiss the card; refused while the countdown is still running."""
        state = self._state
        if state is None or not state.override_allowed:
            return False
        return self._resolve(GateOutcome.CANCELLED)

    def confirm_entry(self) -> bool:
        return self._resolve(GateOutcome.ENTRY)

    def confirm_exit(self) -> bool:
        return self._resolve(GateOutcome.EXIT)

    def _resolve(self, outcome: GateOutcome) -> bool:
        future = self._outcome
        if future is None or future.done():
            return False
        future.set_result(outcome)
        return True

    def _notify(self, state: Optional[ConfirmationState]) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(state)
        except Exception:
            LOGGER.exception("Confirmation listener failed")


__all__ = ["ConfirmationGate", "ConfirmationState", "GateOutcome", "MINIMUM_WAIT_SECONDS"]
