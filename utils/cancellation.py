"""Cancellation token shared by every suspension point of a capture session."""
from __future__ import annotations

from typing import Callable, List, Optional

from .errors import SessionClosedError


class CancelToken:
    """One-shot cancellation flag that async steps check before applying results.

    The token is owned by a single event loop; threads other than the loop's
    must go through ``loop.call_soon_threadsafe(token.cancel)``.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Optional[str] = None
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel the token; return False when it was already cancelled."""
        if self._cancelled:
            return False
        self._cancelled = True
        self._reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()
        return True

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on cancellation (immediately if already cancelled)."""
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise SessionClosedError(self._reason or "cancelled")


__all__ = ["CancelToken"]
