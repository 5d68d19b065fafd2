"""First-of-N async race where every loser is settled, not just abandoned."""
from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Optional

LOGGER = logging.getLogger(__name__)

Cleanup = Callable[[Any], None]


async def deadline(seconds: float, error_factory: Callable[[], BaseException]) -> Any:
    """Sleep for ``seconds`` and then raise ``error_factory()``."""
    await asyncio.sleep(seconds)
    raise error_factory()


async def race(*contenders: Awaitable[Any], cleanup: Optional[Cleanup] = None) -> Any:
    """Return the outcome of the first contender to finish.

    Losing coroutines are wrapped in tasks and cancelled. Losing futures (for
    example the result of ``loop.run_in_executor``) cannot be interrupted, so
    they are left to settle and any value they eventually produce is handed to
    ``cleanup``. The same applies when the race itself is cancelled: nothing a
    contender acquires is ever leaked.

    When several contenders are already done, the earliest in argument order
    wins.
    """
    if not contenders:
        raise ValueError("race() needs at least one contender")
    entries = [_Entry(contender) for contender in contenders]
    try:
        await asyncio.wait([entry.future for entry in entries], return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        for entry in entries:
            entry.abandon(cleanup)
        raise
    winner = next(entry for entry in entries if entry.future.done())
    for entry in entries:
        if entry is not winner:
            entry.abandon(cleanup)
    return winner.future.result()


class _Entry:
    def __init__(self, contender: Awaitable[Any]) -> None:
        self.interruptible = asyncio.iscoroutine(contender)
        self.future: asyncio.Future = asyncio.ensure_future(contender)

    def abandon(self, cleanup: Optional[Cleanup]) -> None:
        if self.future.done():
            _settle(self.future, cleanup=cleanup)
            return
        self.future.add_done_callback(partial(_settle, cleanup=cleanup))
        if self.interruptible:
            self.future.cancel()


def _settle(future: asyncio.Future, *, cleanup: Optional[Cleanup]) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        LOGGER.debug("Race loser finished with %r", exc)
        return
    if cleanup is None:
        return
    try:
        cleanup(future.result())
    except Exception:
        LOGGER.exception("Cleanup of a race loser failed")


__all__ = ["deadline", "race"]
