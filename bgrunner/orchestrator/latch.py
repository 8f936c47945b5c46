"""Synchronisation primitives for the runner: completion latch and stop token.

Both wrap :class:`asyncio.Event` and are safe for single-loop ``asyncio``
usage only (no locking, not thread-safe).
"""

from __future__ import annotations

import asyncio
import contextlib

__all__ = ["CompletionLatch", "StopToken"]


class CompletionLatch:
    """One-shot countdown that releases waiters when it reaches zero.

    A fresh latch is created for every scheduled firing.  Counting down past
    zero is a no-op, so the firing's own ``finally`` step and ``stop()`` may
    both release it.

    Args:
        count: Initial countdown (the runner always uses 1).
    """

    def __init__(self, count: int = 1) -> None:
        self._count = max(count, 0)
        self._released = asyncio.Event()
        if self._count == 0:
            self._released.set()

    @property
    def count(self) -> int:
        return self._count

    @property
    def released(self) -> bool:
        return self._count == 0

    def count_down(self) -> None:
        if self._count == 0:
            return
        self._count -= 1
        if self._count == 0:
            self._released.set()

    async def wait(self) -> None:
        """Block until the count reaches zero; return at once if it already has."""
        if self._count == 0:
            return
        await self._released.wait()


class StopToken:
    """Cooperative cancellation token observed by the retry executor.

    ``is_set()`` is the abort predicate checked before every attempt;
    :meth:`sleep` is the backoff wait, which returns early (without error)
    once the token is set.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def set(self) -> None:  # noqa: A003
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def sleep(self, seconds: float) -> None:
        """Sleep for *seconds* or until the token is set, whichever is first."""
        if self._event.is_set():
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=max(seconds, 0))
