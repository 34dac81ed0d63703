"""Timed callbacks for playback pacing and scene transitions.

Delays are a pacing mechanism only. Nothing waits on them, and a pending
callback is always cancelled when the session it belongs to is torn down.

    AsyncioScheduler  fires callbacks on the running event loop.
    ManualScheduler   queues callbacks until the caller runs them.
                        Deterministic; used by tests and step-through tools.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class ScheduledHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def schedule(self, delay: float, callback: Callable[[], None]) -> ScheduledHandle: ...


class AsyncioScheduler:
    def schedule(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(delay, 0.0), callback)


class _ManualHandle:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Holds scheduled callbacks until ``run_pending`` or ``run_until_idle``.

    Callbacks scheduled while a batch runs are queued for the next batch.
    """

    def __init__(self) -> None:
        self._queue: list[_ManualHandle] = []

    def schedule(self, delay: float, callback: Callable[[], None]) -> _ManualHandle:
        handle = _ManualHandle(delay, callback)
        self._queue.append(handle)
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for h in self._queue if not h.cancelled)

    def run_pending(self) -> int:
        """Run every live callback queued so far. Returns how many ran."""
        batch, self._queue = self._queue, []
        ran = 0
        for handle in batch:
            if handle.cancelled:
                continue
            handle.callback()
            ran += 1
        return ran

    def run_until_idle(self, max_batches: int = 100) -> int:
        total = 0
        for _ in range(max_batches):
            ran = self.run_pending()
            if not ran and not self._queue:
                break
            total += ran
        else:
            logger.warning("ManualScheduler still busy after %d batches", max_batches)
        return total
