"""Cancellable scheduled callbacks for confirmation timeouts.

The pipeline is driven by a single cooperative loop, so schedulers here never
spawn threads: due callbacks run when the host calls ``advance`` or ``poll``.
"""

from __future__ import annotations

import itertools
import time
from typing import Callable, List, Optional, Protocol


class TimerHandle:
    """Handle returned by ``call_later``; ``cancel`` prevents the callback."""

    def __init__(self, when: float, callback: Callable[[], None], order: int) -> None:
        self.when = when
        self.callback = callback
        self.order = order
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class Scheduler(Protocol):
    def now(self) -> float:
        ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class ManualScheduler:
    """Deterministic scheduler with an explicit clock."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._timers: List[TimerHandle] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(self.now() + max(0.0, delay), callback, next(self._counter))
        self._timers.append(handle)
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for handle in self._timers if not handle.cancelled)

    def _run_due(self, until: float) -> int:
        fired = 0
        while True:
            due = [handle for handle in self._timers if not handle.cancelled and handle.when <= until]
            if not due:
                break
            handle = min(due, key=lambda item: (item.when, item.order))
            self._timers.remove(handle)
            handle.callback()
            fired += 1
        self._timers = [handle for handle in self._timers if not handle.cancelled]
        return fired

    def advance(self, seconds: float) -> int:
        """Move the clock forward and run callbacks that became due."""
        self._now += seconds
        return self._run_due(self._now)


class PollingScheduler(ManualScheduler):
    """Scheduler on the monotonic clock; due callbacks fire on ``poll``."""

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.monotonic
        super().__init__(start=self._clock())

    def now(self) -> float:
        return self._clock()

    def poll(self) -> int:
        return self._run_due(self.now())
