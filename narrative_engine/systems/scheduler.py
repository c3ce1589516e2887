"""
Clocks and deferred tasks.

The engine is single-threaded: nothing runs in the background. Deferred
work (power deactivation) is queued here and executed when the host calls
run_pending(), normally once per frame through NarrativeEngine.update().
"""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Clock(Protocol):
    """Source of wall-clock time in epoch milliseconds."""

    def now_ms(self) -> int:
        ...


class SystemClock:
    """Real time."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class ManualClock:
    """
    Clock that only moves when told to.

    Used by tests and by hosts that drive time from their own game loop.
    """

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self._now = start_ms

    def now_ms(self) -> int:
        return self._now

    def advance(self, ms: int) -> int:
        self._now += ms
        return self._now

    def set(self, now_ms: int) -> None:
        self._now = now_ms


@dataclass(order=True)
class ScheduledTask:
    """Handle for a queued callback. Cancelled tasks are skipped."""

    due_ms: int
    seq: int
    callback: Callable[[], None] = field(compare=False)
    label: str = field(default="", compare=False)
    cancelled: bool = field(default=False, compare=False)
    done: bool = field(default=False, compare=False)

    def cancel(self) -> bool:
        """Cancel the task. Returns False if it already ran or was cancelled."""
        if self.done or self.cancelled:
            return False
        self.cancelled = True
        return True

    @property
    def pending(self) -> bool:
        return not (self.done or self.cancelled)


class TaskScheduler:
    """
    Min-heap of callbacks keyed by due time.

    Tasks due at the same instant run in the order they were scheduled.
    """

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or SystemClock()
        self._queue: list[ScheduledTask] = []
        self._seq = itertools.count()

    def call_later(self, delay_ms: int, callback: Callable[[], None], label: str = "") -> ScheduledTask:
        """Schedule callback to run delay_ms from now."""
        task = ScheduledTask(
            due_ms=self.clock.now_ms() + max(0, delay_ms),
            seq=next(self._seq),
            callback=callback,
            label=label,
        )
        heapq.heappush(self._queue, task)
        return task

    def run_pending(self, now_ms: int | None = None) -> int:
        """
        Run every task that is due.

        Args:
            now_ms: Time to run against (defaults to the clock)

        Returns:
            Number of callbacks executed
        """
        now = self.clock.now_ms() if now_ms is None else now_ms
        ran = 0
        while self._queue and self._queue[0].due_ms <= now:
            task = heapq.heappop(self._queue)
            if task.cancelled:
                continue
            task.done = True
            try:
                task.callback()
            except Exception:
                logger.exception(f"Scheduled task failed: {task.label or task.callback}")
            ran += 1
        return ran

    def cancel_all(self) -> int:
        """Cancel every pending task. Returns count cancelled."""
        count = sum(1 for task in self._queue if task.cancel())
        self._queue.clear()
        return count

    def pending_count(self) -> int:
        return sum(1 for task in self._queue if task.pending)
