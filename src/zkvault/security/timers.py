"""Clock + one-shot timer abstractions used by the key cache.

:class:`ThreadingScheduler` is the default and runs callbacks on
``threading.Timer`` threads against ``time.monotonic``.

:class:`ManualScheduler` keeps virtual time that only moves when
:meth:`ManualScheduler.advance` is called. Tests use it to step through idle
timeouts deterministically, and an application with its own event loop can
drive it from a periodic tick.
"""
from __future__ import annotations

import heapq
import itertools
import threading
import time
from typing import Callable, List, Optional, Tuple


class TimerHandle:
    """Handle for a scheduled callback; ``cancel()`` is idempotent."""

    __slots__ = ("_callback", "_cancelled")

    def __init__(self, callback: Callable[[], None]):
        self._callback = callback
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def _run(self) -> None:
        if not self._cancelled:
            self._callback()


class Scheduler:
    """Interface: a monotonic clock in seconds plus one-shot timers."""

    def now(self) -> float:
        raise NotImplementedError

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError


class _ThreadTimerHandle(TimerHandle):
    __slots__ = ("_timer",)

    def __init__(self, callback: Callable[[], None]):
        super().__init__(callback)
        self._timer: Optional[threading.Timer] = None

    def cancel(self) -> None:
        super().cancel()
        if self._timer is not None:
            self._timer.cancel()


class ThreadingScheduler(Scheduler):
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = _ThreadTimerHandle(callback)
        timer = threading.Timer(max(0.0, delay), handle._run)
        # an idle-lock timer must not keep the interpreter alive
        timer.daemon = True
        handle._timer = timer
        timer.start()
        return handle


class ManualScheduler(Scheduler):
    """Virtual-time scheduler; nothing fires until :meth:`advance`."""

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(callback)
        heapq.heappush(self._queue, (self._now + max(0.0, delay), next(self._seq), handle))
        return handle

    def pending(self) -> int:
        """Number of scheduled callbacks that have not been cancelled or run."""
        return sum(1 for _, _, h in self._queue if not h.cancelled)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, running every callback that falls due in order."""
        if seconds < 0:
            raise ValueError("cannot move time backwards")
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            self._now = when
            handle._run()
        self._now = target
