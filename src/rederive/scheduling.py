"""Schedulers: the delay primitive behind rate limiting.

A scheduler runs a callback once after a delay and hands back something with
cancel(). rederive never blocks waiting on one; rate-limited work is queued
here and picked up later in the same logical context.

Three implementations:
- AsyncioScheduler: loop.call_later on an asyncio event loop. The default
  when no scheduler is configured and a loop is running.
- TimerScheduler: a daemon threading.Timer per call whose callback is handed
  to `marshal` (e.g. a UI app's call_from_thread) so it runs on the owning
  thread, never on the timer thread.
- ManualScheduler: a virtual clock advanced by hand. Deterministic; use it in
  tests and in simulation loops.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import threading
from typing import Callable, Protocol

Callback = Callable[[], None]


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callback) -> Cancellable: ...


class TimerScheduler:
    """One daemon threading.Timer per scheduled callback.

    The timer thread only waits; `marshal` must deliver the callback to the
    thread that owns the reactive graph.

    Usage:
        set_scheduler(TimerScheduler(app.call_from_thread))
    """

    def __init__(self, marshal: Callable[[Callback], object]) -> None:
        self._marshal = marshal

    def call_later(self, delay: float, callback: Callback) -> threading.Timer:
        marshal = self._marshal
        t = threading.Timer(delay, lambda: marshal(callback))
        t.daemon = True
        t.start()
        return t


class AsyncioScheduler:
    """Schedule on an asyncio loop. Defaults to the running loop at call time."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callback) -> asyncio.TimerHandle:
        loop = self._loop if self._loop is not None else asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class _ManualTimer:
    __slots__ = ("due", "callback", "cancelled")

    def __init__(self, due: float, callback: Callback) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Virtual-clock scheduler. Nothing runs until advance() or run_all().

    Callbacks run in the caller of advance(); an exception raised by one
    propagates from advance() and leaves later timers queued.

    Usage:
        clock = ManualScheduler()
        clock.call_later(0.05, fire)
        clock.advance(0.01)  # nothing yet
        clock.advance(0.05)  # fire() runs
    """

    def __init__(self) -> None:
        self._now = 0.0
        self._queue: list[tuple[float, int, _ManualTimer]] = []
        self._seq = itertools.count()

    @property
    def now(self) -> float:
        return self._now

    @property
    def pending(self) -> int:
        """Number of queued callbacks that have not been cancelled."""
        return sum(1 for _, _, timer in self._queue if not timer.cancelled)

    def call_later(self, delay: float, callback: Callback) -> _ManualTimer:
        timer = _ManualTimer(self._now + max(delay, 0.0), callback)
        heapq.heappush(self._queue, (timer.due, next(self._seq), timer))
        return timer

    def advance(self, seconds: float) -> None:
        """Move the clock forward, running every callback that comes due."""
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, timer = heapq.heappop(self._queue)
            self._now = due
            if not timer.cancelled:
                timer.callback()
        self._now = target

    def run_all(self) -> None:
        """Run queued callbacks in due order, including ones they schedule."""
        while self._queue:
            due, _, timer = heapq.heappop(self._queue)
            self._now = max(self._now, due)
            if not timer.cancelled:
                timer.callback()
