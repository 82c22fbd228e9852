"""Observable values: state that records its readers.

When an Observable is read inside a Computed evaluation, the read is recorded
by the tracker and becomes one of that computed's dependencies. When the value
changes, every CHANGE subscriber is called with the new value.

Rate limiting: rate_limit(ms) coalesces a burst of changes into one trailing
notification per window. The delay itself is delegated to a scheduler;
call set_scheduler() once to choose the process default.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Generic, TypeVar

from rederive._tracking import record_access
from rederive.scheduling import AsyncioScheduler, Cancellable, Scheduler
from rederive.subscription import Subscription

T = TypeVar("T")

CHANGE = "change"
BEFORE_CHANGE = "before_change"

logger = logging.getLogger("rederive.observable")

_scheduler: Scheduler | None = None


class ReadOnlyError(RuntimeError):
    """Raised when writing to a reactive value that has no write path."""


def set_scheduler(scheduler: Scheduler | None) -> None:
    """Set the process-wide default scheduler used by rate limiters.

    Call once at startup:
        rederive.set_scheduler(AsyncioScheduler(loop))

    Passing None restores the default: the asyncio loop running at the time
    a rate limiter schedules work.
    """
    global _scheduler
    _scheduler = scheduler


def get_scheduler() -> Scheduler:
    """The configured scheduler, else one bound to the running asyncio loop.

    Raises RuntimeError when neither exists; delayed work never falls back to
    a worker thread.
    """
    if _scheduler is not None:
        return _scheduler
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        raise RuntimeError(
            "rate limiting needs a scheduler: call set_scheduler() or run inside an asyncio loop"
        ) from None
    return AsyncioScheduler(loop)


def _differs(old: object, new: object) -> bool:
    return old is not new and old != new


class Observable(Generic[T]):
    """A single observable value with automatic dependency tracking."""

    __slots__ = (
        "_value",
        "_subscribers",
        "_interval_ms",
        "_scheduler",
        "_pending",
        "_pending_handle",
        "_epoch",
        "_original_value",
    )

    def __init__(self, value: T | None = None) -> None:
        self._value = value
        self._subscribers: dict[str, list[Subscription]] = {CHANGE: [], BEFORE_CHANGE: []}
        self._interval_ms: int | None = None
        self._scheduler: Scheduler | None = None
        self._pending = False
        self._pending_handle: Cancellable | None = None
        self._epoch = 0
        self._original_value: Any = None

    def get(self) -> T:
        """Read the value. If inside an evaluation, registers the dependency."""
        record_access(self)
        return self._value

    def peek(self) -> T:
        """Read the value without registering a dependency."""
        return self._value

    def set(self, value: T) -> None:
        """Write a new value. Equal values are ignored."""
        if self.read_only:
            raise ReadOnlyError(f"{self!r} is read only")
        old = self._value
        if not _differs(old, value):
            return
        self.notify_subscribers(old, BEFORE_CHANGE)
        if self.has_rate_limiter and not self._pending:
            self._original_value = old
        self._value = value
        self._notify_value_changed(value)

    @property
    def value(self) -> T:
        return self.get()

    @value.setter
    def value(self, value: T) -> None:
        self.set(value)

    @property
    def read_only(self) -> bool:
        return False

    # --- Subscribers ---

    def subscribe(
        self,
        callback: Callable[[T], Any],
        event: str = CHANGE,
        owner: object = None,
    ) -> Subscription[T]:
        """Call callback(value) on every `event`. Returns the Subscription."""
        if event not in self._subscribers:
            raise ValueError(f"unknown event {event!r}")
        subscription = Subscription(self, callback, event, owner)
        self._add_subscription(subscription)
        return subscription

    def _add_subscription(self, subscription: Subscription) -> None:
        self._subscribers[subscription.event].append(subscription)

    def _remove_subscription(self, subscription: Subscription) -> None:
        try:
            self._subscribers[subscription.event].remove(subscription)
        except ValueError:
            pass  # already removed

    def notify_subscribers(self, value: Any, event: str = CHANGE) -> None:
        # Snapshot: callbacks may subscribe or dispose while we iterate.
        for subscription in list(self._subscribers[event]):
            subscription.notify(value)

    @property
    def has_subscribers(self) -> bool:
        return bool(self._subscribers[CHANGE])

    def subscriber_count(self, event: str = CHANGE) -> int:
        return len(self._subscribers[event])

    # --- Rate limiting ---

    def rate_limit(self, interval_ms: int, scheduler: Scheduler | None = None):
        """Emit at most one change notification per interval_ms. Chainable.

        A zero or negative interval removes the limiter.
        """
        self._interval_ms = interval_ms if interval_ms > 0 else None
        self._scheduler = scheduler
        if self._interval_ms is None:
            self._cancel_pending()
        return self

    @property
    def has_rate_limiter(self) -> bool:
        return self._interval_ms is not None

    @property
    def is_pending_notify(self) -> bool:
        return self._pending

    def _delay_by(self, interval_ms: int, callback: Callable[[], None]) -> None:
        """Run callback after interval_ms, superseding anything already pending.

        The callback captures the epoch at schedule time; if another delay or
        a cancel happened since, it fires as a no-op.
        """
        scheduler = self._scheduler if self._scheduler is not None else get_scheduler()
        self._cancel_pending()
        self._pending = True
        epoch = self._epoch

        def _fire() -> None:
            if epoch != self._epoch:
                return  # superseded
            self._pending = False
            self._pending_handle = None
            callback()

        self._pending_handle = scheduler.call_later(interval_ms / 1000, _fire)
        logger.debug("%r: scheduled in %dms (epoch %d)", self, interval_ms, epoch)

    def _cancel_pending(self) -> None:
        self._epoch += 1
        if self._pending_handle is not None:
            self._pending_handle.cancel()
            self._pending_handle = None
        self._pending = False

    def _notify_value_changed(self, value: T) -> None:
        if not self.has_rate_limiter:
            self.notify_subscribers(value)
        elif not self._pending:
            # Opens a window; later changes in it ride on the trailing flush.
            self._delay_by(self._interval_ms, self._flush_rate_limited)

    def _flush_rate_limited(self) -> None:
        if _differs(self._original_value, self._value):
            self.notify_subscribers(self._value)

    def __repr__(self) -> str:
        return f"Observable({self._value!r})"
