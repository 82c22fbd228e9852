"""Computed values: derived state with automatic dependency tracking.

A Computed wraps a function. Each evaluation runs the function inside its own
tracking scope; whatever reactive values it reads become the dependency set
for the next cycle. When any of them changes, the computed invalidates itself
and re-evaluates, then notifies its own subscribers.

Computed values are eager by default: they evaluate on construction and on
every dependency change. Pass defer_evaluation=True to postpone the first
evaluation until the value is first read, peeked or subscribed to.

With rate_limit(ms), dependency-triggered re-evaluation is delayed and
coalesced into one run per window. A direct read never waits: it evaluates
synchronously and supersedes anything pending.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar, overload

from rederive._tracking import AccessNotification, capture_accesses, record_access
from rederive.observable import BEFORE_CHANGE, Observable, ReadOnlyError, _differs
from rederive.scheduling import Scheduler
from rederive.subscription import Subscription

T = TypeVar("T")

logger = logging.getLogger("rederive.computed")


class CircularDependencyError(RuntimeError):
    """Raised when a computed reads, peeks or subscribes to itself while evaluating."""


class Computed(Observable[T]):
    """A derived value that auto-tracks dependencies and caches the result."""

    __slots__ = (
        "_derive",
        "_write",
        "_writable",
        "_defer_evaluation",
        "_is_valid",
        "_is_disposed",
        "_evaluating",
        "_dependencies",
        "_accesses",
    )

    def __init__(
        self,
        derive: Callable[[], T],
        write: Callable[[T], Any] | None = None,
        *,
        defer_evaluation: bool = False,
    ) -> None:
        super().__init__(None)
        self._derive = derive
        self._write = write
        self._writable = write is not None
        self._defer_evaluation = defer_evaluation
        self._is_valid = False
        self._is_disposed = False
        self._evaluating = False
        # Live dependency edges, indexed by the dependency they watch.
        self._dependencies: dict[AccessNotification, Subscription] = {}
        self._accesses: frozenset[AccessNotification] = frozenset()
        if not defer_evaluation:
            self._evaluate(force=True)

    # --- Read / write surface ---

    def get(self) -> T:
        """Read the computed value. Recomputes synchronously if stale.

        A disposed computed returns its last value without tracking.
        """
        if self._is_disposed:
            return self._value
        if self._evaluating:
            raise CircularDependencyError(f"{self!r} read itself while evaluating")
        record_access(self)
        if not self._is_valid:
            self._evaluate(force=True)
        return self._value

    def peek(self) -> T:
        """Read without registering a dependency.

        Only a deferred computed is brought up to date first; otherwise this
        returns the cached value even if a rate-limited run is pending.
        """
        if not self._is_disposed and not self._is_valid and self._defer_evaluation:
            if self._evaluating:
                raise CircularDependencyError(f"{self!r} peeked itself while evaluating")
            self._evaluate(force=True)
        return self._value

    def set(self, value: T) -> None:
        """Pass value to the write callback, then notify with the cached value.

        The write callback is expected to update upstream observables; their
        change notifications re-evaluate this computed the normal way.
        """
        if not self._writable:
            raise ReadOnlyError(f"{self!r} is read only")
        self._write(value)
        self.notify_subscribers(self._value)

    @property
    def read_only(self) -> bool:
        return not self._writable

    @property
    def writable(self) -> bool:
        return self._writable

    @property
    def is_valid(self) -> bool:
        return self._is_valid

    @property
    def is_disposed(self) -> bool:
        return self._is_disposed

    @property
    def dependency_count(self) -> int:
        """Number of distinct reactive values read by the last evaluation."""
        return len(self._accesses)

    def depends_on(self, observable: Observable) -> bool:
        return any(sub.belongs_to(observable) for sub in self._dependencies.values())

    def invalidate(self) -> None:
        """Re-evaluate now, whether or not anything changed."""
        if self._is_disposed:
            return
        self._evaluate(force=True)

    def rate_limit(self, interval_ms: int, scheduler: Scheduler | None = None) -> Computed[T]:
        """Delay and coalesce dependency-triggered re-evaluation. Chainable.

        Removing the limiter while a run is pending evaluates now.
        """
        was_pending = self.is_pending_notify
        super().rate_limit(interval_ms, scheduler)
        if was_pending and not self.is_pending_notify and not self._is_valid and not self._is_disposed:
            self._evaluate(force=True)
        return self

    def dispose(self) -> None:
        """Disconnect from all dependencies. The last value is kept, frozen."""
        self._is_disposed = True
        self._cancel_pending()
        for subscription in self._dependencies.values():
            subscription.dispose()
        self._dependencies.clear()
        self._accesses = frozenset()
        logger.debug("%r: disposed", self)

    def _add_subscription(self, subscription: Subscription) -> None:
        # A new subscriber should see a current value, not a never-computed one.
        if not self._is_valid and not self._is_disposed:
            if self._evaluating:
                raise CircularDependencyError(f"{self!r} subscribed to itself while evaluating")
            self._evaluate(force=True)
        super()._add_subscription(subscription)

    # --- Evaluation ---

    def _evaluate(self, force: bool = False) -> None:
        """Start an evaluation, now or after the rate-limit window."""
        self.notify_subscribers(self._value, BEFORE_CHANGE)
        if self.has_rate_limiter and not self.is_pending_notify:
            # Window opens: remember what subscribers last saw.
            self._original_value = self._value
        if force or not self.has_rate_limiter:
            self._evaluate_now()
        else:
            self._delay_by(self._interval_ms, self._evaluate_delayed)

    def _evaluate_delayed(self) -> None:
        if self._is_disposed:
            return
        try:
            self._evaluate_now()
        except Exception:
            logger.exception("%r: delayed evaluation failed", self)
            raise

    def _evaluate_now(self) -> None:
        self._cancel_pending()
        self._is_valid = False

        # Mark every edge; the ones read again are re-claimed in _reconcile.
        for subscription in self._dependencies.values():
            subscription.removed = True
        previous_accesses = self._accesses
        self._accesses = frozenset()

        self._evaluating = True
        try:
            value, accesses = capture_accesses(self._derive, owner=self)
        except Exception:
            # Keep the old value and edges; stay invalid so the next read retries.
            for subscription in self._dependencies.values():
                subscription.removed = False
            self._accesses = previous_accesses
            raise
        finally:
            self._evaluating = False

        self._value = value
        if self._is_disposed:
            # The derive function disposed us; there is nothing to reconnect.
            return

        self._accesses = accesses
        self._reconcile()
        self._is_valid = True

        if not self.has_rate_limiter or _differs(self._original_value, value):
            self.notify_subscribers(value)

    def _reconcile(self) -> None:
        for notification in self._accesses:
            subscription = self._dependencies.get(notification)
            if subscription is not None:
                subscription.removed = False
            else:
                self._dependencies[notification] = notification.create_subscription(
                    self._on_dependency_changed, owner=self
                )
        for notification, subscription in list(self._dependencies.items()):
            if subscription.removed:
                subscription.dispose()
                del self._dependencies[notification]

    def _on_dependency_changed(self, _value: object) -> None:
        if not self._is_valid:
            return  # already stale; one evaluation covers every change
        self._is_valid = False
        self._evaluate()

    def __repr__(self) -> str:
        name = getattr(self._derive, "__name__", "derive")
        if self._is_disposed:
            state = f"disposed={self._value!r}"
        elif self._is_valid:
            state = f"cached={self._value!r}"
        else:
            state = "stale"
        return f"Computed({name}, {state})"


@overload
def computed(fn: Callable[[], T]) -> Computed[T]: ...


@overload
def computed(
    fn: None = None,
    *,
    write: Callable[[T], Any] | None = None,
    defer_evaluation: bool = False,
) -> Callable[[Callable[[], T]], Computed[T]]: ...


def computed(fn=None, *, write=None, defer_evaluation=False):
    """Decorator/factory to create a Computed from a function.

    Usage:
        a = Observable(1)
        b = Observable(2)

        @computed
        def total():
            return a.get() + b.get()

        total.get()  # 3
        a.set(5)
        total.get()  # 7

        @computed(defer_evaluation=True)
        def expensive():
            return heavy(a.get())  # not run until first read
    """
    if fn is not None:
        return Computed(fn, write, defer_evaluation=defer_evaluation)

    def decorator(f: Callable[[], T]) -> Computed[T]:
        return Computed(f, write, defer_evaluation=defer_evaluation)

    return decorator
