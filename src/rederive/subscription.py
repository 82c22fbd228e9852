"""Subscriptions: one edge from a reactive value to a callback.

A Computed holds one Subscription per dependency. During re-evaluation the
edges are marked `removed`, re-claimed for dependencies that are read again,
and the rest are disposed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar

if TYPE_CHECKING:
    from rederive.observable import Observable

T = TypeVar("T")


class Subscription(Generic[T]):
    """Binds a callback to one event of one reactive value."""

    __slots__ = ("_observable", "_callback", "event", "owner", "removed", "_disposed")

    def __init__(
        self,
        observable: Observable[T],
        callback: Callable[[T], Any],
        event: str = "change",
        owner: object = None,
    ) -> None:
        self._observable = observable
        self._callback = callback
        self.event = event
        self.owner = owner
        self.removed = False
        self._disposed = False

    @property
    def observable(self) -> Observable[T]:
        return self._observable

    @property
    def disposed(self) -> bool:
        return self._disposed

    def belongs_to(self, observable: object) -> bool:
        return self._observable is observable

    def notify(self, value: T) -> None:
        # A subscription disposed mid-broadcast can still be in the snapshot.
        if not self._disposed:
            self._callback(value)

    def dispose(self) -> None:
        """Detach from the observable. Safe to call more than once."""
        if self._disposed:
            return
        self._disposed = True
        self._observable._remove_subscription(self)

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else ("removed" if self.removed else "active")
        return f"Subscription({self.event}, {state})"
