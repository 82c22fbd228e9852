"""Dependency tracker: records which reactive values an evaluation reads.

Uses contextvars to record which reactive values are read while a computed
value evaluates. Each evaluation pushes its own TrackingFrame; reads are
attributed to the innermost frame, and the caller's frame is restored on exit
(including exceptional exit), so nested computeds track independently.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Iterator, NamedTuple, TypeVar

if TYPE_CHECKING:
    from rederive.observable import Observable
    from rederive.subscription import Subscription

T = TypeVar("T")


class AccessNotification:
    """One reactive value read during one evaluation.

    Equality is identity of the underlying value, so reading the same value
    twice yields one notification.
    """

    __slots__ = ("observable",)

    def __init__(self, observable: Observable) -> None:
        self.observable = observable

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AccessNotification):
            return NotImplemented
        return self.observable is other.observable

    def __hash__(self) -> int:
        return id(self.observable)

    def create_subscription(self, callback: Callable[[Any], None], owner: object = None) -> Subscription:
        return self.observable.subscribe(callback, owner=owner)

    def __repr__(self) -> str:
        return f"AccessNotification({self.observable!r})"


class TrackingFrame:
    """Accesses recorded for one evaluation."""

    __slots__ = ("owner", "accesses")

    def __init__(self, owner: object = None) -> None:
        self.owner = owner
        self.accesses: set[AccessNotification] = set()

    def record(self, observable: Observable) -> None:
        self.accesses.add(AccessNotification(observable))


class ScopeHandle(NamedTuple):
    frame: TrackingFrame
    token: contextvars.Token


# The innermost tracking frame. None means reads are not being recorded.
_current_frame: contextvars.ContextVar[TrackingFrame | None] = contextvars.ContextVar(
    "current_frame", default=None
)


def begin_scope(owner: object = None) -> ScopeHandle:
    """Push a fresh frame. Every begin_scope must be paired with end_scope."""
    frame = TrackingFrame(owner)
    token = _current_frame.set(frame)
    return ScopeHandle(frame, token)


def end_scope(handle: ScopeHandle) -> frozenset[AccessNotification]:
    """Pop the frame pushed by begin_scope and return what it recorded."""
    _current_frame.reset(handle.token)
    return frozenset(handle.frame.accesses)


def record_access(observable: Observable) -> None:
    """Called by every reactive value on read. No-op outside a scope."""
    frame = _current_frame.get()
    if frame is not None:
        frame.record(observable)


def current_owner() -> object:
    frame = _current_frame.get()
    return frame.owner if frame is not None else None


def capture_accesses(fn: Callable[[], T], owner: object = None) -> tuple[T, frozenset[AccessNotification]]:
    """Run fn in its own scope. Returns (result, accesses).

    The scope is popped even when fn raises; the exception propagates.
    """
    handle = begin_scope(owner)
    try:
        result = fn()
    finally:
        accesses = end_scope(handle)
    return result, accesses


@contextmanager
def tracking_scope(owner: object = None) -> Iterator[TrackingFrame]:
    """Context manager form of begin_scope/end_scope.

    Usage:
        with tracking_scope() as frame:
            a.get()
        frame.accesses  # {AccessNotification(a)}
    """
    handle = begin_scope(owner)
    try:
        yield handle.frame
    finally:
        end_scope(handle)


@contextmanager
def untracked() -> Iterator[None]:
    """Suppress dependency recording for reads made inside the block.

    Usage:
        @computed
        def label():
            with untracked():
                prefix = settings.get()  # read, but not a dependency
            return f"{prefix}{name.get()}"
    """
    token = _current_frame.set(None)
    try:
        yield
    finally:
        _current_frame.reset(token)
