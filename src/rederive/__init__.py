"""rederive: computed values that rewire their own dependencies at runtime."""

from importlib.metadata import version as _version

__version__ = _version("rederive")

from rederive._tracking import (
    AccessNotification,
    capture_accesses,
    tracking_scope,
    untracked,
)
from rederive.observable import (
    BEFORE_CHANGE,
    CHANGE,
    Observable,
    ReadOnlyError,
    get_scheduler,
    set_scheduler,
)
from rederive.computed import CircularDependencyError, Computed, computed
from rederive.subscription import Subscription
from rederive.scheduling import AsyncioScheduler, ManualScheduler, Scheduler, TimerScheduler

__all__ = [
    "Observable",
    "Computed",
    "computed",
    "Subscription",
    "AccessNotification",
    "capture_accesses",
    "tracking_scope",
    "untracked",
    "CHANGE",
    "BEFORE_CHANGE",
    "ReadOnlyError",
    "CircularDependencyError",
    "set_scheduler",
    "get_scheduler",
    "Scheduler",
    "TimerScheduler",
    "AsyncioScheduler",
    "ManualScheduler",
]
