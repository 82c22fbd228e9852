import pytest

from rederive import ManualScheduler, set_scheduler


@pytest.fixture
def clock():
    """Install a ManualScheduler as the default for the duration of a test."""
    scheduler = ManualScheduler()
    set_scheduler(scheduler)
    yield scheduler
    set_scheduler(None)
