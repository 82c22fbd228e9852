"""Tests for rate-limited Computed evaluation."""

import logging

import pytest

from rederive import BEFORE_CHANGE, Computed, ManualScheduler, Observable


def _counting(fn):
    def wrapper():
        wrapper.calls += 1
        return fn()

    wrapper.calls = 0
    return wrapper


class TestRateLimitedComputed:
    def test_chainable(self, clock):
        c = Computed(lambda: 1)
        assert c.rate_limit(50) is c
        assert c.has_rate_limiter

    def test_burst_produces_one_evaluation(self, clock):
        a = Observable(1)
        fn = _counting(lambda: a.get() * 10)
        c = Computed(fn).rate_limit(50)
        log = []
        c.subscribe(log.append)

        a.set(2)
        clock.advance(0.01)
        a.set(3)
        assert fn.calls == 1
        assert log == []
        assert c.is_pending_notify
        assert c.peek() == 10  # stale until the window closes

        clock.advance(0.1)
        assert fn.calls == 2
        assert log == [30]
        assert c.is_valid
        assert not c.is_pending_notify

    def test_round_trip_within_window_is_silent(self, clock):
        a = Observable(1)
        fn = _counting(lambda: a.get() * 10)
        c = Computed(fn).rate_limit(50)
        log = []
        c.subscribe(log.append)

        a.set(2)
        clock.advance(0.01)
        a.set(1)
        clock.advance(0.1)
        assert fn.calls == 2
        assert log == []
        assert c.get() == 10

    def test_before_change_fires_when_scheduled(self, clock):
        a = Observable(1)
        c = Computed(a.get).rate_limit(50)
        log = []
        c.subscribe(lambda v: log.append(("before", v)), BEFORE_CHANGE)
        c.subscribe(lambda v: log.append(("after", v)))
        a.set(2)
        assert log == [("before", 1)]
        clock.advance(0.1)
        assert log == [("before", 1), ("after", 2)]

    def test_read_during_window_evaluates_now(self, clock):
        a = Observable(1)
        fn = _counting(lambda: a.get() * 10)
        c = Computed(fn).rate_limit(50)
        log = []
        c.subscribe(log.append)

        a.set(2)
        assert c.get() == 20
        assert fn.calls == 2
        assert log == [20]
        assert not c.is_pending_notify
        assert clock.pending == 0

        clock.advance(0.1)
        assert fn.calls == 2  # superseded run does not fire
        assert log == [20]

    def test_invalidate_supersedes_pending(self, clock):
        a = Observable(1)
        fn = _counting(a.get)
        c = Computed(fn).rate_limit(50)
        a.set(2)
        c.invalidate()
        assert fn.calls == 2
        clock.advance(0.1)
        assert fn.calls == 2

    def test_at_most_one_pending(self, clock):
        a = Observable(1)
        c = Computed(a.get).rate_limit(50)
        a.set(2)
        a.set(3)
        a.set(4)
        assert clock.pending == 1
        clock.advance(0.1)
        assert c.get() == 4

    def test_dispose_cancels_pending(self, clock):
        a = Observable(1)
        fn = _counting(a.get)
        c = Computed(fn).rate_limit(50)
        a.set(2)
        c.dispose()
        clock.advance(0.1)
        assert fn.calls == 1
        assert c.get() == 1

    def test_new_window_after_flush(self, clock):
        a = Observable(1)
        c = Computed(a.get).rate_limit(50)
        log = []
        c.subscribe(log.append)
        a.set(2)
        clock.advance(0.1)
        a.set(3)
        clock.advance(0.1)
        assert log == [2, 3]

    def test_explicit_scheduler(self):
        own = ManualScheduler()
        a = Observable(1)
        c = Computed(a.get).rate_limit(50, scheduler=own)
        a.set(2)
        assert c.peek() == 1
        own.advance(0.1)
        assert c.peek() == 2

    def test_downstream_sees_one_change(self, clock):
        a = Observable(1)
        limited = Computed(lambda: a.get() * 2).rate_limit(50)
        downstream_fn = _counting(lambda: limited.get() + 1)
        downstream = Computed(downstream_fn)
        a.set(2)
        a.set(3)
        assert downstream_fn.calls == 1
        clock.advance(0.1)
        assert downstream_fn.calls == 2
        assert downstream.get() == 7

    def test_removing_limiter_while_pending_evaluates_now(self, clock):
        a = Observable(1)
        c = Computed(lambda: a.get() * 10).rate_limit(50)
        log = []
        c.subscribe(log.append)
        a.set(2)
        c.rate_limit(0)
        assert c.is_valid
        assert log == [20]

        a.set(3)
        a.set(4)
        clock.advance(0.1)
        assert log == [20, 30, 40]
        assert c.peek() == 40

    def test_changing_interval_keeps_pending_run(self, clock):
        a = Observable(1)
        c = Computed(a.get).rate_limit(50)
        a.set(2)
        c.rate_limit(100)
        assert c.is_pending_notify
        clock.advance(0.1)
        assert c.peek() == 2


class TestDelayedFailure:
    def test_logged_and_raised(self, clock, caplog):
        a = Observable(1)

        def derive():
            if a.get() < 0:
                raise ValueError("negative")
            return a.get()

        c = Computed(derive).rate_limit(50)
        a.set(-1)  # nothing raised yet: the evaluation is scheduled
        with caplog.at_level(logging.ERROR, logger="rederive.computed"):
            with pytest.raises(ValueError):
                clock.advance(0.1)
        assert "delayed evaluation failed" in caplog.text
        assert c.peek() == 1
        assert not c.is_valid

        a.set(5)
        assert c.get() == 5
