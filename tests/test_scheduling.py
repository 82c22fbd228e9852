"""Tests for the schedulers."""

import asyncio
import queue
import threading

import pytest

from rederive import AsyncioScheduler, ManualScheduler, TimerScheduler


class TestManualScheduler:
    def test_runs_when_due(self):
        clock = ManualScheduler()
        log = []
        clock.call_later(0.05, lambda: log.append("a"))
        clock.advance(0.01)
        assert log == []
        assert clock.pending == 1
        clock.advance(0.1)
        assert log == ["a"]
        assert clock.pending == 0

    def test_due_order(self):
        clock = ManualScheduler()
        log = []
        clock.call_later(0.2, lambda: log.append("late"))
        clock.call_later(0.1, lambda: log.append("early"))
        clock.advance(1)
        assert log == ["early", "late"]

    def test_cancel(self):
        clock = ManualScheduler()
        log = []
        timer = clock.call_later(0.05, lambda: log.append("x"))
        timer.cancel()
        clock.advance(1)
        assert log == []

    def test_clock_moves(self):
        clock = ManualScheduler()
        seen = []
        clock.call_later(0.5, lambda: seen.append(clock.now))
        clock.advance(2)
        assert seen == [0.5]
        assert clock.now == 2

    def test_run_all_includes_rescheduled(self):
        clock = ManualScheduler()
        log = []

        def first():
            log.append(1)
            clock.call_later(0.1, lambda: log.append(2))

        clock.call_later(0.1, first)
        clock.run_all()
        assert log == [1, 2]

    def test_exception_propagates(self):
        clock = ManualScheduler()

        def boom():
            raise RuntimeError("boom")

        clock.call_later(0, boom)
        with pytest.raises(RuntimeError):
            clock.advance(0)


class TestTimerScheduler:
    def test_callback_waits_for_owner_thread(self):
        inbox = queue.Queue()
        ran_on = []
        TimerScheduler(inbox.put).call_later(0.01, lambda: ran_on.append(threading.current_thread()))
        callback = inbox.get(timeout=2)
        assert ran_on == []
        callback()
        assert ran_on == [threading.current_thread()]

    def test_marshal(self):
        fired = threading.Event()
        marshaled = []

        def marshal(callback):
            marshaled.append(callback)
            callback()

        TimerScheduler(marshal=marshal).call_later(0.01, fired.set)
        assert fired.wait(timeout=2)
        assert marshaled == [fired.set]

    def test_cancel(self):
        fired = threading.Event()
        timer = TimerScheduler(lambda cb: cb()).call_later(0.2, fired.set)
        timer.cancel()
        assert not fired.wait(timeout=0.4)


class TestAsyncioScheduler:
    def test_running_loop(self):
        async def main():
            done = asyncio.Event()
            AsyncioScheduler().call_later(0.01, done.set)
            await asyncio.wait_for(done.wait(), timeout=2)
            return True

        assert asyncio.run(main())

    def test_explicit_loop(self):
        loop = asyncio.new_event_loop()
        try:
            log = []
            AsyncioScheduler(loop).call_later(0.01, lambda: (log.append("x"), loop.stop()))
            loop.run_forever()
            assert log == ["x"]
        finally:
            loop.close()
