"""
Tests for sync pass triggers.
"""

import threading

import pytest

from chatsync.persistence.triggers import IntervalTrigger, ManualTrigger, ReadWriteLock


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestIntervalTrigger:
    """Tests for the time based trigger."""

    @pytest.mark.asyncio
    async def test_fires_before_first_reset(self):
        """A trigger that never fired is due immediately."""
        trigger = IntervalTrigger(30, clock=FakeClock())
        assert trigger.last_fired is None
        assert await trigger.should_trigger() is True
        # Checking does not consume anything.
        assert await trigger.should_trigger() is True

    @pytest.mark.asyncio
    async def test_waits_for_interval_after_reset(self):
        clock = FakeClock()
        trigger = IntervalTrigger(30, clock=clock)

        await trigger.reset()
        assert await trigger.should_trigger() is False

        clock.advance(29.9)
        assert await trigger.should_trigger() is False

        clock.advance(0.1)
        assert await trigger.should_trigger() is True

    @pytest.mark.asyncio
    async def test_reset_restarts_interval(self):
        clock = FakeClock()
        trigger = IntervalTrigger(10, clock=clock)
        await trigger.reset()
        clock.advance(15)
        assert await trigger.should_trigger() is True

        await trigger.reset()
        assert trigger.last_fired == clock.now
        assert await trigger.should_trigger() is False

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            IntervalTrigger(0)

    def test_name(self):
        assert IntervalTrigger(30).name == "IntervalTrigger(interval=30s)"


class TestManualTrigger:
    """Tests for the on-demand trigger."""

    @pytest.mark.asyncio
    async def test_no_signal_means_not_due(self):
        trigger = ManualTrigger()
        assert await trigger.should_trigger() is False

    @pytest.mark.asyncio
    async def test_signal_consumed_once(self):
        trigger = ManualTrigger()
        trigger.trigger()
        assert trigger.pending is True
        assert await trigger.should_trigger() is True
        assert await trigger.should_trigger() is False

    @pytest.mark.asyncio
    async def test_signals_coalesce(self):
        """Any number of signals before a poll yields exactly one pass."""
        trigger = ManualTrigger()
        for _ in range(3):
            trigger.trigger()

        assert await trigger.should_trigger() is True
        assert await trigger.should_trigger() is False

    @pytest.mark.asyncio
    async def test_reset_drains_pending_signal(self):
        trigger = ManualTrigger()
        trigger.trigger()
        await trigger.reset()
        assert trigger.pending is False
        assert await trigger.should_trigger() is False


class TestReadWriteLock:
    def test_readers_share_lock(self):
        lock = ReadWriteLock()
        with lock.read():
            with lock.read():
                pass

    def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        events = []

        def reader():
            with lock.read():
                events.append("read")

        with lock.write():
            thread = threading.Thread(target=reader)
            thread.start()
            thread.join(timeout=0.1)
            events.append("write-done")

        thread.join(timeout=1)
        assert events == ["write-done", "read"]
