"""Tests for copilot.request_scheduler debounce, supersession and cancellation."""

import asyncio

import pytest

from conftest import FakeClock

from copilot.entities import CompletionTrigger
from copilot.request_scheduler import CancellationSignal, CompletionCancelled, RequestScheduler


def _trigger(offset=0):
    return CompletionTrigger(document_id="doc", cursor_offset=offset, line_text="x = ", timestamp=0.0)


def _scheduler(clock, delay=0.15):
    return RequestScheduler(delay, clock=clock, sleep=clock.sleep, poll_interval=0.01)


class TestCancellationSignal:
    """Tests for the poll-able flag."""

    def test_cancel_is_idempotent(self):
        signal = CancellationSignal()
        assert signal.is_cancelled() is False
        signal.cancel()
        signal.cancel()
        assert signal.is_cancelled() is True


class TestDebounce:
    """Tests for minimum spacing between request starts."""

    @pytest.mark.asyncio
    async def test_first_trigger_is_admitted_without_waiting(self):
        clock = FakeClock()
        scheduler = _scheduler(clock)
        ticket = await scheduler.acquire(_trigger(), CancellationSignal())
        assert ticket is not None
        assert clock.sleeps == []
        assert scheduler.last_request_start == clock.now

    @pytest.mark.asyncio
    async def test_second_trigger_waits_remaining_window(self):
        clock = FakeClock()
        scheduler = _scheduler(clock)
        first = await scheduler.acquire(_trigger(1), CancellationSignal())
        started = clock.now

        clock.advance(0.05)
        second = await scheduler.acquire(_trigger(2), CancellationSignal())

        assert first is not None and second is not None
        assert sum(clock.sleeps) == pytest.approx(0.10)
        assert clock.now - started >= 0.15 - 1e-9

    @pytest.mark.asyncio
    async def test_spacing_is_measured_from_previous_start(self):
        clock = FakeClock()
        scheduler = _scheduler(clock)
        await scheduler.acquire(_trigger(1), CancellationSignal())
        # a slow previous request does not matter, only its start does
        clock.advance(0.2)
        await scheduler.acquire(_trigger(2), CancellationSignal())
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_zero_delay_never_sleeps(self):
        clock = FakeClock()
        scheduler = _scheduler(clock, delay=0)
        for i in range(3):
            assert await scheduler.acquire(_trigger(i), CancellationSignal()) is not None
        assert clock.sleeps == []


class TestCancellation:
    """Tests for cancellation at suspension boundaries."""

    @pytest.mark.asyncio
    async def test_already_cancelled_signal_returns_none_before_wait(self):
        clock = FakeClock()
        scheduler = _scheduler(clock)
        signal = CancellationSignal()
        signal.cancel()
        assert await scheduler.acquire(_trigger(), signal) is None
        assert scheduler.last_request_start is None

    @pytest.mark.asyncio
    async def test_cancel_during_wait_returns_promptly(self):
        clock = FakeClock()
        signal = CancellationSignal()

        async def cancelling_sleep(seconds):
            await clock.sleep(seconds)
            signal.cancel()

        scheduler = RequestScheduler(0.15, clock=clock, sleep=cancelling_sleep, poll_interval=0.01)
        await scheduler.acquire(_trigger(1), CancellationSignal())
        last_start = scheduler.last_request_start

        assert await scheduler.acquire(_trigger(2), signal) is None
        assert len(clock.sleeps) == 1
        assert sum(clock.sleeps) <= 0.01 + 1e-9
        assert scheduler.last_request_start == last_start

    @pytest.mark.asyncio
    async def test_schedule_turns_cancelled_work_into_none(self):
        clock = FakeClock()
        scheduler = _scheduler(clock)

        async def work(ticket):
            raise CompletionCancelled("context assembly")

        assert await scheduler.schedule(_trigger(), CancellationSignal(), work) is None

    @pytest.mark.asyncio
    async def test_schedule_returns_work_result(self):
        clock = FakeClock()
        scheduler = _scheduler(clock)

        async def work(ticket):
            ticket.raise_if_stale("after assembly")
            return "done"

        assert await scheduler.schedule(_trigger(), CancellationSignal(), work) == "done"

    @pytest.mark.asyncio
    async def test_work_errors_propagate(self):
        clock = FakeClock()
        scheduler = _scheduler(clock)

        async def work(ticket):
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await scheduler.schedule(_trigger(), CancellationSignal(), work)


class TestSupersession:
    """Tests for newer triggers replacing pending ones."""

    @pytest.mark.asyncio
    async def test_newer_trigger_supersedes_waiting_one(self):
        clock = FakeClock()
        scheduler = _scheduler(clock)
        await scheduler.acquire(_trigger(1), CancellationSignal())

        clock.advance(0.02)
        waiting = asyncio.ensure_future(scheduler.acquire(_trigger(2), CancellationSignal()))
        await asyncio.sleep(0)
        newest = await scheduler.acquire(_trigger(3), CancellationSignal())

        assert await waiting is None
        assert newest is not None
        assert newest.trigger.cursor_offset == 3

    @pytest.mark.asyncio
    async def test_admitted_ticket_goes_stale_when_superseded(self):
        clock = FakeClock()
        scheduler = _scheduler(clock, delay=0)
        old = await scheduler.acquire(_trigger(1), CancellationSignal())
        assert old.is_stale() is False

        await scheduler.acquire(_trigger(2), CancellationSignal())
        assert old.is_superseded() is True
        with pytest.raises(CompletionCancelled):
            old.raise_if_stale("after remote call")

    @pytest.mark.asyncio
    async def test_remote_slot_is_shared_per_scheduler(self):
        clock = FakeClock()
        scheduler = _scheduler(clock, delay=0)
        a = await scheduler.acquire(_trigger(1), CancellationSignal())
        b = await scheduler.acquire(_trigger(2), CancellationSignal())
        assert a.remote_slot is b.remote_slot


class TestIdleness:
    """Tests for when a scheduler holds no state worth keeping."""

    @pytest.mark.asyncio
    async def test_idle_only_outside_window_and_without_work(self):
        clock = FakeClock()
        scheduler = _scheduler(clock)
        assert scheduler.is_idle() is True

        observed = []

        async def work(ticket):
            observed.append(scheduler.is_idle())
            return "done"

        assert await scheduler.schedule(_trigger(), CancellationSignal(), work) == "done"
        assert observed == [False]
        # debounce window still open
        assert scheduler.is_idle() is False
        clock.advance(0.15)
        assert scheduler.is_idle() is True

    @pytest.mark.asyncio
    async def test_failed_work_still_releases_the_scheduler(self):
        clock = FakeClock()
        scheduler = _scheduler(clock, delay=0)

        async def work(ticket):
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await scheduler.schedule(_trigger(), CancellationSignal(), work)
        assert scheduler.is_idle() is True
