# copilot/request_scheduler.py
"""
Per-surface request gate: debounce, supersession and cooperative cancellation.

One RequestScheduler serves one trigger stream (one open document). Every
trigger takes a new generation number; a request is stale once its signal is
cancelled or a newer trigger has arrived. Staleness is polled at each
suspension boundary, never pushed.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Awaitable, Callable, Optional, TypeVar

from copilot.entities import CompletionTrigger

logger = logging.getLogger("copilot_completion")

T = TypeVar("T")


class CompletionCancelled(Exception):
    """Normal early exit: the request was cancelled or superseded."""

    def __init__(self, stage: str = ""):
        super().__init__(f"completion cancelled at {stage}" if stage else "completion cancelled")
        self.stage = stage


class CancellationSignal:
    """
    Poll-able cancellation flag. Thread-safe; cancel() is idempotent.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()


class RequestTicket:
    """Handle given to the work function of one admitted request."""

    def __init__(self, scheduler: "RequestScheduler", generation: int, trigger: CompletionTrigger, signal: CancellationSignal):
        self._scheduler = scheduler
        self.generation = generation
        self.trigger = trigger
        self.signal = signal

    def is_superseded(self) -> bool:
        return self.generation != self._scheduler.generation

    def is_stale(self) -> bool:
        return self.signal.is_cancelled() or self.is_superseded()

    def raise_if_stale(self, stage: str) -> None:
        if self.is_stale():
            raise CompletionCancelled(stage)

    @property
    def remote_slot(self) -> asyncio.Lock:
        """Held around the remote call so one surface never has two calls in flight."""
        return self._scheduler.remote_lock


class RequestScheduler:

    def __init__(
        self,
        delay_seconds: float = 0.15,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        poll_interval: float = 0.01,
    ):
        self.delay_seconds = delay_seconds
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self._last_request_start: Optional[float] = None
        self._generation = 0
        self._remote_lock: Optional[asyncio.Lock] = None
        self._active = 0

    @property
    def generation(self) -> int:
        return self._generation

    def is_idle(self) -> bool:
        """No scheduled request in flight and the debounce window has passed."""
        return self._active == 0 and self.remaining_wait() == 0

    @property
    def remote_lock(self) -> asyncio.Lock:
        if self._remote_lock is None:
            self._remote_lock = asyncio.Lock()
        return self._remote_lock

    @property
    def last_request_start(self) -> Optional[float]:
        return self._last_request_start

    def remaining_wait(self) -> float:
        if self._last_request_start is None:
            return 0.0
        elapsed = self._clock() - self._last_request_start
        return max(0.0, self.delay_seconds - elapsed)

    async def _wait(self, seconds: float, ticket: RequestTicket) -> bool:
        """
        Sleep in poll_interval slices. Returns False as soon as the ticket goes stale.
        """
        deadline = self._clock() + seconds
        while True:
            if ticket.is_stale():
                return False
            remaining = deadline - self._clock()
            if remaining <= 0:
                return True
            await self._sleep(min(remaining, self.poll_interval))

    async def acquire(self, trigger: CompletionTrigger, signal: CancellationSignal) -> Optional[RequestTicket]:
        """
        Admit a trigger once the debounce window has passed.
        Returns None when the request was cancelled or superseded while waiting.
        """
        self._generation += 1
        ticket = RequestTicket(self, self._generation, trigger, signal)

        if ticket.is_stale():
            logger.debug(f"[SCHEDULER] {trigger.document_id}: cancelled before wait")
            return None

        wait = self.remaining_wait()
        if wait > 0:
            logger.debug(f"[SCHEDULER] {trigger.document_id}: debouncing {wait * 1000:.0f}ms")
            if not await self._wait(wait, ticket):
                logger.debug(f"[SCHEDULER] {trigger.document_id}: cancelled during wait")
                return None

        if ticket.is_stale():
            logger.debug(f"[SCHEDULER] {trigger.document_id}: cancelled after wait")
            return None

        self._last_request_start = self._clock()
        return ticket

    async def schedule(
        self,
        trigger: CompletionTrigger,
        signal: CancellationSignal,
        work: Callable[[RequestTicket], Awaitable[T]],
    ) -> Optional[T]:
        self._active += 1
        try:
            ticket = await self.acquire(trigger, signal)
            if ticket is None:
                return None
            return await work(ticket)
        except CompletionCancelled as e:
            logger.debug(f"[SCHEDULER] {trigger.document_id}: {e}")
            return None
        finally:
            self._active -= 1
