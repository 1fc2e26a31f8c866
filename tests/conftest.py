"""Shared fixtures for the completion pipeline tests."""

import asyncio
import threading
from typing import Callable, List, Optional

import pytest

from copilot.config_manager import CompletionConfig
from copilot.entities import TokenUsage, TransportResponse


class FakeClock:
    """Monotonic clock that only moves when a test (or fake sleep) advances it."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeTransport:
    """Records every remote call; replies with a fixed response."""

    def __init__(
        self,
        text: str = "42;",
        usage: TokenUsage = TokenUsage(input_tokens=10, output_tokens=3),
        configured: bool = True,
        clock: Optional[FakeClock] = None,
    ):
        self.text = text
        self.usage = usage
        self.configured = configured
        self.clock = clock
        self.calls = []
        self.call_times: List[float] = []
        self.on_call: Optional[Callable[[], None]] = None
        self.error: Optional[Exception] = None
        self._lock = threading.Lock()

    def is_configured(self, model_name: str) -> bool:
        return self.configured

    def complete(self, prompt, system_prompt, model, max_tokens, temperature=0.0):
        with self._lock:
            self.calls.append(
                {
                    "prompt": prompt,
                    "system_prompt": system_prompt,
                    "model": model,
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                }
            )
            if self.clock is not None:
                self.call_times.append(self.clock())
        if self.on_call is not None:
            self.on_call()
        if self.error is not None:
            raise self.error
        return TransportResponse(text=self.text, stop_reason="completed", usage=self.usage)


@pytest.fixture
def config() -> CompletionConfig:
    return CompletionConfig(delay=0, api_key="test-key", model="gpt-4.1-mini")


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
