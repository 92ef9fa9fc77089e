"""Shared test fixtures."""

from unittest.mock import AsyncMock

import pytest


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Stand-in for asyncio.sleep that records requested delays."""
    return AsyncMock(return_value=None)
