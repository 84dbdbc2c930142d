"""Shared fixtures for the rate limiter tests."""

import pytest

from overlay.app.ratelimit import InMemoryStore, RateLimiter

T0 = 1_700_000_000_000.0


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds * 1000


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryStore(clock=clock)


@pytest.fixture
def limiter(clock, store):
    return RateLimiter(
        store=store,
        rules_header="5:60:60,10:600:120,15:10800:3600",
        clock=clock,
    )
