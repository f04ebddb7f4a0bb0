"""
Shared fixtures: fake clock, cache stores, in-memory remote.
"""
import asyncio

import pytest

from community_hub.cache import MemoryMedium, StaleWhileRevalidateRefresher, TTLCacheStore
from community_hub.remote import InMemoryRemoteSource


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def settle(rounds: int = 10):
    """Give background tasks (stream consumers, refreshes) a chance to run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def medium():
    return MemoryMedium()


@pytest.fixture
def store(medium, clock):
    return TTLCacheStore("test_cache", medium=medium, clock=clock, default_ttl=900)


@pytest.fixture
def refresher(store):
    return StaleWhileRevalidateRefresher(store, refresh_window=0.2, coalesce_timeout=5.0)


@pytest.fixture
def remote():
    return InMemoryRemoteSource()


@pytest.fixture
def slow_remote():
    """Remote whose calls stay in flight long enough to observe pending state."""
    return InMemoryRemoteSource(latency=0.01)
