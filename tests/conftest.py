from __future__ import annotations

import pytest

from recordcache.cache import RecordCache


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock):
    cache = RecordCache(max_entries=1000, default_ttl_seconds=300.0, sweep_interval_seconds=None, clock=clock)
    yield cache
    cache.shutdown()
