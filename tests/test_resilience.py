import asyncio

import pytest

from services.errors import DataUnavailableError
from services.market.cache import DataCache
from services.market.resilience import FallbackFetcher, call_with_timeout


class Clock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


async def _live(value):
    await asyncio.sleep(0)
    return value


async def _broken():
    await asyncio.sleep(0)
    raise ConnectionError("upstream down")


async def _slow():
    await asyncio.sleep(5)
    return ["late"]


def test_live_success_refreshes_cache() -> None:
    clock = Clock()
    fetcher = FallbackFetcher(DataCache(clock=clock), clock=clock)
    result = asyncio.run(fetcher.fetch("bars:AAPL", lambda: _live([1, 2]), lambda: ["synthetic"]))
    assert result.source == "live"
    assert result.is_real_data
    assert fetcher.cache.get("bars:AAPL") == [1, 2]


def test_failure_serves_fresh_cache() -> None:
    clock = Clock()
    fetcher = FallbackFetcher(DataCache(ttl_seconds=100, clock=clock), clock=clock)
    asyncio.run(fetcher.fetch("bars:AAPL", lambda: _live([1, 2]), lambda: ["synthetic"]))

    clock.now += 50
    result = asyncio.run(fetcher.fetch("bars:AAPL", _broken, lambda: ["synthetic"]))
    assert result.source == "cache"
    assert result.data == [1, 2]
    assert result.is_real_data
    assert result.fetched_at == 0.0


def test_expired_cache_falls_through_to_synthetic() -> None:
    clock = Clock()
    fetcher = FallbackFetcher(DataCache(ttl_seconds=100, clock=clock), clock=clock)
    asyncio.run(fetcher.fetch("bars:AAPL", lambda: _live([1, 2]), lambda: ["synthetic"]))

    clock.now += 100
    result = asyncio.run(fetcher.fetch("bars:AAPL", _broken, lambda: ["synthetic"]))
    assert result.source == "synthetic"
    assert not result.is_real_data
    entry = fetcher.cache.get_entry("bars:AAPL")
    assert entry is not None and entry.synthetic


def test_cached_synthetic_stays_flagged() -> None:
    clock = Clock()
    fetcher = FallbackFetcher(DataCache(clock=clock), clock=clock)
    asyncio.run(fetcher.fetch("news", _broken, lambda: {"AAPL": "neutral"}))
    again = asyncio.run(fetcher.fetch("news", _broken, lambda: {"AAPL": "other"}))
    assert again.source == "cache"
    assert again.data == {"AAPL": "neutral"}
    assert not again.is_real_data


def test_validation_failure_counts_as_outage() -> None:
    fetcher = FallbackFetcher(DataCache())
    result = asyncio.run(
        fetcher.fetch("bars:AAPL", lambda: _live([1]), lambda: ["synthetic"], validate=lambda bars: len(bars) >= 50)
    )
    assert result.source == "synthetic"


def test_timeout_degrades() -> None:
    fetcher = FallbackFetcher(DataCache(), timeout=0.01)
    result = asyncio.run(fetcher.fetch("bars:AAPL", _slow, lambda: ["synthetic"]))
    assert result.source == "synthetic"
    assert result.data == ["synthetic"]


def test_call_with_timeout_raises_data_unavailable() -> None:
    with pytest.raises(DataUnavailableError):
        asyncio.run(call_with_timeout(_slow, 0.01))
    assert asyncio.run(call_with_timeout(lambda: _live(3), None)) == 3
