"""Live → cache → synthetic fallback for upstream fetches."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Hashable
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Literal, Optional, TypeVar

from services.errors import DataUnavailableError
from services.market.cache import DataCache

T = TypeVar("T")

Source = Literal["live", "cache", "synthetic"]


@dataclass(frozen=True, slots=True)
class FetchResult(Generic[T]):
    data: T
    source: Source
    fetched_at: float
    is_real_data: bool

    @property
    def is_live(self) -> bool:
        return self.source == "live"


async def call_with_timeout(fn: Callable[[], Awaitable[T]], timeout: Optional[float]) -> T:
    """Await ``fn()``; a timeout surfaces as ``DataUnavailableError``."""

    try:
        if timeout is None or timeout <= 0:
            return await fn()
        return await asyncio.wait_for(fn(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise DataUnavailableError(f"upstream call timed out after {timeout}s") from exc


class FallbackFetcher(Generic[T]):
    """Wrap upstream fetches in a three-tier fallback.

    1. the live call, bounded by ``timeout``; a result rejected by ``validate``
       counts as a failure, and every accepted result refreshes the cache;
    2. on failure, the cached value when it is younger than its TTL;
    3. otherwise the synthetic generator, cached under the synthetic flag so
       consumers can always tell degraded data apart.
    """

    def __init__(
        self,
        cache: DataCache[T],
        *,
        timeout: Optional[float] = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache = cache
        self.timeout = timeout
        self._clock = clock
        self.log = logging.getLogger("optionpilot.resilience")

    async def fetch(
        self,
        key: Hashable,
        live: Callable[[], Awaitable[T]],
        synthetic: Callable[[], T],
        validate: Optional[Callable[[T], bool]] = None,
    ) -> FetchResult[T]:
        try:
            data = await call_with_timeout(live, self.timeout)
            if validate is not None and not validate(data):
                raise DataUnavailableError(f"live data for {key} failed validation")
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - every upstream failure degrades
            self.log.warning(
                "resilience.live_failed",
                extra={"key": str(key), "error": str(exc) or type(exc).__name__},
            )
        else:
            self.cache.set(key, data)
            return FetchResult(data, "live", self._clock(), True)

        entry = self.cache.get_entry(key)
        if entry is not None:
            self.log.info(
                "resilience.cache_hit",
                extra={"key": str(key), "age_sec": round(self._clock() - entry.timestamp, 1)},
            )
            return FetchResult(entry.data, "cache", entry.timestamp, not entry.synthetic)

        self.log.warning("resilience.synthetic_fallback", extra={"key": str(key)})
        data = synthetic()
        self.cache.set(key, data, synthetic=True)
        return FetchResult(data, "synthetic", self._clock(), False)


__all__ = ["FetchResult", "FallbackFetcher", "call_with_timeout"]
