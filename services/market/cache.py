"""In-memory cache with per-entry provenance and expiry."""

from __future__ import annotations

import time
from collections.abc import Hashable
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 12 * 60 * 60
DEFAULT_SYNTHETIC_TTL_SECONDS = 60 * 60


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    data: T
    timestamp: float
    synthetic: bool = False


class DataCache(Generic[T]):
    """Single-owner cache; synthetic entries expire sooner than real ones."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        synthetic_ttl_seconds: float = DEFAULT_SYNTHETIC_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl = float(ttl_seconds)
        self.synthetic_ttl = float(synthetic_ttl_seconds)
        self._clock = clock
        self._store: Dict[Hashable, CacheEntry[T]] = {}

    def _ttl_for(self, entry: CacheEntry[T]) -> float:
        return self.synthetic_ttl if entry.synthetic else self.ttl

    def set(self, key: Hashable, value: T, *, synthetic: bool = False) -> CacheEntry[T]:
        entry = CacheEntry(data=value, timestamp=self._clock(), synthetic=synthetic)
        self._store[key] = entry
        return entry

    def get_entry(self, key: Hashable) -> Optional[CacheEntry[T]]:
        """Return the entry while it is younger than its TTL, evicting it otherwise."""

        entry = self._store.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp >= self._ttl_for(entry):
            self._store.pop(key, None)
            return None
        return entry

    def get(self, key: Hashable) -> Optional[T]:
        entry = self.get_entry(key)
        return entry.data if entry is not None else None

    def age(self, key: Hashable) -> Optional[float]:
        entry = self._store.get(key)
        if entry is None:
            return None
        return max(0.0, self._clock() - entry.timestamp)

    def clear(self) -> None:
        self._store.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get_entry(key) is not None

    def __len__(self) -> int:
        return len(self._store)
