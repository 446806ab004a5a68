"""Small TTL cache with lazy expiry."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Clock = Callable[[], float]

ENDPOINT_CACHE_TTL = 60 * 60.0
SCAN_CACHE_TTL = 5 * 60.0


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[V]):
    value: V
    timestamp: float


class TTLCache(Generic[K, V]):
    """Key/value store whose entries vanish once they are ``ttl`` seconds old.

    Expiry is checked on read; there is no background eviction. The clock is
    injectable so tests can move time explicitly.
    """

    def __init__(self, ttl: float, *, clock: Clock | None = None) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._ttl = ttl
        self._clock = clock or time.monotonic
        self._entries: dict[K, CacheEntry[V]] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: K) -> V | None:
        """Return the cached value, or ``None`` when absent or expired."""

        entry = self._live_entry(key)
        return entry.value if entry is not None else None

    def set(self, key: K, value: V) -> None:
        self._entries[key] = CacheEntry(value=value, timestamp=self._clock())

    def invalidate(self, key: K) -> None:
        self._entries.pop(key, None)

    def invalidate_all(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return self._live_entry(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        for key in tuple(self._entries):
            self._live_entry(key)
        return len(self._entries)

    def _live_entry(self, key: K) -> CacheEntry[V] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp >= self._ttl:
            del self._entries[key]
            return None
        return entry


__all__ = ["CacheEntry", "Clock", "ENDPOINT_CACHE_TTL", "SCAN_CACHE_TTL", "TTLCache"]
