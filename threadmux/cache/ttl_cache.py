"""Bounded in-process cache with per-entry TTL and an injectable clock.

Entries record when they were inserted; an entry older than the TTL is
treated as absent and pruned on access. When the cache is full the oldest
entry is evicted. Not shared across processes.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Hashable
from datetime import datetime, timedelta
from typing import Any, Generic, TypeVar

import structlog

from threadmux.types import Clock, utc_now

log = structlog.get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class _CacheEntry(Generic[V]):
    """Single entry stored by TTLCache."""

    __slots__ = ("value", "inserted_at")

    def __init__(self, value: V, inserted_at: datetime) -> None:
        self.value = value
        self.inserted_at = inserted_at

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.inserted_at >= ttl


class TTLCache(Generic[K, V]):
    """Dict-backed cache with TTL expiry and a maximum entry count."""

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 256,
        clock: Clock = utc_now,
        name: str = "cache",
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_entries = max_entries
        self._clock = clock
        self._name = name
        self._store: OrderedDict[K, _CacheEntry[V]] = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get(self, key: K) -> V | None:
        """Return the cached value, or None if missing or expired."""
        entry = self._store.get(key)
        if entry is None or entry.is_expired(self._clock(), self._ttl):
            if entry is not None:
                del self._store[key]
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def set(self, key: K, value: V) -> None:
        now = self._clock()
        self._store.pop(key, None)
        if len(self._store) >= self._max_entries:
            self._prune(now)
        while len(self._store) >= self._max_entries:
            evicted, _ = self._store.popitem(last=False)
            log.debug("ttl_cache.evicted", cache=self._name, key=str(evicted))
        self._store[key] = _CacheEntry(value, now)

    def delete(self, key: K) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()
        self._hits = 0
        self._misses = 0
        log.debug("ttl_cache.cleared", cache=self._name)

    def info(self) -> dict[str, Any]:
        self._prune(self._clock())
        total_requests = self._hits + self._misses
        hit_rate = self._hits / total_requests if total_requests > 0 else 0.0
        return {
            "name": self._name,
            "total_keys": len(self._store),
            "max_entries": self._max_entries,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(hit_rate, 4),
        }

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        entry = self._store.get(key)  # type: ignore[call-overload]
        return entry is not None and not entry.is_expired(self._clock(), self._ttl)

    def _prune(self, now: datetime) -> None:
        expired = [key for key, entry in self._store.items() if entry.is_expired(now, self._ttl)]
        for key in expired:
            del self._store[key]
