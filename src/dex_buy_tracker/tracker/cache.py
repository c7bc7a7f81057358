"""Time-bounded in-memory cache for price and pair metadata.

Entries are never actively evicted; staleness is resolved on the next read.
While a refresh for a key is in flight, readers get the stale value if one is
present, or share the pending load if none is.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """Cached value plus the time it was inserted."""

    value: V
    inserted_at: float

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return now - self.inserted_at < ttl_seconds


@dataclass
class CacheStats:
    hits: int = 0
    stale_hits: int = 0
    misses: int = 0
    loads: int = 0
    load_errors: int = 0


class TTLCache(Generic[K, V]):
    """Lazily-expiring cache with single-flight loading per key."""

    def __init__(
        self,
        ttl_seconds: float,
        *,
        name: str = "cache",
        clock: Clock = time.monotonic,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self._ttl = ttl_seconds
        self._name = name
        self._clock = clock
        self._entries: dict[K, CacheEntry[V]] = {}
        self._inflight: dict[K, asyncio.Task[V]] = {}
        self._generation = 0
        self._stats = CacheStats()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def peek(self, key: K) -> CacheEntry[V] | None:
        """Return the entry for ``key`` regardless of freshness."""
        return self._entries.get(key)

    def get(self, key: K) -> V | None:
        """Return the value for ``key`` if it is still fresh."""
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock(), self._ttl):
            return None
        return entry.value

    def set(self, key: K, value: V) -> None:
        self._entries[key] = CacheEntry(value=value, inserted_at=self._clock())

    def clear(self) -> None:
        """Drop every entry; loads already in flight will not repopulate."""
        self._entries.clear()
        self._inflight.clear()
        self._generation += 1

    async def get_or_load(self, key: K, loader: Callable[[], Awaitable[V]]) -> V:
        """Return a cached value, loading it at most once per expiry.

        Args:
            key: Cache key.
            loader: Coroutine factory producing a fresh value.

        Returns:
            The fresh value, the stale value while a refresh runs in the
            background, or the newly loaded value.

        Raises:
            Exception: Whatever ``loader`` raised when no value was cached.
                Failed loads are not cached, and a failed refresh keeps the
                stale entry.
        """
        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(self._clock(), self._ttl):
            self._stats.hits += 1
            return entry.value

        pending = self._inflight.get(key)
        if pending is not None:
            if entry is not None:
                self._stats.stale_hits += 1
                return entry.value
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._load(key, loader, self._generation))
        self._inflight[key] = task
        if entry is not None:
            self._stats.stale_hits += 1
            task.add_done_callback(functools.partial(self._log_refresh_failure, key))
            return entry.value

        self._stats.misses += 1
        return await asyncio.shield(task)

    def _log_refresh_failure(self, key: K, task: asyncio.Task[V]) -> None:
        if task.cancelled() or task.exception() is None:
            return
        logger.warning(
            "Refresh of %s entry %r failed, keeping stale value: %s",
            self._name,
            key,
            task.exception(),
        )

    async def _load(
        self,
        key: K,
        loader: Callable[[], Awaitable[V]],
        generation: int,
    ) -> V:
        self._stats.loads += 1
        try:
            value = await loader()
        except Exception:
            self._stats.load_errors += 1
            raise
        finally:
            if generation == self._generation:
                self._inflight.pop(key, None)

        if generation == self._generation:
            self.set(key, value)
        else:
            logger.debug("Discarding %s load for %r after clear", self._name, key)
        return value
