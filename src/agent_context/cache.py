"""Assembled context cache.

TTL-based in-memory cache for assembled context bundles. The assembler owns
an instance; pass ``NullContextCache`` to always recompute.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from threading import Lock
from typing import Any, Protocol

from .exceptions import CacheError
from .models import AgentContextBundle


class ContextCache(Protocol):
    """Cache interface used by the context assembler."""

    async def get(self, key: str) -> AgentContextBundle | None:
        """Return the cached bundle, or None when absent or expired."""
        ...

    async def set(
        self, key: str, bundle: AgentContextBundle, ttl_seconds: float
    ) -> None:
        """Store ``bundle`` under ``key``, replacing any previous entry.

        Raises:
            CacheError: If the backend cannot store the entry.
        """
        ...

    async def delete(self, key: str) -> bool:
        ...

    async def clear(self) -> int:
        ...


class InMemoryContextCache:
    """TTL + LRU in-memory context cache.

    Features:
    - Per-entry TTL, checked lazily when that key is read
    - LRU eviction when ``maxsize`` is exceeded
    - Entries are private copies, replaced wholesale (last writer wins)
    - Hit/miss statistics

    The lock only guards single-key dict operations. There is no full-table
    expiry sweep, so a write never holds the lock across other keys.
    """

    def __init__(
        self,
        maxsize: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            maxsize: Maximum number of cached bundles
            clock: Monotonic time source (seconds); injectable for tests
        """
        self._maxsize = maxsize
        self._clock = clock
        self._cache: OrderedDict[str, tuple[AgentContextBundle, float]] = OrderedDict()
        self._lock = Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "expirations": 0,
        }

    def _evict_lru(self) -> None:
        """Make room for one entry (caller holds the lock).

        Entries already past their TTL are counted as expirations.
        """
        now = self._clock()
        while len(self._cache) >= self._maxsize:
            _, (_, expires_at) = self._cache.popitem(last=False)
            if now >= expires_at:
                self._stats["expirations"] += 1
            else:
                self._stats["evictions"] += 1

    async def get(self, key: str) -> AgentContextBundle | None:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None

            bundle, expires_at = entry
            if self._clock() >= expires_at:
                del self._cache[key]
                self._stats["expirations"] += 1
                self._stats["misses"] += 1
                return None

            self._cache.move_to_end(key)
            self._stats["hits"] += 1

        return bundle.model_copy(deep=True)

    async def set(
        self, key: str, bundle: AgentContextBundle, ttl_seconds: float
    ) -> None:
        if ttl_seconds < 0:
            raise CacheError(f"Negative TTL for key {key!r}: {ttl_seconds}")
        stored = bundle.model_copy(deep=True)
        with self._lock:
            if key not in self._cache:
                self._evict_lru()
            self._cache[key] = (stored, self._clock() + ttl_seconds)
            self._cache.move_to_end(key)

    async def delete(self, key: str) -> bool:
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    async def clear(self) -> int:
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            return count

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._stats["hits"] + self._stats["misses"]
            hit_rate = self._stats["hits"] / total if total > 0 else 0

            return {
                **self._stats,
                "hit_rate": f"{hit_rate:.1%}",
                "size": len(self._cache),
                "maxsize": self._maxsize,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


class NullContextCache:
    """Cache that stores nothing; every lookup misses."""

    async def get(self, key: str) -> AgentContextBundle | None:
        return None

    async def set(
        self, key: str, bundle: AgentContextBundle, ttl_seconds: float
    ) -> None:
        return None

    async def delete(self, key: str) -> bool:
        return False

    async def clear(self) -> int:
        return 0
