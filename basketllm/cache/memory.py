"""In-memory cache implementation."""

import asyncio
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from basketllm.types import LLMResponse

from .base import CacheConfig, CacheEntry, utcnow


class InMemoryCache:
    """In-process cache with lazy expiry and optional LRU eviction.

    All access to the underlying map goes through one ``asyncio.Lock`` so
    that concurrent writers to the same key never interleave.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or CacheConfig()
        self._clock = clock
        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._cache)

    def _evict_if_needed(self) -> None:
        """Evict least recently used entries while at max size."""
        if self.config.max_size is None:
            return

        while len(self._cache) >= self.config.max_size:
            self._cache.popitem(last=False)

    async def get(self, key: str) -> Optional[CacheEntry]:
        """Get a live entry, dropping it if it has expired."""
        async with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(self._clock()):
                del self._cache[key]
                self._misses += 1
                return None

            self._cache.move_to_end(key)
            self._hits += 1
            return entry

    async def set_entry(self, entry: CacheEntry) -> None:
        async with self._lock:
            if entry.key not in self._cache:
                self._evict_if_needed()
            self._cache[entry.key] = entry
            self._cache.move_to_end(entry.key)

    async def set(
        self,
        key: str,
        model: str,
        response: LLMResponse,
        ttl: Optional[int] = None,
    ) -> CacheEntry:
        """Store ``response`` under ``key`` for ``ttl`` seconds."""
        now = self._clock()
        entry = CacheEntry(
            key=key,
            model=model,
            response=response,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl if ttl is not None else self.config.ttl),
            tokens=response.usage.total_tokens,
        )
        await self.set_entry(entry)
        return entry

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    async def sweep_expired(self) -> int:
        """Remove every expired entry and return how many were dropped."""
        async with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]
            for key in expired:
                del self._cache[key]
            return len(expired)

    def get_stats(self) -> dict[str, Any]:
        total_requests = self._hits + self._misses
        return {
            "backend": "memory",
            "size": len(self._cache),
            "max_size": self.config.max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total_requests if total_requests > 0 else 0,
            "ttl": self.config.ttl,
        }
