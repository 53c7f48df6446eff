"""Two-tier response cache: in-process map backed by a durable store."""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from basketllm.types import LLMResponse
from basketllm.utils.background import BackgroundWrites

from .base import CacheConfig, CacheEntry, CacheStore, utcnow
from .memory import InMemoryCache

logger = logging.getLogger(__name__)


class ResponseCache:
    """Response cache used by the orchestrator.

    Reads check the in-process tier first and fall back to the durable
    store. Writes land in memory synchronously and reach the durable store
    as background writes. The durable tier is advisory: its failures are
    logged and the in-process tier keeps serving.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        store: Optional[CacheStore] = None,
        writes: Optional[BackgroundWrites] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or CacheConfig()
        self.store = store
        self.writes = writes or BackgroundWrites()
        self._clock = clock
        self.memory = InMemoryCache(self.config, clock=clock)
        self._durable_hits = 0
        self._durable_failures = 0

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    async def get(self, key: str) -> Optional[LLMResponse]:
        """Return the cached response for ``key`` with ``cached=True``."""
        if not self.enabled:
            return None

        entry = await self.memory.get(key)
        if entry is not None:
            return entry.response.model_copy(update={"cached": True})

        if self.store is None:
            return None

        now = self._clock()
        try:
            row = await self.store.get(key, now)
        except Exception:
            self._durable_failures += 1
            logger.warning("Durable cache read failed, serving from memory only", exc_info=True)
            return None

        if row is None or row.is_expired(now):
            return None

        # Promoted entries never outlive the durable row
        expires_at = min(row.expires_at, now + timedelta(seconds=self.config.ttl))
        await self.memory.set_entry(CacheEntry(
            key=key,
            model=row.model,
            response=row.response,
            created_at=row.created_at,
            expires_at=expires_at,
            tokens=row.tokens,
        ))
        self._durable_hits += 1
        return row.response.model_copy(update={"cached": True})

    async def set(
        self,
        key: str,
        model_id: str,
        response: LLMResponse,
        ttl: Optional[int] = None,
    ) -> None:
        """Store ``response`` in memory and schedule the durable write."""
        if not self.enabled:
            return

        stored = response.model_copy(update={"cached": False})
        entry = await self.memory.set(key, model_id, stored, ttl if ttl is not None else self.config.ttl)

        if self.store is not None:
            self.writes.submit(self._persist(entry), description="durable cache write")

    async def _persist(self, entry: CacheEntry) -> None:
        try:
            await self.store.upsert(entry)
        except Exception:
            self._durable_failures += 1
            raise

    async def sweep(self) -> int:
        """Evict expired in-process entries."""
        return await self.memory.sweep_expired()

    async def purge_expired(self) -> int:
        """Delete expired rows from the durable store."""
        if self.store is None:
            return 0
        try:
            removed = await self.store.purge_expired(self._clock())
        except Exception:
            self._durable_failures += 1
            logger.warning("Durable cache purge failed", exc_info=True)
            return 0
        if removed:
            logger.info("Purged %d expired cache rows", removed)
        return removed

    async def clear(self) -> None:
        await self.memory.clear()

    def get_stats(self) -> dict[str, Any]:
        stats = self.memory.get_stats()
        stats.update({
            "enabled": self.enabled,
            "durable": self.store is not None,
            "durable_hits": self._durable_hits,
            "durable_failures": self._durable_failures,
            "pending_writes": self.writes.pending,
        })
        return stats
