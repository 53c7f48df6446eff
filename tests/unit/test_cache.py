"""Tests for the response cache."""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

import pytest

from basketllm.cache import (
    CacheConfig,
    CacheEntry,
    CacheStore,
    InMemoryCache,
    ResponseCache,
    generate_cache_key,
)
from basketllm.exceptions import CacheUnavailableError
from basketllm.types import LLMResponse, Message, TokenUsage
from basketllm.utils.background import BackgroundWrites


def make_response(content: str = "Aldi is cheapest") -> LLMResponse:
    return LLMResponse(
        content=content,
        usage=TokenUsage(input_tokens=10, output_tokens=5, total_tokens=15),
        model="deepseek-chat",
        provider="deepseek",
        finish_reason="stop",
    )


class DictCacheStore(CacheStore):
    """Durable store kept in a dict."""

    def __init__(self) -> None:
        self.rows: dict[str, CacheEntry] = {}
        self.reads = 0

    async def get(self, key: str, now: datetime) -> Optional[CacheEntry]:
        self.reads += 1
        entry = self.rows.get(key)
        if entry is None or entry.is_expired(now):
            return None
        return entry

    async def upsert(self, entry: CacheEntry) -> None:
        self.rows[entry.key] = entry

    async def purge_expired(self, now: datetime) -> int:
        expired = [key for key, entry in self.rows.items() if entry.is_expired(now)]
        for key in expired:
            del self.rows[key]
        return len(expired)


class BrokenCacheStore(CacheStore):
    """Durable store that is always down."""

    async def get(self, key, now):
        raise CacheUnavailableError("connection refused")

    async def upsert(self, entry):
        raise CacheUnavailableError("connection refused")

    async def purge_expired(self, now):
        raise CacheUnavailableError("connection refused")


class TestCacheKey:
    """Test cache key generation."""

    @pytest.fixture
    def messages(self):
        return [Message.system("You match products."), Message.user("2 pints milk")]

    def test_deterministic(self, messages):
        key1 = generate_cache_key("deepseek-chat", messages, 0.3)
        key2 = generate_cache_key(
            "deepseek-chat",
            [Message.system("You match products."), Message.user("2 pints milk")],
            0.3,
        )
        assert key1 == key2
        assert len(key1) == 64

    def test_model_changes_key(self, messages):
        assert generate_cache_key("deepseek-chat", messages, 0.3) != generate_cache_key("gpt-4o", messages, 0.3)

    def test_temperature_changes_key(self, messages):
        assert generate_cache_key("deepseek-chat", messages, 0.3) != generate_cache_key("deepseek-chat", messages, 0.4)

    def test_content_changes_key(self, messages):
        other = [messages[0], Message.user("3 pints milk")]
        assert generate_cache_key("deepseek-chat", messages, 0.3) != generate_cache_key("deepseek-chat", other, 0.3)

    def test_role_changes_key(self):
        as_user = [Message.user("hello")]
        as_assistant = [Message.assistant("hello")]
        assert generate_cache_key("m", as_user) != generate_cache_key("m", as_assistant)

    def test_missing_temperature_defaults(self, messages):
        assert generate_cache_key("deepseek-chat", messages) == generate_cache_key("deepseek-chat", messages, 0.7)

    def test_image_content_in_key(self):
        a = [Message.with_image("Read", "data:image/png;base64,AAAA")]
        b = [Message.with_image("Read", "data:image/png;base64,BBBB")]
        assert generate_cache_key("gpt-4o", a) != generate_cache_key("gpt-4o", b)


class TestInMemoryCache:
    """Test in-memory cache."""

    async def test_set_and_get(self, dt_clock):
        cache = InMemoryCache(clock=dt_clock)
        await cache.set("k", "deepseek-chat", make_response(), ttl=60)

        entry = await cache.get("k")
        assert entry is not None
        assert entry.response.content == "Aldi is cheapest"
        assert entry.tokens == 15

    async def test_expiry_boundary(self, dt_clock):
        cache = InMemoryCache(clock=dt_clock)
        await cache.set("k", "deepseek-chat", make_response(), ttl=60)

        dt_clock.advance(59)
        assert await cache.get("k") is not None

        dt_clock.advance(1)
        assert await cache.get("k") is None
        assert len(cache) == 0

    async def test_lru_eviction(self, dt_clock):
        cache = InMemoryCache(CacheConfig(max_size=2), clock=dt_clock)
        await cache.set("a", "m", make_response("a"))
        await cache.set("b", "m", make_response("b"))
        # Touch "a" so "b" becomes least recently used
        await cache.get("a")
        await cache.set("c", "m", make_response("c"))

        assert await cache.get("b") is None
        assert await cache.get("a") is not None
        assert await cache.get("c") is not None

    async def test_overwrite_does_not_evict(self, dt_clock):
        cache = InMemoryCache(CacheConfig(max_size=2), clock=dt_clock)
        await cache.set("a", "m", make_response("a"))
        await cache.set("b", "m", make_response("b"))
        await cache.set("b", "m", make_response("b2"))

        assert len(cache) == 2
        assert (await cache.get("b")).response.content == "b2"

    async def test_sweep_expired(self, dt_clock):
        cache = InMemoryCache(clock=dt_clock)
        await cache.set("short", "m", make_response(), ttl=10)
        await cache.set("long", "m", make_response(), ttl=1000)

        dt_clock.advance(10)
        assert await cache.sweep_expired() == 1
        assert len(cache) == 1

    async def test_stats(self, dt_clock):
        cache = InMemoryCache(clock=dt_clock)
        await cache.set("k", "m", make_response())
        await cache.get("k")
        await cache.get("missing")

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5

    async def test_delete_and_clear(self, dt_clock):
        cache = InMemoryCache(clock=dt_clock)
        await cache.set("k", "m", make_response())
        assert await cache.delete("k")
        assert not await cache.delete("k")

        await cache.set("k", "m", make_response())
        await cache.clear()
        assert len(cache) == 0


class TestResponseCache:
    """Test the two-tier response cache."""

    async def test_round_trip_marks_cached(self, dt_clock):
        cache = ResponseCache(clock=dt_clock)
        await cache.set("k", "deepseek-chat", make_response())

        cached = await cache.get("k")
        assert cached is not None
        assert cached.cached is True
        assert cached.content == "Aldi is cheapest"

    async def test_reads_are_idempotent(self, dt_clock):
        cache = ResponseCache(clock=dt_clock)
        await cache.set("k", "deepseek-chat", make_response())

        first = await cache.get("k")
        second = await cache.get("k")
        assert first == second

    async def test_stored_copy_is_not_marked_cached(self, dt_clock):
        cache = ResponseCache(clock=dt_clock)
        await cache.set("k", "deepseek-chat", make_response().model_copy(update={"cached": True}))

        entry = await cache.memory.get("k")
        assert entry.response.cached is False

    async def test_expired_entry_is_a_miss(self, dt_clock):
        cache = ResponseCache(CacheConfig(ttl=900), clock=dt_clock)
        await cache.set("k", "deepseek-chat", make_response())

        dt_clock.advance(900)
        assert await cache.get("k") is None

    async def test_disabled_cache(self, dt_clock):
        cache = ResponseCache(CacheConfig(enabled=False), clock=dt_clock)
        await cache.set("k", "deepseek-chat", make_response())
        assert await cache.get("k") is None

    async def test_write_through_to_store(self, dt_clock):
        store = DictCacheStore()
        writes = BackgroundWrites()
        cache = ResponseCache(store=store, writes=writes, clock=dt_clock)

        await cache.set("k", "deepseek-chat", make_response())
        await writes.drain()

        assert "k" in store.rows
        assert store.rows["k"].model == "deepseek-chat"
        assert store.rows["k"].expires_at == dt_clock.now + timedelta(seconds=900)

    async def test_promotes_durable_hit(self, dt_clock):
        store = DictCacheStore()
        now = dt_clock.now
        store.rows["k"] = CacheEntry(
            key="k",
            model="deepseek-chat",
            response=make_response(),
            created_at=now,
            expires_at=now + timedelta(seconds=120),
            tokens=15,
        )
        cache = ResponseCache(store=store, clock=dt_clock)

        cached = await cache.get("k")
        assert cached is not None and cached.cached is True

        # Served from memory now
        await cache.get("k")
        assert store.reads == 1

    async def test_promoted_entry_never_outlives_row(self, dt_clock):
        store = DictCacheStore()
        now = dt_clock.now
        store.rows["k"] = CacheEntry(
            key="k",
            model="deepseek-chat",
            response=make_response(),
            created_at=now,
            expires_at=now + timedelta(seconds=120),
        )
        cache = ResponseCache(CacheConfig(ttl=900), store=store, clock=dt_clock)

        await cache.get("k")
        entry = await cache.memory.get("k")
        assert entry.expires_at == now + timedelta(seconds=120)

        dt_clock.advance(120)
        assert await cache.get("k") is None

    async def test_store_read_failure_is_a_miss(self, dt_clock):
        cache = ResponseCache(store=BrokenCacheStore(), clock=dt_clock)

        assert await cache.get("k") is None
        assert cache.get_stats()["durable_failures"] == 1

    async def test_store_write_failure_keeps_memory(self, dt_clock):
        writes = BackgroundWrites()
        cache = ResponseCache(store=BrokenCacheStore(), writes=writes, clock=dt_clock)

        await cache.set("k", "deepseek-chat", make_response())
        await writes.drain()

        assert writes.failures == 1
        cached = await cache.get("k")
        assert cached is not None and cached.cached is True

    async def test_purge_expired(self, dt_clock):
        store = DictCacheStore()
        writes = BackgroundWrites()
        cache = ResponseCache(CacheConfig(ttl=60), store=store, writes=writes, clock=dt_clock)
        await cache.set("k", "deepseek-chat", make_response())
        await writes.drain()

        dt_clock.advance(61)
        assert await cache.purge_expired() == 1
        assert store.rows == {}

    async def test_purge_failure_returns_zero(self, dt_clock):
        cache = ResponseCache(store=BrokenCacheStore(), clock=dt_clock)
        assert await cache.purge_expired() == 0

    async def test_sweep(self, dt_clock):
        cache = ResponseCache(CacheConfig(ttl=60), clock=dt_clock)
        await cache.set("k", "deepseek-chat", make_response())
        dt_clock.advance(60)
        assert await cache.sweep() == 1


class TestExplicitTTL:
    """Test that an explicit ttl is honoured even when zero."""

    async def test_zero_ttl_in_memory(self, dt_clock):
        cache = InMemoryCache(CacheConfig(ttl=900), clock=dt_clock)
        entry = await cache.set("k", "deepseek-chat", make_response(), ttl=0)

        assert entry.expires_at == dt_clock.now
        assert await cache.get("k") is None

    async def test_zero_ttl_write_through(self, dt_clock):
        store = DictCacheStore()
        writes = BackgroundWrites()
        cache = ResponseCache(CacheConfig(ttl=900), store=store, writes=writes, clock=dt_clock)

        await cache.set("k", "deepseek-chat", make_response(), ttl=0)
        await writes.drain()

        assert store.rows["k"].expires_at == dt_clock.now
        assert await cache.get("k") is None


class TestConcurrentAccess:
    """Test concurrent writers and readers on one key."""

    async def test_concurrent_set_and_get_same_key(self, dt_clock):
        store = DictCacheStore()
        writes = BackgroundWrites()
        cache = ResponseCache(store=store, writes=writes, clock=dt_clock)
        contents = [f"answer {i}" for i in range(20)]

        async def write(content):
            await cache.set("k", "deepseek-chat", make_response(content))

        results = await asyncio.gather(
            *(write(content) for content in contents),
            *(cache.get("k") for _ in range(20)),
        )
        await writes.drain()

        for read in results[len(contents):]:
            assert read is None or (read.cached is True and read.content in contents)

        final = await cache.get("k")
        assert final is not None
        assert final.content in contents
        assert len(cache.memory) == 1
        assert list(store.rows) == ["k"]
        assert store.rows["k"].response.content in contents

    async def test_concurrent_reads_agree(self, dt_clock):
        cache = ResponseCache(clock=dt_clock)
        await cache.set("k", "deepseek-chat", make_response())

        reads = await asyncio.gather(*(cache.get("k") for _ in range(25)))

        assert all(read == reads[0] for read in reads)
        assert reads[0].content == "Aldi is cheapest"
