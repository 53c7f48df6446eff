"""Response caching for basketllm."""

from .base import CacheConfig, CacheEntry, CacheStore, DEFAULT_TTL, generate_cache_key
from .memory import InMemoryCache
from .tiered import ResponseCache

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheStore",
    "DEFAULT_TTL",
    "generate_cache_key",
    "InMemoryCache",
    "ResponseCache",
]
