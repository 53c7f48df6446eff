"""Base cache interface."""

import hashlib
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from basketllm.types import LLMResponse, Message


DEFAULT_TTL = 900  # 15 minutes
DEFAULT_TEMPERATURE = 0.7


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheConfig:
    """Cache configuration.

    Attributes:
        enabled: Whether caching is enabled
        ttl: Time to live in seconds
        max_size: Maximum number of in-process entries (None for unbounded)
    """
    enabled: bool = True
    ttl: int = DEFAULT_TTL
    max_size: Optional[int] = None


@dataclass
class CacheEntry:
    """Cache entry.

    Attributes:
        key: Cache key
        model: Model id the response was generated with
        response: Cached response
        created_at: Creation timestamp
        expires_at: Expiration timestamp
        tokens: Total token count of the response
    """
    key: str
    model: str
    response: LLMResponse
    created_at: datetime
    expires_at: datetime
    tokens: int = 0

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """An entry is expired from its expiry instant onwards."""
        return (now or utcnow()) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "model": self.model,
            "response": self.response.model_dump(mode="json"),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "tokens": self.tokens,
        }


def generate_cache_key(
    model: str,
    messages: Iterable[Message],
    temperature: Optional[float] = None,
) -> str:
    """Generate a deterministic cache key.

    The key is a SHA-256 over the model id, each message's role and content
    (list content serialized canonically) and the temperature, which
    defaults to 0.7 when unset.
    """
    data = {
        "model": model,
        "messages": [
            {"role": msg.role, "content": msg.cache_content()}
            for msg in messages
        ],
        "temperature": DEFAULT_TEMPERATURE if temperature is None else temperature,
    }
    json_str = json.dumps(data, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(json_str.encode()).hexdigest()


class CacheStore(ABC):
    """Durable tier of the response cache."""

    @abstractmethod
    async def get(self, key: str, now: datetime) -> Optional[CacheEntry]:
        """Return the entry for ``key`` if it has not expired at ``now``."""

    @abstractmethod
    async def upsert(self, entry: CacheEntry) -> None:
        """Insert or replace the entry stored under ``entry.key``."""

    @abstractmethod
    async def purge_expired(self, now: datetime) -> int:
        """Delete expired rows and return how many were removed."""
