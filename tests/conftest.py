from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
import pytest

from basketllm.cache import ResponseCache
from basketllm.exceptions import BasketLLMError
from basketllm.orchestrator import Orchestrator
from basketllm.providers import BaseProvider, StaticKeyResolver
from basketllm.rate_limit import RateLimiter
from basketllm.types import ChatOptions, LLMResponse, Message
from basketllm.utils import token_counter

DEEPSEEK_TEST_KEY = "sk-deepseek-test-key-0123456789"


class FakeClock:
    """Unix-time clock advanced by hand."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateTimeClock:
    """Aware-datetime clock advanced by hand."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeProvider(BaseProvider):
    """Provider that answers from memory and records every call."""

    display_name = "Fake"
    default_model = "fake-model"

    def __init__(
        self,
        name: str,
        *,
        content: str = "ok",
        fail_with: Optional[BasketLLMError] = None,
        available: bool = True,
        delay: float = 0,
        input_tokens: int = 100,
        output_tokens: int = 50,
    ) -> None:
        super().__init__(key_resolver=StaticKeyResolver({}))
        self.provider_name = name
        self.content = content
        self.fail_with = fail_with
        self.available = available
        self.delay = delay
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.calls: list[tuple[list[Message], ChatOptions]] = []

    async def is_available(self) -> bool:
        return self.available

    async def chat(self, messages, options=None):
        options = options or ChatOptions()
        self.calls.append((messages, options))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        model = options.model or self.default_model
        return LLMResponse(
            content=self.content,
            usage=self.build_usage(model, self.input_tokens, self.output_tokens),
            model=model,
            provider=self.provider_name,
            finish_reason="stop",
        )

    def get_headers(self, api_key: str) -> dict[str, str]:
        return {}

    def chat_path(self, model: str) -> str:
        return "/chat"

    def transform_request(self, messages, options, model) -> dict[str, Any]:
        return {}

    def transform_response(self, data, model):
        raise NotImplementedError


class WordEncoding:
    """Stand-in tiktoken encoding: one token per whitespace-separated word."""

    name = "words"

    def encode(self, text: str, **kwargs: Any) -> list[str]:
        return text.split()


@pytest.fixture(autouse=True)
def offline_tokenizer(monkeypatch):
    """Keep tiktoken from downloading encodings during tests."""
    monkeypatch.setattr(token_counter, "load_encoding", lambda model: WordEncoding())
    monkeypatch.setattr(token_counter._default_counter, "_encoders", {})


@pytest.fixture
def clock():

    return FakeClock()


@pytest.fixture
def dt_clock():
    return FakeDateTimeClock()


@pytest.fixture
def make_provider():
    """Factory for fake providers."""
    return FakeProvider


@pytest.fixture
def key_resolver():
    return StaticKeyResolver({
        "deepseek-chat": DEEPSEEK_TEST_KEY,
        "gpt-4-vision": "sk-openai-test",
        "gemini": "gemini-test-key",
        "claude": "sk-ant-test",
    })


@pytest.fixture
def fake_providers():
    return {
        "deepseek": FakeProvider("deepseek", content="deepseek says hi"),
        "openai": FakeProvider("openai", content="openai says hi"),
        "gemini": FakeProvider("gemini", content='{"storeName": "Tesco"}'),
    }


@pytest.fixture
def orchestrator(fake_providers, clock):
    return Orchestrator(
        providers=fake_providers,
        cache=ResponseCache(),
        rate_limiter=RateLimiter(clock=clock),
    )


@pytest.fixture
async def client(test_app):
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
