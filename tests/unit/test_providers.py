"""Tests for provider adapters."""

import json
from decimal import Decimal

import httpx
import pytest
import respx

from basketllm.exceptions import (
    APIConnectionError,
    APIError,
    APITimeoutError,
    AuthenticationError,
    ConfigurationError,
    RateLimitError,
    ServiceUnavailableError,
)
from basketllm.providers import (
    AnthropicProvider,
    DeepSeekProvider,
    EnvKeyResolver,
    OpenAIProvider,
    ProviderRegistry,
    StaticKeyResolver,
)
from basketllm.types import ChatOptions, Message

DEEPSEEK_URL = "https://api.deepseek.com/v1/chat/completions"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"


def openai_style_body(content: str = "Hello!", finish_reason: str = "stop") -> dict:
    return {
        "id": "chatcmpl-123",
        "object": "chat.completion",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": finish_reason,
            }
        ],
        "usage": {"prompt_tokens": 1000, "completion_tokens": 500, "total_tokens": 1500},
    }


class TestProviderRegistry:
    def test_registered_providers(self):
        assert set(ProviderRegistry.list_providers()) >= {"deepseek", "openai", "gemini", "anthropic"}

    @pytest.mark.parametrize("model,provider", [
        ("deepseek-chat", "deepseek"),
        ("deepseek-coder", "deepseek"),
        ("gpt-4o-mini", "openai"),
        ("gpt-4-vision-preview", "openai"),
        ("gemini-1.5-pro", "gemini"),
        ("claude-haiku-3.5", "anthropic"),
    ])
    def test_provider_for_model(self, model, provider):
        assert ProviderRegistry.provider_for_model(model) == provider

    def test_unknown_model(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ProviderRegistry.provider_for_model("llama-3-70b")
        assert exc_info.value.code == "unknown_model"

    def test_get_unknown_provider(self):
        with pytest.raises(KeyError):
            ProviderRegistry.get("mistral")


class TestKeyResolvers:
    async def test_env_resolver_prefixes(self):
        resolver = EnvKeyResolver({
            "DEEPSEEK_API_KEY": "sk-deepseek",
            "OPENAI_API_KEY": "sk-openai",
            "GOOGLE_API_KEY": "google-key",
        })
        assert await resolver("deepseek-chat") == "sk-deepseek"
        assert await resolver("gpt-4-vision") == "sk-openai"
        assert await resolver("gemini") == "google-key"
        assert await resolver("claude") is None
        assert await resolver("unknown") is None

    async def test_env_resolver_ignores_blank(self):
        resolver = EnvKeyResolver({"GEMINI_API_KEY": "  ", "GOOGLE_API_KEY": "google-key"})
        assert await resolver("gemini") == "google-key"

    async def test_static_resolver_fallback(self):
        resolver = StaticKeyResolver(
            {"deepseek-chat": "sk-static"},
            fallback=EnvKeyResolver({"OPENAI_API_KEY": "sk-env"}),
        )
        assert await resolver("deepseek-chat") == "sk-static"
        assert await resolver("gpt-4-vision") == "sk-env"


class TestDeepSeekProvider:
    """Test DeepSeek provider."""

    @pytest.fixture
    def provider(self, key_resolver):
        return DeepSeekProvider(key_resolver=key_resolver)

    def test_defaults(self, provider):
        assert provider.provider_name == "deepseek"
        assert provider.default_model == "deepseek-chat"
        assert provider.timeout == 30.0
        assert not provider.supports_vision()

    def test_transform_request_flattens_images(self, provider):
        messages = [
            Message.system("You match products."),
            Message.with_image("What is this?", "data:image/png;base64,AAAA"),
        ]
        data = provider.transform_request(messages, ChatOptions(), "deepseek-chat")

        assert data["messages"] == [
            {"role": "system", "content": "You match products."},
            {"role": "user", "content": "What is this?"},
        ]
        assert data["temperature"] == 0.7
        assert data["max_tokens"] == 1000
        assert "top_p" not in data
        assert "stop" not in data

    def test_transform_request_json_mode(self, provider):
        data = provider.transform_request(
            [Message.user("milk")],
            ChatOptions(response_format="json", temperature=0.0, max_tokens=50, stop=["\n\n"]),
            "deepseek-chat",
        )
        assert data["response_format"] == {"type": "json_object"}
        assert data["temperature"] == 0.0
        assert data["max_tokens"] == 50
        assert data["stop"] == ["\n\n"]

    @respx.mock
    async def test_chat_success(self, provider):
        route = respx.post(DEEPSEEK_URL).mock(return_value=httpx.Response(200, json=openai_style_body()))

        response = await provider.chat([Message.user("Hi")])

        assert response.content == "Hello!"
        assert response.provider == "deepseek"
        assert response.model == "deepseek-chat"
        assert response.finish_reason == "stop"
        assert response.usage.total_tokens == 1500
        assert response.usage.cost == Decimal("0.00028")

        request = route.calls.last.request
        assert request.headers["Authorization"].startswith("Bearer sk-")
        assert json.loads(request.content)["model"] == "deepseek-chat"

    @pytest.mark.parametrize("vendor_reason,finish_reason", [
        ("stop", "stop"),
        ("length", "length"),
        ("content_filter", "content_filter"),
    ])
    @respx.mock
    async def test_finish_reason_mapping(self, provider, vendor_reason, finish_reason):
        respx.post(DEEPSEEK_URL).mock(
            return_value=httpx.Response(200, json=openai_style_body(finish_reason=vendor_reason))
        )
        response = await provider.chat([Message.user("Hi")])
        assert response.finish_reason == finish_reason

    @pytest.mark.parametrize("body", [{"choices": []}, {"error_free": True}])
    @respx.mock
    async def test_missing_choices(self, provider, body):
        respx.post(DEEPSEEK_URL).mock(return_value=httpx.Response(200, json=body))
        with pytest.raises(APIError):
            await provider.chat([Message.user("Hi")])

    @respx.mock
    async def test_model_from_options(self, provider):
        route = respx.post(DEEPSEEK_URL).mock(return_value=httpx.Response(200, json=openai_style_body()))

        response = await provider.chat([Message.user("Hi")], ChatOptions(model="deepseek-reasoner"))

        assert response.model == "deepseek-reasoner"
        assert json.loads(route.calls.last.request.content)["model"] == "deepseek-reasoner"

    @pytest.mark.parametrize("key", [None, "", "pk-1234567890abcdefghijkl", "sk-short"])
    async def test_invalid_key(self, key):
        provider = DeepSeekProvider(key_resolver=StaticKeyResolver({"deepseek-chat": key}))

        assert not await provider.is_available()
        with pytest.raises(ConfigurationError):
            await provider.chat([Message.user("Hi")])

    async def test_resolver_failure_is_configuration_error(self):
        async def broken(model_id):
            raise ConnectionError("secrets store down")

        provider = DeepSeekProvider(key_resolver=broken)
        with pytest.raises(ConfigurationError):
            await provider.get_api_key()

    async def test_key_is_memoized(self):
        lookups = []

        async def resolver(model_id):
            lookups.append(model_id)
            return "sk-deepseek-test-key-0123456789"

        provider = DeepSeekProvider(key_resolver=resolver)
        await provider.get_api_key()
        await provider.get_api_key()
        assert lookups == ["deepseek-chat"]

        provider.reset_api_key()
        await provider.get_api_key()
        assert len(lookups) == 2

    @respx.mock
    async def test_authentication_error(self, provider):
        respx.post(DEEPSEEK_URL).mock(
            return_value=httpx.Response(401, json={"error": {"message": "Invalid API key"}})
        )
        with pytest.raises(AuthenticationError) as exc_info:
            await provider.chat([Message.user("Hi")])
        assert exc_info.value.message == "Invalid API key"
        assert exc_info.value.provider == "deepseek"

    @respx.mock
    async def test_rate_limit_error(self, provider):
        respx.post(DEEPSEEK_URL).mock(
            return_value=httpx.Response(
                429,
                json={"error": {"message": "Too many requests"}},
                headers={"retry-after": "12"},
            )
        )
        with pytest.raises(RateLimitError) as exc_info:
            await provider.chat([Message.user("Hi")])
        assert exc_info.value.retry_after == 12

    @respx.mock
    async def test_server_error(self, provider):
        respx.post(DEEPSEEK_URL).mock(return_value=httpx.Response(500, text="upstream exploded"))
        with pytest.raises(APIError) as exc_info:
            await provider.chat([Message.user("Hi")])
        assert exc_info.value.message == "upstream exploded"

    @respx.mock
    async def test_service_unavailable(self, provider):
        respx.post(DEEPSEEK_URL).mock(return_value=httpx.Response(503, json={"error": "overloaded"}))
        with pytest.raises(ServiceUnavailableError):
            await provider.chat([Message.user("Hi")])

    @respx.mock
    async def test_timeout(self, provider):
        respx.post(DEEPSEEK_URL).mock(side_effect=httpx.ReadTimeout("timed out"))
        with pytest.raises(APITimeoutError):
            await provider.chat([Message.user("Hi")])

    @respx.mock
    async def test_connection_error(self, provider):
        respx.post(DEEPSEEK_URL).mock(side_effect=httpx.ConnectError("connection refused"))
        with pytest.raises(APIConnectionError):
            await provider.chat([Message.user("Hi")])

    @respx.mock
    async def test_malformed_json(self, provider):
        respx.post(DEEPSEEK_URL).mock(return_value=httpx.Response(200, content=b"<html>oops</html>"))
        with pytest.raises(APIError):
            await provider.chat([Message.user("Hi")])

    @respx.mock
    async def test_custom_api_base(self, key_resolver):
        provider = DeepSeekProvider(key_resolver=key_resolver, api_base="https://deepseek.internal/")
        route = respx.post("https://deepseek.internal/v1/chat/completions").mock(
            return_value=httpx.Response(200, json=openai_style_body())
        )
        await provider.chat([Message.user("Hi")])
        assert route.called


class TestOpenAIProvider:
    """Test OpenAI provider."""

    @pytest.fixture
    def provider(self, key_resolver):
        return OpenAIProvider(key_resolver=key_resolver)

    def test_supports_vision(self, provider):
        assert provider.supports_vision("gpt-4o")
        assert provider.supports_vision("gpt-4o-mini")
        assert provider.supports_vision("gpt-4-vision-preview")
        assert not provider.supports_vision("gpt-3.5-turbo")

    def test_vision_content_preserved(self, provider):
        messages = [Message.with_image("Read this receipt", "data:image/jpeg;base64,AAAA", detail="high")]
        data = provider.transform_request(messages, ChatOptions(), "gpt-4o")

        content = data["messages"][0]["content"]
        assert content[0] == {"type": "text", "text": "Read this receipt"}
        assert content[1] == {
            "type": "image_url",
            "image_url": {"url": "data:image/jpeg;base64,AAAA", "detail": "high"},
        }

    def test_non_vision_model_flattened(self, provider):
        messages = [Message.with_image("Read this receipt", "data:image/jpeg;base64,AAAA")]
        data = provider.transform_request(messages, ChatOptions(), "gpt-3.5-turbo")
        assert data["messages"] == [{"role": "user", "content": "Read this receipt"}]

    def test_organization_header(self, key_resolver):
        provider = OpenAIProvider(key_resolver=key_resolver, organization="org-basket")
        assert provider.get_headers("sk-test")["OpenAI-Organization"] == "org-basket"

    @respx.mock
    async def test_chat_success(self, provider):
        route = respx.post(OPENAI_URL).mock(
            return_value=httpx.Response(200, json=openai_style_body(finish_reason="content_filter"))
        )

        response = await provider.chat([Message.user("Hi")], ChatOptions(response_format="json"))

        assert response.provider == "openai"
        assert response.model == "gpt-4o"
        assert response.finish_reason == "content_filter"
        # 1000 * 2.50/M + 500 * 10.00/M
        assert response.usage.cost == Decimal("0.0075")
        body = json.loads(route.calls.last.request.content)
        assert body["response_format"] == {"type": "json_object"}
        assert route.calls.last.request.headers["Authorization"] == "Bearer sk-openai-test"

    @respx.mock
    async def test_missing_choices(self, provider):
        respx.post(OPENAI_URL).mock(return_value=httpx.Response(200, json={"choices": []}))
        with pytest.raises(APIError):
            await provider.chat([Message.user("Hi")])


class TestAnthropicProvider:
    """Test Anthropic provider."""

    @pytest.fixture
    def provider(self, key_resolver):
        return AnthropicProvider(key_resolver=key_resolver)

    def test_headers(self, provider):
        headers = provider.get_headers("sk-ant-test")
        assert headers["x-api-key"] == "sk-ant-test"
        assert headers["anthropic-version"] == "2023-06-01"

    def test_system_prompt_is_top_level(self, provider):
        data = provider.transform_request(
            [Message.system("Be brief."), Message.user("Hi")],
            ChatOptions(stop=["END"]),
            "claude-haiku-3.5",
        )
        assert data["system"] == "Be brief."
        assert data["messages"] == [{"role": "user", "content": "Hi"}]
        assert data["stop_sequences"] == ["END"]

    def test_image_blocks(self, provider):
        data = provider.transform_request(
            [Message.with_image("Read", "data:image/png;base64,AAAA")],
            ChatOptions(),
            "claude-sonnet-4-20250514",
        )
        blocks = data["messages"][0]["content"]
        assert blocks[1] == {
            "type": "image",
            "source": {"type": "base64", "media_type": "image/png", "data": "AAAA"},
        }

    @respx.mock
    async def test_chat_success(self, provider):
        respx.post(ANTHROPIC_URL).mock(return_value=httpx.Response(200, json={
            "content": [{"type": "text", "text": "Hello"}, {"type": "text", "text": " there"}],
            "stop_reason": "max_tokens",
            "usage": {"input_tokens": 10, "output_tokens": 5},
        }))

        response = await provider.chat([Message.user("Hi")])

        assert response.content == "Hello there"
        assert response.finish_reason == "length"
        assert response.provider == "anthropic"
        assert response.usage.total_tokens == 15

    async def test_unavailable_without_key(self):
        provider = AnthropicProvider(key_resolver=EnvKeyResolver({}))
        assert not await provider.is_available()
