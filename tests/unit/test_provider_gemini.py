"""Tests for the Gemini provider."""

import json

import httpx
import pytest
import respx

from basketllm.exceptions import APIError, RateLimitError
from basketllm.providers import GeminiProvider
from basketllm.types import ChatOptions, Message

BASE = "https://generativelanguage.googleapis.com/v1beta/models"
PRIMARY_URL = f"{BASE}/gemini-2.0-flash:generateContent"
FALLBACK_URL = f"{BASE}/gemini-1.5-flash:generateContent"


def gemini_body(text: str = '{"storeName": "Tesco"}', finish_reason: str = "STOP") -> dict:
    return {
        "candidates": [
            {
                "content": {"role": "model", "parts": [{"text": text}]},
                "finishReason": finish_reason,
            }
        ],
        "usageMetadata": {"promptTokenCount": 800, "candidatesTokenCount": 200},
    }


class TestGeminiTransform:
    """Test request and response transformation."""

    @pytest.fixture
    def provider(self, key_resolver):
        return GeminiProvider(key_resolver=key_resolver)

    def test_system_instruction(self, provider):
        data = provider.transform_request(
            [
                Message.system("You read receipts."),
                Message.user("Hi"),
                Message.assistant("Send the photo"),
            ],
            ChatOptions(),
            "gemini-2.0-flash",
        )

        assert data["systemInstruction"] == {"parts": [{"text": "You read receipts."}]}
        assert [c["role"] for c in data["contents"]] == ["user", "model"]

    def test_data_uri_becomes_inline_data(self, provider):
        data = provider.transform_request(
            [Message.with_image("Read this", "data:image/jpeg;base64,QUJD")],
            ChatOptions(),
            "gemini-2.0-flash",
        )
        parts = data["contents"][0]["parts"]
        assert parts[0] == {"text": "Read this"}
        assert parts[1] == {"inlineData": {"mimeType": "image/jpeg", "data": "QUJD"}}

    def test_remote_image_becomes_text(self, provider):
        data = provider.transform_request(
            [Message.with_image("Read this", "https://example.com/receipt.jpg")],
            ChatOptions(),
            "gemini-2.0-flash",
        )
        assert data["contents"][0]["parts"][1] == {"text": "[Image URL: https://example.com/receipt.jpg]"}

    def test_generation_config(self, provider):
        data = provider.transform_request(
            [Message.user("Hi")],
            ChatOptions(temperature=0.1, max_tokens=4000, top_p=0.9, stop=["END"], response_format="json"),
            "gemini-2.0-flash",
        )
        assert data["generationConfig"] == {
            "temperature": 0.1,
            "maxOutputTokens": 4000,
            "topP": 0.9,
            "stopSequences": ["END"],
            "responseMimeType": "application/json",
        }

    def test_safety_finish_reason(self, provider):
        response = provider.transform_response(gemini_body(finish_reason="SAFETY"), "gemini-2.0-flash")
        assert response.finish_reason == "content_filter"

    def test_supports_vision(self, provider):
        assert provider.supports_vision()


class TestGeminiChat:
    """Test the HTTP round trip and the quota fallback."""

    @pytest.fixture
    def provider(self, key_resolver):
        return GeminiProvider(key_resolver=key_resolver)

    @respx.mock
    async def test_chat_success(self, provider):
        route = respx.post(PRIMARY_URL).mock(return_value=httpx.Response(200, json=gemini_body()))

        response = await provider.chat([Message.user("Hi")])

        assert response.content == '{"storeName": "Tesco"}'
        assert response.model == "gemini-2.0-flash"
        assert response.provider == "gemini"
        assert response.usage.input_tokens == 800
        assert response.usage.output_tokens == 200
        assert route.calls.last.request.headers["x-goog-api-key"] == "gemini-test-key"

    @respx.mock
    async def test_quota_error_retries_once_with_fallback(self, provider):
        primary = respx.post(PRIMARY_URL).mock(
            return_value=httpx.Response(429, json={"error": {"message": "Quota exceeded"}})
        )
        fallback = respx.post(FALLBACK_URL).mock(return_value=httpx.Response(200, json=gemini_body()))

        response = await provider.chat([Message.user("Hi")])

        assert primary.call_count == 1
        assert fallback.call_count == 1
        assert response.model == "gemini-1.5-flash"
        assert "gemini-1.5-flash" in str(fallback.calls.last.request.url)

    @respx.mock
    async def test_quota_error_on_fallback_propagates(self, provider):
        primary = respx.post(PRIMARY_URL).mock(return_value=httpx.Response(429, json={}))
        fallback = respx.post(FALLBACK_URL).mock(return_value=httpx.Response(429, json={}))

        with pytest.raises(RateLimitError):
            await provider.chat([Message.user("Hi")])

        assert primary.call_count == 1
        assert fallback.call_count == 1

    @respx.mock
    async def test_other_errors_not_retried(self, provider):
        respx.post(PRIMARY_URL).mock(return_value=httpx.Response(500, json={"error": {"message": "boom"}}))
        fallback = respx.post(FALLBACK_URL).mock(return_value=httpx.Response(200, json=gemini_body()))

        with pytest.raises(APIError):
            await provider.chat([Message.user("Hi")])

        assert not fallback.called

    @respx.mock
    async def test_no_retry_when_already_on_fallback_model(self, provider):
        fallback = respx.post(FALLBACK_URL).mock(return_value=httpx.Response(429, json={}))

        with pytest.raises(RateLimitError):
            await provider.chat([Message.user("Hi")], ChatOptions(model="gemini-1.5-flash"))

        assert fallback.call_count == 1

    @respx.mock
    async def test_fallback_disabled(self, key_resolver):
        provider = GeminiProvider(key_resolver=key_resolver, quota_fallback_model=None)
        respx.post(PRIMARY_URL).mock(return_value=httpx.Response(429, json={}))

        with pytest.raises(RateLimitError):
            await provider.chat([Message.user("Hi")])

    @respx.mock
    async def test_request_body(self, provider):
        route = respx.post(PRIMARY_URL).mock(return_value=httpx.Response(200, json=gemini_body()))

        await provider.chat(
            [Message.system("You read receipts."), Message.with_image("Read", "data:image/png;base64,AAAA")],
            ChatOptions(temperature=0.1),
        )

        body = json.loads(route.calls.last.request.content)
        assert body["systemInstruction"]["parts"][0]["text"] == "You read receipts."
        assert body["contents"][0]["parts"][1]["inlineData"]["mimeType"] == "image/png"
        assert body["generationConfig"]["temperature"] == 0.1
