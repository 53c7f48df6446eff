"""Google Gemini provider adapter."""

import logging
import re
from typing import Any, Optional

from basketllm.exceptions import RateLimitError
from basketllm.types import ChatOptions, LLMResponse, Message

from .base import BaseProvider, ProviderCapabilities
from .registry import register_provider

logger = logging.getLogger(__name__)

DATA_URI_RE = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)

FINISH_REASON_MAP = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
}


@register_provider("gemini", models=["gemini-2.0-flash", "gemini-1.5-flash", "gemini-1.5-pro", "gemini-*"])
class GeminiProvider(BaseProvider):
    """Google Gemini provider (AI Studio ``generateContent``).

    Every Gemini model accepts images. A quota rejection (HTTP 429) is
    retried exactly once against ``quota_fallback_model``; any other error
    propagates immediately.
    """

    display_name = "Google Gemini"
    default_model = "gemini-2.0-flash"
    key_id = "gemini"
    default_api_base = "https://generativelanguage.googleapis.com/v1beta"
    base_url_env = "GEMINI_BASE_URL"
    default_timeout = 60.0
    capabilities = ProviderCapabilities(chat=True, vision=True, json_mode=True)

    def __init__(self, *args: Any, quota_fallback_model: Optional[str] = "gemini-1.5-flash", **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.quota_fallback_model = quota_fallback_model

    def get_headers(self, api_key: str) -> dict[str, str]:
        return {
            "x-goog-api-key": api_key,
            "Content-Type": "application/json",
        }

    def chat_path(self, model: str) -> str:
        return f"/models/{model}:generateContent"

    def _convert_content(self, message: Message) -> list[dict[str, Any]]:
        """Convert message content to Gemini parts."""
        if isinstance(message.content, str):
            return [{"text": message.content}]

        parts: list[dict[str, Any]] = []
        for part in message.content:
            if part.type == "text":
                parts.append({"text": part.text or ""})
                continue

            url = part.image_url["url"]
            match = DATA_URI_RE.match(url)
            if match:
                parts.append({"inlineData": {"mimeType": match.group(1), "data": match.group(2)}})
            else:
                # Remote image URLs are not fetched
                parts.append({"text": f"[Image URL: {url}]"})
        return parts

    def transform_request(
        self,
        messages: list[Message],
        options: ChatOptions,
        model: str,
    ) -> dict[str, Any]:
        system_instruction: Optional[str] = None
        contents = []

        for msg in messages:
            if msg.role == "system":
                system_instruction = msg.text_content()
                continue
            contents.append({
                "role": "model" if msg.role == "assistant" else "user",
                "parts": self._convert_content(msg),
            })

        generation_config: dict[str, Any] = {
            "temperature": (
                options.temperature if options.temperature is not None else self.default_temperature
            ),
            "maxOutputTokens": options.max_tokens or self.default_max_tokens,
        }
        if options.top_p is not None:
            generation_config["topP"] = options.top_p
        if options.stop:
            generation_config["stopSequences"] = options.stop
        if options.response_format == "json":
            generation_config["responseMimeType"] = "application/json"

        body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config,
        }
        if system_instruction:
            body["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        return body

    def transform_response(self, data: dict[str, Any], model: str) -> LLMResponse:
        candidates = data.get("candidates") or [{}]
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        usage = data.get("usageMetadata") or {}

        return LLMResponse(
            content="".join(part.get("text", "") for part in parts),
            usage=self.build_usage(
                model,
                usage.get("promptTokenCount", 0),
                usage.get("candidatesTokenCount", 0),
            ),
            model=model,
            provider=self.provider_name,
            finish_reason=FINISH_REASON_MAP.get(candidate.get("finishReason"), "stop"),
        )

    async def chat(
        self,
        messages: list[Message],
        options: Optional[ChatOptions] = None,
    ) -> LLMResponse:
        options = options or ChatOptions()
        api_key = await self.get_api_key()
        model = options.model or self.default_model

        try:
            return await self._complete(messages, options, model, api_key)
        except RateLimitError:
            fallback = self.quota_fallback_model
            if not fallback or fallback == model:
                raise
            logger.warning("Gemini quota exceeded for %s, retrying once with %s", model, fallback)
            return await self._complete(messages, options, fallback, api_key)
