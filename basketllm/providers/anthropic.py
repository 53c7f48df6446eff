"""Anthropic (Claude) provider adapter."""

import re
from typing import Any, Optional

from basketllm.types import ChatOptions, LLMResponse, Message

from .base import BaseProvider, ProviderCapabilities
from .registry import register_provider

DATA_URI_RE = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)

STOP_REASON_MAP = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "refusal": "content_filter",
}


@register_provider("anthropic", models=["claude-sonnet-4-20250514", "claude-haiku-3.5", "claude-*"])
class AnthropicProvider(BaseProvider):
    """Anthropic Messages API provider adapter.

    Only available when an ``ANTHROPIC_API_KEY`` (or a resolver entry for
    ``claude``) is configured.
    """

    display_name = "Anthropic"
    default_model = "claude-sonnet-4-20250514"
    key_id = "claude"
    default_api_base = "https://api.anthropic.com"
    base_url_env = "ANTHROPIC_BASE_URL"
    api_version = "2023-06-01"
    default_timeout = 60.0
    capabilities = ProviderCapabilities(chat=True, vision=True, json_mode=False)

    def get_headers(self, api_key: str) -> dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
        }

    def chat_path(self, model: str) -> str:
        return "/v1/messages"

    def _convert_content(self, message: Message) -> Any:
        if isinstance(message.content, str):
            return message.content

        blocks: list[dict[str, Any]] = []
        for part in message.content:
            if part.type == "text":
                blocks.append({"type": "text", "text": part.text or ""})
                continue

            url = part.image_url["url"]
            match = DATA_URI_RE.match(url)
            if match:
                blocks.append({
                    "type": "image",
                    "source": {"type": "base64", "media_type": match.group(1), "data": match.group(2)},
                })
            else:
                blocks.append({"type": "image", "source": {"type": "url", "url": url}})
        return blocks

    def transform_request(
        self,
        messages: list[Message],
        options: ChatOptions,
        model: str,
    ) -> dict[str, Any]:
        system_parts = [msg.text_content() for msg in messages if msg.role == "system"]
        data: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": msg.role, "content": self._convert_content(msg)}
                for msg in messages
                if msg.role != "system"
            ],
            "max_tokens": options.max_tokens or self.default_max_tokens,
            "temperature": (
                options.temperature if options.temperature is not None else self.default_temperature
            ),
        }
        if system_parts:
            data["system"] = "\n\n".join(system_parts)
        if options.top_p is not None:
            data["top_p"] = options.top_p
        if options.stop:
            data["stop_sequences"] = options.stop
        return data

    def transform_response(self, data: dict[str, Any], model: str) -> LLMResponse:
        usage = data.get("usage") or {}
        content = "".join(
            block.get("text", "") for block in data["content"] if block.get("type") == "text"
        )

        return LLMResponse(
            content=content,
            usage=self.build_usage(
                model,
                usage.get("input_tokens", 0),
                usage.get("output_tokens", 0),
            ),
            model=model,
            provider=self.provider_name,
            finish_reason=STOP_REASON_MAP.get(data.get("stop_reason"), "stop"),
        )
