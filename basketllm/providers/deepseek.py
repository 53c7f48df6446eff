"""DeepSeek provider adapter."""

from typing import Any

from basketllm.exceptions import ConfigurationError
from basketllm.types import ChatOptions, LLMResponse, Message

from .base import BaseProvider, ProviderCapabilities
from .openai import FINISH_REASON_MAP
from .registry import register_provider


@register_provider("deepseek", models=["deepseek-chat", "deepseek-reasoner", "deepseek-*"])
class DeepSeekProvider(BaseProvider):
    """DeepSeek API provider adapter.

    The API is OpenAI-compatible but text-only: content parts are flattened
    to their text before sending.
    """

    display_name = "DeepSeek"
    default_model = "deepseek-chat"
    key_id = "deepseek-chat"
    default_api_base = "https://api.deepseek.com"
    base_url_env = "DEEPSEEK_BASE_URL"
    default_timeout = 30.0
    capabilities = ProviderCapabilities(chat=True, vision=False, json_mode=True)

    def validate_api_key(self, key: str) -> None:
        if not key.startswith("sk-") or len(key) < 20:
            raise ConfigurationError("Invalid DeepSeek API key format")

    def get_headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def chat_path(self, model: str) -> str:
        return "/v1/chat/completions"

    def transform_request(
        self,
        messages: list[Message],
        options: ChatOptions,
        model: str,
    ) -> dict[str, Any]:
        data: dict[str, Any] = {
            "model": model,
            "messages": self.flatten_messages(messages),
            "temperature": (
                options.temperature if options.temperature is not None else self.default_temperature
            ),
            "max_tokens": options.max_tokens or self.default_max_tokens,
            "top_p": options.top_p,
            "stop": options.stop,
        }

        if options.response_format == "json":
            data["response_format"] = {"type": "json_object"}

        # Remove None values
        return {k: v for k, v in data.items() if v is not None}

    def transform_response(self, data: dict[str, Any], model: str) -> LLMResponse:
        choice = data["choices"][0]
        usage = data.get("usage") or {}

        return LLMResponse(
            content=choice["message"].get("content") or "",
            usage=self.build_usage(
                model,
                usage.get("prompt_tokens", 0),
                usage.get("completion_tokens", 0),
            ),
            model=model,
            provider=self.provider_name,
            finish_reason=FINISH_REASON_MAP.get(choice.get("finish_reason"), "stop"),
        )

