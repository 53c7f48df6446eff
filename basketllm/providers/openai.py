"""OpenAI provider adapter."""

from typing import Any, Optional

from basketllm.types import ChatOptions, LLMResponse, Message

from .base import BaseProvider, ProviderCapabilities
from .registry import register_provider


FINISH_REASON_MAP = {
    "stop": "stop",
    "length": "length",
    "content_filter": "content_filter",
}


@register_provider("openai", models=["gpt-4o", "gpt-4o-mini", "gpt-4-vision*", "gpt-4o-*", "gpt-*"])
class OpenAIProvider(BaseProvider):
    """OpenAI API provider adapter."""

    display_name = "OpenAI"
    default_model = "gpt-4o"
    key_id = "gpt-4-vision"
    default_api_base = "https://api.openai.com/v1"
    base_url_env = "OPENAI_BASE_URL"
    default_timeout = 60.0
    capabilities = ProviderCapabilities(chat=True, vision=True, json_mode=True)

    def __init__(self, *args: Any, organization: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.organization = organization

    def supports_vision(self, model: Optional[str] = None) -> bool:
        model = model or self.default_model
        return "gpt-4o" in model or "gpt-4-vision" in model

    def get_headers(self, api_key: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if self.organization:
            headers["OpenAI-Organization"] = self.organization
        return headers

    def chat_path(self, model: str) -> str:
        return "/chat/completions"

    def _format_messages(self, messages: list[Message], model: str) -> list[dict[str, Any]]:
        """Keep multimodal content for vision models, flatten it otherwise."""
        if not self.supports_vision(model):
            return self.flatten_messages(messages)

        formatted = []
        for msg in messages:
            if isinstance(msg.content, str):
                formatted.append({"role": msg.role, "content": msg.content})
                continue
            formatted.append({
                "role": msg.role,
                "content": [
                    {"type": "text", "text": part.text or ""}
                    if part.type == "text"
                    else {"type": "image_url", "image_url": part.image_url}
                    for part in msg.content
                ],
            })
        return formatted

    def transform_request(
        self,
        messages: list[Message],
        options: ChatOptions,
        model: str,
    ) -> dict[str, Any]:
        data: dict[str, Any] = {
            "model": model,
            "messages": self._format_messages(messages, model),
            "temperature": (
                options.temperature if options.temperature is not None else self.default_temperature
            ),
            "max_tokens": options.max_tokens or self.default_max_tokens,
            "top_p": options.top_p,
            "stop": options.stop,
        }

        if options.response_format == "json":
            data["response_format"] = {"type": "json_object"}

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
