"""Base provider interface for basketllm."""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, NoReturn, Optional

import httpx

from basketllm.exceptions import (
    APIConnectionError,
    APIError,
    APITimeoutError,
    BasketLLMError,
    ConfigurationError,
    RateLimitError,
    map_http_status_to_error,
)
from basketllm.types import ChatOptions, LLMResponse, Message, TokenUsage
from basketllm.utils.pricing import calculate_cost

from .keys import EnvKeyResolver, KeyResolver

logger = logging.getLogger(__name__)


@dataclass
class ProviderCapabilities:
    """Provider capabilities."""

    chat: bool = True
    vision: bool = False
    json_mode: bool = False


class BaseProvider(ABC):
    """Base class for all LLM provider adapters.

    Subclasses describe the vendor wire format (``transform_request``,
    ``transform_response``, ``get_headers``); the base class owns key
    resolution, the HTTP round trip and error mapping.
    """

    provider_name: str = ""
    display_name: str = ""
    default_model: str = ""
    # Id handed to the key resolver
    key_id: str = ""
    default_api_base: str = ""
    # Environment variable overriding ``default_api_base``
    base_url_env: Optional[str] = None
    default_timeout: float = 60.0
    default_max_tokens: int = 1000
    default_temperature: float = 0.7
    capabilities: ProviderCapabilities = ProviderCapabilities()

    def __init__(
        self,
        key_resolver: Optional[KeyResolver] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Initialize the provider.

        Args:
            key_resolver: Async callable resolving the vendor API key
            api_base: Optional custom API base URL
            timeout: Default request timeout in seconds
        """
        self.key_resolver = key_resolver or EnvKeyResolver()
        env_base = os.getenv(self.base_url_env) if self.base_url_env else None
        self.api_base = (api_base or env_base or self.default_api_base).rstrip("/")
        self.timeout = timeout or self.default_timeout
        self._api_key: Optional[str] = None

    # ------------------------------------------------------------------
    # Keys and availability
    # ------------------------------------------------------------------

    async def get_api_key(self) -> str:
        """Resolve, validate and memoize the API key.

        Raises:
            ConfigurationError: If no key is configured or it is malformed
        """
        if self._api_key:
            return self._api_key

        try:
            key = await self.key_resolver(self.key_id)
        except BasketLLMError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Could not resolve {self.display_name} API key") from e

        key = (key or "").strip()
        if not key:
            raise ConfigurationError(f"{self.display_name} API key not configured")

        self.validate_api_key(key)
        self._api_key = key
        return key

    def validate_api_key(self, key: str) -> None:
        """Reject keys that are structurally invalid. No-op by default."""

    def reset_api_key(self) -> None:
        """Forget the memoized key so the next call resolves it again."""
        self._api_key = None

    async def is_available(self) -> bool:
        """Whether a valid API key can be resolved."""
        try:
            await self.get_api_key()
            return True
        except ConfigurationError:
            return False

    def supports_vision(self, model: Optional[str] = None) -> bool:
        """Whether ``model`` accepts image input."""
        return self.capabilities.vision

    # ------------------------------------------------------------------
    # Cost
    # ------------------------------------------------------------------

    def calculate_cost(self, model: str, input_tokens: int, output_tokens: int) -> Decimal:
        return calculate_cost(model, input_tokens, output_tokens)

    def build_usage(self, model: str, input_tokens: int, output_tokens: int) -> TokenUsage:
        return TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cost=self.calculate_cost(model, input_tokens, output_tokens),
        )

    # ------------------------------------------------------------------
    # Wire format
    # ------------------------------------------------------------------

    @abstractmethod
    def get_headers(self, api_key: str) -> dict[str, str]:
        """Authentication and content headers for a request."""

    @abstractmethod
    def chat_path(self, model: str) -> str:
        """Request path, relative to ``api_base``, for a chat call."""

    @abstractmethod
    def transform_request(
        self,
        messages: list[Message],
        options: ChatOptions,
        model: str,
    ) -> dict[str, Any]:
        """Transform normalized messages and options to the vendor body."""

    @abstractmethod
    def transform_response(self, data: dict[str, Any], model: str) -> LLMResponse:
        """Transform the vendor response body to an :class:`LLMResponse`."""

    def flatten_messages(self, messages: list[Message]) -> list[dict[str, str]]:
        """Messages as role/text pairs with image parts dropped."""
        return [{"role": msg.role, "content": msg.text_content()} for msg in messages]

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _get_client(self, api_key: str, timeout: Optional[float] = None) -> httpx.AsyncClient:
        """Get configured HTTP client."""
        return httpx.AsyncClient(
            base_url=self.api_base,
            headers=self.get_headers(api_key),
            timeout=timeout or self.timeout,
        )

    def _extract_error_message(self, body: Any, default: str) -> str:
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if isinstance(error, str):
                return error
        return default

    def _handle_error(self, exc: httpx.HTTPStatusError) -> NoReturn:
        """Raise the exception matching a vendor error response."""
        status_code = exc.response.status_code

        try:
            body = exc.response.json()
        except ValueError:
            body = None
        message = self._extract_error_message(body, exc.response.text or str(exc))
        if not isinstance(body, dict):
            body = None

        if status_code == 429:
            retry_after = exc.response.headers.get("retry-after")
            raise RateLimitError(
                message,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                body=body,
                provider=self.provider_name,
            )

        raise map_http_status_to_error(status_code, message, body, provider=self.provider_name)

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        api_key: str,
        timeout: Optional[float] = None,
    ) -> dict[str, Any]:
        """POST ``payload`` and return the decoded JSON body."""
        client = self._get_client(api_key, timeout)
        try:
            response = await client.post(path, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            self._handle_error(e)
        except httpx.TimeoutException as e:
            raise APITimeoutError(
                str(e) or f"{self.display_name} request timed out",
                provider=self.provider_name,
            ) from e
        except httpx.TransportError as e:
            raise APIConnectionError(str(e), provider=self.provider_name) from e
        except ValueError as e:
            raise APIError(
                f"Malformed JSON response from {self.display_name}",
                provider=self.provider_name,
            ) from e
        finally:
            await client.aclose()

        if not isinstance(data, dict):
            raise APIError(
                f"Unexpected response from {self.display_name}",
                provider=self.provider_name,
            )
        return data

    async def _complete(
        self,
        messages: list[Message],
        options: ChatOptions,
        model: str,
        api_key: str,
    ) -> LLMResponse:
        data = await self._post(
            self.chat_path(model),
            self.transform_request(messages, options, model),
            api_key,
            options.timeout,
        )
        try:
            return self.transform_response(data, model)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise APIError(
                f"Malformed response from {self.display_name}",
                provider=self.provider_name,
                body=data,
            ) from e

    async def chat(
        self,
        messages: list[Message],
        options: Optional[ChatOptions] = None,
    ) -> LLMResponse:
        """Execute a chat completion request.

        Args:
            messages: Conversation messages
            options: Generation options; ``options.model`` selects the model

        Returns:
            The normalized response

        Raises:
            ConfigurationError: If the API key is missing or invalid
            ProviderError: If the vendor call fails
        """
        options = options or ChatOptions()
        api_key = await self.get_api_key()
        model = options.model or self.default_model
        return await self._complete(messages, options, model, api_key)
