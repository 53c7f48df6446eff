"""Custom exceptions for basketllm."""

from typing import Any, Optional


class BasketLLMError(Exception):
    """Base exception for all basketllm errors."""

    def __init__(
        self,
        message: str,
        *,
        type: Optional[str] = None,
        code: Optional[str] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.type = type or "basketllm_error"
        self.code = code
        self.body = body or {}

    def __str__(self) -> str:
        msg = self.message
        if self.type:
            msg = f"{self.type}: {msg}"
        if self.code:
            msg = f"[{self.code}] {msg}"
        return msg


class ConfigurationError(BasketLLMError):
    """Missing or invalid configuration (API key, task route, model override).

    Raised before any network call is made.
    """

    def __init__(self, message: str = "Invalid configuration", **kwargs: Any) -> None:
        super().__init__(message, type="configuration_error", **kwargs)


class ProviderError(BasketLLMError):
    """A vendor call failed (HTTP 4xx/5xx, timeout, connection error).

    The orchestrator recovers from these by moving to the next candidate.
    """

    def __init__(
        self,
        message: str = "Provider error",
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        type: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, type=type or "provider_error", **kwargs)
        self.provider = provider
        self.status_code = status_code


class AuthenticationError(ProviderError):
    """Authentication failed (invalid API key, etc.)."""

    def __init__(self, message: str = "Authentication failed", **kwargs: Any) -> None:
        super().__init__(message, type="authentication_error", code="401", status_code=401, **kwargs)


class PermissionDeniedError(ProviderError):
    """Permission denied for the requested resource."""

    def __init__(self, message: str = "Permission denied", **kwargs: Any) -> None:
        super().__init__(message, type="permission_denied", code="403", status_code=403, **kwargs)


class NotFoundError(ProviderError):
    """Requested model or endpoint not found."""

    def __init__(self, message: str = "Resource not found", **kwargs: Any) -> None:
        super().__init__(message, type="not_found", code="404", status_code=404, **kwargs)


class RateLimitError(ProviderError):
    """The vendor rejected the call with a quota/rate limit (HTTP 429)."""

    def __init__(
        self,
        message: str = "Provider rate limit exceeded",
        retry_after: Optional[int] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, type="rate_limit_error", code="429", status_code=429, **kwargs)
        self.retry_after = retry_after


class BadRequestError(ProviderError):
    """Invalid request (malformed, missing params, etc.)."""

    def __init__(self, message: str = "Bad request", **kwargs: Any) -> None:
        super().__init__(message, type="invalid_request_error", code="400", status_code=400, **kwargs)


class ContentPolicyViolationError(BadRequestError):
    """Content violates the vendor's usage policies."""

    def __init__(self, message: str = "Content policy violation", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.type = "content_policy_violation"


class APIConnectionError(ProviderError):
    """Failed to connect to the API."""

    def __init__(self, message: str = "Connection error", **kwargs: Any) -> None:
        super().__init__(message, type="connection_error", code="connection_error", **kwargs)


class APITimeoutError(APIConnectionError):
    """Request timed out."""

    def __init__(self, message: str = "Request timed out", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.type = "timeout_error"


class ServiceUnavailableError(ProviderError):
    """Service temporarily unavailable."""

    def __init__(self, message: str = "Service unavailable", **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 503)
        super().__init__(message, type="service_unavailable", code="503", **kwargs)


class APIError(ProviderError):
    """Generic API error from the provider."""

    def __init__(self, message: str = "API error", **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 500)
        super().__init__(message, type="api_error", code="500", **kwargs)


class CacheUnavailableError(BasketLLMError):
    """The durable cache/usage store could not be reached.

    Never surfaced to callers: the cache degrades to memory-only.
    """

    def __init__(self, message: str = "Durable store unavailable", **kwargs: Any) -> None:
        super().__init__(message, type="cache_unavailable", **kwargs)


class ExhaustedProvidersError(BasketLLMError):
    """Every candidate provider for a task failed or was unavailable.

    The message is safe to show to end users; the vendor errors that led
    here are kept in ``attempts`` for logging only.
    """

    USER_MESSAGE = "AI features temporarily unavailable"

    def __init__(
        self,
        task_type: Optional[str] = None,
        attempts: Optional[list[dict[str, Any]]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(self.USER_MESSAGE, type="no_provider_available", code="503", **kwargs)
        self.task_type = task_type
        self.attempts = attempts or []


def map_http_status_to_error(
    status_code: int,
    message: str,
    body: Optional[dict] = None,
    provider: Optional[str] = None,
) -> ProviderError:
    """Map a vendor HTTP status code to the matching exception."""
    error_map = {
        400: BadRequestError,
        401: AuthenticationError,
        403: PermissionDeniedError,
        404: NotFoundError,
        429: RateLimitError,
        500: APIError,
        502: APIError,
        503: ServiceUnavailableError,
        504: APITimeoutError,
    }

    # Check for specific error types in body
    if body and isinstance(body.get("error"), dict):
        error_body = body["error"]
        error_type = str(error_body.get("type", ""))
        error_code = str(error_body.get("code", ""))

        if "content_policy" in error_type or "content_policy" in error_code:
            return ContentPolicyViolationError(message, body=body, provider=provider)

    error_class = error_map.get(status_code)
    if error_class is None:
        return APIError(message, body=body, provider=provider, status_code=status_code)

    error = error_class(message, body=body, provider=provider)
    error.status_code = status_code
    return error
