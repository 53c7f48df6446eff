"""basketllm - LLM orchestration for grocery price comparison.

Routes AI requests across DeepSeek, OpenAI, Gemini and Anthropic with
per-task fallback chains, a two-tier response cache, per-user rate limits
and a cost ledger.
"""

__version__ = "0.1.0"

from basketllm.exceptions import (
    BasketLLMError,
    ConfigurationError,
    ProviderError,
    ExhaustedProvidersError,
)
from basketllm.types import (
    ChatOptions,
    ChatResult,
    LLMResponse,
    Message,
    SubscriptionTier,
    TaskType,
    TokenUsage,
)
from basketllm.orchestrator import DEFAULT_ROUTES, Orchestrator, RouteConfig
from basketllm.rate_limit import PlanLimits, RateLimiter, RateLimitResult, TIER_LIMITS

__all__ = [
    "__version__",
    "BasketLLMError",
    "ConfigurationError",
    "ProviderError",
    "ExhaustedProvidersError",
    "ChatOptions",
    "ChatResult",
    "LLMResponse",
    "Message",
    "SubscriptionTier",
    "TaskType",
    "TokenUsage",
    "DEFAULT_ROUTES",
    "Orchestrator",
    "RouteConfig",
    "PlanLimits",
    "RateLimiter",
    "RateLimitResult",
    "TIER_LIMITS",
]
