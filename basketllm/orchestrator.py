"""LLM orchestrator.

Central entry point for every AI request. For each call it resolves the
task route to an ordered provider chain, serves identical requests from
the response cache, enforces per-user rate limits, falls back through the
chain on provider failure and records cost for every attempt.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Optional, Union

from basketllm.budget import CostTracker, UsageStore
from basketllm.cache import CacheStore, ResponseCache, generate_cache_key
from basketllm.config import BasketConfig
from basketllm.exceptions import (
    APITimeoutError,
    BasketLLMError,
    ConfigurationError,
    ExhaustedProvidersError,
)
from basketllm.providers import BaseProvider, EnvKeyResolver, KeyResolver, ProviderRegistry, StaticKeyResolver
from basketllm.rate_limit import PlanLookup, RateLimiter, RateLimitResult, UsageSnapshot
from basketllm.types import (
    ChatOptions,
    ChatResult,
    ErrorDetail,
    LLMResponse,
    Message,
    SubscriptionTier,
    TaskType,
)
from basketllm.utils.background import BackgroundWrites
from basketllm.utils.token_counter import estimate_tokens

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Chat"


@dataclass(frozen=True)
class RouteConfig:
    """Provider chain and defaults for one task type."""

    task_type: TaskType
    candidates: tuple[tuple[str, str], ...]
    default_options: ChatOptions = field(default_factory=ChatOptions)
    cacheable: bool = True
    capture_training: bool = False


def _route(
    task_type: TaskType,
    candidates: list[tuple[str, str]],
    cacheable: bool = True,
    capture_training: bool = False,
    **options: Any,
) -> RouteConfig:
    return RouteConfig(
        task_type=task_type,
        candidates=tuple(candidates),
        default_options=ChatOptions(**options),
        cacheable=cacheable,
        capture_training=capture_training,
    )


DEEPSEEK = ("deepseek", "deepseek-chat")
OPENAI = ("openai", "gpt-4o")
GEMINI = ("gemini", "gemini-2.0-flash")

DEFAULT_ROUTES: dict[TaskType, RouteConfig] = {
    route.task_type: route
    for route in [
        # Conversations are too contextual to cache
        _route(TaskType.ASSISTANT_CHAT, [DEEPSEEK, OPENAI], cacheable=False,
               temperature=0.7, max_tokens=1000, timeout=60),
        _route(TaskType.PRODUCT_MATCHING, [DEEPSEEK, OPENAI], capture_training=True,
               temperature=0.3, max_tokens=2000, response_format="json", timeout=30),
        _route(TaskType.RECEIPT_OCR, [GEMINI, OPENAI], capture_training=True,
               temperature=0.1, max_tokens=4000, timeout=60),
        _route(TaskType.PRICE_ANALYSIS, [DEEPSEEK, OPENAI],
               temperature=0.4, max_tokens=500, timeout=30),
        _route(TaskType.MEAL_PLANNING, [DEEPSEEK, OPENAI],
               temperature=0.6, max_tokens=4000, response_format="json", timeout=60),
        _route(TaskType.LIST_BUILDING, [DEEPSEEK, OPENAI],
               temperature=0.5, max_tokens=2000, response_format="json", timeout=30),
        _route(TaskType.SPENDING_ANALYSIS, [DEEPSEEK, OPENAI],
               temperature=0.4, max_tokens=1000, timeout=30),
        _route(TaskType.ALERT_CONTEXT, [DEEPSEEK],
               temperature=0.3, max_tokens=300, timeout=15),
        _route(TaskType.CONTENT_GENERATION, [DEEPSEEK, OPENAI],
               temperature=0.7, max_tokens=2000, timeout=60),
        _route(TaskType.DATA_QUALITY, [DEEPSEEK],
               temperature=0.2, max_tokens=1000, response_format="json", timeout=30),
        _route(TaskType.TRANSLATION, [DEEPSEEK],
               temperature=0.3, max_tokens=500, timeout=15),
        _route(TaskType.TITLE_GENERATION, [DEEPSEEK], cacheable=False,
               temperature=0.5, max_tokens=20, timeout=10),
    ]
}


@dataclass(frozen=True)
class ProviderCandidate:
    """One (provider, model) step of a fallback chain."""

    provider: BaseProvider
    model: str

    @property
    def provider_name(self) -> str:
        return self.provider.provider_name


def _config_error(message: str, code: str = "configuration_error") -> ChatResult:
    return ChatResult(error=ErrorDetail(message=message, type="configuration_error", code=code))


class Orchestrator:
    """Routes chat requests across providers.

    Collaborators are injected so that each instance owns its own cache
    map and rate-limit counters.
    """

    def __init__(
        self,
        providers: Optional[dict[str, BaseProvider]] = None,
        routes: Optional[dict[TaskType, RouteConfig]] = None,
        cache: Optional[ResponseCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        cost_tracker: Optional[CostTracker] = None,
        key_resolver: Optional[KeyResolver] = None,
        default_tier: SubscriptionTier = SubscriptionTier.FREE,
        cost_warning_threshold: Optional[Decimal] = Decimal("0.05"),
        max_cost_per_request: Optional[Decimal] = None,
        charge_failed_attempts: bool = False,
        usage_retention_days: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            providers: Adapters by provider name; defaults to one instance
                of every registered adapter
            routes: Route table; defaults to ``DEFAULT_ROUTES``
            cache: Response cache; defaults to a memory-only cache
            rate_limiter: Rate limiter; None disables rate limiting
            cost_tracker: Cost tracker; defaults to an in-memory ledger
            key_resolver: Key resolver for default adapters
            default_tier: Tier used when a request carries none
            cost_warning_threshold: Log a warning above this estimate
            max_cost_per_request: Skip candidates estimated above this
            charge_failed_attempts: Count failed attempts against the
                user's rate limit (zero tokens each)
            usage_retention_days: Ledger rows older than this are purged
                by ``run_maintenance``
            clock: Monotonic clock for latency measurements
        """
        if providers is None:
            resolver = key_resolver or EnvKeyResolver()
            providers = {
                name: ProviderRegistry.get(name)(key_resolver=resolver)
                for name in ProviderRegistry.list_providers()
            }
        self.providers = providers
        self.routes = dict(routes if routes is not None else DEFAULT_ROUTES)

        self.writes = BackgroundWrites()
        self.cache = cache if cache is not None else ResponseCache(writes=self.writes)
        self.rate_limiter = rate_limiter
        self.cost_tracker = cost_tracker if cost_tracker is not None else CostTracker(writes=self.writes)

        self.default_tier = default_tier
        self.cost_warning_threshold = cost_warning_threshold
        self.max_cost_per_request = max_cost_per_request
        self.charge_failed_attempts = charge_failed_attempts
        self.usage_retention_days = usage_retention_days
        self._clock = clock

        self._chains = {
            task_type: self._resolve_chain(route)
            for task_type, route in self.routes.items()
        }

    @classmethod
    def from_config(
        cls,
        config: BasketConfig,
        *,
        key_resolver: Optional[KeyResolver] = None,
        cache_store: Optional[CacheStore] = None,
        usage_store: Optional[UsageStore] = None,
        plan_lookup: Optional[PlanLookup] = None,
    ) -> "Orchestrator":
        """Build an orchestrator and its collaborators from configuration."""
        writes = BackgroundWrites()

        configured_keys = {
            ProviderRegistry.get(name).key_id: settings.api_key
            for name, settings in config.providers.items()
            if settings.api_key and name in ProviderRegistry.list_providers()
        }
        resolver = key_resolver or EnvKeyResolver()
        if configured_keys:
            resolver = StaticKeyResolver(configured_keys, fallback=resolver)

        providers: dict[str, BaseProvider] = {}
        for name in ProviderRegistry.list_providers():
            settings = config.providers.get(name)
            if settings is not None and not settings.enabled:
                logger.info("Provider %s disabled by configuration", name)
                continue
            kwargs: dict[str, Any] = {"key_resolver": resolver}
            if settings is not None:
                kwargs.update(settings.extra)
                kwargs["api_base"] = settings.api_base
                kwargs["timeout"] = settings.timeout
            try:
                providers[name] = ProviderRegistry.get(name)(**kwargs)
            except TypeError as e:
                raise ConfigurationError(f"Invalid settings for provider '{name}': {e}") from e

        routes = dict(DEFAULT_ROUTES)
        for task_name, override in config.routes.items():
            try:
                task_type = TaskType(task_name)
            except ValueError as e:
                raise ConfigurationError(f"Unknown task type '{task_name}' in routes") from e
            try:
                override_options = ChatOptions(**override.options)
            except ValueError as e:
                raise ConfigurationError(f"Invalid options for route '{task_name}': {e}") from e
            base = routes[task_type]
            routes[task_type] = RouteConfig(
                task_type=task_type,
                candidates=tuple(override.candidates) or base.candidates,
                default_options=base.default_options.merged_with(override_options),
                cacheable=base.cacheable if override.cacheable is None else override.cacheable,
                capture_training=(
                    base.capture_training if override.capture_training is None
                    else override.capture_training
                ),
            )

        rate_limiter = None
        if config.rate_limits.enabled:
            rate_limiter = RateLimiter(
                plan_lookup=plan_lookup,
                minute_window=config.rate_limits.minute_window,
                day_window=config.rate_limits.day_window,
            )

        return cls(
            providers=providers,
            routes=routes,
            cache=ResponseCache(config.cache.to_cache_config(), store=cache_store, writes=writes),
            rate_limiter=rate_limiter,
            cost_tracker=CostTracker(usage_store, writes=writes),
            default_tier=config.rate_limits.default_tier,
            cost_warning_threshold=config.costs.cost_warning_threshold,
            max_cost_per_request=config.costs.max_cost_per_request,
            charge_failed_attempts=config.costs.charge_failed_attempts,
            usage_retention_days=config.general.usage_retention_days,
        )

    def _resolve_chain(self, route: RouteConfig) -> list[ProviderCandidate]:
        chain = []
        for provider_name, model in route.candidates:
            provider = self.providers.get(provider_name)
            if provider is None:
                logger.warning(
                    "Route %s references unconfigured provider %s, skipping it",
                    route.task_type.value, provider_name,
                )
                continue
            chain.append(ProviderCandidate(provider, model))
        return chain

    def _candidates_for(self, task_type: TaskType, model_override: Optional[str]) -> list[ProviderCandidate]:
        """Chain for a request; an explicit model goes first, the route follows."""
        chain = self._chains[task_type]
        if not model_override:
            return list(chain)

        provider_name = ProviderRegistry.provider_for_model(model_override)
        provider = self.providers.get(provider_name)
        if provider is None:
            raise ConfigurationError(
                f"Provider '{provider_name}' for model '{model_override}' is not configured",
                code="unknown_model",
            )
        return [ProviderCandidate(provider, model_override)] + [
            candidate for candidate in chain if candidate.provider is not provider
        ]

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def chat(
        self,
        messages: list[Message],
        task_type: Union[TaskType, str] = TaskType.ASSISTANT_CHAT,
        options: Optional[ChatOptions] = None,
        *,
        user_id: Optional[str] = None,
        tier: Optional[Union[SubscriptionTier, str]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ChatResult:
        """Execute a chat request for ``task_type``.

        Returns:
            A result carrying the response, or an error for rate-limit
            rejections and configuration problems

        Raises:
            ExhaustedProvidersError: If every candidate failed or was unavailable
        """
        try:
            task = TaskType(task_type)
        except ValueError:
            return _config_error(f"Unknown task type: {task_type}", code="unknown_task_type")

        route = self.routes.get(task)
        if route is None:
            return _config_error(f"No route configured for task type: {task.value}", code="unknown_task_type")

        options = route.default_options.merged_with(options)
        try:
            candidates = self._candidates_for(task, options.model)
        except ConfigurationError as e:
            return _config_error(e.message, code=e.code or "configuration_error")
        if not candidates:
            return _config_error(f"No provider configured for task type: {task.value}")

        cache_key = None
        if route.cacheable and self.cache.enabled:
            cache_key = generate_cache_key(candidates[0].model, messages, options.temperature)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                logger.debug("Cache hit for %s (%s)", task.value, cache_key[:12])
                return ChatResult(response=cached)

        if user_id and self.rate_limiter is not None:
            limit = await self.rate_limiter.check_user(user_id, tier or self.default_tier)
            if not limit.allowed:
                logger.info("Rate limit rejected user %s: %s", user_id, limit.reason)
                return ChatResult(error=ErrorDetail(
                    message=f"{limit.reason or 'Rate limit exceeded'}. "
                            f"Try again at {limit.reset_at.isoformat()}",
                    type="rate_limit_exceeded",
                    code="429",
                    reset_at=limit.reset_at,
                    remaining=limit.remaining,
                ))

        attempts: list[dict[str, Any]] = []

        for index, candidate in enumerate(candidates):
            provider = candidate.provider

            if not await provider.is_available():
                logger.info("Provider %s unavailable for %s, skipping", candidate.provider_name, task.value)
                attempts.append({"provider": candidate.provider_name, "model": candidate.model, "error": "unavailable"})
                continue

            if self._over_budget(candidate, messages, options, task):
                attempts.append({"provider": candidate.provider_name, "model": candidate.model, "error": "over_budget"})
                continue

            call_options = options.model_copy(update={"model": candidate.model})
            timeout = options.timeout or provider.timeout
            started = self._clock()
            try:
                response = await asyncio.wait_for(provider.chat(messages, call_options), timeout=timeout)
            except (BasketLLMError, asyncio.TimeoutError) as e:
                error = e
                if isinstance(e, asyncio.TimeoutError):
                    error = APITimeoutError(
                        f"{provider.display_name} did not respond within {timeout}s",
                        provider=candidate.provider_name,
                    )
                await self._record_failure(task, candidate, error, self._elapsed_ms(started), user_id)
                attempts.append({
                    "provider": candidate.provider_name,
                    "model": candidate.model,
                    "error": str(error),
                })
                continue

            await self._record_success(
                task, route, candidate, messages, response,
                self._elapsed_ms(started), cache_key, user_id,
                metadata, fallback=index > 0,
            )
            return ChatResult(response=response)

        logger.error("All providers failed for %s after %d attempts", task.value, len(attempts))
        raise ExhaustedProvidersError(task.value, attempts)

    def _elapsed_ms(self, started: float) -> float:
        return (self._clock() - started) * 1000

    def _over_budget(
        self,
        candidate: ProviderCandidate,
        messages: list[Message],
        options: ChatOptions,
        task: TaskType,
    ) -> bool:
        estimated_input = estimate_tokens(messages, candidate.model)
        estimated_output = options.max_tokens or candidate.provider.default_max_tokens
        estimate = self.cost_tracker.estimate_cost(candidate.model, estimated_input, estimated_output)

        if self.max_cost_per_request is not None and estimate > self.max_cost_per_request:
            logger.warning(
                "Skipping %s for %s: estimated cost $%.6f exceeds limit $%.6f",
                candidate.model, task.value, estimate, self.max_cost_per_request,
            )
            return True
        if self.cost_warning_threshold is not None and estimate > self.cost_warning_threshold:
            logger.warning(
                "Estimated cost $%.6f for %s on %s exceeds warning threshold",
                estimate, task.value, candidate.model,
            )
        return False

    async def _record_failure(
        self,
        task: TaskType,
        candidate: ProviderCandidate,
        error: Exception,
        latency_ms: float,
        user_id: Optional[str],
    ) -> None:
        logger.warning(
            "Provider %s (%s) failed for %s: %s",
            candidate.provider_name, candidate.model, task.value, error,
        )
        self.cost_tracker.track_error(
            task, candidate.model, candidate.provider_name, latency_ms, str(error), user_id=user_id,
        )
        if self.charge_failed_attempts and user_id and self.rate_limiter is not None:
            await self.rate_limiter.record(user_id, 0)

    async def _record_success(
        self,
        task: TaskType,
        route: RouteConfig,
        candidate: ProviderCandidate,
        messages: list[Message],
        response: LLMResponse,
        latency_ms: float,
        cache_key: Optional[str],
        user_id: Optional[str],
        metadata: Optional[dict[str, Any]],
        fallback: bool,
    ) -> None:
        if cache_key is not None:
            await self.cache.set(cache_key, response.model, response)

        if user_id and self.rate_limiter is not None:
            await self.rate_limiter.record(user_id, response.usage.total_tokens)

        meta = dict(metadata or {})
        if fallback:
            meta["fallback"] = True
            logger.info("Served %s from fallback provider %s", task.value, candidate.provider_name)
        self.cost_tracker.track_call(task, response, latency_ms, user_id=user_id, metadata=meta)

        if route.capture_training:
            self.cost_tracker.store_training_example(
                task,
                response.model,
                input=[msg.model_dump(mode="json", exclude_none=True) for msg in messages],
                output=response.content,
            )

    # ------------------------------------------------------------------
    # Queries and maintenance
    # ------------------------------------------------------------------

    async def check_rate_limit(
        self,
        user_id: str,
        tier: Optional[Union[SubscriptionTier, str]] = None,
    ) -> RateLimitResult:
        """Current rate-limit standing of ``user_id``."""
        if self.rate_limiter is None:
            return RateLimitResult(
                allowed=True,
                remaining=-1,
                reset_at=datetime.now(timezone.utc),
            )
        return await self.rate_limiter.check_user(user_id, tier or self.default_tier)

    def get_usage(self, user_id: str) -> UsageSnapshot:
        if self.rate_limiter is None:
            return UsageSnapshot()
        return self.rate_limiter.get_usage(user_id)

    def get_route(self, task_type: Union[TaskType, str]) -> Optional[RouteConfig]:
        try:
            return self.routes.get(TaskType(task_type))
        except ValueError:
            return None

    async def get_provider_status(self) -> dict[str, bool]:
        """Availability of every configured provider."""
        return {
            name: await provider.is_available()
            for name, provider in self.providers.items()
        }

    async def run_maintenance(self) -> dict[str, int]:
        """Purge expired cache rows, old usage rows and stale in-process state."""
        result = {
            "cache_rows": await self.cache.purge_expired(),
            "memory_entries": await self.cache.sweep(),
            "rate_limit_counters": 0,
            "usage_rows": 0,
        }
        if self.rate_limiter is not None:
            result["rate_limit_counters"] = await self.rate_limiter.sweep_expired()

        if self.usage_retention_days:
            cutoff = datetime.now(timezone.utc) - timedelta(days=self.usage_retention_days)
            try:
                result["usage_rows"] = await self.cost_tracker.purge_before(cutoff)
            except Exception:
                logger.warning("Usage ledger purge failed", exc_info=True)

        logger.debug("Maintenance finished: %s", result)
        return result

    async def drain(self) -> None:
        """Wait for pending background writes."""
        for writes in {id(w): w for w in (self.writes, self.cache.writes, self.cost_tracker.writes)}.values():
            await writes.drain()

    # ------------------------------------------------------------------
    # Convenience tasks
    # ------------------------------------------------------------------

    async def match_products(
        self,
        items: list[str],
        dietary: Optional[list[str]] = None,
        *,
        user_id: Optional[str] = None,
        tier: Optional[Union[SubscriptionTier, str]] = None,
    ) -> ChatResult:
        """Match free-form grocery items to structured products."""
        prompt = "Match these grocery items:\n"
        prompt += "".join(f"{i}. {item}\n" for i, item in enumerate(items, start=1))
        if dietary:
            prompt += f"\nDietary restrictions: {', '.join(dietary)}"
        prompt += (
            "\nReturn JSON array with: userInput, matchedProduct, brand, size, "
            "attributes, confidence (0.0-1.0)"
        )

        return await self.chat(
            [
                Message.system(
                    "You are a product matching AI for a grocery price comparison "
                    "platform. Match user input to structured product data. "
                    "Always return valid JSON."
                ),
                Message.user(prompt),
            ],
            TaskType.PRODUCT_MATCHING,
            user_id=user_id,
            tier=tier,
        )

    async def scan_receipt(
        self,
        image_base64: str,
        *,
        mime_type: str = "image/jpeg",
        user_id: Optional[str] = None,
        tier: Optional[Union[SubscriptionTier, str]] = None,
    ) -> ChatResult:
        """Extract structured data from a receipt photo."""
        instructions = (
            "Extract all information from this grocery receipt image.\n\n"
            "Return JSON with: storeName, storeAddress, items (name, price, quantity, "
            "category, discount), subtotal, total, tax, purchaseDate, paymentMethod, "
            "confidence.\n\n"
            "Rules:\n"
            "- Extract ALL items visible on receipt\n"
            "- Clean up item names (remove codes, abbreviations)\n"
            "- Use XX.XX format for prices\n"
            "- Parse date to YYYY-MM-DD\n"
            "- Return valid JSON only"
        )
        return await self.chat(
            [Message.with_image(instructions, f"data:{mime_type};base64,{image_base64}", detail="high")],
            TaskType.RECEIPT_OCR,
            ChatOptions(temperature=0.1, max_tokens=4000),
            user_id=user_id,
            tier=tier,
        )

    async def generate_title(self, first_message: str, *, user_id: Optional[str] = None) -> str:
        """Short conversation title; never raises."""
        try:
            result = await self.chat(
                [
                    Message.system(
                        "Generate a very short title (max 5 words) for this "
                        "conversation. Return only the title."
                    ),
                    Message.user(f'User said: "{first_message}"\n\nGenerate a short title:'),
                ],
                TaskType.TITLE_GENERATION,
                user_id=user_id,
            )
        except BasketLLMError:
            logger.info("Title generation failed, using default title", exc_info=True)
            return DEFAULT_TITLE

        if not result.ok:
            return DEFAULT_TITLE
        return result.response.content.strip().strip('"') or DEFAULT_TITLE
