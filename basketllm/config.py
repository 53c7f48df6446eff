"""Configuration loading.

Settings come from a YAML file (``BASKETLLM_CONFIG`` or one of the default
search paths). String values of the form ``os.environ/VAR`` or ``${VAR}``
are resolved from the environment.
"""

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

import yaml

from basketllm.cache.base import CacheConfig, DEFAULT_TTL
from basketllm.exceptions import ConfigurationError
from basketllm.types import SubscriptionTier

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_PATHS = [
    "basketllm.yaml",
    "config.yaml",
    "config/basketllm.yaml",
    "/etc/basketllm/config.yaml",
]


@dataclass
class GeneralSettings:
    """General service settings."""
    database_url: Optional[str] = None
    log_level: str = "INFO"
    # Seconds between maintenance runs; 0 disables the loop
    maintenance_interval: float = 300.0
    usage_retention_days: Optional[int] = 90


@dataclass
class CacheSettings:
    """Response cache settings."""
    enabled: bool = True
    ttl: int = DEFAULT_TTL
    max_size: Optional[int] = 10_000

    def to_cache_config(self) -> CacheConfig:
        return CacheConfig(enabled=self.enabled, ttl=self.ttl, max_size=self.max_size)


@dataclass
class RateLimitSettings:
    """Rate limiter settings."""
    enabled: bool = True
    minute_window: int = 60
    day_window: int = 86_400
    default_tier: SubscriptionTier = SubscriptionTier.FREE


@dataclass
class CostSettings:
    """Pre-flight cost checks and failure accounting."""
    cost_warning_threshold: Optional[Decimal] = Decimal("0.05")
    max_cost_per_request: Optional[Decimal] = None
    # Record a zero-token call against the rate limiter per failed attempt
    charge_failed_attempts: bool = False


@dataclass
class ProviderSettings:
    """Per-provider overrides."""
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    timeout: Optional[float] = None
    enabled: bool = True
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class RouteOverride:
    """Replacement for one task route."""
    candidates: list[tuple[str, str]] = field(default_factory=list)
    options: dict[str, Any] = field(default_factory=dict)
    cacheable: Optional[bool] = None
    capture_training: Optional[bool] = None


@dataclass
class BasketConfig:
    """Full configuration."""
    general: GeneralSettings = field(default_factory=GeneralSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    rate_limits: RateLimitSettings = field(default_factory=RateLimitSettings)
    costs: CostSettings = field(default_factory=CostSettings)
    providers: dict[str, ProviderSettings] = field(default_factory=dict)
    routes: dict[str, RouteOverride] = field(default_factory=dict)


def _resolve_env_vars(value: Any) -> Any:
    """Resolve ``os.environ/VAR`` and ``${VAR}`` references."""
    if isinstance(value, str):
        if value.startswith("os.environ/"):
            return os.environ.get(value[len("os.environ/"):])
        if value.startswith("${") and value.endswith("}"):
            return os.environ.get(value[2:-1])
    elif isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_env_vars(v) for v in value]
    return value


def _optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"'{name}' must be a mapping")
    return section


def _parse_route(task_type: str, data: Any) -> RouteOverride:
    if not isinstance(data, dict):
        raise ConfigurationError(f"Route '{task_type}' must be a mapping")

    candidates = []
    for item in data.get("candidates", []):
        if isinstance(item, dict) and "provider" in item and "model" in item:
            candidates.append((str(item["provider"]), str(item["model"])))
        elif isinstance(item, str) and "/" in item:
            provider, model = item.split("/", 1)
            candidates.append((provider, model))
        else:
            raise ConfigurationError(
                f"Invalid candidate {item!r} for route '{task_type}'; "
                "use {provider, model} or 'provider/model'"
            )

    return RouteOverride(
        candidates=candidates,
        options=dict(data.get("options") or {}),
        cacheable=data.get("cacheable"),
        capture_training=data.get("capture_training"),
    )


def parse_config(data: Optional[dict[str, Any]]) -> BasketConfig:
    """Build a :class:`BasketConfig` from already-loaded YAML data."""
    config = BasketConfig()
    if not data:
        return config

    general = _resolve_env_vars(_section(data, "general_settings"))
    config.general = GeneralSettings(
        database_url=general.get("database_url"),
        log_level=str(general.get("log_level", "INFO")).upper(),
        maintenance_interval=float(general.get("maintenance_interval", 300.0)),
        usage_retention_days=general.get("usage_retention_days", 90),
    )

    cache = _section(data, "cache_settings")
    config.cache = CacheSettings(
        enabled=bool(cache.get("enabled", True)),
        ttl=int(cache.get("ttl", DEFAULT_TTL)),
        max_size=cache.get("max_size", 10_000),
    )

    limits = _section(data, "rate_limit_settings")
    try:
        default_tier = SubscriptionTier(limits.get("default_tier", SubscriptionTier.FREE))
    except ValueError as e:
        raise ConfigurationError(f"Unknown default_tier {limits.get('default_tier')!r}") from e
    config.rate_limits = RateLimitSettings(
        enabled=bool(limits.get("enabled", True)),
        minute_window=int(limits.get("minute_window", 60)),
        day_window=int(limits.get("day_window", 86_400)),
        default_tier=default_tier,
    )

    costs = _section(data, "cost_settings")
    config.costs = CostSettings(
        cost_warning_threshold=_optional_decimal(costs.get("cost_warning_threshold", "0.05")),
        max_cost_per_request=_optional_decimal(costs.get("max_cost_per_request")),
        charge_failed_attempts=bool(costs.get("charge_failed_attempts", False)),
    )

    for name, settings in _resolve_env_vars(_section(data, "provider_settings")).items():
        settings = dict(settings or {})
        config.providers[name] = ProviderSettings(
            api_key=settings.pop("api_key", None),
            api_base=settings.pop("api_base", None),
            timeout=settings.pop("timeout", None),
            enabled=bool(settings.pop("enabled", True)),
            extra=settings,
        )

    for task_type, route in _section(data, "routes").items():
        config.routes[str(task_type)] = _parse_route(str(task_type), route)

    return config


def find_config_path(config_path: Optional[str] = None) -> Optional[str]:
    """Explicit path, then ``BASKETLLM_CONFIG``, then the default locations."""
    if config_path:
        return config_path

    env_path = os.environ.get("BASKETLLM_CONFIG")
    if env_path:
        return env_path

    for path in DEFAULT_SEARCH_PATHS:
        if os.path.exists(path):
            return path
    return None


def load_config(config_path: Optional[str] = None) -> BasketConfig:
    """Load configuration from file.

    Args:
        config_path: Path to configuration file. If None, uses
            ``BASKETLLM_CONFIG`` or the default locations.

    Returns:
        Parsed configuration; defaults when no file is found

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    path = find_config_path(config_path)

    data = None
    if path:
        if not os.path.exists(path):
            raise ConfigurationError(f"Config file not found: {path}")
        with open(path, "r") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        logger.info("Loaded configuration from %s", path)

    if data is not None and not isinstance(data, dict):
        raise ConfigurationError("Top-level configuration must be a mapping")

    config = parse_config(data)
    if not config.general.database_url:
        config.general.database_url = os.environ.get("DATABASE_URL")
    return config
