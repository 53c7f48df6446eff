"""Provider registry for managing provider adapters."""

import re
from typing import Callable, Optional, Type

from basketllm.exceptions import ConfigurationError
from .base import BaseProvider


class ProviderRegistry:
    """Registry for provider adapters."""

    _providers: dict[str, Type[BaseProvider]] = {}
    _model_mappings: dict[str, str] = {}  # model pattern -> provider_name

    @classmethod
    def register(
        cls,
        provider_name: str,
        provider_class: Type[BaseProvider],
        models: Optional[list[str]] = None,
    ) -> None:
        """Register a provider.

        Args:
            provider_name: The provider identifier
            provider_class: The provider class
            models: Optional list of supported model names/patterns
        """
        cls._providers[provider_name] = provider_class

        if models:
            for model in models:
                cls._model_mappings[model] = provider_name

    @classmethod
    def get(cls, provider_name: str) -> Type[BaseProvider]:
        """Get a provider class by name.

        Raises:
            KeyError: If provider is not registered
        """
        if provider_name not in cls._providers:
            raise KeyError(f"Provider '{provider_name}' is not registered")
        return cls._providers[provider_name]

    @classmethod
    def provider_for_model(cls, model: str) -> str:
        """Name of the provider serving ``model``.

        Raises:
            ConfigurationError: If no registered provider serves the model
        """
        if model in cls._model_mappings:
            return cls._model_mappings[model]

        for pattern, provider_name in cls._model_mappings.items():
            if cls._match_pattern(model, pattern):
                return provider_name

        raise ConfigurationError(f"Unknown model '{model}'", code="unknown_model")

    @classmethod
    def _match_pattern(cls, model: str, pattern: str) -> bool:
        """Check if a model matches a pattern (``*`` wildcards)."""
        regex = ".*".join(re.escape(part) for part in pattern.split("*"))
        return bool(re.match(f"^{regex}$", model))

    @classmethod
    def list_providers(cls) -> list[str]:
        return list(cls._providers.keys())

    @classmethod
    def list_models(cls) -> list[str]:
        return list(cls._model_mappings.keys())


def register_provider(
    provider_name: str,
    models: Optional[list[str]] = None,
) -> Callable[[Type[BaseProvider]], Type[BaseProvider]]:
    """Decorator to register a provider class.

    Args:
        provider_name: The provider identifier
        models: Optional list of supported models/patterns
    """
    def decorator(cls: Type[BaseProvider]) -> Type[BaseProvider]:
        ProviderRegistry.register(provider_name, cls, models)
        cls.provider_name = provider_name
        return cls
    return decorator


def get_provider(provider_name: str) -> Type[BaseProvider]:
    """Get a provider class by name."""
    return ProviderRegistry.get(provider_name)
