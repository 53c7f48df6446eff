"""Provider adapters for basketllm."""

from .base import BaseProvider, ProviderCapabilities
from .keys import EnvKeyResolver, KeyResolver, StaticKeyResolver
from .registry import ProviderRegistry, register_provider, get_provider

# Import providers to register them
from .deepseek import DeepSeekProvider
from .openai import OpenAIProvider
from .gemini import GeminiProvider
from .anthropic import AnthropicProvider

__all__ = [
    "BaseProvider",
    "ProviderCapabilities",
    "EnvKeyResolver",
    "KeyResolver",
    "StaticKeyResolver",
    "ProviderRegistry",
    "register_provider",
    "get_provider",
    "DeepSeekProvider",
    "OpenAIProvider",
    "GeminiProvider",
    "AnthropicProvider",
]
