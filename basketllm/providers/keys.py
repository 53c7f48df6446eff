"""API key resolution for provider adapters."""

import os
from typing import Awaitable, Callable, Mapping, Optional


# async (model_id) -> key or None
KeyResolver = Callable[[str], Awaitable[Optional[str]]]


class EnvKeyResolver:
    """Resolve vendor API keys from environment variables.

    The model id passed by an adapter is matched by prefix: ``deepseek-chat``
    reads ``DEEPSEEK_API_KEY``, ``gpt-4-vision`` reads ``OPENAI_API_KEY`` and
    so on. The first non-empty variable wins.
    """

    ENV_VARS: dict[str, tuple[str, ...]] = {
        "deepseek": ("DEEPSEEK_API_KEY",),
        "gpt": ("OPENAI_API_KEY",),
        "openai": ("OPENAI_API_KEY",),
        "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
        "claude": ("ANTHROPIC_API_KEY",),
        "anthropic": ("ANTHROPIC_API_KEY",),
    }

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def env_vars_for(self, model_id: str) -> tuple[str, ...]:
        for prefix, names in self.ENV_VARS.items():
            if model_id.startswith(prefix):
                return names
        return ()

    async def __call__(self, model_id: str) -> Optional[str]:
        for name in self.env_vars_for(model_id):
            value = self.environ.get(name)
            if value and value.strip():
                return value
        return None


class StaticKeyResolver:
    """Resolve keys from a fixed mapping of key id to key.

    Falls back to ``fallback`` (usually an :class:`EnvKeyResolver`) for ids
    that are not in the mapping.
    """

    def __init__(
        self,
        keys: Mapping[str, Optional[str]],
        fallback: Optional[KeyResolver] = None,
    ) -> None:
        self._keys = dict(keys)
        self._fallback = fallback

    async def __call__(self, model_id: str) -> Optional[str]:
        if model_id in self._keys:
            return self._keys[model_id]
        if self._fallback is not None:
            return await self._fallback(model_id)
        return None
