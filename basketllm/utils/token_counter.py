"""Token counting utilities."""

import logging
from typing import Any, Iterable, Optional

import tiktoken

from basketllm.types import Message

logger = logging.getLogger(__name__)

# Model families tiktoken can encode; DeepSeek's tokenizer is close to cl100k_base
TIKTOKEN_PREFIXES = ("gpt-", "o1", "o3", "deepseek-")
FALLBACK_ENCODING = "cl100k_base"


def load_encoding(model: str) -> Any:
    """Load the tiktoken encoding for ``model``, cl100k_base when tiktoken doesn't know it."""
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding(FALLBACK_ENCODING)


class TokenCounter:
    """Token counter for pre-flight cost estimates and budget checks.

    OpenAI and DeepSeek models are counted with tiktoken. Other models, and
    any model whose encoding fails to load, fall back to a chars-per-token
    estimate. Vendor-reported usage is what ends up in the ledger.
    """

    CHARS_PER_TOKEN = {
        "default": 4,
        "claude": 3.5,
    }
    # Per-message formatting overhead (role markers, separators)
    MESSAGE_OVERHEAD = 4
    # Every reply is primed with <|start|>assistant<|message|>
    REPLY_PRIMING = 2
    # Flat estimate for one image part
    IMAGE_TOKENS = 765

    def __init__(self) -> None:
        self._encoders: dict[str, Optional[Any]] = {}

    def _get_encoder(self, model: str) -> Optional[Any]:
        if not model.startswith(TIKTOKEN_PREFIXES):
            return None

        if model not in self._encoders:
            try:
                self._encoders[model] = load_encoding(model)
            except Exception as e:
                logger.warning("No tiktoken encoding for %s, estimating from characters: %s", model, e)
                self._encoders[model] = None
        return self._encoders[model]

    def count_tokens(self, text: str, model: str = "default") -> int:
        """Count the tokens of a string."""
        if not text:
            return 0

        encoder = self._get_encoder(model)
        if encoder is not None:
            return len(encoder.encode(text, disallowed_special=()))

        chars_per_token = self.CHARS_PER_TOKEN.get(
            model.split("-")[0],
            self.CHARS_PER_TOKEN["default"],
        )
        return int(len(text) / chars_per_token) + 1

    def count_message_tokens(self, messages: Iterable[Message], model: str = "default") -> int:
        """Count prompt tokens for a message list including overhead."""
        total = 0
        for message in messages:
            total += self.MESSAGE_OVERHEAD
            total += self.count_tokens(message.text_content(), model)
            if message.has_images():
                images = sum(1 for part in message.content if part.type == "image_url")
                total += images * self.IMAGE_TOKENS

        if self._get_encoder(model) is not None:
            total += self.REPLY_PRIMING
        return total


_default_counter = TokenCounter()


def estimate_tokens(messages: Iterable[Message], model: str = "default") -> int:
    """Count prompt tokens with the shared counter."""
    return _default_counter.count_message_tokens(messages, model)
