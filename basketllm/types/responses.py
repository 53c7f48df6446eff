"""Response type definitions."""

from decimal import Decimal
from typing import Literal, Optional
from pydantic import BaseModel, Field, model_validator

from .common import ErrorDetail


FinishReason = Literal["stop", "length", "content_filter", "error"]


class TokenUsage(BaseModel):
    """Token usage and computed cost of one call."""

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    cost: Decimal = Decimal("0")


class LLMResponse(BaseModel):
    """Normalized chat completion response."""

    content: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str
    provider: str
    finish_reason: Optional[FinishReason] = None
    cached: bool = False


class ChatResult(BaseModel):
    """Outcome of an orchestrated chat call.

    Exactly one of ``response`` and ``error`` is set. Rate-limit rejections
    and configuration problems arrive here as ``error``; only provider
    exhaustion is raised.
    """

    response: Optional[LLMResponse] = None
    error: Optional[ErrorDetail] = None

    @model_validator(mode="after")
    def validate_outcome(self) -> "ChatResult":
        if (self.response is None) == (self.error is None):
            raise ValueError("exactly one of response and error must be set")
        return self

    @property
    def ok(self) -> bool:
        return self.response is not None
