"""Request option definitions."""

from typing import Literal, Optional
from pydantic import BaseModel, Field


ResponseFormat = Literal["text", "json"]


class ChatOptions(BaseModel):
    """Per-request generation options.

    Every field is optional; unset fields fall back to the task route's
    defaults and then to the provider's own defaults.
    """

    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    top_p: Optional[float] = Field(default=None, ge=0, le=1)
    stop: Optional[list[str]] = None
    response_format: Optional[ResponseFormat] = None
    timeout: Optional[float] = Field(default=None, gt=0, description="Timeout in seconds")
    model: Optional[str] = None

    def merged_with(self, overrides: Optional["ChatOptions"]) -> "ChatOptions":
        """Return a copy with every field set on ``overrides`` taking precedence."""
        if overrides is None:
            return self.model_copy()
        return self.model_copy(update=overrides.model_dump(exclude_none=True))
