"""Pydantic schemas for the basketllm HTTP API."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from basketllm.types import ChatOptions, Message, SubscriptionTier, TaskType


class ChatRequest(BaseModel):
    """Body of ``POST /v1/chat``."""

    messages: list[Message] = Field(min_length=1)
    task_type: TaskType = TaskType.ASSISTANT_CHAT
    options: Optional[ChatOptions] = None
    user_id: Optional[str] = None
    tier: Optional[SubscriptionTier] = None
    metadata: Optional[dict[str, Any]] = None


class UsageResponse(BaseModel):
    """Current rate-limit window usage."""

    daily_calls: int
    daily_tokens: int
    minute_calls: int


class RateLimitStatus(BaseModel):
    """Rate-limit standing of one user."""

    user_id: str
    allowed: bool
    remaining: int
    reset_at: datetime
    reason: Optional[str] = None
    window: Optional[str] = None
    usage: UsageResponse


class UsageSummary(BaseModel):
    """Aggregated ledger figures."""

    user_id: Optional[str] = None
    calls: int
    failures: int
    input_tokens: int
    output_tokens: int
    total_tokens: int
    cost: Decimal
    by_task: dict[str, int]
    by_provider: dict[str, int]


class MaintenanceResult(BaseModel):
    """Rows and entries removed by a maintenance run."""

    cache_rows: int
    memory_entries: int
    rate_limit_counters: int
    usage_rows: int
