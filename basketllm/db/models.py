"""Database models for basketllm.

- llm_cache: durable tier of the response cache, keyed by content hash
- llm_usage_logs: append-only cost/usage ledger
- llm_training_examples: captured (input, output) pairs
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from basketllm.db.base import Base, CreatedAtMixin


class LLMCacheRow(Base, CreatedAtMixin):
    """Cached provider response."""

    __tablename__ = "llm_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cache_key: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
        comment="SHA-256 of model, messages and temperature",
    )
    model_id: Mapped[str] = mapped_column(String(255), nullable=False)
    response: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="Serialized LLMResponse",
    )
    token_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<LLMCacheRow(key={self.cache_key[:12]}..., model={self.model_id})>"


class UsageLog(Base, CreatedAtMixin):
    """One provider call, successful or failed."""

    __tablename__ = "llm_usage_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="User who made the request",
    )
    task_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    model: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    input_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost: Mapped[Decimal] = mapped_column(
        Numeric(20, 10),
        nullable=False,
        default=Decimal("0"),
        comment="Cost in USD",
    )
    latency_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    request_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
    )

    def __repr__(self) -> str:
        return f"<UsageLog(task={self.task_type}, model={self.model}, success={self.success})>"


class TrainingExampleRow(Base, CreatedAtMixin):
    """Captured input/output pair for offline evaluation."""

    __tablename__ = "llm_training_examples"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    task_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    model: Mapped[str] = mapped_column(String(255), nullable=False)
    input: Mapped[Any] = mapped_column(JSON, nullable=True)
    output: Mapped[Any] = mapped_column(JSON, nullable=True)
    accuracy_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
