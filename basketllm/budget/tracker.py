"""Cost and usage tracking.

Every non-cached provider call becomes one write-once ``CostRecord``;
failed attempts become zero-cost records so outages stay visible. Records
are persisted as background writes, so ledger failures never block or
fail the request that produced them.
"""

import logging
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Union

from basketllm.types import LLMResponse, TaskType
from basketllm.utils.background import BackgroundWrites
from basketllm.utils.pricing import calculate_cost

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)



@dataclass(frozen=True)
class CostRecord:
    """One ledger row. Never mutated after creation."""

    task_type: str
    provider: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: Decimal = Decimal("0")
    latency_ms: float = 0.0
    success: bool = True
    user_id: Optional[str] = None
    error_message: Optional[str] = None
    cached: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class TrainingExample:
    """An (input, output) pair kept for later evaluation."""

    task_type: str
    model: str
    input: Any
    output: Any
    accuracy_score: Optional[float] = None
    created_at: datetime = field(default_factory=utcnow)


class UsageStore(ABC):
    """Durable append-only usage ledger."""

    @abstractmethod
    async def append(self, record: CostRecord) -> None:
        """Append one record."""

    @abstractmethod
    async def add_training_example(self, example: TrainingExample) -> None:
        """Store one training example."""

    @abstractmethod
    async def query(
        self,
        user_id: Optional[str] = None,
        task_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[CostRecord]:
        """Records matching the filters, newest first.

        ``start`` is inclusive and ``end`` exclusive.
        """

    @abstractmethod
    async def purge_before(self, cutoff: datetime) -> int:
        """Delete records and training examples created before ``cutoff``.

        Returns the number of ledger records removed.
        """


def _task_value(task_type: Union[TaskType, str]) -> str:
    return task_type.value if isinstance(task_type, TaskType) else str(task_type)


class CostTracker:
    """Records provider calls and failures in a usage store."""

    def __init__(
        self,
        store: Optional[UsageStore] = None,
        writes: Optional[BackgroundWrites] = None,
    ) -> None:
        if store is None:
            from .store import InMemoryUsageStore
            store = InMemoryUsageStore()
        self.store = store
        self.writes = writes or BackgroundWrites()

    def track_call(
        self,
        task_type: Union[TaskType, str],
        response: LLMResponse,
        latency_ms: float,
        user_id: Optional[str] = None,
        cached: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[CostRecord]:
        """Record a successful call.

        Cached responses cost nothing and are never recorded.

        Returns:
            The record scheduled for persistence, or None when cached
        """
        if cached or response.cached:
            return None

        record = CostRecord(
            task_type=_task_value(task_type),
            provider=response.provider,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            cost=calculate_cost(
                response.model,
                response.usage.input_tokens,
                response.usage.output_tokens,
            ),
            latency_ms=latency_ms,
            success=True,
            user_id=user_id,
            metadata=dict(metadata or {}),
        )
        self.writes.submit(self.store.append(record), description="usage record write")

        logger.debug(
            "Tracked %s call: model=%s tokens=%d cost=$%.8f",
            record.task_type, record.model, record.total_tokens, record.cost,
        )
        return record

    def track_error(
        self,
        task_type: Union[TaskType, str],
        model: str,
        provider: str,
        latency_ms: float,
        message: str,
        user_id: Optional[str] = None,
    ) -> CostRecord:
        """Record a failed attempt as a zero-token, zero-cost record."""
        record = CostRecord(
            task_type=_task_value(task_type),
            provider=provider,
            model=model,
            latency_ms=latency_ms,
            success=False,
            user_id=user_id,
            error_message=message,
        )
        self.writes.submit(self.store.append(record), description="usage error write")
        return record

    @staticmethod
    def estimate_cost(model: str, est_input_tokens: int, est_output_tokens: int) -> Decimal:
        """Estimated USD cost of a call, from the static pricing table."""
        return calculate_cost(model, est_input_tokens, est_output_tokens)

    def store_training_example(
        self,
        task_type: Union[TaskType, str],
        model: str,
        input: Any,
        output: Any,
        accuracy_score: Optional[float] = None,
    ) -> TrainingExample:
        example = TrainingExample(
            task_type=_task_value(task_type),
            model=model,
            input=input,
            output=output,
            accuracy_score=accuracy_score,
        )
        self.writes.submit(
            self.store.add_training_example(example),
            description="training example write",
        )
        return example

    async def get_usage_summary(
        self,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Aggregate calls, failures, tokens and cost over the ledger."""
        records = await self.store.query(user_id=user_id, start=start, end=end)

        by_task: Counter[str] = Counter()
        by_provider: Counter[str] = Counter()
        total_cost = Decimal("0")
        input_tokens = output_tokens = failures = 0

        for record in records:
            by_task[record.task_type] += 1
            by_provider[record.provider] += 1
            total_cost += record.cost
            input_tokens += record.input_tokens
            output_tokens += record.output_tokens
            if not record.success:
                failures += 1

        return {
            "user_id": user_id,
            "calls": len(records),
            "failures": failures,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
            "cost": total_cost,
            "by_task": dict(by_task),
            "by_provider": dict(by_provider),
        }

    async def purge_before(self, cutoff: datetime) -> int:
        removed = await self.store.purge_before(cutoff)
        if removed:
            logger.info("Purged %d usage records older than %s", removed, cutoff.isoformat())
        return removed
