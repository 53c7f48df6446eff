"""Process-local usage ledger."""

import asyncio
from datetime import datetime
from typing import Optional

from .tracker import CostRecord, TrainingExample, UsageStore, as_utc


class InMemoryUsageStore(UsageStore):
    """Usage store kept in process memory.

    Used when no database is configured and in tests.
    """

    def __init__(self) -> None:
        self.records: list[CostRecord] = []
        self.training_examples: list[TrainingExample] = []
        self._lock = asyncio.Lock()

    async def append(self, record: CostRecord) -> None:
        async with self._lock:
            self.records.append(record)

    async def add_training_example(self, example: TrainingExample) -> None:
        async with self._lock:
            self.training_examples.append(example)

    async def query(
        self,
        user_id: Optional[str] = None,
        task_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[CostRecord]:
        start = as_utc(start) if start is not None else None
        end = as_utc(end) if end is not None else None

        async with self._lock:
            matches = [
                record for record in self.records
                if (user_id is None or record.user_id == user_id)
                and (task_type is None or record.task_type == task_type)
                and (start is None or record.created_at >= start)
                and (end is None or record.created_at < end)
            ]
        matches.sort(key=lambda record: record.created_at, reverse=True)
        return matches[:limit] if limit is not None else matches

    async def purge_before(self, cutoff: datetime) -> int:
        cutoff = as_utc(cutoff)
        async with self._lock:
            kept = [record for record in self.records if record.created_at >= cutoff]
            removed = len(self.records) - len(kept)
            self.records = kept
            self.training_examples = [
                example for example in self.training_examples if example.created_at >= cutoff
            ]
            return removed
