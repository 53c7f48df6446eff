"""SQLAlchemy implementations of the durable cache and usage stores."""

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from basketllm.budget.tracker import CostRecord, TrainingExample, UsageStore, as_utc
from basketllm.cache.base import CacheEntry, CacheStore
from basketllm.exceptions import CacheUnavailableError
from basketllm.types import LLMResponse
from basketllm.db.models import LLMCacheRow, TrainingExampleRow, UsageLog

# Dialects with INSERT ... ON CONFLICT DO UPDATE
_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SQLCacheStore(CacheStore):
    """Durable cache tier on the ``llm_cache`` table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def get(self, key: str, now: datetime) -> Optional[CacheEntry]:
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(LLMCacheRow).where(
                        LLMCacheRow.cache_key == key,
                        LLMCacheRow.expires_at > as_utc(now),
                    )
                )
                row = result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            raise CacheUnavailableError(f"Cache read failed: {e}") from e

        if row is None:
            return None

        return CacheEntry(
            key=row.cache_key,
            model=row.model_id,
            response=LLMResponse.model_validate(row.response),
            created_at=as_utc(row.created_at),
            expires_at=as_utc(row.expires_at),
            tokens=row.token_count,
        )

    async def upsert(self, entry: CacheEntry) -> None:
        try:
            async with self.session_maker() as session:
                dialect = session.bind.dialect.name
                insert = _DIALECT_INSERTS.get(dialect)
                if insert is None:
                    raise CacheUnavailableError(f"Cache upsert is not supported on {dialect}")

                stmt = insert(LLMCacheRow).values(
                    cache_key=entry.key,
                    model_id=entry.model,
                    response=entry.response.model_dump(mode="json"),
                    token_count=entry.tokens,
                    created_at=as_utc(entry.created_at),
                    expires_at=as_utc(entry.expires_at),
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["cache_key"],
                    set_={
                        "model_id": stmt.excluded.model_id,
                        "response": stmt.excluded.response,
                        "token_count": stmt.excluded.token_count,
                        "expires_at": stmt.excluded.expires_at,
                    },
                )
                await session.execute(stmt)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise CacheUnavailableError(f"Cache write failed: {e}") from e

    async def purge_expired(self, now: datetime) -> int:
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    delete(LLMCacheRow).where(LLMCacheRow.expires_at <= as_utc(now))
                )
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise CacheUnavailableError(f"Cache purge failed: {e}") from e
        return result.rowcount or 0


class SQLUsageStore(UsageStore):
    """Usage ledger on the ``llm_usage_logs`` table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def append(self, record: CostRecord) -> None:
        async with self.session_maker() as session:
            session.add(UsageLog(
                user_id=record.user_id,
                task_type=record.task_type,
                provider=record.provider,
                model=record.model,
                input_tokens=record.input_tokens,
                output_tokens=record.output_tokens,
                cost=record.cost,
                latency_ms=record.latency_ms,
                success=record.success,
                error_message=record.error_message,
                cached=record.cached,
                request_metadata=record.metadata,
                created_at=as_utc(record.created_at),
            ))
            await session.commit()

    async def add_training_example(self, example: TrainingExample) -> None:
        async with self.session_maker() as session:
            session.add(TrainingExampleRow(
                task_type=example.task_type,
                model=example.model,
                input=example.input,
                output=example.output,
                accuracy_score=example.accuracy_score,
                created_at=as_utc(example.created_at),
            ))
            await session.commit()

    async def query(
        self,
        user_id: Optional[str] = None,
        task_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[CostRecord]:
        stmt = select(UsageLog).order_by(UsageLog.created_at.desc())
        if user_id is not None:
            stmt = stmt.where(UsageLog.user_id == user_id)
        if task_type is not None:
            stmt = stmt.where(UsageLog.task_type == task_type)
        if start is not None:
            stmt = stmt.where(UsageLog.created_at >= as_utc(start))
        if end is not None:
            stmt = stmt.where(UsageLog.created_at < as_utc(end))
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self.session_maker() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()

        return [
            CostRecord(
                task_type=row.task_type,
                provider=row.provider,
                model=row.model,
                input_tokens=row.input_tokens,
                output_tokens=row.output_tokens,
                cost=row.cost,
                latency_ms=row.latency_ms,
                success=row.success,
                user_id=row.user_id,
                error_message=row.error_message,
                cached=row.cached,
                metadata=row.request_metadata or {},
                created_at=as_utc(row.created_at),
            )
            for row in rows
        ]

    async def purge_before(self, cutoff: datetime) -> int:
        cutoff = as_utc(cutoff)
        async with self.session_maker() as session:
            result = await session.execute(
                delete(UsageLog).where(UsageLog.created_at < cutoff)
            )
            await session.execute(
                delete(TrainingExampleRow).where(TrainingExampleRow.created_at < cutoff)
            )
            await session.commit()
        return result.rowcount or 0

