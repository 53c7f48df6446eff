"""Database models and session management for basketllm."""

from basketllm.db.base import Base
from basketllm.db.models import LLMCacheRow, TrainingExampleRow, UsageLog
from basketllm.db.session import (
    close_db,
    create_engine,
    create_session_maker,
    create_tables,
    get_engine,
    get_session,
    init_db,
)
from basketllm.db.stores import SQLCacheStore, SQLUsageStore

__all__ = [
    "Base",
    "LLMCacheRow",
    "TrainingExampleRow",
    "UsageLog",
    "close_db",
    "create_engine",
    "create_session_maker",
    "create_tables",
    "get_engine",
    "get_session",
    "init_db",
    "SQLCacheStore",
    "SQLUsageStore",
]
