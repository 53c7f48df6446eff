"""Database session management for basketllm.

Provides async session management and lifecycle management for the
SQLAlchemy async ORM.
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from basketllm.db.base import Base

# Global engine and session factory
_engine: Optional[AsyncEngine] = None
_async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> Optional[str]:
    """Database URL from the environment, if any."""
    return os.environ.get("DATABASE_URL")


def create_engine(url: str) -> AsyncEngine:
    """Create an async engine; pool sizing applies to server databases only."""
    kwargs: dict = {
        "echo": os.environ.get("SQL_ECHO", "false").lower() == "true",
    }
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=int(os.environ.get("DB_POOL_SIZE", "10")),
            max_overflow=int(os.environ.get("DB_MAX_OVERFLOW", "20")),
            pool_pre_ping=True,
            pool_recycle=3600,
        )
    return create_async_engine(url, **kwargs)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def init_db(database_url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    """Initialize the database engine and session maker.

    Args:
        database_url: Optional database URL. If not provided, uses the
                     DATABASE_URL environment variable.

    Raises:
        RuntimeError: If no URL is configured
    """
    global _engine, _async_session_maker

    if _async_session_maker is not None:
        return _async_session_maker

    url = database_url or get_database_url()
    if not url:
        raise RuntimeError("No database URL configured. Set DATABASE_URL.")

    _engine = create_engine(url)
    _async_session_maker = create_session_maker(_engine)
    return _async_session_maker


async def close_db() -> None:
    """Close the database engine and cleanup resources."""
    global _engine, _async_session_maker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_maker = None


async def create_tables(engine: Optional[AsyncEngine] = None) -> None:
    """Create all tables. Intended for development and tests."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session that commits on success and rolls back on error."""
    if _async_session_maker is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    session = _async_session_maker()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


def get_engine() -> AsyncEngine:
    """Get the current database engine.

    Raises:
        RuntimeError: If database hasn't been initialized.
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine
