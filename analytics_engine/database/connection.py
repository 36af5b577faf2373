"""Async PostgreSQL access for repositories, jobs and the health check.

One process-wide engine, created on first use or by ``init_database`` at
startup and disposed by ``close_database`` at shutdown. Repositories open a
short-lived session per call:

    async with get_session() as session:
        rows = (await session.execute(select(CacheEntry))).scalars().all()
        await session.commit()
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from analytics_engine.core.config import settings
from analytics_engine.core.logging import get_logger


logger = get_logger("database")

_ASYNC_SCHEMES = ("postgresql://", "postgres://")

_engine: AsyncEngine | None = None
_sessions: async_sessionmaker[AsyncSession] | None = None


def get_async_database_url(url: str) -> str:
    """Point a plain ``postgres[ql]://`` URL at the asyncpg driver.

    Used here and by the alembic environment.
    """
    for scheme in _ASYNC_SCHEMES:
        if url.startswith(scheme):
            return "postgresql+asyncpg://" + url[len(scheme):]
    return url


def _build_engine() -> AsyncEngine:
    overflow = max(settings.db_pool_max_size - settings.db_pool_min_size, 0)
    return create_async_engine(
        get_async_database_url(settings.database_url),
        pool_size=settings.db_pool_min_size,
        max_overflow=overflow,
        pool_pre_ping=True,
        pool_recycle=1800,
        connect_args={
            "server_settings": {"application_name": "analytics_engine", "timezone": "UTC"},
        },
    )


async def get_engine() -> AsyncEngine:
    """Return the shared engine, creating it if needed."""
    global _engine, _sessions

    if _engine is None:
        _engine = _build_engine()
        _sessions = async_sessionmaker(_engine, expire_on_commit=False, autoflush=False)
        logger.info(
            f"Database engine ready (pool {settings.db_pool_min_size}-{settings.db_pool_max_size})"
        )
    return _engine


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Session that rolls back if the block raises, cancellation included."""
    if _sessions is None:
        await get_engine()

    async with _sessions() as session:
        try:
            yield session
        except BaseException:
            await session.rollback()
            raise


async def init_database() -> None:
    await get_engine()


async def close_database() -> None:
    """Dispose the engine; the next session call builds a fresh one."""
    global _engine, _sessions

    if _engine is None:
        return
    await _engine.dispose()
    _engine, _sessions = None, None
    logger.info("Database engine disposed")
