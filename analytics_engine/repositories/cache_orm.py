"""Artifact cache repository using SQLAlchemy ORM.

Every cache table shares the ``payload``/``calculated_at``/``expires_at``
columns and has a unique key over its parameter columns, so one set of
generic functions serves all of them.

Usage:
    from analytics_engine.repositories import cache_orm as cache_repo
    from analytics_engine.database.orm import RollingBetaCache

    key = {"ticker": "AAPL", "benchmark": "SPY", "days": 180}
    await cache_repo.upsert_entry(RollingBetaCache, key, payload, now, expires)
    row = await cache_repo.get_entry(RollingBetaCache, key)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, select
from sqlalchemy.dialects.postgresql import insert

from analytics_engine.core.logging import get_logger
from analytics_engine.database.connection import get_session
from analytics_engine.database.orm import CacheEntryMixin


logger = get_logger("repositories.cache_orm")


def _key_clause(model: type[CacheEntryMixin], key: dict[str, Any]):
    return and_(*(getattr(model, column) == value for column, value in key.items()))


async def get_entry(model: type[CacheEntryMixin], key: dict[str, Any]) -> CacheEntryMixin | None:
    """Row for ``key`` regardless of expiry."""
    async with get_session() as session:
        result = await session.execute(select(model).where(_key_clause(model, key)))
        return result.scalar_one_or_none()


async def upsert_entry(
    model: type[CacheEntryMixin],
    key: dict[str, Any],
    payload: dict[str, Any],
    calculated_at: datetime,
    expires_at: datetime,
) -> None:
    """Insert or replace the payload stored under ``key``.

    Args:
        model: Cache table model
        key: Values for the table's unique key columns
        payload: JSON-serializable document
        calculated_at: When the payload was computed
        expires_at: When readers should treat it as a miss
    """
    values = {"payload": payload, "calculated_at": calculated_at, "expires_at": expires_at}
    stmt = insert(model).values(**key, **values)
    stmt = stmt.on_conflict_do_update(index_elements=list(key.keys()), set_=values)
    async with get_session() as session:
        await session.execute(stmt)
        await session.commit()


async def delete_entry(model: type[CacheEntryMixin], key: dict[str, Any]) -> int:
    """Delete rows matching a full or partial key. Returns rows deleted."""
    async with get_session() as session:
        result = await session.execute(delete(model).where(_key_clause(model, key)))
        await session.commit()
        return result.rowcount


async def delete_expired(model: type[CacheEntryMixin], now: datetime) -> int:
    """Delete rows whose ``expires_at`` has passed."""
    async with get_session() as session:
        result = await session.execute(delete(model).where(model.expires_at <= now))
        await session.commit()
        return result.rowcount
