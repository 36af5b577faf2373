"""Persisted mirror of the fetch failure cache.

The in-memory FailureCache is authoritative; rows here let it survive a
restart.

Usage:
    from analytics_engine.repositories import fetch_failures_orm as failures_repo

    await failures_repo.upsert_failure(record)
    records = await failures_repo.load_live(now)
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert

from analytics_engine.core.failure_cache import FailureKind, FailureRecord
from analytics_engine.core.logging import get_logger
from analytics_engine.database.connection import get_session
from analytics_engine.database.orm import TickerFetchFailure


logger = get_logger("repositories.fetch_failures_orm")


async def upsert_failure(record: FailureRecord) -> None:
    """Write a failure record, replacing the ticker's previous row."""
    values = {
        "ticker": record.ticker,
        "last_attempt_at": record.failed_at,
        "failure_type": record.kind.value,
        "retry_after": record.expires_at,
        "consecutive_failures": record.consecutive_failures,
        "error_message": record.message,
    }
    stmt = insert(TickerFetchFailure).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["ticker"],
        set_={k: v for k, v in values.items() if k != "ticker"},
    )
    async with get_session() as session:
        await session.execute(stmt)
        await session.commit()


async def delete_failure(ticker: str) -> bool:
    """Remove a ticker's row. Returns True if one existed."""
    async with get_session() as session:
        result = await session.execute(
            delete(TickerFetchFailure).where(TickerFetchFailure.ticker == ticker.upper())
        )
        await session.commit()
        return result.rowcount > 0


async def load_live(now: datetime) -> list[FailureRecord]:
    """Rows whose retry_after is still in the future."""
    async with get_session() as session:
        result = await session.execute(
            select(TickerFetchFailure).where(TickerFetchFailure.retry_after > now)
        )
        return [
            FailureRecord(
                ticker=row.ticker,
                kind=FailureKind.from_string(row.failure_type),
                failed_at=row.last_attempt_at,
                message=row.error_message,
                consecutive_failures=row.consecutive_failures or 1,
            )
            for row in result.scalars().all()
        ]


async def delete_expired(now: datetime) -> int:
    """Delete rows whose retry_after has passed."""
    async with get_session() as session:
        result = await session.execute(
            delete(TickerFetchFailure).where(TickerFetchFailure.retry_after <= now)
        )
        await session.commit()
        if result.rowcount:
            logger.info(f"Deleted {result.rowcount} expired fetch failure rows")
        return result.rowcount
