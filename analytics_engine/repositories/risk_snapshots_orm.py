"""Risk snapshot repository using SQLAlchemy ORM.

One row per (portfolio, ticker, date, type). Portfolio-level rows carry a
NULL ticker; the unique constraint is NULLS NOT DISTINCT so they upsert too.

Usage:
    from analytics_engine.repositories import risk_snapshots_orm as snapshots_repo

    await snapshots_repo.upsert_snapshot(values)
    history = await snapshots_repo.get_portfolio_history(1, start, end)
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from typing import Any

from sqlalchemy import and_, delete, select
from sqlalchemy.dialects.postgresql import insert

from analytics_engine.core.logging import get_logger
from analytics_engine.database.connection import get_session
from analytics_engine.database.orm import RiskSnapshot


logger = get_logger("repositories.risk_snapshots_orm")

_KEY_COLUMNS = ("portfolio_id", "ticker", "snapshot_date", "snapshot_type")


async def upsert_snapshot(values: dict[str, Any]) -> None:
    """Insert a snapshot or overwrite the row with the same key."""
    stmt = insert(RiskSnapshot).values(**values)
    stmt = stmt.on_conflict_do_update(
        constraint="uq_risk_snapshots_key",
        set_={k: v for k, v in values.items() if k not in _KEY_COLUMNS},
    )
    async with get_session() as session:
        await session.execute(stmt)
        await session.commit()


async def get_portfolio_history(
    portfolio_id: int, start: date, end: date | None = None
) -> Sequence[RiskSnapshot]:
    """Portfolio-level snapshots in [start, end], oldest first."""
    conditions = [
        RiskSnapshot.portfolio_id == portfolio_id,
        RiskSnapshot.snapshot_type == "portfolio",
        RiskSnapshot.snapshot_date >= start,
    ]
    if end is not None:
        conditions.append(RiskSnapshot.snapshot_date <= end)
    async with get_session() as session:
        result = await session.execute(
            select(RiskSnapshot).where(and_(*conditions)).order_by(RiskSnapshot.snapshot_date.asc())
        )
        return result.scalars().all()


async def get_history(
    portfolio_id: int,
    ticker: str | None,
    start: date,
    end: date,
) -> Sequence[RiskSnapshot]:
    """Snapshots for one ticker (or the portfolio row when ticker is None)."""
    ticker_clause = (
        RiskSnapshot.ticker.is_(None)
        if ticker is None
        else RiskSnapshot.ticker == ticker.upper()
    )
    async with get_session() as session:
        result = await session.execute(
            select(RiskSnapshot)
            .where(
                and_(
                    RiskSnapshot.portfolio_id == portfolio_id,
                    ticker_clause,
                    RiskSnapshot.snapshot_date >= start,
                    RiskSnapshot.snapshot_date <= end,
                )
            )
            .order_by(RiskSnapshot.snapshot_date.asc())
        )
        return result.scalars().all()


async def get_latest_portfolio_snapshot(portfolio_id: int) -> RiskSnapshot | None:
    async with get_session() as session:
        result = await session.execute(
            select(RiskSnapshot)
            .where(
                and_(
                    RiskSnapshot.portfolio_id == portfolio_id,
                    RiskSnapshot.snapshot_type == "portfolio",
                )
            )
            .order_by(RiskSnapshot.snapshot_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


async def delete_older_than(cutoff: date) -> int:
    """Delete snapshots dated before ``cutoff``. Returns rows deleted."""
    async with get_session() as session:
        result = await session.execute(
            delete(RiskSnapshot).where(RiskSnapshot.snapshot_date < cutoff)
        )
        await session.commit()
        return result.rowcount
