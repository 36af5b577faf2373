"""Price series repository using SQLAlchemy ORM.

Daily closes keyed by (ticker, date). The price service is the only writer.

Usage:
    from analytics_engine.repositories import prices_orm as prices_repo

    points = await prices_repo.get_history("AAPL")
    await prices_repo.upsert_prices("AAPL", points)
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import and_, func, select
from sqlalchemy.dialects.postgresql import insert

from analytics_engine.core.logging import get_logger
from analytics_engine.database.connection import get_session
from analytics_engine.database.orm import HoldingSnapshot, PricePoint as PriceRow
from analytics_engine.quant_engine.types import PricePoint


logger = get_logger("repositories.prices_orm")


def _to_point(row: PriceRow) -> PricePoint:
    return PricePoint(date=row.date, close=float(row.close_price))


async def get_history(ticker: str) -> list[PricePoint]:
    """All stored closes for a ticker, oldest first."""
    async with get_session() as session:
        result = await session.execute(
            select(PriceRow)
            .where(PriceRow.ticker == ticker.upper())
            .order_by(PriceRow.date.asc())
        )
        return [_to_point(row) for row in result.scalars().all()]


async def get_history_since(ticker: str, start: date) -> list[PricePoint]:
    """Closes on or after ``start``, oldest first."""
    async with get_session() as session:
        result = await session.execute(
            select(PriceRow)
            .where(and_(PriceRow.ticker == ticker.upper(), PriceRow.date >= start))
            .order_by(PriceRow.date.asc())
        )
        return [_to_point(row) for row in result.scalars().all()]


async def get_recent(ticker: str, limit: int) -> list[PricePoint]:
    """The ``limit`` most recent closes, returned oldest first."""
    async with get_session() as session:
        result = await session.execute(
            select(PriceRow)
            .where(PriceRow.ticker == ticker.upper())
            .order_by(PriceRow.date.desc())
            .limit(limit)
        )
        rows = result.scalars().all()
        return [_to_point(row) for row in reversed(rows)]


async def get_latest_date(ticker: str) -> date | None:
    """Most recent stored date for a ticker."""
    async with get_session() as session:
        result = await session.execute(
            select(func.max(PriceRow.date)).where(PriceRow.ticker == ticker.upper())
        )
        return result.scalar_one_or_none()


async def get_latest_write(ticker: str) -> tuple[date, datetime] | None:
    """Latest stored date and when that row was last written."""
    async with get_session() as session:
        result = await session.execute(
            select(PriceRow.date, PriceRow.updated_at)
            .where(PriceRow.ticker == ticker.upper())
            .order_by(PriceRow.date.desc())
            .limit(1)
        )
        row = result.first()
        return (row[0], row[1]) if row else None


async def upsert_prices(ticker: str, points: Sequence[PricePoint]) -> int:
    """Insert or update closes in a single transaction.

    Args:
        ticker: Canonical ticker symbol
        points: Closes to store

    Returns:
        Number of rows written
    """
    if not points:
        return 0

    symbol = ticker.upper()
    # Last value wins if the provider repeated a date
    by_date = {p.date: p.close for p in points}
    values = [
        {"ticker": symbol, "date": d, "close_price": Decimal(str(close))}
        for d, close in sorted(by_date.items())
    ]

    stmt = insert(PriceRow).values(values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["ticker", "date"],
        set_={
            "close_price": stmt.excluded.close_price,
            "updated_at": func.now(),
        },
    )

    async with get_session() as session:
        await session.execute(stmt)
        await session.commit()

    logger.debug(f"Upserted {len(values)} prices for {symbol}")
    return len(values)


async def get_held_tickers() -> list[str]:
    """Distinct non-cash tickers with a positive quantity in the latest
    snapshot of any account."""
    latest = (
        select(
            HoldingSnapshot.account_id,
            func.max(HoldingSnapshot.snapshot_date).label("snapshot_date"),
        )
        .group_by(HoldingSnapshot.account_id)
        .subquery()
    )
    async with get_session() as session:
        result = await session.execute(
            select(HoldingSnapshot.ticker)
            .join(
                latest,
                and_(
                    HoldingSnapshot.account_id == latest.c.account_id,
                    HoldingSnapshot.snapshot_date == latest.c.snapshot_date,
                ),
            )
            .where(and_(HoldingSnapshot.ticker != "", HoldingSnapshot.quantity > 0))
            .distinct()
            .order_by(HoldingSnapshot.ticker)
        )
        return [row[0] for row in result.all()]


async def get_held_tickers_by_value(limit: int) -> list[str]:
    """Held tickers ranked by total market value across all accounts."""
    latest = (
        select(
            HoldingSnapshot.account_id,
            func.max(HoldingSnapshot.snapshot_date).label("snapshot_date"),
        )
        .group_by(HoldingSnapshot.account_id)
        .subquery()
    )
    total = func.sum(HoldingSnapshot.market_value).label("total_value")
    async with get_session() as session:
        result = await session.execute(
            select(HoldingSnapshot.ticker, total)
            .join(
                latest,
                and_(
                    HoldingSnapshot.account_id == latest.c.account_id,
                    HoldingSnapshot.snapshot_date == latest.c.snapshot_date,
                ),
            )
            .where(and_(HoldingSnapshot.ticker != "", HoldingSnapshot.quantity > 0))
            .group_by(HoldingSnapshot.ticker)
            .order_by(total.desc())
            .limit(limit)
        )
        return [row[0] for row in result.all()]
