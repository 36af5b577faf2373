"""Watchlist repository using SQLAlchemy ORM.

Covers what the monitoring job reads and writes: items and their
thresholds, alert cooldown lookups, generated alerts, and the per-item
monitoring state.

Usage:
    from analytics_engine.repositories import watchlist_orm as watchlist_repo

    tickers = await watchlist_repo.get_watchlist_tickers()
    items = await watchlist_repo.get_items_for_ticker("AAPL")
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.dialects.postgresql import insert

from analytics_engine.core.logging import get_logger
from analytics_engine.database.connection import get_session
from analytics_engine.database.orm import (
    Watchlist,
    WatchlistAlert,
    WatchlistItem,
    WatchlistMonitoringState,
    WatchlistThreshold,
)


logger = get_logger("repositories.watchlist_orm")


async def get_watchlist_tickers() -> list[str]:
    """Distinct tickers across all watchlists."""
    async with get_session() as session:
        result = await session.execute(
            select(WatchlistItem.ticker).distinct().order_by(WatchlistItem.ticker)
        )
        return [row[0] for row in result.all()]


async def get_items_for_ticker(ticker: str) -> list[tuple[WatchlistItem, str]]:
    """Every watchlist item holding ``ticker`` with the owning user id."""
    async with get_session() as session:
        result = await session.execute(
            select(WatchlistItem, Watchlist.user_id)
            .join(Watchlist, Watchlist.id == WatchlistItem.watchlist_id)
            .where(WatchlistItem.ticker == ticker.upper())
            .order_by(WatchlistItem.id)
        )
        return [(item, user_id) for item, user_id in result.all()]


async def get_thresholds(watchlist_item_id: int) -> Sequence[WatchlistThreshold]:
    async with get_session() as session:
        result = await session.execute(
            select(WatchlistThreshold)
            .where(WatchlistThreshold.watchlist_item_id == watchlist_item_id)
            .order_by(WatchlistThreshold.id)
        )
        return result.scalars().all()


async def has_recent_alert(
    watchlist_item_id: int,
    alert_type: str,
    since: datetime,
    prefix: bool = False,
) -> bool:
    """Whether an alert of this type was created after ``since``.

    Args:
        watchlist_item_id: Watchlist item
        alert_type: Exact alert type, or a type prefix when ``prefix`` is set
        since: Start of the cooldown window
        prefix: Match every alert type starting with ``alert_type``
    """
    type_clause = (
        WatchlistAlert.alert_type.startswith(alert_type, autoescape=True)
        if prefix
        else WatchlistAlert.alert_type == alert_type
    )
    async with get_session() as session:
        result = await session.execute(
            select(func.count(WatchlistAlert.id)).where(
                and_(
                    WatchlistAlert.watchlist_item_id == watchlist_item_id,
                    type_clause,
                    WatchlistAlert.created_at > since,
                )
            )
        )
        return result.scalar_one() > 0


async def create_alert(
    watchlist_item_id: int,
    user_id: str,
    ticker: str,
    alert_type: str,
    severity: str,
    message: str,
    actual_value: float | None,
    threshold_value: float | None,
    metadata: dict[str, Any],
) -> int:
    async with get_session() as session:
        alert = WatchlistAlert(
            watchlist_item_id=watchlist_item_id,
            user_id=user_id,
            ticker=ticker,
            alert_type=alert_type,
            severity=severity,
            message=message,
            actual_value=actual_value,
            threshold_value=threshold_value,
            metadata_=metadata,
        )
        session.add(alert)
        await session.flush()
        alert_id = alert.id
        await session.commit()
        return alert_id


async def get_monitoring_state(watchlist_item_id: int) -> WatchlistMonitoringState | None:
    async with get_session() as session:
        result = await session.execute(
            select(WatchlistMonitoringState).where(
                WatchlistMonitoringState.watchlist_item_id == watchlist_item_id
            )
        )
        return result.scalar_one_or_none()


async def upsert_monitoring_state(
    watchlist_item_id: int,
    last_price: float | None,
    last_rsi: float | None,
    last_volume_ratio: float | None,
    last_volatility: float | None,
    last_sentiment_score: float | None,
) -> None:
    """Record the latest observed values; None keeps the stored value."""
    stmt = insert(WatchlistMonitoringState).values(
        watchlist_item_id=watchlist_item_id,
        last_price=last_price,
        last_rsi=last_rsi,
        last_volume_ratio=last_volume_ratio,
        last_volatility=last_volatility,
        last_sentiment_score=last_sentiment_score,
        last_checked_at=func.now(),
        updated_at=func.now(),
    )
    excluded = stmt.excluded
    table = WatchlistMonitoringState
    stmt = stmt.on_conflict_do_update(
        index_elements=["watchlist_item_id"],
        set_={
            "last_price": func.coalesce(excluded.last_price, table.last_price),
            "last_rsi": func.coalesce(excluded.last_rsi, table.last_rsi),
            "last_volume_ratio": func.coalesce(excluded.last_volume_ratio, table.last_volume_ratio),
            "last_volatility": func.coalesce(excluded.last_volatility, table.last_volatility),
            "last_sentiment_score": func.coalesce(
                excluded.last_sentiment_score, table.last_sentiment_score
            ),
            "last_checked_at": func.now(),
            "updated_at": func.now(),
        },
    )
    async with get_session() as session:
        await session.execute(stmt)
        await session.commit()
