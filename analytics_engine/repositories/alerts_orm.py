"""Portfolio alert repository."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

from sqlalchemy import and_, select

from analytics_engine.core.logging import get_logger
from analytics_engine.database.connection import get_session
from analytics_engine.database.orm import Alert as AlertRow
from analytics_engine.services.alert_types import Alert


logger = get_logger("repositories.alerts_orm")


async def save_alerts(alerts: Sequence[Alert]) -> int:
    """Insert alerts, skipping any already stored for the same
    (kind, portfolio, ticker, metric, observed_on, severity).

    Returns:
        Number of alerts inserted
    """
    if not alerts:
        return 0

    inserted = 0
    async with get_session() as session:
        for alert in alerts:
            ticker_clause = (
                AlertRow.ticker.is_(None) if alert.ticker is None else AlertRow.ticker == alert.ticker
            )
            existing = await session.execute(
                select(AlertRow.id)
                .where(
                    and_(
                        AlertRow.kind == alert.kind.value,
                        AlertRow.portfolio_id == alert.portfolio_id,
                        ticker_clause,
                        AlertRow.metric == alert.metric,
                        AlertRow.observed_on == alert.observed_on,
                        AlertRow.severity == alert.severity.value,
                    )
                )
                .limit(1)
            )
            if existing.scalar_one_or_none() is not None:
                continue
            session.add(
                AlertRow(
                    kind=alert.kind.value,
                    portfolio_id=alert.portfolio_id,
                    ticker=alert.ticker,
                    metric=alert.metric,
                    previous_value=alert.previous_value,
                    current_value=alert.current_value,
                    change_pct=alert.change_pct,
                    severity=alert.severity.value,
                    observed_on=alert.observed_on,
                    payload=alert.payload,
                )
            )
            inserted += 1
        await session.commit()

    if inserted:
        logger.info(f"Stored {inserted} new alerts")
    return inserted


async def list_alerts(portfolio_id: int, since: date) -> Sequence[AlertRow]:
    async with get_session() as session:
        result = await session.execute(
            select(AlertRow)
            .where(and_(AlertRow.portfolio_id == portfolio_id, AlertRow.observed_on >= since))
            .order_by(AlertRow.observed_on.desc(), AlertRow.id.desc())
        )
        return result.scalars().all()
