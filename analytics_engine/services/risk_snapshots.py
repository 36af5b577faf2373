"""
Daily risk snapshots.

Writes one position row per held ticker and one portfolio row per day, and
reads them back as history or an aggregated trend.

Usage:
    from analytics_engine.services.risk_snapshots import RiskSnapshotService

    service = RiskSnapshotService(risk_service)
    result = await service.create_daily_snapshots(portfolio_id)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import Any

from analytics_engine.core.exceptions import AppException, DataMissingError, NotFoundError, ValidationError
from analytics_engine.core.logging import get_logger
from analytics_engine.database.orm import HoldingSnapshot, RiskSnapshot
from analytics_engine.quant_engine.risk import aggregate_portfolio_risk
from analytics_engine.quant_engine.types import PositionRisk, RiskAssessment
from analytics_engine.repositories import holdings_orm, risk_snapshots_orm
from analytics_engine.services.risk import RiskService


logger = get_logger("services.risk_snapshots")

SNAPSHOT_LOOKBACK_DAYS = 90
ARCHIVE_AFTER_DAYS = 365
TREND_AGGREGATIONS = ("daily", "weekly", "monthly")


@dataclass
class SnapshotResult:
    portfolio_id: int
    snapshot_date: date
    positions_written: int = 0
    positions_failed: int = 0
    failed_tickers: list[str] = field(default_factory=list)
    portfolio: RiskAssessment | None = None


def aggregate_positions(holdings: Sequence[HoldingSnapshot]) -> dict[str, float]:
    """Market value per ticker across accounts; cash and empty positions dropped."""
    totals: dict[str, float] = {}
    for row in holdings:
        ticker = (row.ticker or "").strip().upper()
        if not ticker or float(row.quantity or 0) <= 0:
            continue
        totals[ticker] = totals.get(ticker, 0.0) + float(row.market_value or 0)
    return totals


def snapshot_values(
    portfolio_id: int,
    snapshot_date: date,
    assessment: RiskAssessment,
    ticker: str | None,
    market_value: float | None = None,
    total_value: float | None = None,
) -> dict[str, Any]:
    """Column values for one ``risk_snapshots`` row."""
    return {
        "portfolio_id": portfolio_id,
        "ticker": ticker,
        "snapshot_date": snapshot_date,
        "snapshot_type": "position" if ticker else "portfolio",
        "volatility": assessment.volatility,
        "max_drawdown": assessment.max_drawdown,
        "beta": assessment.beta,
        "sharpe": assessment.sharpe,
        "sortino": assessment.sortino,
        "value_at_risk": assessment.var_95,
        "var_95": assessment.var_95,
        "var_99": assessment.var_99,
        "es_95": assessment.es_95,
        "es_99": assessment.es_99,
        "risk_score": assessment.risk_score,
        "risk_level": assessment.risk_level.value,
        "market_value": market_value,
        "total_value": total_value,
    }


def snapshot_to_dict(row: RiskSnapshot) -> dict[str, Any]:
    return {
        "snapshot_date": row.snapshot_date.isoformat(),
        "ticker": row.ticker,
        "snapshot_type": row.snapshot_type,
        "volatility": row.volatility,
        "max_drawdown": row.max_drawdown,
        "beta": row.beta,
        "sharpe": row.sharpe,
        "var_95": row.var_95,
        "risk_score": row.risk_score,
        "risk_level": row.risk_level,
        "total_value": float(row.total_value) if row.total_value is not None else None,
    }


def bucket_key(day: date, aggregation: str) -> tuple[int, int] | date:
    if aggregation == "weekly":
        iso = day.isocalendar()
        return (iso.year, iso.week)
    if aggregation == "monthly":
        return (day.year, day.month)
    return day


def aggregate_trend(rows: Sequence[RiskSnapshot], aggregation: str) -> list[RiskSnapshot]:
    """Keep the last snapshot of each day, ISO week or month."""
    if aggregation not in TREND_AGGREGATIONS:
        raise ValidationError(
            f"Unknown aggregation '{aggregation}'",
            details={"allowed": list(TREND_AGGREGATIONS)},
        )
    buckets: dict[Any, RiskSnapshot] = {}
    for row in sorted(rows, key=lambda r: r.snapshot_date):
        buckets[bucket_key(row.snapshot_date, aggregation)] = row
    return list(buckets.values())


class RiskSnapshotService:
    """Writes and reads ``risk_snapshots``."""

    def __init__(self, risk_service: RiskService):
        self.risk_service = risk_service

    async def create_daily_snapshots(
        self,
        portfolio_id: int,
        snapshot_date: date | None = None,
    ) -> SnapshotResult:
        """
        Assess every held ticker and the weighted portfolio for one day.

        Only stored closes are read; refresh_prices owns provider traffic.
        A ticker that cannot be assessed is logged and counted; the rest of
        the portfolio is still written.

        Raises:
            NotFoundError: The portfolio has no holdings
            DataMissingError: No position could be assessed, or total value is zero
        """
        snapshot_date = snapshot_date or datetime.now(UTC).date()
        holdings = await holdings_orm.get_latest_holdings(portfolio_id)
        positions = aggregate_positions(holdings)
        if not positions:
            raise NotFoundError(
                message=f"No holdings found for portfolio {portfolio_id}",
                details={"portfolio_id": portfolio_id},
            )

        total_value = sum(positions.values())
        if total_value <= 0:
            raise DataMissingError(
                message=f"Portfolio {portfolio_id} has zero total value",
                details={"portfolio_id": portfolio_id},
            )

        result = SnapshotResult(portfolio_id=portfolio_id, snapshot_date=snapshot_date)
        assessed: list[PositionRisk] = []
        for ticker, market_value in sorted(positions.items()):
            try:
                assessment = await self.risk_service.assess(
                    ticker, SNAPSHOT_LOOKBACK_DAYS, refresh=False
                )
                await risk_snapshots_orm.upsert_snapshot(
                    snapshot_values(
                        portfolio_id, snapshot_date, assessment, ticker, market_value=market_value
                    )
                )
            except AppException as e:
                logger.warning(f"Skipping {ticker} in portfolio {portfolio_id}: {e.message}")
                result.positions_failed += 1
                result.failed_tickers.append(ticker)
                continue
            assessed.append(PositionRisk(ticker, market_value, assessment))
            result.positions_written += 1

        if not assessed:
            raise DataMissingError(
                message=f"No position of portfolio {portfolio_id} could be assessed",
                details={"portfolio_id": portfolio_id, "failed": result.failed_tickers},
            )

        portfolio = aggregate_portfolio_risk(assessed, label=f"PORTFOLIO_{portfolio_id}")
        await risk_snapshots_orm.upsert_snapshot(
            snapshot_values(portfolio_id, snapshot_date, portfolio, None, total_value=total_value)
        )
        result.portfolio = portfolio

        logger.info(
            f"Portfolio {portfolio_id} snapshot {snapshot_date}: score {portfolio.risk_score:.1f} "
            f"({result.positions_written} positions, {result.positions_failed} failed)"
        )
        return result

    async def get_history(
        self,
        portfolio_id: int,
        ticker: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> Sequence[RiskSnapshot]:
        """Snapshots of a position, or of the portfolio when ``ticker`` is None.

        Defaults to the last 90 days.
        """
        end = end or datetime.now(UTC).date()
        start = start or end - timedelta(days=SNAPSHOT_LOOKBACK_DAYS)
        return await risk_snapshots_orm.get_history(portfolio_id, ticker, start, end)

    async def get_risk_trend(
        self,
        portfolio_id: int,
        days: int = 90,
        aggregation: str = "daily",
    ) -> dict[str, Any]:
        """Portfolio risk over time with first-to-last change."""
        end = datetime.now(UTC).date()
        rows = await risk_snapshots_orm.get_portfolio_history(
            portfolio_id, end - timedelta(days=days), end
        )
        points = aggregate_trend(rows, aggregation)
        change = None
        if len(points) >= 2:
            change = points[-1].risk_score - points[0].risk_score
        return {
            "portfolio_id": portfolio_id,
            "aggregation": aggregation,
            "days": days,
            "points": [snapshot_to_dict(row) for row in points],
            "risk_score_change": change,
        }

    async def archive_older_than(self, days: int = ARCHIVE_AFTER_DAYS) -> int:
        cutoff = datetime.now(UTC).date() - timedelta(days=days)
        deleted = await risk_snapshots_orm.delete_older_than(cutoff)
        logger.info(f"Archived {deleted} risk snapshots older than {cutoff}")
        return deleted
