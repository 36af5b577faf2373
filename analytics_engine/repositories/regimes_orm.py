"""Market regime and risk threshold repository."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert

from analytics_engine.core.logging import get_logger
from analytics_engine.database.connection import get_session
from analytics_engine.database.orm import MarketRegime, RiskThresholdSettings
from analytics_engine.quant_engine.types import RegimeClassification, RiskThresholds


logger = get_logger("repositories.regimes_orm")


async def upsert_regime(on_date: date, classification: RegimeClassification) -> MarketRegime:
    """Store the regime for a date, replacing an earlier classification."""
    values = {
        "regime_type": classification.regime_type.value,
        "volatility_level": classification.volatility,
        "market_return": classification.market_return,
        "confidence": classification.confidence,
        "benchmark_ticker": classification.benchmark_ticker,
        "lookback_days": classification.lookback_days,
        "threshold_multiplier": classification.threshold_multiplier,
    }
    stmt = insert(MarketRegime).values(date=on_date, **values)
    stmt = stmt.on_conflict_do_update(index_elements=["date"], set_=values).returning(MarketRegime)
    async with get_session() as session:
        result = await session.execute(stmt)
        row = result.scalar_one()
        await session.commit()
        return row


async def get_current_regime() -> MarketRegime | None:
    """Most recent regime row."""
    async with get_session() as session:
        result = await session.execute(
            select(MarketRegime).order_by(MarketRegime.date.desc()).limit(1)
        )
        return result.scalar_one_or_none()


async def get_regime_history(start: date) -> Sequence[MarketRegime]:
    async with get_session() as session:
        result = await session.execute(
            select(MarketRegime)
            .where(MarketRegime.date >= start)
            .order_by(MarketRegime.date.asc())
        )
        return result.scalars().all()


def _to_thresholds(row: RiskThresholdSettings) -> RiskThresholds:
    return RiskThresholds(
        volatility_warning=row.volatility_warning_threshold,
        volatility_critical=row.volatility_critical_threshold,
        drawdown_warning=row.drawdown_warning_threshold,
        drawdown_critical=row.drawdown_critical_threshold,
        beta_warning=row.beta_warning_threshold,
        beta_critical=row.beta_critical_threshold,
        risk_score_warning=row.risk_score_warning_threshold,
        risk_score_critical=row.risk_score_critical_threshold,
        var_warning=row.var_warning_threshold,
        var_critical=row.var_critical_threshold,
    )


async def get_or_create_thresholds(portfolio_id: int) -> RiskThresholds:
    """Base thresholds for a portfolio; defaults are materialized on first read."""
    defaults = RiskThresholds()
    stmt = (
        insert(RiskThresholdSettings)
        .values(
            portfolio_id=portfolio_id,
            volatility_warning_threshold=defaults.volatility_warning,
            volatility_critical_threshold=defaults.volatility_critical,
            drawdown_warning_threshold=defaults.drawdown_warning,
            drawdown_critical_threshold=defaults.drawdown_critical,
            beta_warning_threshold=defaults.beta_warning,
            beta_critical_threshold=defaults.beta_critical,
            risk_score_warning_threshold=defaults.risk_score_warning,
            risk_score_critical_threshold=defaults.risk_score_critical,
            var_warning_threshold=defaults.var_warning,
            var_critical_threshold=defaults.var_critical,
        )
        .on_conflict_do_nothing(index_elements=["portfolio_id"])
    )
    async with get_session() as session:
        await session.execute(stmt)
        await session.commit()
        result = await session.execute(
            select(RiskThresholdSettings).where(RiskThresholdSettings.portfolio_id == portfolio_id)
        )
        return _to_thresholds(result.scalar_one())
