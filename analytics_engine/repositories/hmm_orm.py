"""HMM model and regime forecast repository.

Usage:
    from analytics_engine.repositories import hmm_orm as hmm_repo

    model = await hmm_repo.load_latest_model("SPY")
    await hmm_repo.save_forecast(today, forecast, model.id)
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert

from analytics_engine.core.logging import get_logger
from analytics_engine.database.connection import get_session
from analytics_engine.database.orm import HMMModel, RegimeForecast
from analytics_engine.quant_engine.hmm import HMMForecast


logger = get_logger("repositories.hmm_orm")


async def save_model(values: dict[str, Any]) -> int:
    """Insert or replace a model keyed by (model_name, market, trained_on_date).

    Returns:
        The model id
    """
    stmt = insert(HMMModel).values(**values)
    stmt = stmt.on_conflict_do_update(
        constraint="uq_hmm_models_name_market_date",
        set_={
            k: v
            for k, v in values.items()
            if k not in ("model_name", "market", "trained_on_date")
        },
    ).returning(HMMModel.id)
    async with get_session() as session:
        result = await session.execute(stmt)
        model_id = result.scalar_one()
        await session.commit()
        return model_id


async def load_latest_model(market: str) -> HMMModel | None:
    """Most recently trained model for a market."""
    async with get_session() as session:
        result = await session.execute(
            select(HMMModel)
            .where(HMMModel.market == market.upper())
            .order_by(HMMModel.trained_on_date.desc(), HMMModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


async def cleanup_models(market: str, keep: int) -> int:
    """Delete all but the ``keep`` most recent models for a market."""
    async with get_session() as session:
        result = await session.execute(
            select(HMMModel.id)
            .where(HMMModel.market == market.upper())
            .order_by(HMMModel.trained_on_date.desc(), HMMModel.id.desc())
            .offset(keep)
        )
        stale = [row[0] for row in result.all()]
        if not stale:
            return 0
        await session.execute(delete(HMMModel).where(HMMModel.id.in_(stale)))
        await session.commit()
        logger.info(f"Deleted {len(stale)} old HMM models for {market}")
        return len(stale)


async def save_forecast(
    forecast_date: date, forecast: HMMForecast, model_id: int | None
) -> None:
    """Upsert one forecast keyed by (forecast_date, horizon_days)."""
    values = {
        "predicted_regime": forecast.predicted_state.label,
        "regime_probabilities": forecast.probabilities.to_dict(),
        "transition_probability": forecast.transition_probability,
        "confidence_level": forecast.confidence_level,
        "hmm_model_id": model_id,
    }
    stmt = insert(RegimeForecast).values(
        forecast_date=forecast_date, horizon_days=forecast.horizon_days, **values
    )
    stmt = stmt.on_conflict_do_update(
        constraint="uq_regime_forecasts_date_horizon", set_=values
    )
    async with get_session() as session:
        await session.execute(stmt)
        await session.commit()


async def get_forecasts(forecast_date: date) -> Sequence[RegimeForecast]:
    async with get_session() as session:
        result = await session.execute(
            select(RegimeForecast)
            .where(RegimeForecast.forecast_date == forecast_date)
            .order_by(RegimeForecast.horizon_days)
        )
        return result.scalars().all()


async def delete_forecasts_before(cutoff: date) -> int:
    async with get_session() as session:
        result = await session.execute(
            delete(RegimeForecast).where(RegimeForecast.forecast_date < cutoff)
        )
        await session.commit()
        return result.rowcount
