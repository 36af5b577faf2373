"""
Market regime service.

Runs the rule classifier over the benchmark, persists the daily regime,
rescales per-portfolio risk thresholds and produces HMM regime forecasts.

Usage:
    from analytics_engine.services.regime import RegimeService

    service = RegimeService(price_service)
    classification = await service.update_current_regime()
    thresholds = await service.get_adjusted_thresholds(portfolio_id)
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, date, datetime, timedelta
from typing import Any

from analytics_engine.core.exceptions import DataMissingError, NotFoundError
from analytics_engine.core.logging import get_logger
from analytics_engine.database.orm import MarketRegime
from analytics_engine.quant_engine import hmm
from analytics_engine.quant_engine.regime import adjust_thresholds, classify_regime
from analytics_engine.quant_engine.types import (
    AdjustedThresholds,
    RegimeClassification,
    RegimeParams,
    RegimeType,
)
from analytics_engine.repositories import hmm_orm, regimes_orm
from analytics_engine.services.prices import PriceService


logger = get_logger("services.regime")

FORECAST_HORIZONS = (5, 10, 30)
FORECAST_OBSERVATION_PRICES = 60
FORECAST_RETENTION_DAYS = 90


def _today() -> date:
    return datetime.now(UTC).date()


class RegimeService:
    """Rule-based regime classification and adaptive thresholds."""

    def __init__(self, price_service: PriceService, params: RegimeParams | None = None):
        self.price_service = price_service
        self.params = params or RegimeParams()

    async def classify(self) -> RegimeClassification:
        """Classify the current regime without persisting it.

        Raises:
            DataMissingError: Not enough benchmark history
        """
        benchmark = self.params.benchmark_ticker
        await self.price_service.ensure_prices(benchmark)
        # lookback_days counts trading days; one extra close gives the first return
        points = await self.price_service.get_recent(benchmark, self.params.lookback_days + 1)
        return classify_regime([p.close for p in points], self.params)

    async def update_current_regime(self, on_date: date | None = None) -> RegimeClassification:
        """Classify and upsert the regime for ``on_date`` (default today)."""
        classification = await self.classify()
        await regimes_orm.upsert_regime(on_date or _today(), classification)
        logger.info(
            f"Market regime {classification.regime_type.value} "
            f"(vol {classification.volatility:.1f}%, return {classification.market_return:.1f}%, "
            f"confidence {classification.confidence:.0f})"
        )
        return classification

    async def get_current_regime(self) -> MarketRegime | None:
        return await regimes_orm.get_current_regime()

    async def get_current_regime_type(self) -> RegimeType:
        """Regime type of the latest stored row; NORMAL when none exists."""
        row = await regimes_orm.get_current_regime()
        return RegimeType.from_string(row.regime_type if row else None)

    async def get_regime_history(self, days: int = 90) -> Sequence[MarketRegime]:
        return await regimes_orm.get_regime_history(_today() - timedelta(days=days))

    async def get_adjusted_thresholds(self, portfolio_id: int) -> AdjustedThresholds:
        """Base thresholds for the portfolio scaled by the current regime."""
        base = await regimes_orm.get_or_create_thresholds(portfolio_id)
        regime_type = await self.get_current_regime_type()
        return adjust_thresholds(base, regime_type)


class RegimeForecastService:
    """HMM state estimation and multi-horizon forecasts from the stored model."""

    def __init__(self, price_service: PriceService, market: str = "SPY"):
        self.price_service = price_service
        self.market = market.upper()

    async def generate_forecasts(
        self,
        horizons: Sequence[int] = FORECAST_HORIZONS,
        forecast_date: date | None = None,
    ) -> list[hmm.HMMForecast]:
        """
        Forecast the regime distribution for each horizon and store it.

        Args:
            horizons: Forecast horizons in trading days (1..30)
            forecast_date: Date the forecasts are keyed on (default today)

        Returns:
            One forecast per horizon

        Raises:
            NotFoundError: No trained model exists for the market
            DataMissingError: Not enough recent prices to build an observation
        """
        model = await hmm_orm.load_latest_model(self.market)
        if model is None:
            raise NotFoundError(
                message=f"No trained HMM model for {self.market}; run hmm_training first",
                details={"market": self.market},
            )

        await self.price_service.ensure_prices(self.market)
        points = await self.price_service.get_recent(self.market, FORECAST_OBSERVATION_PRICES)
        observations = hmm.build_observations([p.close for p in points])
        if not observations:
            raise DataMissingError(
                message=f"Not enough {self.market} prices for regime observations",
                details={"market": self.market, "prices": len(points)},
            )

        symbols = [o.symbol for o in observations]
        current = hmm.estimate_state(model.emission_params, symbols)
        forecast_date = forecast_date or _today()

        forecasts = []
        for horizon in horizons:
            result = hmm.forecast(model.transition_matrix, current, horizon)
            await hmm_orm.save_forecast(forecast_date, result, model.id)
            forecasts.append(result)

        removed = await hmm_orm.delete_forecasts_before(
            forecast_date - timedelta(days=FORECAST_RETENTION_DAYS)
        )
        logger.info(
            f"Stored {len(forecasts)} regime forecasts from model {model.id} "
            f"(current state {current.most_likely.label}); removed {removed} old forecasts"
        )
        return forecasts

    async def get_forecasts(self, forecast_date: date | None = None) -> list[dict[str, Any]]:
        rows = await hmm_orm.get_forecasts(forecast_date or _today())
        return [
            {
                "horizon_days": row.horizon_days,
                "predicted_regime": row.predicted_regime,
                "regime_probabilities": row.regime_probabilities,
                "transition_probability": row.transition_probability,
                "confidence_level": row.confidence_level,
            }
            for row in rows
        ]
