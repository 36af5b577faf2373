"""Risk assessment service: loads price windows and runs the risk kernel."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from analytics_engine.core.config import settings
from analytics_engine.core.exceptions import DataMissingError
from analytics_engine.core.logging import get_logger
from analytics_engine.quant_engine.risk import compute_risk_assessment
from analytics_engine.quant_engine.types import RiskAssessment
from analytics_engine.services.prices import PriceService


logger = get_logger("services.risk")

DEFAULT_LOOKBACK_DAYS = 90


class RiskService:
    """Per-ticker risk assessments backed by stored prices."""

    def __init__(self, price_service: PriceService, risk_free_rate: float | None = None):
        self.price_service = price_service
        self.risk_free_rate = (
            settings.risk_free_rate if risk_free_rate is None else risk_free_rate
        )

    async def assess(
        self,
        ticker: str,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        benchmark: str | None = None,
        refresh: bool = True,
    ) -> RiskAssessment:
        """
        Assess a ticker over the last ``lookback_days`` calendar days.

        With ``refresh`` the ticker and the benchmark are refreshed first when
        stale and provider trouble falls back to whatever is stored. Batch
        callers pass ``refresh=False`` and read stored closes only.

        Raises:
            DataMissingError: Not enough stored closes for the ticker
        """
        benchmark = (benchmark or settings.default_benchmark).upper()
        symbol = ticker.upper()

        if refresh:
            await self.price_service.ensure_prices(symbol)
            if benchmark != symbol:
                await self.price_service.ensure_prices(benchmark)

        start = datetime.now(UTC).date() - timedelta(days=lookback_days)
        asset_points = await self.price_service.get_history_since(symbol, start)
        if not asset_points:
            raise DataMissingError(
                message=f"No price history for {symbol}",
                details={"ticker": symbol, "lookback_days": lookback_days},
            )
        benchmark_points = (
            await self.price_service.get_history_since(benchmark, start)
            if benchmark != symbol
            else asset_points
        )

        assessment = compute_risk_assessment(
            symbol,
            asset_points,
            benchmark_points or None,
            risk_free_rate=self.risk_free_rate,
        )
        logger.debug(
            f"Assessed {symbol}: score={assessment.risk_score:.1f} level={assessment.risk_level.value}"
        )
        return assessment
