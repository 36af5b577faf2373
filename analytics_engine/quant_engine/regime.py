"""
Rule-based market regime classification.

Classifies the benchmark's recent behaviour into bull, bear, high volatility
or normal from its annualized volatility and cumulative return, and scales
alert thresholds by the regime's multiplier.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

import numpy as np

from analytics_engine.core.exceptions import DataMissingError
from analytics_engine.quant_engine.types import (
    AdjustedThresholds,
    RegimeClassification,
    RegimeParams,
    RegimeType,
    RiskThresholds,
)

logger = logging.getLogger(__name__)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def regime_confidence(
    regime_type: RegimeType,
    volatility: float,
    market_return: float,
    params: RegimeParams,
) -> float:
    """
    Confidence in [0, 100] from the distance to the deciding thresholds.

    High volatility is at least 75, bull and bear at least 60, normal 70.
    """
    if regime_type is RegimeType.HIGH_VOLATILITY:
        h = params.high_vol_threshold
        return _clamp((volatility - h) / h * 100.0, 75.0, 100.0)
    if regime_type is RegimeType.BULL:
        margin = (params.bull_vol_threshold - volatility) / params.bull_vol_threshold
        strength = min(market_return / 10.0, 1.0)
        return _clamp((margin * 0.6 + strength * 0.4) * 100.0, 60.0, 100.0)
    if regime_type is RegimeType.BEAR:
        excess = min((volatility - params.bear_vol_threshold) / params.bear_vol_threshold, 1.0)
        strength = min(abs(market_return) / 10.0, 1.0)
        return _clamp((excess * 0.6 + strength * 0.4) * 100.0, 60.0, 100.0)
    return 70.0


def decide_regime(volatility: float, market_return: float, params: RegimeParams) -> RegimeType:
    """Strict-inequality rule; values equal to a threshold fall through to NORMAL."""
    if volatility > params.high_vol_threshold:
        return RegimeType.HIGH_VOLATILITY
    if market_return > 0 and volatility < params.bull_vol_threshold:
        return RegimeType.BULL
    if market_return < 0 and volatility > params.bear_vol_threshold:
        return RegimeType.BEAR
    return RegimeType.NORMAL


def classify_regime(
    closes: Sequence[float],
    params: RegimeParams | None = None,
) -> RegimeClassification:
    """
    Classify the market regime from benchmark closes (oldest first).

    Uses the last ``lookback_days + 1`` closes: simple daily returns,
    population std x sqrt(252) x 100 for volatility and
    (last / first - 1) x 100 for the cumulative return.

    Parameters
    ----------
    closes : Sequence[float]
        Benchmark closes, oldest first.
    params : RegimeParams, optional
        Thresholds and lookback. Defaults to SPY over 30 days.

    Returns
    -------
    RegimeClassification

    Raises
    ------
    DataMissingError
        Fewer than ``lookback_days`` closes.
    """
    params = params or RegimeParams()
    if len(closes) < params.lookback_days:
        raise DataMissingError(
            message=(
                f"Insufficient data for regime classification: "
                f"{len(closes)} prices, need {params.lookback_days}"
            ),
            details={"ticker": params.benchmark_ticker},
        )

    window = np.asarray(closes[-(params.lookback_days + 1):], dtype=float)
    if np.any(window[:-1] <= 0):
        raise DataMissingError(message="Non-positive benchmark close in regime window")

    returns = window[1:] / window[:-1] - 1.0
    volatility = float(np.std(returns) * math.sqrt(252) * 100.0)
    market_return = float((window[-1] / window[0] - 1.0) * 100.0)

    regime_type = decide_regime(volatility, market_return, params)
    confidence = regime_confidence(regime_type, volatility, market_return, params)

    logger.debug(
        f"Regime {regime_type.value}: vol={volatility:.2f}% return={market_return:.2f}% "
        f"confidence={confidence:.1f}"
    )
    return RegimeClassification(
        regime_type=regime_type,
        volatility=volatility,
        market_return=market_return,
        confidence=confidence,
        benchmark_ticker=params.benchmark_ticker,
        lookback_days=params.lookback_days,
    )


def adjust_thresholds(base: RiskThresholds, regime_type: RegimeType) -> AdjustedThresholds:
    """Multiply every base band by the regime's multiplier."""
    multiplier = regime_type.threshold_multiplier
    return AdjustedThresholds(
        base=base,
        adjusted=base.scaled(multiplier),
        regime_type=regime_type,
        multiplier=multiplier,
    )
