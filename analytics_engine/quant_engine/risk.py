"""
Risk evaluation.

Turns daily closes into a RiskAssessment: volatility, drawdown, beta,
Sharpe/Sortino, VaR/ES, a composite 0-100 risk score and a level bucket.
Also aggregates position assessments into a portfolio assessment.

Everything here is pure over its inputs; loading prices is the job of
``analytics_engine.services.risk``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from typing import Any

import numpy as np
from scipy import stats

from analytics_engine.core.exceptions import DataMissingError
from analytics_engine.quant_engine import indicators
from analytics_engine.quant_engine.types import (
    PositionRisk,
    PricePoint,
    RiskAssessment,
    RiskLevel,
)

logger = logging.getLogger(__name__)


MIN_PRICES = 3
MIN_POSITION_WEIGHT = 0.001
TAIL_MIN_RETURNS = 30

# Composite score weights. Renormalized over the metrics that are present.
SCORE_WEIGHTS: dict[str, float] = {
    "volatility": 0.35,
    "max_drawdown": 0.25,
    "beta": 0.15,
    "var_95": 0.10,
    "sharpe": 0.15,
}


# =============================================================================
# Score
# =============================================================================


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def metric_contributions(
    volatility: float | None,
    max_drawdown: float | None,
    beta: float | None = None,
    var_95: float | None = None,
    sharpe: float | None = None,
) -> dict[str, float]:
    """
    Map each available metric into [0, 100], higher meaning riskier.

    Returns
    -------
    dict[str, float]
        Contribution per metric name; absent metrics are omitted.
    """
    out: dict[str, float] = {}
    if volatility is not None:
        out["volatility"] = _clamp(volatility / 50.0 * 100.0)
    if max_drawdown is not None:
        out["max_drawdown"] = _clamp(-max_drawdown / 50.0 * 100.0)
    if beta is not None:
        out["beta"] = _clamp(abs(beta) / 2.0 * 100.0)
    if var_95 is not None:
        out["var_95"] = _clamp(abs(var_95) / 10.0 * 100.0)
    if sharpe is not None:
        out["sharpe"] = _clamp((1.0 - sharpe) / 2.0 * 100.0)
    return out


def compute_risk_score(
    volatility: float | None,
    max_drawdown: float | None,
    beta: float | None = None,
    var_95: float | None = None,
    sharpe: float | None = None,
) -> float:
    """
    Weighted composite risk score in [0, 100].

    Missing metrics drop out and the remaining weights are renormalized.
    With no metric at all the score is 0.
    """
    contributions = metric_contributions(volatility, max_drawdown, beta, var_95, sharpe)
    total_weight = sum(SCORE_WEIGHTS[name] for name in contributions)
    if total_weight <= 0:
        return 0.0
    score = sum(SCORE_WEIGHTS[name] * value for name, value in contributions.items())
    return round(_clamp(score / total_weight), 4)


# =============================================================================
# Per-ticker assessment
# =============================================================================


def compute_risk_assessment(
    ticker: str,
    asset_points: Sequence[PricePoint],
    benchmark_points: Sequence[PricePoint] | None = None,
    risk_free_rate: float = 0.045,
) -> RiskAssessment:
    """
    Assess one ticker over the given price window.

    Parameters
    ----------
    ticker : str
        Symbol being assessed.
    asset_points : Sequence[PricePoint]
        Daily closes, any order.
    benchmark_points : Sequence[PricePoint], optional
        Benchmark closes for beta. Only dates present in both series count.
    risk_free_rate : float
        Annual risk-free rate as a fraction.

    Returns
    -------
    RiskAssessment
        Metrics that cannot be computed are None; the score is renormalized
        over the rest.

    Raises
    ------
    DataMissingError
        Fewer than three usable closes.
    """
    points = sorted(asset_points, key=lambda p: p.date)
    closes = np.array([p.close for p in points], dtype=float)
    returns = indicators.log_returns(closes)
    if len(points) < MIN_PRICES or returns is None:
        raise DataMissingError(
            message=f"Not enough price history for {ticker}",
            details={"ticker": ticker, "prices": len(points)},
        )

    volatility = indicators.annualized_volatility(returns)
    drawdown = indicators.max_drawdown(closes)

    beta = None
    if benchmark_points:
        ra, rb, _ = indicators.align_returns_by_date(
            [(p.date, p.close) for p in points],
            [(p.date, p.close) for p in benchmark_points],
        )
        beta = indicators.beta(ra, rb)

    sharpe = indicators.sharpe_ratio(returns, risk_free_rate)
    sortino = indicators.sortino_ratio(returns, risk_free_rate)
    var_95 = indicators.value_at_risk(returns, 0.95)
    var_99 = indicators.value_at_risk(returns, 0.99)
    es_95 = indicators.expected_shortfall(returns, 0.95)
    es_99 = indicators.expected_shortfall(returns, 0.99)

    score = compute_risk_score(volatility, drawdown, beta, var_95, sharpe)
    return RiskAssessment(
        ticker=ticker,
        volatility=volatility or 0.0,
        max_drawdown=drawdown or 0.0,
        risk_score=score,
        risk_level=RiskLevel.from_score(score),
        beta=beta,
        sharpe=sharpe,
        sortino=sortino,
        var_95=var_95,
        var_99=var_99,
        es_95=es_95,
        es_99=es_99,
        observations=len(points),
    )


# =============================================================================
# Portfolio aggregation
# =============================================================================


def _weighted(
    weights: Sequence[float],
    values: Sequence[float | None],
    require_majority: bool,
) -> float | None:
    pairs = [(w, v) for w, v in zip(weights, values) if v is not None]
    if not pairs:
        return None
    if require_majority and len(pairs) * 2 <= len(values):
        return None
    total = sum(w for w, _ in pairs)
    if total <= 0:
        return None
    return sum(w * v for w, v in pairs) / total


def aggregate_portfolio_risk(
    positions: Sequence[PositionRisk],
    label: str = "PORTFOLIO",
) -> RiskAssessment:
    """
    Market-value-weighted portfolio assessment.

    Positions weighing less than 0.1% are ignored. Beta, Sharpe and Sortino
    are carried only when more than half of the positions provide them. The
    score is recomputed from the weighted metrics with the same mapping as a
    single ticker.

    Raises
    ------
    DataMissingError
        No position has a positive market value.
    """
    total_value = sum(max(p.market_value, 0.0) for p in positions)
    if total_value <= 0:
        raise DataMissingError(
            message="Portfolio has no positive market value",
            details={"positions": len(positions)},
        )

    kept = [p for p in positions if p.market_value / total_value >= MIN_POSITION_WEIGHT]
    if not kept:
        raise DataMissingError(message="No position carries enough weight to assess")

    weights = [p.market_value / total_value for p in kept]
    a = [p.assessment for p in kept]

    volatility = _weighted(weights, [x.volatility for x in a], False) or 0.0
    drawdown = _weighted(weights, [x.max_drawdown for x in a], False) or 0.0
    beta = _weighted(weights, [x.beta for x in a], True)
    sharpe = _weighted(weights, [x.sharpe for x in a], True)
    sortino = _weighted(weights, [x.sortino for x in a], True)
    var_95 = _weighted(weights, [x.var_95 for x in a], False)
    var_99 = _weighted(weights, [x.var_99 for x in a], False)
    es_95 = _weighted(weights, [x.es_95 for x in a], False)
    es_99 = _weighted(weights, [x.es_99 for x in a], False)

    score = compute_risk_score(volatility, drawdown, beta, var_95, sharpe)
    return RiskAssessment(
        ticker=label,
        volatility=volatility,
        max_drawdown=drawdown,
        risk_score=score,
        risk_level=RiskLevel.from_score(score),
        beta=beta,
        sharpe=sharpe,
        sortino=sortino,
        var_95=var_95,
        var_99=var_99,
        es_95=es_95,
        es_99=es_99,
        observations=min(x.observations for x in a),
    )


# =============================================================================
# Correlations & decomposition
# =============================================================================


def correlation_matrix(
    price_series: Mapping[str, Sequence[PricePoint]],
) -> tuple[list[str], np.ndarray]:
    """
    Pearson correlation matrix of daily log returns on common dates.

    Tickers whose series do not overlap at least 20 common dates with the
    others are dropped.

    Returns
    -------
    tuple[list[str], np.ndarray]
        Ticker order and the symmetric matrix (unit diagonal).
    """
    by_ticker = {
        t: {p.date: p.close for p in points} for t, points in price_series.items() if points
    }
    if len(by_ticker) < 2:
        return list(by_ticker), np.eye(len(by_ticker))

    common = set.intersection(*(set(d) for d in by_ticker.values()))
    if len(common) < indicators.MIN_BETA_OBSERVATIONS + 1:
        logger.debug(f"Only {len(common)} common dates across {len(by_ticker)} tickers")
        return [], np.empty((0, 0))

    dates = sorted(common)
    tickers: list[str] = []
    columns: list[np.ndarray] = []
    for ticker, closes in by_ticker.items():
        returns = indicators.log_returns([closes[d] for d in dates])
        if returns is None or np.std(returns) < 1e-12:
            continue
        tickers.append(ticker)
        columns.append(returns)

    if not columns:
        return [], np.empty((0, 0))
    matrix = np.corrcoef(np.vstack(columns)) if len(columns) > 1 else np.eye(1)
    return tickers, np.atleast_2d(matrix)


def risk_decomposition(
    asset_returns: Sequence[float] | np.ndarray,
    benchmark_returns: Sequence[float] | np.ndarray,
) -> dict[str, Any] | None:
    """
    Split annualized variance into systematic and idiosyncratic parts.

    systematic = beta² x market variance, idiosyncratic = total - systematic
    (floored at 0). Volatilities are reported in percent.
    """
    ra = np.asarray(asset_returns, dtype=float)
    rb = np.asarray(benchmark_returns, dtype=float)
    beta = indicators.beta(ra, rb)
    if beta is None:
        return None

    total_var = float(np.var(ra, ddof=1)) * indicators.TRADING_DAYS
    market_var = float(np.var(rb, ddof=1)) * indicators.TRADING_DAYS
    systematic = beta ** 2 * market_var
    idiosyncratic = max(total_var - systematic, 0.0)
    corr = indicators.correlation(ra, rb)
    r_squared = corr ** 2 if corr is not None else 0.0

    return {
        "beta": beta,
        "r_squared": r_squared,
        "total_volatility": math.sqrt(total_var) * 100.0,
        "systematic_volatility": math.sqrt(systematic) * 100.0,
        "idiosyncratic_volatility": math.sqrt(idiosyncratic) * 100.0,
        "systematic_share": systematic / total_var if total_var > 0 else 0.0,
    }


# =============================================================================
# Downside risk
# =============================================================================


def interpret_downside(
    downside_deviation: float,
    sortino: float | None,
    sharpe: float | None,
) -> dict[str, str]:
    """Plain-language reading of the downside metrics."""
    if downside_deviation < 10.0:
        level = "low"
    elif downside_deviation < 20.0:
        level = "moderate"
    else:
        level = "high"

    if sortino is None:
        rating = "n/a"
    elif sortino > 2.0:
        rating = "Excellent"
    elif sortino > 1.0:
        rating = "Good"
    elif sortino > 0.0:
        rating = "Fair"
    else:
        rating = "Poor"

    if sortino is None or sharpe is None:
        versus = "Not enough data to compare Sortino and Sharpe"
    elif sortino > sharpe * 1.2 and sortino > 0:
        versus = "Volatility is mostly upside; downside risk is lower than total volatility suggests"
    elif sortino < sharpe:
        versus = "Volatility is concentrated on the downside"
    else:
        versus = "Upside and downside volatility are balanced"

    return {
        "downside_risk_level": level,
        "sortino_rating": rating,
        "sortino_vs_sharpe": versus,
        "summary": f"Downside risk is {level} ({downside_deviation:.1f}% annualized); Sortino rating {rating}",
    }


def downside_metrics(
    returns: Sequence[float] | np.ndarray,
    risk_free_rate: float = 0.045,
) -> dict[str, Any] | None:
    """
    Downside statistics of a daily log-return series.

    Returns
    -------
    dict[str, Any] | None
        Downside deviation (percent, annualized), Sortino, Sharpe, VaR/ES at
        95 and 99, the minimum acceptable return, the tail shape (skewness
        and excess kurtosis, None under 30 returns) and an interpretation.
        None for fewer than two returns.
    """
    r = np.asarray(returns, dtype=float)
    if r.size < 2:
        return None
    tail_shape = None
    if r.size >= TAIL_MIN_RETURNS and np.std(r) > 0:
        kurtosis = float(stats.kurtosis(r))
        tail_shape = {
            "skewness": float(stats.skew(r)),
            "excess_kurtosis": kurtosis,
            "is_fat_tailed": kurtosis > 1.0,
        }
    deviation = indicators.downside_deviation(r)
    deviation_pct = deviation * 100.0 if deviation is not None else 0.0
    sortino = indicators.sortino_ratio(r, risk_free_rate)
    sharpe = indicators.sharpe_ratio(r, risk_free_rate)
    closes = np.exp(np.concatenate([[0.0], np.cumsum(r)]))
    return {
        "downside_deviation": deviation_pct,
        "sortino_ratio": sortino,
        "sharpe_ratio": sharpe,
        "mar": risk_free_rate * 100.0,
        "var_95": indicators.value_at_risk(r, 0.95),
        "var_99": indicators.value_at_risk(r, 0.99),
        "es_95": indicators.expected_shortfall(r, 0.95),
        "es_99": indicators.expected_shortfall(r, 0.99),
        "max_drawdown": indicators.max_drawdown(closes),
        "tail_shape": tail_shape,
        "interpretation": interpret_downside(deviation_pct, sortino, sharpe),
    }


def portfolio_returns(
    price_series: Mapping[str, Sequence[PricePoint]],
    market_values: Mapping[str, float],
) -> tuple[np.ndarray, dict[str, float]]:
    """
    Value-weighted daily log returns on the dates every ticker shares.

    Returns
    -------
    tuple[np.ndarray, dict[str, float]]
        Portfolio returns and the weights actually used.
    """
    usable = {
        t: {p.date: p.close for p in points}
        for t, points in price_series.items()
        if points and market_values.get(t, 0.0) > 0
    }
    if not usable:
        return np.array([]), {}
    common = sorted(set.intersection(*(set(d) for d in usable.values())))
    total = sum(market_values[t] for t in usable)
    weights = {t: market_values[t] / total for t in usable}

    combined = np.zeros(max(len(common) - 1, 0))
    for ticker, closes in usable.items():
        r = indicators.log_returns([closes[d] for d in common])
        if r is None:
            return np.array([]), {}
        combined += weights[ticker] * r
    return combined, weights


def portfolio_downside_risk(
    portfolio_id: int,
    price_series: Mapping[str, Sequence[PricePoint]],
    market_values: Mapping[str, float],
    days: int,
    benchmark: str,
    risk_free_rate: float = 0.045,
) -> dict[str, Any]:
    """Portfolio and per-position downside risk payload.

    Raises DataMissingError when the positions share fewer than three dates.
    """
    returns, weights = portfolio_returns(price_series, market_values)
    metrics = downside_metrics(returns, risk_free_rate)
    if metrics is None:
        raise DataMissingError(
            message="Not enough overlapping price history for downside risk",
            details={"portfolio_id": portfolio_id},
        )

    positions = []
    for ticker, weight in sorted(weights.items(), key=lambda item: item[1], reverse=True):
        closes = [p.close for p in sorted(price_series[ticker], key=lambda p: p.date)]
        r = indicators.log_returns(closes)
        position_metrics = downside_metrics(r, risk_free_rate) if r is not None else None
        if position_metrics is not None:
            positions.append({
                "ticker": ticker,
                "weight": weight,
                "downside_metrics": position_metrics,
            })

    return {
        "portfolio_id": portfolio_id,
        "portfolio_metrics": metrics,
        "position_downside_risks": positions,
        "days": days,
        "benchmark": benchmark,
    }


# =============================================================================
# Rolling beta
# =============================================================================

ROLLING_BETA_WINDOWS = (30, 60, 90)


def rolling_beta_analysis(
    ticker: str,
    benchmark: str,
    asset_points: Sequence[PricePoint],
    benchmark_points: Sequence[PricePoint],
    windows: Sequence[int] = ROLLING_BETA_WINDOWS,
) -> dict[str, Any]:
    """
    Rolling beta series for each window plus the current beta and the
    volatility of the longest-window beta.

    Raises
    ------
    DataMissingError
        Fewer aligned returns than the shortest window.
    """
    ra, rb, dates = indicators.align_returns_by_date(
        [(p.date, p.close) for p in asset_points],
        [(p.date, p.close) for p in benchmark_points],
    )
    if ra.size < min(windows):
        raise DataMissingError(
            message=f"Not enough overlapping history for rolling beta of {ticker}",
            details={"ticker": ticker, "benchmark": benchmark, "returns": int(ra.size)},
        )

    payload: dict[str, Any] = {"ticker": ticker, "benchmark": benchmark}
    series: dict[int, list[dict]] = {}
    for window in windows:
        series[window] = indicators.rolling_beta(ra, rb, dates, window)
        payload[f"beta_{window}d"] = series[window]

    longest = next((series[w] for w in sorted(windows, reverse=True) if series[w]), [])
    betas = [point["beta"] for point in longest]
    payload["current_beta"] = betas[-1] if betas else 0.0
    payload["beta_volatility"] = float(np.std(betas)) if len(betas) > 1 else 0.0
    return payload
