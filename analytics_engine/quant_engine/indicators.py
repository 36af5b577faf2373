"""
Indicator kernel.

Pure numeric routines on daily closes (oldest first). Percentages are in
percent unless stated otherwise. Every routine refuses input shorter than the
lookback it needs, or numerically degenerate input, and returns None instead
of a misleading number.

Moving averages and oscillators use the 'ta' library; the risk statistics are
plain numpy.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import date

import numpy as np
import pandas as pd
from ta.momentum import RSIIndicator
from ta.trend import MACD, SMAIndicator
from ta.volatility import BollingerBands


TRADING_DAYS = 252
MIN_BETA_OBSERVATIONS = 20
_EPS = 1e-12


def _as_array(values: Sequence[float] | np.ndarray) -> np.ndarray:
    return np.asarray(values, dtype=float)


def _series_to_optional(series: pd.Series) -> list[float | None]:
    return [None if pd.isna(v) else float(v) for v in series.tolist()]


# =============================================================================
# Returns
# =============================================================================

def log_returns(prices: Sequence[float] | np.ndarray) -> np.ndarray | None:
    """Daily log returns r[i] = ln(p[i] / p[i-1]). None if any price is <= 0."""
    p = _as_array(prices)
    if p.size < 2 or np.any(p <= 0) or not np.all(np.isfinite(p)):
        return None
    return np.diff(np.log(p))


def simple_returns(prices: Sequence[float] | np.ndarray) -> np.ndarray | None:
    """Daily simple returns p[i] / p[i-1] - 1. None if a prior price is <= 0."""
    p = _as_array(prices)
    if p.size < 2 or np.any(p[:-1] <= 0):
        return None
    return p[1:] / p[:-1] - 1.0


def align_returns_by_date(
    asset: Sequence[tuple[date, float]],
    benchmark: Sequence[tuple[date, float]],
) -> tuple[np.ndarray, np.ndarray, list[date]]:
    """
    Intersect two (date, close) series by date and return aligned log returns.

    Returns
    -------
    tuple[np.ndarray, np.ndarray, list[date]]
        Asset returns, benchmark returns and the dates of each return
        (the later date of each pair). Empty arrays when fewer than two
        common dates exist.
    """
    bench_by_date = {d: c for d, c in benchmark}
    common = [(d, c, bench_by_date[d]) for d, c in asset if d in bench_by_date]
    common.sort(key=lambda row: row[0])
    if len(common) < 2:
        return np.array([]), np.array([]), []

    asset_closes = np.array([row[1] for row in common], dtype=float)
    bench_closes = np.array([row[2] for row in common], dtype=float)
    ra = log_returns(asset_closes)
    rb = log_returns(bench_closes)
    if ra is None or rb is None:
        return np.array([]), np.array([]), []
    return ra, rb, [row[0] for row in common[1:]]


# =============================================================================
# Risk statistics
# =============================================================================

def annualized_volatility(returns: Sequence[float] | np.ndarray) -> float | None:
    """Sample std of daily returns x sqrt(252) x 100."""
    r = _as_array(returns)
    if r.size < 2:
        return None
    return float(np.std(r, ddof=1) * math.sqrt(TRADING_DAYS) * 100.0)


def max_drawdown(prices: Sequence[float] | np.ndarray) -> float | None:
    """Worst decline from a running peak, in percent (always <= 0)."""
    p = _as_array(prices)
    if p.size < 2:
        return None
    peaks = np.maximum.accumulate(p)
    if np.any(peaks <= 0):
        return None
    drawdowns = p / peaks - 1.0
    return float(min(drawdowns.min(), 0.0) * 100.0)


def beta(
    asset_returns: Sequence[float] | np.ndarray,
    benchmark_returns: Sequence[float] | np.ndarray,
    min_observations: int = MIN_BETA_OBSERVATIONS,
) -> float | None:
    """cov(asset, bench) / var(bench) on aligned returns.

    None with fewer than ``min_observations`` points or a flat benchmark.
    """
    ra = _as_array(asset_returns)
    rb = _as_array(benchmark_returns)
    if ra.size != rb.size or ra.size < min_observations:
        return None
    var_b = float(np.var(rb, ddof=1))
    if var_b < _EPS:
        return None
    cov = float(np.cov(ra, rb, ddof=1)[0, 1])
    result = cov / var_b
    return result if math.isfinite(result) else None


def sharpe_ratio(
    returns: Sequence[float] | np.ndarray, risk_free_rate: float = 0.045
) -> float | None:
    """(mean daily return x 252 - rf) / (std x sqrt(252))."""
    r = _as_array(returns)
    if r.size < 2:
        return None
    std = float(np.std(r, ddof=1))
    if std < _EPS:
        return None
    return float((r.mean() * TRADING_DAYS - risk_free_rate) / (std * math.sqrt(TRADING_DAYS)))


def downside_deviation(returns: Sequence[float] | np.ndarray) -> float | None:
    """Annualized root-mean-square of negative returns (positive ones count as 0)."""
    r = _as_array(returns)
    if r.size < 2:
        return None
    downside = np.minimum(r, 0.0)
    if not np.any(downside < 0):
        return None
    return float(np.sqrt(np.mean(downside ** 2)) * math.sqrt(TRADING_DAYS))


def sortino_ratio(
    returns: Sequence[float] | np.ndarray, risk_free_rate: float = 0.045
) -> float | None:
    """Sharpe numerator over the downside deviation."""
    r = _as_array(returns)
    dd = downside_deviation(r)
    if dd is None or dd < _EPS:
        return None
    return float((r.mean() * TRADING_DAYS - risk_free_rate) / dd)


def value_at_risk(
    returns: Sequence[float] | np.ndarray, confidence: float = 0.95
) -> float | None:
    """
    Historical VaR as a percent return (negative for a loss).

    Uses the sorted return at index floor(n x (1 - confidence)), i.e. the
    5th percentile for 95% and the 1st for 99%.
    """
    r = _as_array(returns)
    alpha = 1.0 - confidence
    if r.size < 2 or not 0.0 < alpha < 1.0:
        return None
    ordered = np.sort(r)
    index = min(int(math.floor(r.size * alpha)), r.size - 1)
    return float(ordered[index] * 100.0)


def expected_shortfall(
    returns: Sequence[float] | np.ndarray, confidence: float = 0.95
) -> float | None:
    """Mean of the worst ceil(n x (1 - confidence)) returns, in percent."""
    r = _as_array(returns)
    alpha = 1.0 - confidence
    if r.size < 2 or not 0.0 < alpha < 1.0:
        return None
    ordered = np.sort(r)
    tail = max(int(math.ceil(r.size * alpha)), 1)
    return float(ordered[:tail].mean() * 100.0)


def correlation(
    a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray
) -> float | None:
    """Pearson correlation; None for mismatched, short or flat inputs."""
    x = _as_array(a)
    y = _as_array(b)
    if x.size != y.size or x.size < 2:
        return None
    if np.std(x) < _EPS or np.std(y) < _EPS:
        return None
    value = float(np.corrcoef(x, y)[0, 1])
    return value if math.isfinite(value) else None


def linear_regression(values: Sequence[float] | np.ndarray) -> tuple[float, float] | None:
    """Least-squares (slope, intercept) of values against their index."""
    y = _as_array(values)
    if y.size < 2:
        return None
    x = np.arange(y.size, dtype=float)
    slope, intercept = np.polyfit(x, y, 1)
    return float(slope), float(intercept)


def regress(
    asset_returns: Sequence[float] | np.ndarray,
    benchmark_returns: Sequence[float] | np.ndarray,
) -> tuple[float, float, float] | None:
    """
    OLS of asset on benchmark returns.

    Returns
    -------
    tuple[float, float, float] | None
        (beta, r_squared, alpha) with alpha annualized in percent.
    """
    ra = _as_array(asset_returns)
    rb = _as_array(benchmark_returns)
    b = beta(ra, rb, min_observations=2)
    if b is None:
        return None
    alpha_daily = float(ra.mean() - b * rb.mean())
    corr = correlation(ra, rb)
    r_squared = corr ** 2 if corr is not None else 0.0
    return b, r_squared, alpha_daily * TRADING_DAYS * 100.0


def rolling_beta(
    asset_returns: Sequence[float] | np.ndarray,
    benchmark_returns: Sequence[float] | np.ndarray,
    dates: Sequence[date],
    window: int,
) -> list[dict]:
    """Beta, R² and alpha for each trailing window of ``window`` returns."""
    ra = _as_array(asset_returns)
    rb = _as_array(benchmark_returns)
    points: list[dict] = []
    if ra.size != rb.size or ra.size < window or len(dates) != ra.size:
        return points
    for end in range(window, ra.size + 1):
        fit = regress(ra[end - window:end], rb[end - window:end])
        if fit is None:
            continue
        b, r2, alpha = fit
        points.append({
            "date": dates[end - 1].isoformat(),
            "beta": b,
            "r_squared": r2,
            "alpha": alpha,
        })
    return points


# =============================================================================
# Moving averages & oscillators (ta library)
# =============================================================================

def sma(prices: Sequence[float], window: int) -> list[float | None] | None:
    """Simple moving average; the first window-1 points are None."""
    if window < 1 or len(prices) < window:
        return None
    close = pd.Series(_as_array(prices))
    return _series_to_optional(SMAIndicator(close, window=window).sma_indicator())


def ema(prices: Sequence[float], window: int) -> list[float | None] | None:
    """Exponential moving average with smoothing 2/(window+1), seeded by the SMA.

    The first window-1 points are None and point window-1 equals the SMA.
    """
    if window < 1 or len(prices) < window:
        return None
    p = _as_array(prices)
    alpha = 2.0 / (window + 1)
    out: list[float | None] = [None] * (window - 1)
    current = float(p[:window].mean())
    out.append(current)
    for price in p[window:]:
        current = alpha * float(price) + (1.0 - alpha) * current
        out.append(current)
    return out


def rsi(prices: Sequence[float], window: int = 14) -> list[float | None] | None:
    """Wilder RSI; None entries until enough history exists."""
    if len(prices) < window + 1:
        return None
    close = pd.Series(_as_array(prices))
    return _series_to_optional(RSIIndicator(close, window=window).rsi())


def macd(
    prices: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9
) -> tuple[list[float | None], list[float | None], list[float | None]] | None:
    """MACD line, signal line and histogram."""
    if len(prices) < slow + signal:
        return None
    close = pd.Series(_as_array(prices))
    ind = MACD(close, window_slow=slow, window_fast=fast, window_sign=signal)
    return (
        _series_to_optional(ind.macd()),
        _series_to_optional(ind.macd_signal()),
        _series_to_optional(ind.macd_diff()),
    )


def bollinger_bands(
    prices: Sequence[float], window: int = 20, num_std: float = 2.0
) -> tuple[list[float | None], list[float | None], list[float | None]] | None:
    """Middle, upper and lower Bollinger bands."""
    if len(prices) < window:
        return None
    close = pd.Series(_as_array(prices))
    bb = BollingerBands(close, window=window, window_dev=num_std)
    return (
        _series_to_optional(bb.bollinger_mavg()),
        _series_to_optional(bb.bollinger_hband()),
        _series_to_optional(bb.bollinger_lband()),
    )
