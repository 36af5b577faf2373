"""
Portfolio correlation analysis.

Builds the payload stored in the correlations cache: the matrix itself, the
flattened pair list and summary statistics.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import numpy as np

from analytics_engine.quant_engine.risk import correlation_matrix
from analytics_engine.quant_engine.types import PricePoint


HIGH_CORRELATION = 0.7
MAX_TICKERS = 10
MIN_WEIGHT = 0.01


def select_tickers(
    market_values: Mapping[str, float],
    max_tickers: int = MAX_TICKERS,
    min_weight: float = MIN_WEIGHT,
) -> list[str]:
    """Largest positions first, dropping anything under ``min_weight`` of the total."""
    total = sum(v for v in market_values.values() if v > 0)
    if total <= 0:
        return []
    ranked = sorted(
        ((t, v) for t, v in market_values.items() if v / total >= min_weight),
        key=lambda item: item[1],
        reverse=True,
    )
    return [t for t, _ in ranked[:max_tickers]]


def correlation_pairs(tickers: Sequence[str], matrix: np.ndarray) -> list[dict[str, Any]]:
    """Upper-triangle pairs, most correlated first."""
    pairs = [
        {
            "ticker1": tickers[i],
            "ticker2": tickers[j],
            "correlation": float(matrix[i, j]),
        }
        for i in range(len(tickers))
        for j in range(i + 1, len(tickers))
    ]
    pairs.sort(key=lambda p: p["correlation"], reverse=True)
    return pairs


def correlation_statistics(
    pairs: Sequence[dict[str, Any]],
    weights: Mapping[str, float] | None = None,
) -> dict[str, Any]:
    """Average / max / min / std over pairs and a correlation-adjusted diversification score."""
    values = np.array([p["correlation"] for p in pairs], dtype=float)
    if values.size == 0:
        return {
            "average_correlation": 0.0,
            "max_correlation": 0.0,
            "min_correlation": 0.0,
            "correlation_std_dev": 0.0,
            "high_correlation_pairs": 0,
            "adjusted_diversification_score": 0.0,
        }

    average_abs = float(np.abs(values).mean())
    concentration_score = 6.0
    if weights:
        total = sum(weights.values())
        if total > 0:
            hhi = sum((w / total) ** 2 for w in weights.values())
            concentration_score = max((1.0 - hhi) / 0.95 * 6.0, 0.0)

    return {
        "average_correlation": float(values.mean()),
        "max_correlation": float(values.max()),
        "min_correlation": float(values.min()),
        "correlation_std_dev": float(values.std()),
        "high_correlation_pairs": int((values > HIGH_CORRELATION).sum()),
        "adjusted_diversification_score": min(concentration_score + (1.0 - average_abs) * 4.0, 10.0),
    }


def build_correlation_payload(
    price_series: Mapping[str, Sequence[PricePoint]],
    market_values: Mapping[str, float] | None = None,
) -> dict[str, Any]:
    """
    Correlation matrix with pairs and statistics for the given tickers.

    Returns
    -------
    dict[str, Any]
        ``tickers``, ``matrix`` (nested lists), ``pairs`` and ``statistics``.
        Empty lists when fewer than two tickers share enough history.
    """
    tickers, matrix = correlation_matrix(price_series)
    pairs = correlation_pairs(tickers, matrix) if len(tickers) > 1 else []
    weights = {t: market_values[t] for t in tickers} if market_values else None
    return {
        "tickers": tickers,
        "matrix": matrix.tolist(),
        "pairs": pairs,
        "statistics": correlation_statistics(pairs, weights),
    }
