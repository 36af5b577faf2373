"""
Quantitative Analytics Engine
=============================

Pure computations over price series; no I/O.

Modules
-------
- types: Shared value types (prices, risk, regimes, recommendations)
- indicators: Returns, volatility, drawdown, beta, Sharpe, VaR, RSI, MACD
- risk: Risk assessment, portfolio aggregation, downside risk, rolling beta
- regime: Rule-based regime classification and threshold scaling
- hmm: Hidden Markov Model training, state estimation and forecasting
- optimizer: Deterministic portfolio recommendations
- correlations: Correlation matrix, pairs and statistics
"""

from __future__ import annotations

from . import correlations, hmm, indicators, optimizer, regime, risk, types


__all__ = [
    "correlations",
    "hmm",
    "indicators",
    "optimizer",
    "regime",
    "risk",
    "types",
]
