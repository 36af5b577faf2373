"""Job definitions.

Importing this package registers every job with the registry.

Modules:
- prices: refresh_prices, generate_forecasts
- risk: daily_risk_snapshots, check_thresholds, archive_snapshots
- regime: market_regime_update, regime_forecast, hmm_training
- caches: optimization_cache, rolling_beta_cache, downside_risk_cache,
  portfolio_correlations, cleanup_cache
- watchlist: watchlist_monitoring
"""

from . import caches, prices, regime, risk, watchlist


__all__ = ["caches", "prices", "regime", "risk", "watchlist"]
