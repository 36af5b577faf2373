"""Business logic services.

Modules:
- prices: Price refresh with retry and failure memoization
- risk: Single-ticker risk assessment
- risk_snapshots: Daily position and portfolio snapshots, trends
- transaction_detection: Transactions inferred from holdings snapshots
- regime: Market regime classification and HMM forecasts
- hmm_training: Offline HMM training
- alerts: Risk spike and threshold breach alerts
- watchlist_monitoring: Watchlist rule evaluation
- data_providers: External price providers
"""
