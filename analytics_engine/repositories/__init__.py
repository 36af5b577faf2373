"""Data access layer repositories.

Each repository module provides async functions for database operations
on the SQLAlchemy ORM models from `analytics_engine.database.orm`, opening
its own session with `get_session()`.

ORM-based repositories:
- alerts_orm: Portfolio risk alerts
- cache_orm: Generic TTL cache tables
- fetch_failures_orm: Persisted ticker fetch failures
- hmm_orm: HMM models and regime forecasts
- holdings_orm: Portfolios, accounts and holdings snapshots
- jobs_orm: Job schedules and run history
- prices_orm: Daily price points
- regimes_orm: Market regimes and risk threshold settings
- risk_snapshots_orm: Position and portfolio risk snapshots
- transactions_orm: Detected transactions and cash flows
- watchlist_orm: Watchlist items, thresholds, alerts and monitoring state
"""

from . import alerts_orm
from . import cache_orm
from . import fetch_failures_orm
from . import hmm_orm
from . import holdings_orm
from . import jobs_orm
from . import prices_orm
from . import regimes_orm
from . import risk_snapshots_orm
from . import transactions_orm
from . import watchlist_orm

__all__ = [
    "alerts_orm",
    "cache_orm",
    "fetch_failures_orm",
    "hmm_orm",
    "holdings_orm",
    "jobs_orm",
    "prices_orm",
    "regimes_orm",
    "risk_snapshots_orm",
    "transactions_orm",
    "watchlist_orm",
]
