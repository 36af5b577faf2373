"""Shared job context and result types.

The context is built once at startup and handed to every job handler, so
the rate limiter, failure cache and provider chain are shared by role
rather than looked up globally.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from analytics_engine.cache.store import CacheStore
from analytics_engine.core.config import Settings, settings as default_settings
from analytics_engine.core.failure_cache import FailureCache
from analytics_engine.core.rate_limiter import RateLimiter, get_rate_limiter
from analytics_engine.database.connection import get_session
from analytics_engine.services.alerts import AlertEvaluator
from analytics_engine.services.data_providers import PriceProvider, create_price_provider
from analytics_engine.services.hmm_training import HMMTrainingService
from analytics_engine.services.prices import PriceService
from analytics_engine.services.regime import RegimeForecastService, RegimeService
from analytics_engine.services.risk import RiskService
from analytics_engine.services.risk_snapshots import RiskSnapshotService
from analytics_engine.services.watchlist_monitoring import WatchlistMonitor


SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


@dataclass
class JobResult:
    """Outcome counters of one job run."""
    items_processed: int = 0
    items_failed: int = 0
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.items_processed} processed, {self.items_failed} failed"


@dataclass
class JobContext:
    """Process-wide collaborators shared by all job handlers."""
    price_service: PriceService
    failure_cache: FailureCache
    rate_limiter: RateLimiter
    cache: CacheStore
    session_factory: SessionFactory = get_session
    settings: Settings = field(default_factory=lambda: default_settings)

    risk_service: RiskService = field(init=False)
    snapshot_service: RiskSnapshotService = field(init=False)
    regime_service: RegimeService = field(init=False)
    forecast_service: RegimeForecastService = field(init=False)
    training_service: HMMTrainingService = field(init=False)
    alert_evaluator: AlertEvaluator = field(init=False)
    watchlist_monitor: WatchlistMonitor = field(init=False)

    def __post_init__(self) -> None:
        benchmark = self.settings.default_benchmark
        self.risk_service = RiskService(self.price_service, self.settings.risk_free_rate)
        self.snapshot_service = RiskSnapshotService(self.risk_service)
        self.regime_service = RegimeService(self.price_service)
        self.forecast_service = RegimeForecastService(self.price_service, benchmark)
        self.training_service = HMMTrainingService(self.price_service, benchmark)
        self.alert_evaluator = AlertEvaluator(self.regime_service)
        self.watchlist_monitor = WatchlistMonitor(self.price_service)

    @property
    def provider(self) -> PriceProvider:
        return self.price_service.provider


def build_context(
    provider: PriceProvider | None = None,
    failure_cache: FailureCache | None = None,
    settings: Settings | None = None,
) -> JobContext:
    """Assemble the shared context from settings."""
    settings = settings or default_settings
    failure_cache = failure_cache or FailureCache()
    rate_limiter = get_rate_limiter()
    price_service = PriceService(
        provider or create_price_provider(settings.price_provider),
        failure_cache,
        rate_limiter,
    )
    return JobContext(
        price_service=price_service,
        failure_cache=failure_cache,
        rate_limiter=rate_limiter,
        cache=CacheStore(),
        settings=settings,
    )
