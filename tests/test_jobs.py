"""Tests for job handlers with a mocked context."""

from __future__ import annotations

from datetime import UTC, date, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from analytics_engine.cache.store import CacheKind
from analytics_engine.core.config import settings
from analytics_engine.core.exceptions import DataMissingError, NotFoundError
from analytics_engine.core.failure_cache import FailureCache
from analytics_engine.core.rate_limiter import RateLimiter
from analytics_engine.jobs.context import JobContext, JobResult
from analytics_engine.jobs.definitions import caches as cache_jobs
from analytics_engine.jobs.definitions import prices as price_jobs
from analytics_engine.jobs.definitions import regime as regime_jobs
from analytics_engine.jobs.definitions import risk as risk_jobs
from analytics_engine.jobs.definitions import watchlist as watchlist_jobs
from analytics_engine.services.prices import PriceService, RefreshResult
from analytics_engine.services.regime import RegimeService
from analytics_engine.services.watchlist_monitoring import MonitoringResult

from conftest import make_points, make_trading_points, random_walk


def holding(ticker, market_value, quantity=10):
    return SimpleNamespace(ticker=ticker, quantity=quantity, market_value=market_value)


def monitoring_result(alert_type, severity):
    return MonitoringResult(
        ticker="AAPL",
        watchlist_item_id=1,
        user_id="u1",
        alert_type=alert_type,
        severity=severity,
        message=f"AAPL {alert_type}",
        actual_value=1.0,
        threshold_value=None,
    )


@pytest.fixture
def ctx():
    context = MagicMock()
    context.settings.default_benchmark = "SPY"
    context.settings.risk_free_rate = 0.04
    context.cache.is_fresh = AsyncMock(return_value=False)
    context.cache.get = AsyncMock(return_value=None)
    context.cache.put = AsyncMock()
    context.cache.invalidate = AsyncMock(return_value=1)
    context.cache.sweep_all = AsyncMock()
    return context


@pytest.fixture(autouse=True)
def no_delays(monkeypatch):
    for module, name in [
        (price_jobs, "REFRESH_DELAY_SECONDS"),
        (price_jobs, "FORECAST_DELAY_SECONDS"),
        (risk_jobs, "SNAPSHOT_DELAY_SECONDS"),
        (risk_jobs, "THRESHOLD_CHECK_DELAY_SECONDS"),
        (cache_jobs, "OPTIMIZATION_DELAY_SECONDS"),
        (cache_jobs, "ROLLING_BETA_DELAY_SECONDS"),
        (cache_jobs, "DOWNSIDE_RISK_DELAY_SECONDS"),
        (cache_jobs, "CORRELATION_DELAY_SECONDS"),
        (watchlist_jobs, "MONITOR_DELAY_SECONDS"),
    ]:
        monkeypatch.setattr(module, name, 0.0)


# =============================================================================
# Price jobs
# =============================================================================


class TestRefreshPricesJob:
    """Nightly refresh of held tickers."""

    @pytest.mark.asyncio
    async def test_refreshes_each_ticker(self, ctx):
        async def refresh(ticker):
            if ticker == "ZZZZ":
                raise RuntimeError("not found")
            return RefreshResult(ticker=ticker, refreshed=True, rows_written=5)

        ctx.price_service.get_held_tickers = AsyncMock(return_value=["AAPL", "MSFT", "ZZZZ"])
        ctx.price_service.refresh = AsyncMock(side_effect=refresh)

        result = await price_jobs.refresh_prices_job(ctx)

        assert (result.items_processed, result.items_failed) == (2, 1)
        assert result.details == {"rows_written": 10}
        assert result.message == "Refreshed 2/3 tickers"

    @pytest.mark.asyncio
    async def test_nothing_held(self, ctx):
        ctx.price_service.get_held_tickers = AsyncMock(return_value=[])
        ctx.price_service.refresh = AsyncMock()
        result = await price_jobs.refresh_prices_job(ctx)
        assert result.items_processed == 0
        ctx.price_service.refresh.assert_not_awaited()


class TestGenerateForecastsJob:
    """Beta forecast invalidation."""

    @pytest.mark.asyncio
    async def test_invalidates_top_tickers(self, ctx, mocker):
        repo = mocker.patch("analytics_engine.jobs.definitions.prices.prices_orm")
        repo.get_held_tickers_by_value = AsyncMock(return_value=["AAPL", "MSFT"])
        result = await price_jobs.generate_forecasts_job(ctx)

        repo.get_held_tickers_by_value.assert_awaited_once_with(20)
        ctx.cache.invalidate.assert_any_await(CacheKind.BETA_FORECAST, {"ticker": "AAPL"})
        assert result.items_processed == 2
        assert result.details == {"rows_removed": 2}


# =============================================================================
# Cache jobs
# =============================================================================


class TestOptimizationCacheJob:
    """Recompute only stale portfolios that hold something."""

    @pytest.fixture
    def holdings(self):
        positions = {
            1: [holding("AAPL", 60_000), holding("MSFT", 40_000), holding(None, 5_000)],
            2: [],
            3: [holding("NVDA", 10_000)],
        }
        repo = MagicMock()
        repo.list_portfolio_ids = AsyncMock(return_value=[1, 2, 3])
        repo.get_latest_holdings = AsyncMock(side_effect=lambda pid: positions[pid])
        with patch("analytics_engine.jobs.definitions.caches.holdings_orm", repo):
            yield repo

    @pytest.mark.asyncio
    async def test_skips_fresh_and_empty(self, ctx, holdings):
        ctx.cache.is_fresh = AsyncMock(side_effect=lambda kind, key: key["portfolio_id"] == 3)
        ctx.cache.get = AsyncMock(return_value={
            "pairs": [{"a": "AAPL", "b": "MSFT", "correlation": 0.4}],
            "statistics": {"average_correlation": 0.4},
        })

        result = await cache_jobs.optimization_cache_job(ctx)

        assert (result.items_processed, result.items_failed) == (3, 0)
        assert result.details == {"skipped_fresh": 2}
        ctx.cache.put.assert_awaited_once()
        kind, key, payload = ctx.cache.put.await_args.args
        assert kind is CacheKind.OPTIMIZATION
        assert key == {"portfolio_id": 1}
        assert payload["portfolio_id"] == 1
        assert payload["total_value"] == 100_000
        assert payload["current_metrics"]["average_correlation"] == 0.4

    @pytest.mark.asyncio
    async def test_unit_error_is_counted(self, ctx, holdings):
        ctx.cache.put = AsyncMock(side_effect=RuntimeError("cache table locked"))
        result = await cache_jobs.optimization_cache_job(ctx)
        assert result.items_failed == 2
        assert result.items_processed == 1


class TestPortfolioCorrelationsJob:
    """Correlations need at least two qualifying tickers."""

    @pytest.mark.asyncio
    async def test_single_position_is_skipped(self, ctx, mocker):
        repo = mocker.patch("analytics_engine.jobs.definitions.caches.holdings_orm")
        repo.list_portfolio_ids = AsyncMock(return_value=[7])
        repo.get_latest_holdings = AsyncMock(return_value=[holding("AAPL", 1_000)])
        ctx.price_service.get_window = AsyncMock()
        result = await cache_jobs.portfolio_correlations_job(ctx)

        assert result.details == {"skipped_fresh": 1}
        ctx.price_service.get_window.assert_not_awaited()
        ctx.cache.put.assert_not_awaited()


class TestCleanupCacheJob:
    """Weekly sweep."""

    @pytest.mark.asyncio
    async def test_sweeps_caches_and_failures(self, ctx):
        ctx.cache.sweep_all = AsyncMock(return_value={"explanation": 2, "rolling_beta": 1})
        ctx.price_service.failure_store.sweep = AsyncMock(return_value=3)

        result = await cache_jobs.cleanup_cache_job(ctx)

        assert result.items_processed == 6
        assert result.details == {
            "cache": {"explanation": 2, "rolling_beta": 1},
            "fetch_failures": 3,
        }


class TestRollingBetaCacheJob:
    """Per-ticker betas against the benchmark."""

    @pytest.mark.asyncio
    async def test_skips_benchmark_and_fresh(self, ctx):
        windows = {
            "SPY": make_points(random_walk(120, seed=1)),
            "AAPL": make_points(random_walk(120, seed=2, vol=0.02)),
        }
        ctx.price_service.get_held_tickers = AsyncMock(return_value=["AAPL", "SPY", "MSFT"])
        ctx.price_service.get_window = AsyncMock(side_effect=lambda t, days: windows[t])
        ctx.cache.is_fresh = AsyncMock(side_effect=lambda kind, key: key["ticker"] == "MSFT")

        result = await cache_jobs.rolling_beta_cache_job(ctx)

        assert (result.items_processed, result.items_failed) == (2, 0)
        assert result.details == {"skipped_fresh": 1}
        kind, key, payload = ctx.cache.put.await_args.args
        assert kind is CacheKind.ROLLING_BETA
        assert key == {"ticker": "AAPL", "benchmark": "SPY", "days": 180}
        assert payload["days"] == 180
        assert payload["beta_30d"]


class TestDownsideRiskCacheJob:
    """Portfolio downside metrics from stored windows."""

    @pytest.mark.asyncio
    async def test_caches_portfolio_payload(self, ctx, mocker):
        repo = mocker.patch("analytics_engine.jobs.definitions.caches.holdings_orm")
        repo.list_portfolio_ids = AsyncMock(return_value=[5])
        repo.get_latest_holdings = AsyncMock(
            return_value=[holding("AAPL", 7_000), holding("MSFT", 3_000)]
        )
        windows = {
            "AAPL": make_points(random_walk(90, seed=3)),
            "MSFT": make_points(random_walk(90, seed=4)),
        }
        ctx.price_service.get_window = AsyncMock(side_effect=lambda t, days: windows[t])

        result = await cache_jobs.downside_risk_cache_job(ctx)

        assert result.items_processed == 1
        kind, key, payload = ctx.cache.put.await_args.args
        assert kind is CacheKind.DOWNSIDE_RISK
        assert key == {"portfolio_id": 5, "days": 90, "benchmark": "SPY"}
        assert [p["ticker"] for p in payload["position_downside_risks"]] == ["AAPL", "MSFT"]


# =============================================================================
# Risk jobs
# =============================================================================


class TestDailyRiskSnapshotsJob:
    """Per-portfolio snapshots with empty portfolios counted as done."""

    @pytest.mark.asyncio
    async def test_empty_portfolio_is_processed(self, ctx, mocker):
        repo = mocker.patch("analytics_engine.jobs.definitions.risk.holdings_orm")
        repo.list_portfolio_ids = AsyncMock(return_value=[1, 2, 3])

        async def create(portfolio_id):
            if portfolio_id == 2:
                raise NotFoundError(f"No holdings found for portfolio {portfolio_id}")
            if portfolio_id == 3:
                raise DataMissingError(f"Portfolio {portfolio_id} has zero total value")
            return SimpleNamespace(positions_written=4)

        ctx.snapshot_service.create_daily_snapshots = AsyncMock(side_effect=create)

        result = await risk_jobs.daily_risk_snapshots_job(ctx)

        assert (result.items_processed, result.items_failed) == (2, 1)
        assert result.details == {"positions_written": 4, "empty_portfolios": 1}
        assert result.message == "Snapshotted 1 portfolios"

    @pytest.mark.asyncio
    async def test_other_not_found_still_fails(self, ctx, mocker):
        repo = mocker.patch("analytics_engine.jobs.definitions.risk.holdings_orm")
        repo.list_portfolio_ids = AsyncMock(return_value=[9])
        ctx.snapshot_service.create_daily_snapshots = AsyncMock(
            side_effect=NotFoundError("Portfolio 9 does not exist")
        )
        result = await risk_jobs.daily_risk_snapshots_job(ctx)
        assert (result.items_processed, result.items_failed) == (0, 1)


class TestUnitPacing:
    """Portfolio jobs pause between units."""

    @pytest.fixture
    def no_delays(self):
        """Keep the real pacing constants."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "module, job_name, delay",
        [
            (risk_jobs, "daily_risk_snapshots_job", 1.0),
            (risk_jobs, "check_thresholds_job", 1.0),
            (cache_jobs, "optimization_cache_job", 1.0),
            (cache_jobs, "downside_risk_cache_job", 2.0),
            (cache_jobs, "portfolio_correlations_job", 2.0),
        ],
    )
    async def test_delay_between_portfolios(self, ctx, mocker, module, job_name, delay):
        repo = mocker.patch.object(module, "holdings_orm")
        repo.list_portfolio_ids = AsyncMock(return_value=[1, 2])
        runner = mocker.patch.object(module, "run_units", AsyncMock(return_value=JobResult()))

        await getattr(module, job_name)(ctx)

        assert runner.await_args.kwargs["delay"] == delay


# =============================================================================
# Regime jobs
# =============================================================================


class TestMarketRegimeUpdateJob:
    """Classification over a weekday-only benchmark table."""

    @pytest.mark.asyncio
    async def test_weekday_closes_are_enough(self, ctx, mocker):
        closes = make_trading_points(random_walk(60, seed=8), end=date(2026, 10, 13))
        store = mocker.patch("analytics_engine.services.prices.prices_orm")
        store.get_latest_write = AsyncMock(
            return_value=(date(2026, 10, 13), datetime(2026, 10, 14, 2, 0, tzinfo=UTC))
        )
        store.get_recent = AsyncMock(side_effect=lambda t, limit: closes[-limit:])
        regimes = mocker.patch("analytics_engine.services.regime.regimes_orm")
        regimes.upsert_regime = AsyncMock()

        provider = MagicMock()
        provider.fetch_daily_history = AsyncMock()
        price_service = PriceService(
            provider,
            FailureCache(),
            RateLimiter("test", max_concurrent=1, requests_per_minute=60_000),
            clock=lambda: datetime(2026, 10, 14, 17, 0, tzinfo=UTC),
        )
        ctx.regime_service = RegimeService(price_service)

        result = await regime_jobs.market_regime_update_job(ctx)

        assert result.items_processed == 1
        assert result.details["regime_type"] in {"bull", "bear", "high_volatility", "normal"}
        provider.fetch_daily_history.assert_not_awaited()
        regimes.upsert_regime.assert_awaited_once()
        store.get_recent.assert_awaited_once_with("SPY", 31)


class TestRegimeForecastJob:
    """Forecast summary per horizon."""

    @pytest.mark.asyncio
    async def test_predicted_labels(self, ctx):
        ctx.forecast_service.generate_forecasts = AsyncMock(return_value=[
            SimpleNamespace(horizon_days=5, predicted_state=SimpleNamespace(label="bull")),
            SimpleNamespace(horizon_days=30, predicted_state=SimpleNamespace(label="bear")),
        ])
        result = await regime_jobs.regime_forecast_job(ctx)
        assert result.items_processed == 2
        assert result.details == {"predicted": {5: "bull", 30: "bear"}}

    @pytest.mark.asyncio
    async def test_missing_model_propagates(self, ctx):
        ctx.forecast_service.generate_forecasts = AsyncMock(
            side_effect=NotFoundError("No trained HMM model for SPY; run hmm_training first")
        )
        with pytest.raises(NotFoundError, match="hmm_training"):
            await regime_jobs.regime_forecast_job(ctx)


# =============================================================================
# Watchlist
# =============================================================================


class TestWatchlistMonitoringJob:
    """Alert storage trouble does not fail the ticker."""

    @pytest.mark.asyncio
    async def test_counts_and_storage_failure(self, ctx, mocker):
        repo = mocker.patch("analytics_engine.jobs.definitions.watchlist.watchlist_orm")
        repo.get_watchlist_tickers = AsyncMock(return_value=["AAPL", "TSLA", "ZZZZ"])

        async def monitor(ticker):
            if ticker == "ZZZZ":
                raise RuntimeError("no prices")
            if ticker != "AAPL":
                return []
            return [
                monitoring_result("price_above", "high"),
                monitoring_result("bollinger_upper_touch", "low"),
            ]

        ctx.watchlist_monitor.monitor_ticker = AsyncMock(side_effect=monitor)
        ctx.watchlist_monitor.store_results = AsyncMock(side_effect=SQLAlchemyError("db down"))

        result = await watchlist_jobs.watchlist_monitoring_job(ctx)

        assert (result.items_processed, result.items_failed) == (2, 1)
        assert result.details == {
            "alerts_triggered": 2,
            "alerts_stored": 0,
            "critical_alerts": 1,
        }
        ctx.watchlist_monitor.store_results.assert_awaited_once()


# =============================================================================
# Context
# =============================================================================


class TestJobContext:
    """Shared collaborators."""

    def test_defaults_to_process_settings(self):
        context = JobContext(
            price_service=MagicMock(),
            failure_cache=FailureCache(),
            rate_limiter=RateLimiter("test", max_concurrent=1, requests_per_minute=60),
            cache=MagicMock(),
        )

        assert context.settings is settings
        assert context.forecast_service.market == settings.default_benchmark
        assert context.risk_service.risk_free_rate == settings.risk_free_rate
