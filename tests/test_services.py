"""Tests for the risk, snapshot, regime and HMM training services."""

from __future__ import annotations

from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from analytics_engine.core.exceptions import DataMissingError, NotFoundError, ValidationError
from analytics_engine.quant_engine import hmm
from analytics_engine.quant_engine.risk import compute_risk_assessment, risk_decomposition
from analytics_engine.quant_engine.types import RegimeType, RiskThresholds
from analytics_engine.services.hmm_training import HMMTrainingService
from analytics_engine.services.regime import RegimeForecastService, RegimeService
from analytics_engine.services.risk import RiskService
from analytics_engine.services.risk_snapshots import RiskSnapshotService, aggregate_trend

from conftest import make_points, make_trading_points, random_walk


@pytest.fixture
def price_service():
    service = MagicMock()
    service.ensure_prices = AsyncMock()
    return service


def row(day: date, risk_score: float):
    return SimpleNamespace(
        snapshot_date=day,
        ticker=None,
        snapshot_type="portfolio",
        volatility=20.0,
        max_drawdown=-10.0,
        beta=1.0,
        sharpe=0.5,
        var_95=-2.0,
        risk_score=risk_score,
        risk_level="low",
        total_value=None,
    )


# =============================================================================
# Risk
# =============================================================================


class TestRiskService:
    """Assessments over stored prices."""

    @pytest.mark.asyncio
    async def test_assess_refreshes_and_scores(self, price_service):
        series = {
            "AAPL": make_points(random_walk(90, seed=1, vol=0.02)),
            "SPY": make_points(random_walk(90, seed=2)),
        }
        price_service.get_history_since = AsyncMock(side_effect=lambda t, start: series[t])

        assessment = await RiskService(price_service, risk_free_rate=0.04).assess("aapl")

        assert assessment.ticker == "AAPL"
        assert assessment.beta is not None
        assert 0 <= assessment.risk_score <= 100
        assert [c.args[0] for c in price_service.ensure_prices.await_args_list] == ["AAPL", "SPY"]

    @pytest.mark.asyncio
    async def test_stored_only_makes_no_provider_calls(self, price_service):
        points = make_points(random_walk(90, seed=5))
        price_service.get_history_since = AsyncMock(return_value=points)

        assessment = await RiskService(price_service).assess("MSFT", refresh=False)

        assert assessment.ticker == "MSFT"
        price_service.ensure_prices.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_history(self, price_service):
        price_service.get_history_since = AsyncMock(return_value=[])
        with pytest.raises(DataMissingError):
            await RiskService(price_service).assess("ZZZZ")


class TestRiskDecomposition:
    """Systematic versus idiosyncratic variance."""

    def test_parts_add_up(self):
        market = random_walk(200, seed=3)
        asset = random_walk(200, seed=4)
        rm = [market[i] / market[i - 1] - 1 for i in range(1, 200)]
        ra = [1.5 * r + (asset[i + 1] / asset[i] - 1) * 0.5 for i, r in enumerate(rm)]

        result = risk_decomposition(ra, rm)

        total = result["total_volatility"] ** 2
        parts = result["systematic_volatility"] ** 2 + result["idiosyncratic_volatility"] ** 2
        assert parts == pytest.approx(total, rel=1e-6)
        assert result["beta"] == pytest.approx(1.5, abs=0.2)
        assert 0 < result["systematic_share"] < 1

    def test_flat_benchmark(self):
        assert risk_decomposition([0.01, -0.01] * 20, [0.0] * 40) is None


# =============================================================================
# Snapshots
# =============================================================================


class TestRiskSnapshotService:
    """Daily snapshot creation with mocked repositories."""

    @pytest.fixture
    def repos(self, mocker):
        holdings = mocker.patch("analytics_engine.services.risk_snapshots.holdings_orm")
        holdings.get_latest_holdings = AsyncMock(return_value=[
            SimpleNamespace(ticker="AAPL", quantity=10, market_value=6_000),
            SimpleNamespace(ticker="aapl", quantity=5, market_value=3_000),
            SimpleNamespace(ticker="BAD", quantity=1, market_value=1_000),
            SimpleNamespace(ticker=None, quantity=500, market_value=500),
        ])
        snapshots = mocker.patch("analytics_engine.services.risk_snapshots.risk_snapshots_orm")
        snapshots.upsert_snapshot = AsyncMock()
        return SimpleNamespace(holdings=holdings, snapshots=snapshots)

    @pytest.fixture
    def risk_service(self):
        assessment = compute_risk_assessment("AAPL", make_points(random_walk(90)))

        async def assess(ticker, lookback_days, refresh=True):
            assert refresh is False
            if ticker == "BAD":
                raise DataMissingError(f"No price history for {ticker}")
            return assessment

        service = MagicMock()
        service.assess = AsyncMock(side_effect=assess)
        return service

    @pytest.mark.asyncio
    async def test_failed_ticker_is_skipped(self, repos, risk_service):
        result = await RiskSnapshotService(risk_service).create_daily_snapshots(4, date(2026, 10, 14))

        assert result.positions_written == 1
        assert result.failed_tickers == ["BAD"]
        written = [c.args[0] for c in repos.snapshots.upsert_snapshot.await_args_list]
        assert [(w["ticker"], w["snapshot_type"]) for w in written] == [
            ("AAPL", "position"),
            (None, "portfolio"),
        ]
        assert written[0]["market_value"] == 9_000
        assert written[1]["total_value"] == 10_000

    @pytest.mark.asyncio
    async def test_no_holdings(self, repos, risk_service):
        repos.holdings.get_latest_holdings.return_value = []
        with pytest.raises(NotFoundError, match="No holdings found"):
            await RiskSnapshotService(risk_service).create_daily_snapshots(4)

    @pytest.mark.asyncio
    async def test_zero_value(self, repos, risk_service):
        repos.holdings.get_latest_holdings.return_value = [
            SimpleNamespace(ticker="AAPL", quantity=1, market_value=0)
        ]
        with pytest.raises(DataMissingError):
            await RiskSnapshotService(risk_service).create_daily_snapshots(4)

    @pytest.mark.asyncio
    async def test_risk_trend(self, mocker):
        repo = mocker.patch("analytics_engine.services.risk_snapshots.risk_snapshots_orm")
        repo.get_portfolio_history = AsyncMock(return_value=[
            row(date(2026, 9, 1), 40.0),
            row(date(2026, 9, 30), 45.0),
            row(date(2026, 10, 2), 52.0),
        ])
        trend = await RiskSnapshotService(MagicMock()).get_risk_trend(4, days=60, aggregation="monthly")
        assert [p["snapshot_date"] for p in trend["points"]] == ["2026-09-30", "2026-10-02"]
        assert trend["risk_score_change"] == pytest.approx(7.0)


class TestAggregateTrend:
    """Last snapshot per bucket."""

    def test_weekly(self):
        rows = [row(date(2026, 10, 5), 1), row(date(2026, 10, 9), 2), row(date(2026, 10, 12), 3)]
        assert [r.risk_score for r in aggregate_trend(rows, "weekly")] == [2, 3]

    def test_unknown_aggregation(self):
        with pytest.raises(ValidationError):
            aggregate_trend([], "hourly")


# =============================================================================
# Regime
# =============================================================================


class TestRegimeService:
    """Classification persistence and threshold scaling."""

    @pytest.mark.asyncio
    async def test_update_current_regime(self, price_service, mocker):
        repo = mocker.patch("analytics_engine.services.regime.regimes_orm")
        repo.upsert_regime = AsyncMock()
        price_service.get_recent = AsyncMock(
            return_value=make_trading_points(random_walk(31), end=date(2026, 10, 13))
        )

        classification = await RegimeService(price_service).update_current_regime(date(2026, 10, 14))

        price_service.get_recent.assert_awaited_once_with("SPY", 31)
        repo.upsert_regime.assert_awaited_once_with(date(2026, 10, 14), classification)

    @pytest.mark.asyncio
    async def test_short_history(self, price_service, mocker):
        mocker.patch("analytics_engine.services.regime.regimes_orm")
        price_service.get_recent = AsyncMock(return_value=make_points(random_walk(10)))
        with pytest.raises(DataMissingError):
            await RegimeService(price_service).update_current_regime()

    @pytest.mark.asyncio
    async def test_adjusted_thresholds(self, price_service, mocker):
        repo = mocker.patch("analytics_engine.services.regime.regimes_orm")
        repo.get_or_create_thresholds = AsyncMock(return_value=RiskThresholds())
        repo.get_current_regime = AsyncMock(return_value=SimpleNamespace(regime_type="bull"))

        adjusted = await RegimeService(price_service).get_adjusted_thresholds(4)

        assert adjusted.regime_type is RegimeType.BULL
        assert adjusted.adjusted.volatility_warning == pytest.approx(24.0)

    @pytest.mark.asyncio
    async def test_no_stored_regime_is_normal(self, price_service, mocker):
        repo = mocker.patch("analytics_engine.services.regime.regimes_orm")
        repo.get_current_regime = AsyncMock(return_value=None)
        assert await RegimeService(price_service).get_current_regime_type() is RegimeType.NORMAL


class TestRegimeForecastService:
    """Forecasts from the stored model."""

    @pytest.fixture
    def repo(self, mocker):
        fake = mocker.patch("analytics_engine.services.regime.hmm_orm")
        fake.load_latest_model = AsyncMock(return_value=SimpleNamespace(
            id=3,
            transition_matrix=[list(r) for r in hmm.DEFAULT_TRANSITION_MATRIX],
            emission_params=[[1.0 / hmm.NUM_SYMBOLS] * hmm.NUM_SYMBOLS] * hmm.NUM_STATES,
        ))
        fake.save_forecast = AsyncMock()
        fake.delete_forecasts_before = AsyncMock(return_value=0)
        return fake

    @pytest.mark.asyncio
    async def test_three_horizons(self, repo, price_service):
        price_service.get_recent = AsyncMock(return_value=make_points(random_walk(60)))
        forecasts = await RegimeForecastService(price_service).generate_forecasts(
            forecast_date=date(2026, 10, 14)
        )

        assert [f.horizon_days for f in forecasts] == [5, 10, 30]
        assert repo.save_forecast.await_count == 3
        repo.delete_forecasts_before.assert_awaited_once_with(date(2026, 7, 16))
        for f in forecasts:
            assert sum(f.probabilities.to_list()) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_no_model(self, repo, price_service):
        repo.load_latest_model.return_value = None
        with pytest.raises(NotFoundError):
            await RegimeForecastService(price_service).generate_forecasts()
        repo.save_forecast.assert_not_awaited()


# =============================================================================
# HMM training
# =============================================================================


class TestHMMTrainingService:
    """Model training and retention."""

    @pytest.mark.asyncio
    async def test_train_and_store(self, price_service, mocker):
        repo = mocker.patch("analytics_engine.services.hmm_training.hmm_orm")
        repo.save_model = AsyncMock(return_value=11)
        repo.cleanup_models = AsyncMock(return_value=1)
        price_service.get_window = AsyncMock(return_value=make_points(random_walk(300, vol=0.015)))

        result = await HMMTrainingService(price_service).train()

        assert result.model_id == 11
        assert result.model_name == "market_regime_spy"
        assert result.models_removed == 1
        assert 0.0 <= result.accuracy <= 1.0
        stored = repo.save_model.await_args.args[0]
        assert len(stored["transition_matrix"]) == hmm.NUM_STATES
        assert len(stored["emission_params"][0]) == hmm.NUM_SYMBOLS
        repo.cleanup_models.assert_awaited_once_with("SPY", 5)

    @pytest.mark.asyncio
    async def test_needs_a_year_of_prices(self, price_service, mocker):
        repo = mocker.patch("analytics_engine.services.hmm_training.hmm_orm")
        price_service.get_window = AsyncMock(return_value=make_points(random_walk(100)))
        with pytest.raises(DataMissingError):
            await HMMTrainingService(price_service).train()
        repo.save_model.assert_not_called()
