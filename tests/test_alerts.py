"""Tests for portfolio alert evaluation."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from analytics_engine.quant_engine.regime import adjust_thresholds
from analytics_engine.quant_engine.types import RegimeType, RiskThresholds
from analytics_engine.services.alert_types import AlertKind, AlertSeverity
from analytics_engine.services.alerts import (
    AlertEvaluator,
    calculate_severity,
    find_risk_spikes,
    find_threshold_breaches,
    is_in_cooldown,
)


TODAY = date(2026, 10, 14)


def snapshot(day_offset: int, risk_score: float, **metrics):
    values = {
        "snapshot_date": TODAY + timedelta(days=day_offset),
        "risk_score": risk_score,
        "volatility": 15.0,
        "max_drawdown": -5.0,
        "beta": 1.0,
        "var_95": -1.5,
    }
    values.update(metrics)
    return SimpleNamespace(**values)


class TestRiskSpikes:
    """Day-over-day risk score increases."""

    def test_spike_detected(self):
        history = [snapshot(-2, 40.0), snapshot(-1, 42.0), snapshot(0, 52.0)]
        alerts = find_risk_spikes(3, history, 20.0)
        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.kind is AlertKind.RISK_SPIKE
        assert alert.previous_value == 42.0
        assert alert.current_value == 52.0
        assert alert.change_pct == pytest.approx(23.8095, rel=1e-4)
        assert alert.observed_on == TODAY

    def test_threshold_is_inclusive(self):
        assert len(find_risk_spikes(3, [snapshot(-1, 50.0), snapshot(0, 60.0)], 20.0)) == 1

    def test_zero_previous_score_skipped(self):
        assert find_risk_spikes(3, [snapshot(-1, 0.0), snapshot(0, 60.0)], 20.0) == []

    def test_doubling_is_critical(self):
        alerts = find_risk_spikes(3, [snapshot(-1, 20.0), snapshot(0, 30.0)], 20.0)
        assert alerts[0].severity is AlertSeverity.CRITICAL


class TestSeverity:
    """Overshoot ratio grading."""

    @pytest.mark.parametrize(
        "actual,threshold,severity",
        [
            (40.0, 20.0, AlertSeverity.CRITICAL),
            (30.0, 20.0, AlertSeverity.WARNING),
            (25.0, 20.0, AlertSeverity.INFO),
            (-40.0, -20.0, AlertSeverity.CRITICAL),
            (5.0, 0.0, AlertSeverity.INFO),
        ],
    )
    def test_calculate_severity(self, actual, threshold, severity):
        assert calculate_severity("risk_spike", actual, threshold) is severity

    def test_cooldown(self):
        now = datetime(2026, 10, 14, 12, tzinfo=UTC)
        assert is_in_cooldown(now - timedelta(hours=3), 4, now) is True
        assert is_in_cooldown(now - timedelta(hours=4), 4, now) is False
        assert is_in_cooldown(None, 4, now) is False


class TestThresholdBreaches:
    """Regime-adjusted threshold checks."""

    def test_warning_and_critical(self):
        metrics = snapshot(0, 50.0, volatility=30.0, max_drawdown=-36.0, beta=None, var_95=-4.0)
        thresholds = adjust_thresholds(RiskThresholds(), RegimeType.NORMAL)
        alerts = {a.metric: a for a in find_threshold_breaches(1, metrics, thresholds, TODAY)}

        assert set(alerts) == {"volatility", "max_drawdown"}
        assert alerts["volatility"].severity is AlertSeverity.WARNING
        assert alerts["max_drawdown"].severity is AlertSeverity.CRITICAL
        assert alerts["max_drawdown"].payload["threshold"] == -35.0

    def test_bull_regime_tightens(self):
        metrics = snapshot(0, 10.0, volatility=25.0)
        normal = find_threshold_breaches(1, metrics, adjust_thresholds(RiskThresholds(), RegimeType.NORMAL), TODAY)
        bull = find_threshold_breaches(1, metrics, adjust_thresholds(RiskThresholds(), RegimeType.BULL), TODAY)
        assert normal == []
        assert [a.metric for a in bull] == ["volatility"]
        assert bull[0].payload["regime"] == "bull"

    def test_high_volatility_regime_relaxes(self):
        metrics = snapshot(0, 10.0, volatility=60.0)
        alerts = find_threshold_breaches(
            1, metrics, adjust_thresholds(RiskThresholds(), RegimeType.HIGH_VOLATILITY), TODAY
        )
        assert alerts[0].severity is AlertSeverity.WARNING


class TestAlertEvaluator:
    """Evaluator wiring with mocked repositories."""

    @pytest.mark.asyncio
    async def test_check_portfolio_persists(self):
        latest = snapshot(0, 85.0, volatility=55.0)
        history = [snapshot(-1, 50.0), latest]

        regime_service = MagicMock()
        regime_service.get_adjusted_thresholds = AsyncMock(
            return_value=adjust_thresholds(RiskThresholds(), RegimeType.NORMAL)
        )
        snapshots = MagicMock()
        snapshots.get_latest_portfolio_snapshot = AsyncMock(return_value=latest)
        snapshots.get_portfolio_history = AsyncMock(return_value=history)
        alerts_repo = MagicMock()
        alerts_repo.save_alerts = AsyncMock(side_effect=lambda alerts: len(alerts))

        with patch("analytics_engine.services.alerts.risk_snapshots_orm", snapshots), patch(
            "analytics_engine.services.alerts.alerts_orm", alerts_repo
        ):
            result = await AlertEvaluator(regime_service).check_portfolio(9)

        saved = alerts_repo.save_alerts.await_args.args[0]
        kinds = sorted((a.kind.value, a.metric) for a in saved)
        assert kinds == [
            ("risk_spike", "risk_score"),
            ("threshold_breach", "risk_score"),
            ("threshold_breach", "volatility"),
        ]
        assert result == {"alerts": 3, "stored": 3}

    @pytest.mark.asyncio
    async def test_no_snapshot_no_breaches(self):
        regime_service = MagicMock()
        regime_service.get_adjusted_thresholds = AsyncMock()
        snapshots = MagicMock()
        snapshots.get_latest_portfolio_snapshot = AsyncMock(return_value=None)
        with patch("analytics_engine.services.alerts.risk_snapshots_orm", snapshots):
            assert await AlertEvaluator(regime_service).evaluate_thresholds(9) == []
        regime_service.get_adjusted_thresholds.assert_not_awaited()
