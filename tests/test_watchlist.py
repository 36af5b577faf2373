"""Tests for watchlist monitoring."""

from __future__ import annotations

from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from analytics_engine.services.alert_types import AlertKind, AlertSeverity
from analytics_engine.services.watchlist_monitoring import (
    MarketSnapshot,
    MonitoringResult,
    WatchlistMonitor,
    compute_snapshot,
    detect_patterns,
    detect_sentiment_shift,
    determine_severity,
    evaluate_threshold,
)

from conftest import make_points


ITEM = SimpleNamespace(id=1, ticker="AAPL", added_price=100.0)


def rule(threshold_type, comparison, value, enabled=True):
    return SimpleNamespace(
        threshold_type=threshold_type, comparison=comparison, value=value, enabled=enabled
    )


def market(current_price=160.0, rsi=55.0, volatility=25.0):
    return MarketSnapshot(
        prices=[100.0] * 19 + [current_price],
        current_price=current_price,
        rsi=rsi,
        volume_ratio=None,
        volatility=volatility,
    )


class TestSnapshot:
    """Per-ticker market values."""

    def test_empty_or_zero_price(self):
        assert compute_snapshot([]) is None
        assert compute_snapshot([10.0, 0.0]) is None

    def test_short_history(self):
        snapshot = compute_snapshot([10.0] * 10)
        assert snapshot.current_price == 10.0
        assert snapshot.rsi is None
        assert snapshot.volatility is None
        assert snapshot.volume_ratio is None

    def test_full_history(self):
        snapshot = compute_snapshot([100.0 + (i % 3) for i in range(40)])
        assert snapshot.rsi is not None
        assert snapshot.volatility > 0


class TestEvaluateThreshold:
    """Single rule evaluation."""

    def test_price_above(self):
        result = evaluate_threshold(ITEM, "user-1", rule("price_above", "gt", 150.0), market())
        assert result.alert_type == "price_above"
        assert result.severity == "medium"
        assert result.message == "AAPL: Price $160.00 exceeded upper threshold $150.00"
        assert result.metadata["current_price"] == 160.0

    def test_not_triggered(self):
        assert evaluate_threshold(ITEM, "user-1", rule("price_above", "gt", 200.0), market()) is None

    def test_price_change_uses_magnitude(self):
        """A 12% drop triggers a 'gt 10' change rule and reports the signed value."""
        result = evaluate_threshold(
            ITEM, "user-1", rule("price_change_pct", "gt", 10.0), market(current_price=88.0)
        )
        assert result.actual_value == pytest.approx(-12.0)
        assert result.severity == "critical"

    def test_price_change_without_added_price(self):
        item = SimpleNamespace(id=2, ticker="MSFT", added_price=None)
        assert evaluate_threshold(item, "u", rule("price_change_pct", "gt", 1.0), market()) is None

    def test_eq_comparison_tolerates_float_noise(self):
        result = evaluate_threshold(ITEM, "u", rule("rsi_overbought", "eq", 55.0), market(rsi=55.0 + 1e-12))
        assert result is not None

    def test_missing_inputs_never_trigger(self):
        assert evaluate_threshold(ITEM, "u", rule("volume_spike", "gte", 0.0), market()) is None
        assert evaluate_threshold(ITEM, "u", rule("volatility", "gt", 1.0), market(volatility=None)) is None

    def test_unknown_rule_or_comparison(self):
        assert evaluate_threshold(ITEM, "u", rule("moon_phase", "gt", 1.0), market()) is None
        assert evaluate_threshold(ITEM, "u", rule("price_above", "between", 1.0), market()) is None

    @pytest.mark.parametrize(
        "threshold_type,actual,threshold,severity",
        [
            ("price_above", 110.0, 100.0, "high"),
            ("price_below", 95.0, 100.0, "medium"),
            ("price_change_pct", -6.0, 5.0, "high"),
            ("volatility", 45.0, 30.0, "high"),
            ("volume_spike", 3.0, 2.0, "high"),
            ("rsi_oversold", 14.0, 30.0, "high"),
            ("rsi_overbought", 75.0, 70.0, "medium"),
            ("anything", 1.0, 0.0, "medium"),
        ],
    )
    def test_determine_severity(self, threshold_type, actual, threshold, severity):
        assert determine_severity(threshold_type, actual, threshold) == severity

    @pytest.mark.parametrize(
        "watchlist_severity,expected",
        [
            ("low", AlertSeverity.INFO),
            ("medium", AlertSeverity.WARNING),
            ("high", AlertSeverity.CRITICAL),
            ("critical", AlertSeverity.CRITICAL),
        ],
    )
    def test_alert_severity_scale(self, watchlist_severity, expected):
        result = MonitoringResult(
            ticker="AAPL",
            watchlist_item_id=3,
            user_id="u1",
            alert_type="price_above",
            severity=watchlist_severity,
            message="AAPL above 100",
            actual_value=110.0,
            threshold_value=100.0,
        )
        alert = result.to_alert(date(2026, 10, 14))
        assert alert.kind is AlertKind.WATCHLIST
        assert alert.severity is expected
        assert alert.payload["watchlist_severity"] == watchlist_severity


class TestSignals:
    """Pattern and sentiment detection."""

    def test_patterns_need_history(self):
        assert detect_patterns([100.0] * 29, "AAPL", 1, "u") == []

    def test_steady_rise_is_overbought(self):
        prices = [100.0 + i for i in range(40)]
        types = {r.alert_type for r in detect_patterns(prices, "AAPL", 1, "u")}
        assert "pattern_rsi_extreme_overbought" in types
        assert all(t.startswith("pattern_") for t in types)

    @pytest.mark.parametrize(
        "current,previous,expected",
        [
            (0.5, 0.1, ("sentiment_shift_positive", "medium")),
            (-0.6, 0.1, ("sentiment_shift_negative", "high")),
            (0.2, 0.1, None),
            (0.9, None, None),
        ],
    )
    def test_sentiment_shift(self, current, previous, expected):
        result = detect_sentiment_shift("AAPL", 1, "u", current, previous)
        if expected is None:
            assert result is None
        else:
            assert (result.alert_type, result.severity) == expected


class TestWatchlistMonitor:
    """monitor_ticker with mocked repositories."""

    @pytest.fixture
    def repo(self):
        fake = MagicMock()
        fake.get_items_for_ticker = AsyncMock(return_value=[(ITEM, "user-1")])
        fake.get_thresholds = AsyncMock(return_value=[
            rule("price_above", "gt", 120.0),
            rule("price_below", "lt", 500.0, enabled=False),
        ])
        fake.has_recent_alert = AsyncMock(return_value=False)
        fake.get_monitoring_state = AsyncMock(return_value=None)
        fake.upsert_monitoring_state = AsyncMock()
        fake.create_alert = AsyncMock()
        with patch("analytics_engine.services.watchlist_monitoring.watchlist_orm", fake):
            yield fake

    @pytest.fixture
    def price_service(self):
        service = MagicMock()
        service.get_history = AsyncMock(return_value=make_points([100.0 + i for i in range(40)]))
        return service

    @pytest.mark.asyncio
    async def test_triggers_and_records_state(self, repo, price_service):
        monitor = WatchlistMonitor(price_service)
        results = await monitor.monitor_ticker("AAPL")
        types = [r.alert_type for r in results]

        assert "price_above" in types
        assert "price_below" not in types
        assert "pattern_rsi_extreme_overbought" in types
        repo.upsert_monitoring_state.assert_awaited_once()
        assert repo.upsert_monitoring_state.await_args.args[:2] == (1, 139.0)

        assert await monitor.store_results(results) == len(results)
        assert repo.create_alert.await_count == len(results)

    @pytest.mark.asyncio
    async def test_cooldown_suppresses(self, repo, price_service):
        repo.has_recent_alert.return_value = True
        results = await WatchlistMonitor(price_service).monitor_ticker("AAPL")
        assert results == []
        repo.upsert_monitoring_state.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sentiment_shift_uses_previous_state(self, repo, price_service):
        repo.get_monitoring_state.return_value = SimpleNamespace(last_sentiment_score=-0.2)
        repo.get_thresholds.return_value = []
        monitor = WatchlistMonitor(price_service, sentiment_source=AsyncMock(return_value=0.5))
        results = await monitor.monitor_ticker("AAPL")
        assert "sentiment_shift_positive" in [r.alert_type for r in results]
        assert repo.upsert_monitoring_state.await_args.args[-1] == 0.5

    @pytest.mark.asyncio
    async def test_no_prices(self, repo, price_service):
        price_service.get_history.return_value = []
        assert await WatchlistMonitor(price_service).monitor_ticker("AAPL") == []
        repo.get_items_for_ticker.assert_not_awaited()
