"""Tests for the indicator kernel."""

from __future__ import annotations

import math
from datetime import date, timedelta

import numpy as np
import pytest

from analytics_engine.quant_engine import indicators

from conftest import random_walk


# =============================================================================
# Returns
# =============================================================================


class TestReturns:
    """Log and simple returns."""

    def test_log_returns(self):
        """ln(p[i]/p[i-1]) for each step."""
        r = indicators.log_returns([100.0, 110.0, 99.0])
        assert r == pytest.approx([math.log(1.1), math.log(0.9)])

    def test_log_returns_reject_non_positive(self):
        """A zero or negative price makes the series unusable."""
        assert indicators.log_returns([100.0, 0.0, 101.0]) is None
        assert indicators.log_returns([100.0, -5.0]) is None

    def test_log_returns_need_two_prices(self):
        assert indicators.log_returns([100.0]) is None

    def test_simple_returns(self):
        assert indicators.simple_returns([100.0, 110.0]) == pytest.approx([0.1])

    def test_align_returns_by_date_uses_common_dates(self):
        """Only dates present in both series produce returns."""
        d0 = date(2025, 1, 1)
        asset = [(d0 + timedelta(days=i), 100.0 + i) for i in range(5)]
        bench = [(d0 + timedelta(days=i), 50.0 + i) for i in (0, 1, 3, 4)]
        ra, rb, dates = indicators.align_returns_by_date(asset, bench)
        assert len(ra) == len(rb) == 3
        assert dates == [d0 + timedelta(days=1), d0 + timedelta(days=3), d0 + timedelta(days=4)]
        assert ra[1] == pytest.approx(math.log(103.0 / 101.0))

    def test_align_returns_without_overlap(self):
        ra, rb, dates = indicators.align_returns_by_date(
            [(date(2025, 1, 1), 1.0)], [(date(2025, 2, 1), 1.0)]
        )
        assert ra.size == 0 and rb.size == 0 and dates == []


# =============================================================================
# Risk statistics
# =============================================================================


class TestRiskStatistics:
    """Volatility, drawdown, beta and friends."""

    def test_volatility_of_constant_returns_is_zero(self):
        assert indicators.annualized_volatility([0.01] * 10) == pytest.approx(0.0)

    def test_volatility_is_annualized_percent(self):
        r = np.array([0.01, -0.01, 0.02, -0.02])
        expected = np.std(r, ddof=1) * math.sqrt(252) * 100
        assert indicators.annualized_volatility(r) == pytest.approx(expected)

    def test_max_drawdown(self):
        """Peak 120 to trough 90 is a 25% drawdown."""
        assert indicators.max_drawdown([100, 120, 90, 110]) == pytest.approx(-25.0)

    def test_max_drawdown_monotonic_rise(self):
        assert indicators.max_drawdown([100, 101, 102]) == 0.0

    def test_beta_of_scaled_series(self):
        """An asset moving twice as much as the benchmark has beta 2."""
        rb = np.random.default_rng(1).normal(0, 0.01, 100)
        assert indicators.beta(2 * rb, rb) == pytest.approx(2.0)

    def test_beta_flat_benchmark_is_none(self):
        """Zero benchmark variance gives no beta rather than infinity."""
        ra = np.random.default_rng(2).normal(0, 0.01, 50)
        assert indicators.beta(ra, np.zeros(50)) is None

    def test_beta_needs_observations(self):
        r = np.random.default_rng(3).normal(0, 0.01, 10)
        assert indicators.beta(r, r) is None

    def test_sharpe_flat_returns_is_none(self):
        assert indicators.sharpe_ratio([0.001] * 30) is None

    def test_sortino_without_losses_is_none(self):
        """No negative return means no downside deviation."""
        assert indicators.sortino_ratio([0.01, 0.02, 0.0, 0.03]) is None

    def test_downside_deviation_counts_only_losses(self):
        r = [0.02, -0.01, 0.03, -0.03]
        expected = math.sqrt((0.01 ** 2 + 0.03 ** 2) / 4) * math.sqrt(252)
        assert indicators.downside_deviation(r) == pytest.approx(expected)

    def test_value_at_risk_picks_lower_percentile(self):
        """With 100 returns the 95% VaR is the sixth-smallest (index 5)."""
        r = np.linspace(-0.05, 0.05, 100)
        assert indicators.value_at_risk(r, 0.95) == pytest.approx(np.sort(r)[5] * 100)
        assert indicators.value_at_risk(r, 0.99) == pytest.approx(np.sort(r)[1] * 100)

    def test_expected_shortfall_is_below_var(self):
        r = random_walk(300, seed=7)
        returns = indicators.log_returns(r)
        var = indicators.value_at_risk(returns, 0.95)
        es = indicators.expected_shortfall(returns, 0.95)
        assert es <= var

    def test_correlation_of_identical_series(self):
        x = np.random.default_rng(4).normal(size=30)
        assert indicators.correlation(x, x) == pytest.approx(1.0)

    def test_correlation_flat_series_is_none(self):
        assert indicators.correlation([1.0] * 5, [1.0, 2.0, 3.0, 4.0, 5.0]) is None

    def test_linear_regression(self):
        slope, intercept = indicators.linear_regression([1.0, 3.0, 5.0, 7.0])
        assert slope == pytest.approx(2.0)
        assert intercept == pytest.approx(1.0)

    def test_rolling_beta_points(self):
        """One point per full window, dated by the window's last return."""
        rb = np.random.default_rng(5).normal(0, 0.01, 40)
        d0 = date(2025, 1, 1)
        dates = [d0 + timedelta(days=i) for i in range(40)]
        points = indicators.rolling_beta(1.5 * rb, rb, dates, 30)
        assert len(points) == 11
        assert points[-1]["date"] == dates[-1].isoformat()
        assert points[0]["beta"] == pytest.approx(1.5)
        assert points[0]["r_squared"] == pytest.approx(1.0)


# =============================================================================
# Moving averages & oscillators
# =============================================================================


class TestMovingAverages:
    """SMA, EMA, RSI, MACD and Bollinger bands."""

    def test_sma_leading_none(self):
        values = indicators.sma([1, 2, 3, 4, 5], 3)
        assert values[:2] == [None, None]
        assert values[2:] == pytest.approx([2.0, 3.0, 4.0])

    def test_sma_short_input(self):
        assert indicators.sma([1, 2], 3) is None

    def test_ema_seeded_with_sma(self):
        """EMA starts at the SMA of the first window then smooths with 2/(n+1)."""
        values = indicators.ema([1, 2, 3, 4], 3)
        assert values[:2] == [None, None]
        assert values[2] == pytest.approx(2.0)
        assert values[3] == pytest.approx(0.5 * 4 + 0.5 * 2.0)

    def test_rsi_all_gains_is_high(self):
        values = indicators.rsi(list(range(1, 40)), 14)
        assert values[-1] == pytest.approx(100.0)

    def test_rsi_needs_window_plus_one(self):
        assert indicators.rsi(list(range(14)), 14) is None

    def test_macd_lengths(self):
        prices = list(random_walk(60, seed=11))
        macd_line, signal, hist = indicators.macd(prices)
        assert len(macd_line) == len(signal) == len(hist) == 60
        assert hist[-1] == pytest.approx(macd_line[-1] - signal[-1])

    def test_macd_short_input(self):
        assert indicators.macd([1.0] * 30) is None

    def test_bollinger_band_order(self):
        prices = list(random_walk(40, seed=12))
        middle, upper, lower = indicators.bollinger_bands(prices)
        assert lower[-1] < middle[-1] < upper[-1]
