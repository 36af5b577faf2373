"""Tests for risk evaluation, portfolio aggregation, correlations and downside risk."""

from __future__ import annotations

import numpy as np
import pytest

from analytics_engine.core.exceptions import DataMissingError
from analytics_engine.quant_engine import correlations, risk
from analytics_engine.quant_engine.types import PositionRisk, RiskAssessment, RiskLevel

from conftest import make_points, random_walk


def _assessment(ticker: str, **overrides) -> RiskAssessment:
    values = {
        "ticker": ticker,
        "volatility": 20.0,
        "max_drawdown": -10.0,
        "risk_score": 40.0,
        "risk_level": RiskLevel.MODERATE,
        "beta": 1.0,
        "sharpe": 0.5,
        "sortino": 0.7,
        "var_95": -2.0,
        "observations": 90,
    }
    values.update(overrides)
    return RiskAssessment(**values)


# =============================================================================
# Score & level
# =============================================================================


class TestRiskLevel:
    """Score buckets."""

    @pytest.mark.parametrize(
        "score,level",
        [
            (0.0, RiskLevel.LOW),
            (39.99, RiskLevel.LOW),
            (40.0, RiskLevel.MODERATE),
            (69.99, RiskLevel.MODERATE),
            (70.0, RiskLevel.HIGH),
            (100.0, RiskLevel.HIGH),
        ],
    )
    def test_boundaries(self, score, level):
        """Lower bound is inclusive for moderate and high."""
        assert RiskLevel.from_score(score) is level


class TestRiskScore:
    """Composite score."""

    def test_score_in_range(self):
        score = risk.compute_risk_score(200.0, -90.0, 5.0, -40.0, -10.0)
        assert score == 100.0
        assert risk.compute_risk_score(0.0, 0.0, 0.0, 0.0, 3.0) == 0.0

    def test_missing_metrics_are_renormalized(self):
        """With only volatility present the score is its contribution alone."""
        assert risk.compute_risk_score(25.0, None) == pytest.approx(50.0)

    def test_no_metrics_scores_zero(self):
        assert risk.compute_risk_score(None, None) == 0.0


# =============================================================================
# Per-ticker assessment
# =============================================================================


class TestRiskAssessment:
    """compute_risk_assessment over price windows."""

    def test_basic_assessment(self, sample_prices):
        bench = make_points(random_walk(260, seed=99))
        result = risk.compute_risk_assessment("AAPL", sample_prices, bench)
        assert result.ticker == "AAPL"
        assert result.volatility > 0
        assert result.max_drawdown <= 0
        assert 0.0 <= result.risk_score <= 100.0
        assert result.risk_level is RiskLevel.from_score(result.risk_score)
        assert result.beta is not None
        assert result.var_99 <= result.var_95
        assert result.observations == 260

    def test_flat_benchmark_gives_no_beta(self, sample_prices):
        """Zero benchmark variance leaves beta unset instead of failing."""
        bench = make_points([400.0] * 260)
        result = risk.compute_risk_assessment("AAPL", sample_prices, bench)
        assert result.beta is None

    def test_too_few_prices(self):
        with pytest.raises(DataMissingError):
            risk.compute_risk_assessment("AAPL", make_points([100.0, 101.0]))

    def test_non_positive_price_rejected(self):
        with pytest.raises(DataMissingError):
            risk.compute_risk_assessment("AAPL", make_points([100.0, 0.0, 101.0, 102.0]))

    def test_unordered_input_is_sorted(self, sample_prices):
        forward = risk.compute_risk_assessment("X", sample_prices)
        backward = risk.compute_risk_assessment("X", list(reversed(sample_prices)))
        assert forward.volatility == pytest.approx(backward.volatility)
        assert forward.max_drawdown == pytest.approx(backward.max_drawdown)


# =============================================================================
# Portfolio aggregation
# =============================================================================


class TestAggregatePortfolioRisk:
    """Market-value-weighted aggregation."""

    def test_weighted_volatility(self):
        positions = [
            PositionRisk("A", 7500.0, _assessment("A", volatility=20.0)),
            PositionRisk("B", 2500.0, _assessment("B", volatility=40.0)),
        ]
        result = risk.aggregate_portfolio_risk(positions)
        assert result.ticker == "PORTFOLIO"
        assert result.volatility == pytest.approx(25.0)

    def test_tiny_positions_ignored(self):
        """Positions under 0.1% of the portfolio do not move the result."""
        positions = [
            PositionRisk("A", 100_000.0, _assessment("A", volatility=20.0)),
            PositionRisk("DUST", 50.0, _assessment("DUST", volatility=500.0)),
        ]
        assert risk.aggregate_portfolio_risk(positions).volatility == pytest.approx(20.0)

    def test_beta_requires_majority(self):
        """Beta is dropped when only a minority of positions has one."""
        positions = [
            PositionRisk("A", 1000.0, _assessment("A", beta=1.2)),
            PositionRisk("B", 1000.0, _assessment("B", beta=None)),
            PositionRisk("C", 1000.0, _assessment("C", beta=None)),
        ]
        assert risk.aggregate_portfolio_risk(positions).beta is None

    def test_empty_portfolio(self):
        with pytest.raises(DataMissingError):
            risk.aggregate_portfolio_risk([])


# =============================================================================
# Correlations
# =============================================================================


class TestCorrelations:
    """Correlation matrix and payload."""

    def test_matrix_is_symmetric_with_unit_diagonal(self):
        series = {
            "A": make_points(random_walk(60, seed=1)),
            "B": make_points(random_walk(60, seed=2)),
            "C": make_points(random_walk(60, seed=3)),
        }
        tickers, matrix = risk.correlation_matrix(series)
        assert sorted(tickers) == ["A", "B", "C"]
        assert np.allclose(matrix, matrix.T)
        assert np.allclose(np.diag(matrix), 1.0)

    def test_identical_series_fully_correlated(self):
        closes = random_walk(60, seed=5)
        payload = correlations.build_correlation_payload(
            {"A": make_points(closes), "B": make_points(closes * 2)}
        )
        assert payload["pairs"][0]["correlation"] == pytest.approx(1.0)
        assert payload["statistics"]["high_correlation_pairs"] == 1

    def test_single_ticker_has_no_pairs(self):
        payload = correlations.build_correlation_payload({"A": make_points(random_walk(60))})
        assert payload["pairs"] == []
        assert payload["statistics"]["average_correlation"] == 0.0

    def test_select_tickers_largest_first(self):
        values = {"A": 100.0, "B": 5000.0, "C": 2000.0, "TINY": 10.0}
        assert correlations.select_tickers(values, max_tickers=2) == ["B", "C"]
        assert "TINY" not in correlations.select_tickers(values)


# =============================================================================
# Downside risk & rolling beta
# =============================================================================


class TestDownsideRisk:
    """Downside metrics payloads."""

    def test_downside_metrics_fields(self):
        returns = np.random.default_rng(8).normal(0.0005, 0.01, 90)
        metrics = risk.downside_metrics(returns)
        assert metrics["downside_deviation"] > 0
        assert metrics["var_99"] <= metrics["var_95"]
        assert metrics["tail_shape"] is not None
        assert "summary" in metrics["interpretation"]

    def test_tail_shape_needs_history(self):
        returns = np.random.default_rng(9).normal(0.0, 0.01, 10)
        assert risk.downside_metrics(returns)["tail_shape"] is None

    def test_too_few_returns(self):
        assert risk.downside_metrics([0.01]) is None

    def test_portfolio_downside_risk(self):
        series = {
            "A": make_points(random_walk(90, seed=1)),
            "B": make_points(random_walk(90, seed=2)),
        }
        payload = risk.portfolio_downside_risk(7, series, {"A": 3000.0, "B": 1000.0}, 90, "SPY")
        assert payload["portfolio_id"] == 7
        assert [p["ticker"] for p in payload["position_downside_risks"]] == ["A", "B"]
        assert payload["position_downside_risks"][0]["weight"] == pytest.approx(0.75)

    def test_portfolio_downside_risk_without_data(self):
        with pytest.raises(DataMissingError):
            risk.portfolio_downside_risk(7, {}, {}, 90, "SPY")


class TestRollingBeta:
    """rolling_beta_analysis."""

    def test_windows_and_current_beta(self):
        bench = random_walk(200, seed=21)
        rb = np.diff(np.log(bench))
        asset = 50.0 * np.exp(np.concatenate([[0.0], np.cumsum(1.2 * rb)]))
        payload = risk.rolling_beta_analysis(
            "AAPL", "SPY", make_points(asset), make_points(bench)
        )
        assert payload["current_beta"] == pytest.approx(1.2)
        assert len(payload["beta_30d"]) == 199 - 30 + 1
        assert payload["beta_volatility"] == pytest.approx(0.0, abs=1e-9)

    def test_short_history(self):
        with pytest.raises(DataMissingError):
            risk.rolling_beta_analysis(
                "AAPL", "SPY", make_points(random_walk(20)), make_points(random_walk(20, seed=2))
            )
