"""
Deterministic portfolio optimization analyzer.

Looks at position weights and per-position risk assessments and produces a
list of recommendations (concentration, excessive risk contributors,
diversification) plus a health summary. No solver is involved; the same
inputs always produce the same output.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any

from analytics_engine.core.exceptions import DataMissingError
from analytics_engine.quant_engine.types import (
    Recommendation,
    RecommendationSeverity,
    RecommendationType,
    RiskAssessment,
)

logger = logging.getLogger(__name__)


TARGET_MAX_WEIGHT = 15.0
EXCESSIVE_CONTRIBUTION = 20.0
TARGET_CONTRIBUTION = 15.0
GOOD_DIVERSIFICATION = 7.0
DEFAULT_AVERAGE_CORRELATION = 0.5


@dataclass(frozen=True)
class OptimizerPosition:
    """A position aggregated across accounts."""
    ticker: str
    market_value: float
    name: str | None = None
    assessment: RiskAssessment | None = None


@dataclass(frozen=True)
class CurrentMetrics:
    risk_score: float
    volatility: float
    max_drawdown: float
    sharpe_ratio: float | None
    diversification_score: float
    correlation_adjusted_diversification_score: float | None
    average_correlation: float | None
    position_count: int
    largest_position_weight: float
    top_3_concentration: float

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)


# =============================================================================
# Metrics
# =============================================================================


def _herfindahl(positions: Sequence[OptimizerPosition], total_value: float) -> float:
    return sum((p.market_value / total_value) ** 2 for p in positions)


def diversification_score(positions: Sequence[OptimizerPosition], total_value: float) -> float:
    """
    Score in [0, 10]: up to 4 points for position count (one per five
    positions) and up to 6 for low Herfindahl concentration.
    """
    position_score = min(len(positions) / 5.0, 4.0)
    concentration_score = max((1.0 - _herfindahl(positions, total_value)) / 0.95 * 6.0, 0.0)
    return min(position_score + concentration_score, 10.0)


def correlation_adjusted_score(
    positions: Sequence[OptimizerPosition],
    total_value: float,
    average_correlation: float,
) -> float:
    """Concentration score plus up to 4 points for low average |correlation|."""
    concentration_score = max((1.0 - _herfindahl(positions, total_value)) / 0.95 * 6.0, 0.0)
    return min(concentration_score + (1.0 - average_correlation) * 4.0, 10.0)


def compute_current_metrics(
    positions: Sequence[OptimizerPosition],
    total_value: float,
    average_correlation: float | None = None,
) -> CurrentMetrics:
    volatility = 0.0
    drawdown = 0.0
    sharpe_sum = 0.0
    sharpe_count = 0
    score_sum = 0.0
    score_count = 0
    for position in positions:
        a = position.assessment
        if a is None:
            continue
        weight = position.market_value / total_value
        volatility += a.volatility * weight
        drawdown += abs(a.max_drawdown) * weight
        if a.sharpe is not None:
            sharpe_sum += a.sharpe * weight
            sharpe_count += 1
        score_sum += a.risk_score * weight
        score_count += 1

    weights = sorted((p.market_value / total_value * 100.0 for p in positions), reverse=True)
    adjusted = None
    if len(positions) >= 2:
        corr = average_correlation if average_correlation is not None else DEFAULT_AVERAGE_CORRELATION
        adjusted = correlation_adjusted_score(positions, total_value, corr)

    return CurrentMetrics(
        risk_score=score_sum if score_count else 0.0,
        volatility=volatility,
        max_drawdown=drawdown,
        sharpe_ratio=sharpe_sum if sharpe_count else None,
        diversification_score=diversification_score(positions, total_value),
        correlation_adjusted_diversification_score=adjusted,
        average_correlation=average_correlation,
        position_count=len(positions),
        largest_position_weight=weights[0] if weights else 0.0,
        top_3_concentration=sum(weights[:3]),
    )


# =============================================================================
# Recommendation rules
# =============================================================================


def _impact(
    metrics: CurrentMetrics,
    risk_factor: float,
    volatility_factor: float,
    sharpe_factor: float,
    diversification_gain: float,
    drawdown_factor: float,
) -> dict[str, Any]:
    sharpe = metrics.sharpe_ratio
    return {
        "risk_score_before": metrics.risk_score,
        "risk_score_after": metrics.risk_score * (1.0 - risk_factor),
        "risk_score_change": -metrics.risk_score * risk_factor,
        "volatility_before": metrics.volatility,
        "volatility_after": metrics.volatility * (1.0 - volatility_factor),
        "volatility_change": -metrics.volatility * volatility_factor,
        "sharpe_before": sharpe,
        "sharpe_after": sharpe * (1.0 + sharpe_factor) if sharpe is not None else None,
        "sharpe_change": sharpe * sharpe_factor if sharpe is not None else None,
        "diversification_before": metrics.diversification_score,
        "diversification_after": min(metrics.diversification_score + diversification_gain, 10.0),
        "diversification_change": diversification_gain,
        "max_drawdown_before": metrics.max_drawdown,
        "max_drawdown_after": metrics.max_drawdown * (1.0 - drawdown_factor),
    }


def detect_concentration_risk(
    positions: Sequence[OptimizerPosition],
    total_value: float,
    metrics: CurrentMetrics,
) -> Recommendation | None:
    """Largest position above 15% -> warning, above 20% high, above 30% critical."""
    largest = max(positions, key=lambda p: p.market_value)
    weight = largest.market_value / total_value * 100.0
    if weight > 30.0:
        severity = RecommendationSeverity.CRITICAL
    elif weight > 20.0:
        severity = RecommendationSeverity.HIGH
    elif weight > TARGET_MAX_WEIGHT:
        severity = RecommendationSeverity.WARNING
    else:
        return None

    target_value = total_value * TARGET_MAX_WEIGHT / 100.0
    amount_to_sell = largest.market_value - target_value
    reduction = (weight - TARGET_MAX_WEIGHT) / weight * 0.3
    display = largest.name or largest.ticker

    return Recommendation(
        id="concentration-1",
        type=RecommendationType.REDUCE_CONCENTRATION,
        severity=severity,
        title=f"High Concentration Risk in {largest.ticker}",
        rationale=(
            f"{display} represents {weight:.1f}% of the portfolio, above the "
            f"{TARGET_MAX_WEIGHT:.0f}% maximum. A decline in {display} would have an "
            f"outsized impact on total portfolio value."
        ),
        affected_positions=[{
            "ticker": largest.ticker,
            "holding_name": largest.name,
            "current_value": largest.market_value,
            "current_weight": weight,
            "recommended_value": target_value,
            "recommended_weight": TARGET_MAX_WEIGHT,
            "action": "sell",
            "amount_change": -amount_to_sell,
        }],
        expected_impact=_impact(metrics, reduction, reduction * 0.8, 0.1, 1.5, reduction * 0.5),
        suggested_actions=[
            f"Sell ${amount_to_sell:.0f} ({amount_to_sell / largest.market_value * 100.0:.1f}% "
            f"of position) in {largest.ticker}",
            f"This reduces {largest.ticker} to {TARGET_MAX_WEIGHT:.0f}% of the portfolio",
        ],
    )


def risk_contributions(
    positions: Sequence[OptimizerPosition], total_value: float
) -> list[dict[str, Any]]:
    """Share of weighted volatility per position, largest first."""
    rows = [
        (p, p.market_value / total_value, p.assessment.volatility)
        for p in positions
        if p.assessment is not None
    ]
    total_risk = sum(weight * vol for _, weight, vol in rows)
    out = []
    for position, weight, vol in rows:
        contribution = weight * vol / total_risk * 100.0 if total_risk > 0 else 0.0
        out.append({
            "ticker": position.ticker,
            "weight": weight,
            "volatility": vol,
            "risk_contribution": contribution,
            "is_excessive": contribution > EXCESSIVE_CONTRIBUTION,
        })
    out.sort(key=lambda row: row["risk_contribution"], reverse=True)
    return out


def detect_excessive_risk_contributors(
    contributions: Sequence[dict[str, Any]],
    total_value: float,
    metrics: CurrentMetrics,
) -> Recommendation | None:
    excessive = [c for c in contributions if c["is_excessive"]]
    if not excessive:
        return None

    top = excessive[0]
    current_value = total_value * top["weight"]
    reduction_factor = TARGET_CONTRIBUTION / top["risk_contribution"]
    target_weight = top["weight"] * reduction_factor
    target_value = total_value * target_weight

    return Recommendation(
        id="risk-contributor-1",
        type=RecommendationType.REDUCE_RISK_CONTRIBUTOR,
        severity=(
            RecommendationSeverity.HIGH
            if top["risk_contribution"] > 30.0
            else RecommendationSeverity.WARNING
        ),
        title=f"{top['ticker']} Contributing Excessive Risk",
        rationale=(
            f"{top['ticker']} contributes {top['risk_contribution']:.1f}% of total portfolio "
            f"risk while being {top['weight'] * 100.0:.1f}% of holdings "
            f"(volatility: {top['volatility']:.1f}%)."
        ),
        affected_positions=[{
            "ticker": top["ticker"],
            "current_value": current_value,
            "current_weight": top["weight"] * 100.0,
            "recommended_value": target_value,
            "recommended_weight": target_weight * 100.0,
            "action": "sell",
            "amount_change": target_value - current_value,
        }],
        expected_impact=_impact(metrics, 0.1, 0.05, 0.0, 1.0, 0.05),
        suggested_actions=[
            f"Reduce {top['ticker']} by {(1.0 - reduction_factor) * 100.0:.0f}% "
            f"to balance risk contribution",
        ],
    )


def assess_diversification(
    positions: Sequence[OptimizerPosition],
    metrics: CurrentMetrics,
) -> Recommendation | None:
    score = metrics.diversification_score
    if score >= GOOD_DIVERSIFICATION:
        return None

    if score < 4.0:
        severity = RecommendationSeverity.HIGH
    elif score < 6.0:
        severity = RecommendationSeverity.WARNING
    else:
        severity = RecommendationSeverity.INFO

    count = len(positions)
    if count < 5:
        rationale = (
            f"The portfolio has only {count} positions, which limits diversification "
            f"(score: {score:.1f}/10)."
        )
    else:
        rationale = (
            f"Diversification score is {score:.1f}/10 across {count} positions; "
            f"holdings may be concentrated or highly correlated."
        )
    actions = (
        [f"Add {10 - count} more positions to reach 10-15 total positions"]
        if count < 10
        else ["Rebalance concentrated positions"]
    )

    return Recommendation(
        id="diversification-1",
        type=RecommendationType.IMPROVE_DIVERSIFICATION,
        severity=severity,
        title="Improve Portfolio Diversification",
        rationale=rationale,
        expected_impact=_impact(metrics, 0.15, 0.10, 0.15, 2.0, 0.15),
        suggested_actions=actions,
    )


def summarize(
    recommendations: Sequence[Recommendation], metrics: CurrentMetrics
) -> dict[str, Any]:
    """Counts per severity, an overall health label and key findings."""
    critical = sum(r.severity is RecommendationSeverity.CRITICAL for r in recommendations)
    high = sum(r.severity is RecommendationSeverity.HIGH for r in recommendations)
    warnings = sum(r.severity is RecommendationSeverity.WARNING for r in recommendations)

    if critical:
        health = "critical"
    elif high:
        health = "poor"
    elif warnings > 1:
        health = "fair"
    elif warnings or metrics.diversification_score < GOOD_DIVERSIFICATION:
        health = "good"
    else:
        health = "excellent"

    findings = []
    if metrics.largest_position_weight > 20.0:
        findings.append(
            f"Largest position ({metrics.largest_position_weight:.1f}%) exceeds recommended maximum"
        )
    if metrics.diversification_score < 6.0:
        findings.append(
            f"Diversification score ({metrics.diversification_score:.1f}/10) could be improved"
        )
    if metrics.risk_score > 70.0:
        findings.append("Overall portfolio risk is high")
    if not findings:
        findings.append("Portfolio is well-balanced with no major concerns")

    return {
        "total_recommendations": len(recommendations),
        "critical_issues": critical,
        "high_priority": high,
        "warnings": warnings,
        "overall_health": health,
        "key_findings": findings,
    }


def analyze_portfolio(
    portfolio_id: int,
    positions: Sequence[OptimizerPosition],
    average_correlation: float | None = None,
    analysis_date: date | None = None,
) -> dict[str, Any]:
    """
    Full optimization analysis for a portfolio.

    Returns
    -------
    dict[str, Any]
        JSON-serializable payload for the optimization cache.

    Raises
    ------
    DataMissingError
        No position with positive market value.
    """
    positions = [p for p in positions if p.market_value > 0]
    total_value = sum(p.market_value for p in positions)
    if not positions or total_value <= 0:
        raise DataMissingError(
            message="Portfolio has no holdings to analyze",
            details={"portfolio_id": portfolio_id},
        )

    metrics = compute_current_metrics(positions, total_value, average_correlation)
    recommendations = [
        rec
        for rec in (
            detect_concentration_risk(positions, total_value, metrics),
            detect_excessive_risk_contributors(
                risk_contributions(positions, total_value), total_value, metrics
            ),
            assess_diversification(positions, metrics),
        )
        if rec is not None
    ]

    return {
        "portfolio_id": portfolio_id,
        "total_value": total_value,
        "analysis_date": (analysis_date or date.today()).isoformat(),
        "current_metrics": metrics.to_dict(),
        "recommendations": [r.to_dict() for r in recommendations],
        "summary": summarize(recommendations, metrics),
    }
