"""
Portfolio alert evaluation.

Produces alerts from portfolio risk snapshots: day-over-day risk score
spikes and breaches of regime-adjusted thresholds. Alerts are returned to
the caller for persistence and notification; nothing here is retried.

Usage:
    from analytics_engine.services.alerts import AlertEvaluator

    evaluator = AlertEvaluator(regime_service)
    alerts = await evaluator.detect_risk_increases(portfolio_id, 7, 20.0)
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, date, datetime, timedelta
from typing import Any, Protocol

from analytics_engine.core.logging import get_logger
from analytics_engine.database.orm import RiskSnapshot
from analytics_engine.quant_engine.types import AdjustedThresholds
from analytics_engine.repositories import alerts_orm, risk_snapshots_orm
from analytics_engine.services.alert_types import Alert, AlertKind, AlertSeverity
from analytics_engine.services.regime import RegimeService


logger = get_logger("services.alerts")

DEFAULT_SPIKE_LOOKBACK_DAYS = 7
DEFAULT_SPIKE_THRESHOLD_PCT = 20.0


class SnapshotMetrics(Protocol):
    """Anything carrying the monitored portfolio metrics."""
    volatility: float
    max_drawdown: float
    beta: float | None
    risk_score: float
    var_95: float | None


def is_in_cooldown(last_triggered_at: datetime | None, hours: float, now: datetime | None = None) -> bool:
    """True while ``hours`` have not yet passed since the last trigger."""
    if last_triggered_at is None:
        return False
    now = now or datetime.now(UTC)
    return now < last_triggered_at + timedelta(hours=hours)


def calculate_severity(rule_type: str, actual: float, threshold: float) -> AlertSeverity:
    """
    Grade an alert by how far the actual value overshoots its threshold.

    The ratio uses magnitudes so negative bands (drawdown, VaR) grade the
    same way as positive ones. A zero threshold grades as info.
    """
    ratio = abs(actual) / abs(threshold) if threshold else 1.0
    if ratio >= 2.0:
        return AlertSeverity.CRITICAL
    if ratio >= 1.5:
        return AlertSeverity.WARNING
    return AlertSeverity.INFO


def find_risk_spikes(
    portfolio_id: int,
    history: Sequence[RiskSnapshot],
    threshold_pct: float,
) -> list[Alert]:
    """Consecutive pairs whose risk score rose by at least ``threshold_pct`` percent."""
    alerts: list[Alert] = []
    for prev, curr in zip(history, history[1:]):
        prev_score = float(prev.risk_score or 0.0)
        curr_score = float(curr.risk_score or 0.0)
        if prev_score <= 0:
            continue
        change_pct = (curr_score - prev_score) / prev_score * 100.0
        if change_pct < threshold_pct:
            continue
        alerts.append(
            Alert(
                kind=AlertKind.RISK_SPIKE,
                portfolio_id=portfolio_id,
                metric="risk_score",
                previous_value=prev_score,
                current_value=curr_score,
                change_pct=change_pct,
                severity=calculate_severity("risk_spike", change_pct, threshold_pct),
                observed_on=curr.snapshot_date,
                payload={"previous_date": prev.snapshot_date.isoformat()},
            )
        )
    return alerts


# (metric, warning attr, critical attr, higher_is_worse)
_THRESHOLD_CHECKS: tuple[tuple[str, str, str, bool], ...] = (
    ("volatility", "volatility_warning", "volatility_critical", True),
    ("max_drawdown", "drawdown_warning", "drawdown_critical", False),
    ("beta", "beta_warning", "beta_critical", True),
    ("risk_score", "risk_score_warning", "risk_score_critical", True),
    ("var_95", "var_warning", "var_critical", False),
)


def _breached(value: float, threshold: float, higher_is_worse: bool) -> bool:
    return value >= threshold if higher_is_worse else value <= threshold


def find_threshold_breaches(
    portfolio_id: int,
    metrics: SnapshotMetrics,
    thresholds: AdjustedThresholds,
    observed_on: date,
) -> list[Alert]:
    """One alert per metric in its warning or critical band.

    Drawdown and VaR are negative, so lower values are worse there.
    """
    bands = thresholds.adjusted
    alerts: list[Alert] = []
    for metric, warning_attr, critical_attr, higher_is_worse in _THRESHOLD_CHECKS:
        value = getattr(metrics, metric, None)
        if value is None:
            continue
        value = float(value)
        critical = getattr(bands, critical_attr)
        warning = getattr(bands, warning_attr)
        if _breached(value, critical, higher_is_worse):
            severity, threshold = AlertSeverity.CRITICAL, critical
        elif _breached(value, warning, higher_is_worse):
            severity, threshold = AlertSeverity.WARNING, warning
        else:
            continue
        alerts.append(
            Alert(
                kind=AlertKind.THRESHOLD_BREACH,
                portfolio_id=portfolio_id,
                metric=metric,
                current_value=value,
                severity=severity,
                observed_on=observed_on,
                payload={
                    "threshold": threshold,
                    "regime": thresholds.regime_type.value,
                    "multiplier": thresholds.multiplier,
                },
            )
        )
    return alerts


class AlertEvaluator:
    """Evaluates stored portfolio snapshots against alert rules."""

    def __init__(self, regime_service: RegimeService):
        self.regime_service = regime_service

    async def detect_risk_increases(
        self,
        portfolio_id: int,
        lookback_days: int = DEFAULT_SPIKE_LOOKBACK_DAYS,
        threshold_pct: float = DEFAULT_SPIKE_THRESHOLD_PCT,
    ) -> list[Alert]:
        end = datetime.now(UTC).date()
        history = await risk_snapshots_orm.get_portfolio_history(
            portfolio_id, end - timedelta(days=lookback_days), end
        )
        return find_risk_spikes(portfolio_id, history, threshold_pct)

    async def evaluate_thresholds(
        self,
        portfolio_id: int,
        snapshot: RiskSnapshot | None = None,
    ) -> list[Alert]:
        """Check a portfolio snapshot (default: the latest) against adaptive thresholds."""
        if snapshot is None:
            snapshot = await risk_snapshots_orm.get_latest_portfolio_snapshot(portfolio_id)
            if snapshot is None:
                logger.debug(f"No portfolio snapshot to evaluate for portfolio {portfolio_id}")
                return []
        thresholds = await self.regime_service.get_adjusted_thresholds(portfolio_id)
        return find_threshold_breaches(portfolio_id, snapshot, thresholds, snapshot.snapshot_date)

    async def check_portfolio(self, portfolio_id: int) -> dict[str, Any]:
        """Threshold breaches plus 7-day risk spikes, persisted."""
        alerts = await self.evaluate_thresholds(portfolio_id)
        alerts += await self.detect_risk_increases(portfolio_id)
        stored = await alerts_orm.save_alerts(alerts)
        if alerts:
            logger.info(
                f"Portfolio {portfolio_id}: {len(alerts)} alerts ({stored} new)"
            )
        return {"alerts": len(alerts), "stored": stored}
