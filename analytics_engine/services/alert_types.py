"""Alert value types shared by the alert evaluator and its repository."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any


class AlertKind(str, Enum):
    RISK_SPIKE = "risk_spike"
    THRESHOLD_BREACH = "threshold_breach"
    WATCHLIST = "watchlist"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @classmethod
    def from_watchlist(cls, severity: str) -> "AlertSeverity":
        """Map the watchlist_alerts scale (low, medium, high, critical)."""
        return _WATCHLIST_SEVERITY.get((severity or "").lower(), cls.INFO)


_WATCHLIST_SEVERITY = {
    "low": AlertSeverity.INFO,
    "medium": AlertSeverity.WARNING,
    "high": AlertSeverity.CRITICAL,
    "critical": AlertSeverity.CRITICAL,
}


@dataclass(frozen=True)
class Alert:
    """A detected portfolio event to hand to the notification layer."""
    kind: AlertKind
    portfolio_id: int | None
    metric: str
    current_value: float
    severity: AlertSeverity
    observed_on: date
    ticker: str | None = None
    previous_value: float | None = None
    change_pct: float | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "portfolio_id": self.portfolio_id,
            "ticker": self.ticker,
            "metric": self.metric,
            "previous_value": self.previous_value,
            "current_value": self.current_value,
            "change_pct": self.change_pct,
            "severity": self.severity.value,
            "observed_on": self.observed_on.isoformat(),
            "payload": self.payload,
        }
