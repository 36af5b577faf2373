"""
Core type definitions for the analytics engine.

Value objects passed between the numeric kernel, services and jobs.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from typing import Any


# =============================================================================
# PRICES
# =============================================================================


@dataclass(frozen=True)
class PricePoint:
    """A daily close."""
    date: date
    close: float


# =============================================================================
# RISK
# =============================================================================


class RiskLevel(str, Enum):
    """Risk level bucket derived from the composite risk score."""
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"

    @classmethod
    def from_score(cls, score: float) -> "RiskLevel":
        if score < 40.0:
            return cls.LOW
        if score < 70.0:
            return cls.MODERATE
        return cls.HIGH


@dataclass(frozen=True)
class RiskAssessment:
    """Risk metrics for one ticker (or a portfolio) over a window.

    Percentages are in percent. Optional metrics are None when the input was
    too short or numerically degenerate.
    """
    ticker: str
    volatility: float
    max_drawdown: float
    risk_score: float
    risk_level: RiskLevel
    beta: float | None = None
    sharpe: float | None = None
    sortino: float | None = None
    var_95: float | None = None
    var_99: float | None = None
    es_95: float | None = None
    es_99: float | None = None
    observations: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["risk_level"] = self.risk_level.value
        return data


@dataclass(frozen=True)
class PositionRisk:
    """A position's assessment paired with its market value."""
    ticker: str
    market_value: float
    assessment: RiskAssessment


# =============================================================================
# MARKET REGIMES
# =============================================================================


class RegimeType(str, Enum):
    """Discrete market state used to scale alert thresholds."""
    BULL = "bull"
    BEAR = "bear"
    HIGH_VOLATILITY = "high_volatility"
    NORMAL = "normal"

    @property
    def threshold_multiplier(self) -> float:
        return REGIME_MULTIPLIERS[self]

    @classmethod
    def from_string(cls, value: str | None) -> "RegimeType":
        if not value:
            return cls.NORMAL
        normalized = value.strip().lower().replace("-", "_").replace(" ", "_")
        if normalized == "highvolatility":
            normalized = "high_volatility"
        try:
            return cls(normalized)
        except ValueError:
            return cls.NORMAL


REGIME_MULTIPLIERS: dict[RegimeType, float] = {
    RegimeType.BULL: 0.8,
    RegimeType.BEAR: 1.3,
    RegimeType.HIGH_VOLATILITY: 1.5,
    RegimeType.NORMAL: 1.0,
}


@dataclass(frozen=True)
class RegimeParams:
    """Parameters for rule-based regime classification."""
    benchmark_ticker: str = "SPY"
    lookback_days: int = 30
    bull_vol_threshold: float = 20.0
    bear_vol_threshold: float = 25.0
    high_vol_threshold: float = 35.0


@dataclass(frozen=True)
class RegimeClassification:
    """Result of a rule-based classification."""
    regime_type: RegimeType
    volatility: float
    market_return: float
    confidence: float
    benchmark_ticker: str
    lookback_days: int

    @property
    def threshold_multiplier(self) -> float:
        return self.regime_type.threshold_multiplier


@dataclass(frozen=True)
class RiskThresholds:
    """Warning and critical bands for each monitored metric."""
    volatility_warning: float = 30.0
    volatility_critical: float = 50.0
    drawdown_warning: float = -20.0
    drawdown_critical: float = -35.0
    beta_warning: float = 1.5
    beta_critical: float = 2.0
    risk_score_warning: float = 60.0
    risk_score_critical: float = 80.0
    var_warning: float = -5.0
    var_critical: float = -10.0

    def scaled(self, multiplier: float) -> "RiskThresholds":
        """Every band multiplied by a regime multiplier."""
        return RiskThresholds(
            **{name: value * multiplier for name, value in asdict(self).items()}
        )


@dataclass(frozen=True)
class AdjustedThresholds:
    """Base thresholds rescaled for the current regime."""
    base: RiskThresholds
    adjusted: RiskThresholds
    regime_type: RegimeType
    multiplier: float


# =============================================================================
# OPTIMIZATION
# =============================================================================


class RecommendationType(str, Enum):
    REDUCE_CONCENTRATION = "reduce_concentration"
    REDUCE_RISK_CONTRIBUTOR = "reduce_risk_contributor"
    IMPROVE_DIVERSIFICATION = "improve_diversification"


class RecommendationSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Recommendation:
    """One optimization suggestion for a portfolio."""
    type: RecommendationType
    severity: RecommendationSeverity
    title: str
    rationale: str
    affected_positions: list[dict[str, Any]] = field(default_factory=list)
    expected_impact: dict[str, Any] = field(default_factory=dict)
    suggested_actions: list[str] = field(default_factory=list)
    id: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["severity"] = self.severity.value
        return data
