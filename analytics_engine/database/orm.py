"""SQLAlchemy ORM models for the analytics engine.

This module defines all database tables using SQLAlchemy 2.0 ORM style.
Uses async support via asyncpg driver.

Usage:
    from analytics_engine.database.orm import PricePoint, RiskSnapshot
    from analytics_engine.database.connection import get_session

    async with get_session() as session:
        result = await session.execute(select(PricePoint).where(...))
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
)


# Naming convention for constraints and indexes (deterministic names for Alembic)
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for all ORM models with naming convention."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# =============================================================================
# PRICE DATA
# =============================================================================


class PricePoint(Base):
    """Daily close for a ticker."""
    __tablename__ = "price_points"

    id: Mapped[int] = mapped_column(primary_key=True)
    ticker: Mapped[str] = mapped_column(String(16), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    close_price: Mapped[Decimal] = mapped_column(Numeric(16, 6), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("ticker", "date", name="uq_price_points_ticker_date"),
        Index("idx_price_points_ticker_date", "ticker", "date", postgresql_ops={"date": "DESC"}),
    )


class TickerFetchFailure(Base):
    """Persisted mirror of the in-memory failure cache."""
    __tablename__ = "ticker_fetch_failures"

    ticker: Mapped[str] = mapped_column(String(16), primary_key=True)
    last_attempt_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    failure_type: Mapped[str] = mapped_column(String(20), nullable=False)  # not_found, rate_limited, api_error
    retry_after: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=1)
    error_message: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        Index("idx_ticker_fetch_failures_retry_after", "retry_after"),
    )


# =============================================================================
# PORTFOLIOS & HOLDINGS
# =============================================================================


class Portfolio(Base):
    """A named group of brokerage accounts."""
    __tablename__ = "portfolios"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Account(Base):
    """Brokerage account belonging to a portfolio."""
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    total_value: Mapped[Decimal] = mapped_column(Numeric(20, 2), default=0)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(20, 2), default=0)
    total_deposits: Mapped[Decimal] = mapped_column(Numeric(20, 2), default=0)
    total_withdrawals: Mapped[Decimal] = mapped_column(Numeric(20, 2), default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_accounts_portfolio", "portfolio_id"),
    )


class HoldingSnapshot(Base):
    """Holding of one ticker in one account on one date. Cash uses an empty ticker."""
    __tablename__ = "holdings_snapshots"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    ticker: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    holding_name: Mapped[str | None] = mapped_column(String(255))
    quantity: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(16, 6), nullable=False)
    book_value: Mapped[Decimal] = mapped_column(Numeric(20, 2), default=0)
    market_value: Mapped[Decimal] = mapped_column(Numeric(20, 2), default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("account_id", "snapshot_date", "ticker", name="uq_holdings_snapshots_account_date_ticker"),
        Index("idx_holdings_snapshots_account_date", "account_id", "snapshot_date"),
    )


class DetectedTransaction(Base):
    """Transaction inferred by diffing consecutive holdings snapshots."""
    __tablename__ = "detected_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)  # BUY, SELL, DIVIDEND, SPLIT, OTHER
    ticker: Mapped[str] = mapped_column(String(16), nullable=False)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(20, 6))
    price: Mapped[Decimal | None] = mapped_column(Numeric(16, 6))
    amount: Mapped[Decimal | None] = mapped_column(Numeric(20, 2))
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    from_snapshot_date: Mapped[date | None] = mapped_column(Date)
    to_snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_detected_transactions_account_to", "account_id", "to_snapshot_date"),
    )


class CashFlow(Base):
    """Deposit or withdrawal on an account."""
    __tablename__ = "cash_flows"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    flow_type: Mapped[str] = mapped_column(String(20), nullable=False)  # DEPOSIT, WITHDRAWAL
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    flow_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    is_auto_detected: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("flow_type IN ('DEPOSIT', 'WITHDRAWAL')", name="flow_type_valid"),
        Index("idx_cash_flows_account_date", "account_id", "flow_date"),
    )


# =============================================================================
# RISK
# =============================================================================


class RiskSnapshot(Base):
    """Daily persisted risk assessment for a position or a whole portfolio."""
    __tablename__ = "risk_snapshots"

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False)
    ticker: Mapped[str | None] = mapped_column(String(16))  # NULL for portfolio-level rows
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    snapshot_type: Mapped[str] = mapped_column(String(20), nullable=False)  # portfolio, position
    volatility: Mapped[float] = mapped_column(Float, nullable=False)
    max_drawdown: Mapped[float] = mapped_column(Float, nullable=False)
    beta: Mapped[float | None] = mapped_column(Float)
    sharpe: Mapped[float | None] = mapped_column(Float)
    sortino: Mapped[float | None] = mapped_column(Float)
    value_at_risk: Mapped[float | None] = mapped_column(Float)
    var_95: Mapped[float | None] = mapped_column(Float)
    var_99: Mapped[float | None] = mapped_column(Float)
    es_95: Mapped[float | None] = mapped_column(Float)
    es_99: Mapped[float | None] = mapped_column(Float)
    risk_score: Mapped[float] = mapped_column(Float, nullable=False)
    risk_level: Mapped[str] = mapped_column(String(20), nullable=False)
    total_value: Mapped[Decimal | None] = mapped_column(Numeric(20, 2))
    market_value: Mapped[Decimal | None] = mapped_column(Numeric(20, 2))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "portfolio_id", "ticker", "snapshot_date", "snapshot_type",
            name="uq_risk_snapshots_key",
            postgresql_nulls_not_distinct=True,
        ),
        CheckConstraint("snapshot_type IN ('portfolio', 'position')", name="snapshot_type_valid"),
        Index("idx_risk_snapshots_portfolio_date", "portfolio_id", "snapshot_date"),
    )


class RiskThresholdSettings(Base):
    """Per-portfolio base alert thresholds."""
    __tablename__ = "risk_threshold_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id", ondelete="CASCADE"), unique=True, nullable=False)
    volatility_warning_threshold: Mapped[float] = mapped_column(Float, default=30.0)
    volatility_critical_threshold: Mapped[float] = mapped_column(Float, default=50.0)
    drawdown_warning_threshold: Mapped[float] = mapped_column(Float, default=-20.0)
    drawdown_critical_threshold: Mapped[float] = mapped_column(Float, default=-35.0)
    beta_warning_threshold: Mapped[float] = mapped_column(Float, default=1.5)
    beta_critical_threshold: Mapped[float] = mapped_column(Float, default=2.0)
    risk_score_warning_threshold: Mapped[float] = mapped_column(Float, default=60.0)
    risk_score_critical_threshold: Mapped[float] = mapped_column(Float, default=80.0)
    var_warning_threshold: Mapped[float] = mapped_column(Float, default=-5.0)
    var_critical_threshold: Mapped[float] = mapped_column(Float, default=-10.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Alert(Base):
    """Alert emitted by the alert evaluator."""
    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(primary_key=True)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)  # risk_spike, threshold_breach, watchlist
    portfolio_id: Mapped[int | None] = mapped_column(ForeignKey("portfolios.id", ondelete="CASCADE"))
    ticker: Mapped[str | None] = mapped_column(String(16))
    metric: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_value: Mapped[float | None] = mapped_column(Float)
    current_value: Mapped[float] = mapped_column(Float, nullable=False)
    change_pct: Mapped[float | None] = mapped_column(Float)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)  # info, warning, critical
    observed_on: Mapped[date] = mapped_column(Date, nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("severity IN ('info', 'warning', 'critical')", name="severity_valid"),
        Index("idx_alerts_portfolio_created", "portfolio_id", "created_at"),
        Index("idx_alerts_kind_metric", "kind", "metric", "portfolio_id", "observed_on"),
    )


# =============================================================================
# MARKET REGIMES & HMM
# =============================================================================


class MarketRegime(Base):
    """Daily rule-based market regime classification."""
    __tablename__ = "market_regimes"

    id: Mapped[int] = mapped_column(primary_key=True)
    date: Mapped[date] = mapped_column(Date, unique=True, nullable=False)
    regime_type: Mapped[str] = mapped_column(String(20), nullable=False)  # bull, bear, high_volatility, normal
    volatility_level: Mapped[float] = mapped_column(Float, nullable=False)
    market_return: Mapped[float | None] = mapped_column(Float)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    benchmark_ticker: Mapped[str] = mapped_column(String(16), default="SPY")
    lookback_days: Mapped[int] = mapped_column(Integer, default=30)
    threshold_multiplier: Mapped[float] = mapped_column(Float, default=1.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("confidence >= 0 AND confidence <= 100", name="confidence_range"),
        Index("idx_market_regimes_date", "date", postgresql_ops={"date": "DESC"}),
    )


class HMMModel(Base):
    """Trained hidden Markov model parameters."""
    __tablename__ = "hmm_models"

    id: Mapped[int] = mapped_column(primary_key=True)
    model_name: Mapped[str] = mapped_column(String(100), nullable=False)
    market: Mapped[str] = mapped_column(String(16), nullable=False)
    trained_on_date: Mapped[date] = mapped_column(Date, nullable=False)
    num_states: Mapped[int] = mapped_column(Integer, nullable=False)
    state_names: Mapped[list] = mapped_column(JSONB, nullable=False)
    transition_matrix: Mapped[list] = mapped_column(JSONB, nullable=False)
    emission_params: Mapped[list] = mapped_column(JSONB, nullable=False)
    observation_symbols: Mapped[list] = mapped_column(JSONB, nullable=False)
    training_data_start: Mapped[date | None] = mapped_column(Date)
    training_data_end: Mapped[date | None] = mapped_column(Date)
    model_accuracy: Mapped[float | None] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("model_name", "market", "trained_on_date", name="uq_hmm_models_name_market_date"),
        Index("idx_hmm_models_market_trained", "market", "trained_on_date"),
    )


class RegimeForecast(Base):
    """HMM regime forecast for a horizon."""
    __tablename__ = "regime_forecasts"

    id: Mapped[int] = mapped_column(primary_key=True)
    forecast_date: Mapped[date] = mapped_column(Date, nullable=False)
    horizon_days: Mapped[int] = mapped_column(Integer, nullable=False)
    predicted_regime: Mapped[str] = mapped_column(String(20), nullable=False)
    regime_probabilities: Mapped[dict] = mapped_column(JSONB, nullable=False)
    transition_probability: Mapped[float] = mapped_column(Float, nullable=False)
    confidence_level: Mapped[str] = mapped_column(String(10), nullable=False)  # high, medium, low
    hmm_model_id: Mapped[int | None] = mapped_column(ForeignKey("hmm_models.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("forecast_date", "horizon_days", name="uq_regime_forecasts_date_horizon"),
    )


# =============================================================================
# ARTIFACT CACHES
# =============================================================================


class CacheEntryMixin:
    """Columns shared by every TTL-bound cache table."""

    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PortfolioOptimizationCache(CacheEntryMixin, Base):
    __tablename__ = "portfolio_optimization_cache"

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("portfolio_id", name="uq_portfolio_optimization_cache_key"),
        Index("idx_portfolio_optimization_cache_expires", "expires_at"),
    )


class PortfolioCorrelationsCache(CacheEntryMixin, Base):
    __tablename__ = "portfolio_correlations_cache"

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(Integer, nullable=False)
    days: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("portfolio_id", "days", name="uq_portfolio_correlations_cache_key"),
        Index("idx_portfolio_correlations_cache_expires", "expires_at"),
    )


class RollingBetaCache(CacheEntryMixin, Base):
    __tablename__ = "rolling_beta_cache"

    id: Mapped[int] = mapped_column(primary_key=True)
    ticker: Mapped[str] = mapped_column(String(16), nullable=False)
    benchmark: Mapped[str] = mapped_column(String(16), nullable=False)
    days: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("ticker", "benchmark", "days", name="uq_rolling_beta_cache_key"),
        Index("idx_rolling_beta_cache_expires", "expires_at"),
    )


class BetaForecastCache(CacheEntryMixin, Base):
    __tablename__ = "beta_forecast_cache"

    id: Mapped[int] = mapped_column(primary_key=True)
    ticker: Mapped[str] = mapped_column(String(16), nullable=False)
    benchmark: Mapped[str] = mapped_column(String(16), nullable=False)
    days_ahead: Mapped[int] = mapped_column(Integer, nullable=False)
    method: Mapped[str] = mapped_column(String(30), nullable=False)

    __table_args__ = (
        UniqueConstraint("ticker", "benchmark", "days_ahead", "method", name="uq_beta_forecast_cache_key"),
        Index("idx_beta_forecast_cache_expires", "expires_at"),
    )


class DownsideRiskCache(CacheEntryMixin, Base):
    __tablename__ = "downside_risk_cache"

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(Integer, nullable=False)
    days: Mapped[int] = mapped_column(Integer, nullable=False)
    benchmark: Mapped[str] = mapped_column(String(16), nullable=False)

    __table_args__ = (
        UniqueConstraint("portfolio_id", "days", "benchmark", name="uq_downside_risk_cache_key"),
        Index("idx_downside_risk_cache_expires", "expires_at"),
    )


class PortfolioNewsCache(CacheEntryMixin, Base):
    __tablename__ = "portfolio_news_cache"

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("portfolio_id", name="uq_portfolio_news_cache_key"),
        Index("idx_portfolio_news_cache_expires", "expires_at"),
    )


class ExplanationCache(CacheEntryMixin, Base):
    __tablename__ = "recommendation_explanation_cache"

    id: Mapped[int] = mapped_column(primary_key=True)
    symbol: Mapped[str] = mapped_column(String(16), nullable=False)
    narrative_type: Mapped[str] = mapped_column(String(30), nullable=False)

    __table_args__ = (
        UniqueConstraint("symbol", "narrative_type", name="uq_recommendation_explanation_cache_key"),
        Index("idx_recommendation_explanation_cache_expires", "expires_at"),
    )


class LongTermGuidanceCache(CacheEntryMixin, Base):
    __tablename__ = "long_term_guidance_cache"

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(Integer, nullable=False)
    goal: Mapped[str] = mapped_column(String(20), nullable=False)
    horizon_years: Mapped[int] = mapped_column(Integer, nullable=False)
    risk_tolerance: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "portfolio_id", "goal", "horizon_years", "risk_tolerance",
            name="uq_long_term_guidance_cache_key",
        ),
        Index("idx_long_term_guidance_cache_expires", "expires_at"),
    )


# =============================================================================
# JOBS
# =============================================================================


class JobSchedule(Base):
    """Scheduled job configuration."""
    __tablename__ = "job_schedules"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    cron: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    reentrant: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_job_schedules_active", "is_active", postgresql_where=text("is_active = TRUE")),
    )


class JobRun(Base):
    """One invocation of a job."""
    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # running, success, failed
    trigger: Mapped[str] = mapped_column(String(20), default="schedule")  # schedule, manual
    items_processed: Mapped[int] = mapped_column(Integer, default=0)
    items_failed: Mapped[int] = mapped_column(Integer, default=0)
    duration_ms: Mapped[int | None] = mapped_column(Integer)
    error_message: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("status IN ('running', 'success', 'failed')", name="status_valid"),
        Index("idx_job_runs_name_started", "job_name", "started_at", postgresql_ops={"started_at": "DESC"}),
    )


# =============================================================================
# WATCHLISTS
# =============================================================================


class Watchlist(Base):
    __tablename__ = "watchlists"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_watchlists_user_name"),
    )


class WatchlistItem(Base):
    __tablename__ = "watchlist_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    watchlist_id: Mapped[int] = mapped_column(ForeignKey("watchlists.id", ondelete="CASCADE"), nullable=False)
    ticker: Mapped[str] = mapped_column(String(16), nullable=False)
    added_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    target_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("watchlist_id", "ticker", name="uq_watchlist_items_watchlist_ticker"),
        Index("idx_watchlist_items_ticker", "ticker"),
    )


class WatchlistThreshold(Base):
    __tablename__ = "watchlist_thresholds"

    id: Mapped[int] = mapped_column(primary_key=True)
    watchlist_item_id: Mapped[int] = mapped_column(ForeignKey("watchlist_items.id", ondelete="CASCADE"), nullable=False)
    threshold_type: Mapped[str] = mapped_column(String(30), nullable=False)
    comparison: Mapped[str] = mapped_column(String(5), nullable=False)  # gt, lt, gte, lte, eq
    value: Mapped[float] = mapped_column(Float, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        UniqueConstraint("watchlist_item_id", "threshold_type", name="uq_watchlist_thresholds_item_type"),
    )


class WatchlistAlert(Base):
    __tablename__ = "watchlist_alerts"

    id: Mapped[int] = mapped_column(primary_key=True)
    watchlist_item_id: Mapped[int] = mapped_column(ForeignKey("watchlist_items.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    ticker: Mapped[str] = mapped_column(String(16), nullable=False)
    alert_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)  # low, medium, high, critical
    message: Mapped[str] = mapped_column(Text, nullable=False)
    actual_value: Mapped[float | None] = mapped_column(Float)
    threshold_value: Mapped[float | None] = mapped_column(Float)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONB, default=dict)
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_watchlist_alerts_item_type_created", "watchlist_item_id", "alert_type", "created_at"),
    )


class WatchlistMonitoringState(Base):
    __tablename__ = "watchlist_monitoring_state"

    watchlist_item_id: Mapped[int] = mapped_column(
        ForeignKey("watchlist_items.id", ondelete="CASCADE"), primary_key=True
    )
    last_price: Mapped[float | None] = mapped_column(Float)
    last_rsi: Mapped[float | None] = mapped_column(Float)
    last_volume_ratio: Mapped[float | None] = mapped_column(Float)
    last_volatility: Mapped[float | None] = mapped_column(Float)
    last_sentiment_score: Mapped[float | None] = mapped_column(Float)
    last_checked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
