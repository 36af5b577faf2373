"""Baseline analytics schema.

Revision ID: 001_baseline
Revises:
Create Date: 2026-10-19

Creates price data, holdings, risk, regime, cache, job and watchlist
tables.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_baseline"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*, updated: bool = False) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()))
    return columns


def _cache_table(name: str, *key_columns: sa.Column) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), nullable=False),
        *key_columns,
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.Column("calculated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=f"pk_{name}"),
        sa.UniqueConstraint(*(c.name for c in key_columns), name=f"uq_{name}_key"),
    )
    op.create_index(f"idx_{name}_expires", name, ["expires_at"])


CACHE_TABLES = (
    "portfolio_optimization_cache",
    "portfolio_correlations_cache",
    "rolling_beta_cache",
    "beta_forecast_cache",
    "downside_risk_cache",
    "portfolio_news_cache",
    "recommendation_explanation_cache",
    "long_term_guidance_cache",
)


def upgrade() -> None:
    """Create all tables."""
    # ==========================================================================
    # PRICE DATA
    # ==========================================================================

    op.create_table(
        "price_points",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("ticker", sa.String(16), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("close_price", sa.Numeric(16, 6), nullable=False),
        *_timestamps(updated=True),
        sa.PrimaryKeyConstraint("id", name="pk_price_points"),
        sa.UniqueConstraint("ticker", "date", name="uq_price_points_ticker_date"),
    )
    op.create_index(
        "idx_price_points_ticker_date", "price_points", ["ticker", sa.text("date DESC")]
    )

    op.create_table(
        "ticker_fetch_failures",
        sa.Column("ticker", sa.String(16), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("failure_type", sa.String(20), nullable=False),
        sa.Column("retry_after", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consecutive_failures", sa.Integer(), server_default="1"),
        sa.Column("error_message", sa.Text()),
        sa.PrimaryKeyConstraint("ticker", name="pk_ticker_fetch_failures"),
    )
    op.create_index(
        "idx_ticker_fetch_failures_retry_after", "ticker_fetch_failures", ["retry_after"]
    )

    # ==========================================================================
    # PORTFOLIOS & HOLDINGS
    # ==========================================================================

    op.create_table(
        "portfolios",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_portfolios"),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "portfolio_id",
            sa.Integer(),
            sa.ForeignKey("portfolios.id", ondelete="CASCADE", name="fk_accounts_portfolio_id_portfolios"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("total_value", sa.Numeric(20, 2), server_default="0"),
        sa.Column("total_cost", sa.Numeric(20, 2), server_default="0"),
        sa.Column("total_deposits", sa.Numeric(20, 2), server_default="0"),
        sa.Column("total_withdrawals", sa.Numeric(20, 2), server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_accounts"),
    )
    op.create_index("idx_accounts_portfolio", "accounts", ["portfolio_id"])

    op.create_table(
        "holdings_snapshots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE", name="fk_holdings_snapshots_account_id_accounts"),
            nullable=False,
        ),
        sa.Column("snapshot_date", sa.Date(), nullable=False),
        sa.Column("ticker", sa.String(16), nullable=False, server_default=""),
        sa.Column("holding_name", sa.String(255)),
        sa.Column("quantity", sa.Numeric(20, 6), nullable=False),
        sa.Column("price", sa.Numeric(16, 6), nullable=False),
        sa.Column("book_value", sa.Numeric(20, 2), server_default="0"),
        sa.Column("market_value", sa.Numeric(20, 2), server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_holdings_snapshots"),
        sa.UniqueConstraint(
            "account_id", "snapshot_date", "ticker",
            name="uq_holdings_snapshots_account_date_ticker",
        ),
    )
    op.create_index(
        "idx_holdings_snapshots_account_date", "holdings_snapshots", ["account_id", "snapshot_date"]
    )

    op.create_table(
        "detected_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE", name="fk_detected_transactions_account_id_accounts"),
            nullable=False,
        ),
        sa.Column("transaction_type", sa.String(20), nullable=False),
        sa.Column("ticker", sa.String(16), nullable=False),
        sa.Column("quantity", sa.Numeric(20, 6)),
        sa.Column("price", sa.Numeric(16, 6)),
        sa.Column("amount", sa.Numeric(20, 2)),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("from_snapshot_date", sa.Date()),
        sa.Column("to_snapshot_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_detected_transactions"),
    )
    op.create_index(
        "idx_detected_transactions_account_to",
        "detected_transactions",
        ["account_id", "to_snapshot_date"],
    )

    op.create_table(
        "cash_flows",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE", name="fk_cash_flows_account_id_accounts"),
            nullable=False,
        ),
        sa.Column("flow_type", sa.String(20), nullable=False),
        sa.Column("amount", sa.Numeric(20, 2), nullable=False),
        sa.Column("flow_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("is_auto_detected", sa.Boolean(), server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_cash_flows"),
        sa.CheckConstraint(
            "flow_type IN ('DEPOSIT', 'WITHDRAWAL')", name="ck_cash_flows_flow_type_valid"
        ),
    )
    op.create_index("idx_cash_flows_account_date", "cash_flows", ["account_id", "flow_date"])

    # ==========================================================================
    # RISK
    # ==========================================================================

    op.create_table(
        "risk_snapshots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "portfolio_id",
            sa.Integer(),
            sa.ForeignKey("portfolios.id", ondelete="CASCADE", name="fk_risk_snapshots_portfolio_id_portfolios"),
            nullable=False,
        ),
        sa.Column("ticker", sa.String(16)),
        sa.Column("snapshot_date", sa.Date(), nullable=False),
        sa.Column("snapshot_type", sa.String(20), nullable=False),
        sa.Column("volatility", sa.Float(), nullable=False),
        sa.Column("max_drawdown", sa.Float(), nullable=False),
        sa.Column("beta", sa.Float()),
        sa.Column("sharpe", sa.Float()),
        sa.Column("sortino", sa.Float()),
        sa.Column("value_at_risk", sa.Float()),
        sa.Column("var_95", sa.Float()),
        sa.Column("var_99", sa.Float()),
        sa.Column("es_95", sa.Float()),
        sa.Column("es_99", sa.Float()),
        sa.Column("risk_score", sa.Float(), nullable=False),
        sa.Column("risk_level", sa.String(20), nullable=False),
        sa.Column("total_value", sa.Numeric(20, 2)),
        sa.Column("market_value", sa.Numeric(20, 2)),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_risk_snapshots"),
        sa.UniqueConstraint(
            "portfolio_id", "ticker", "snapshot_date", "snapshot_type",
            name="uq_risk_snapshots_key",
            postgresql_nulls_not_distinct=True,
        ),
        sa.CheckConstraint(
            "snapshot_type IN ('portfolio', 'position')",
            name="ck_risk_snapshots_snapshot_type_valid",
        ),
    )
    op.create_index(
        "idx_risk_snapshots_portfolio_date", "risk_snapshots", ["portfolio_id", "snapshot_date"]
    )

    op.create_table(
        "risk_threshold_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "portfolio_id",
            sa.Integer(),
            sa.ForeignKey(
                "portfolios.id", ondelete="CASCADE",
                name="fk_risk_threshold_settings_portfolio_id_portfolios",
            ),
            nullable=False,
        ),
        sa.Column("volatility_warning_threshold", sa.Float(), server_default="30.0"),
        sa.Column("volatility_critical_threshold", sa.Float(), server_default="50.0"),
        sa.Column("drawdown_warning_threshold", sa.Float(), server_default="-20.0"),
        sa.Column("drawdown_critical_threshold", sa.Float(), server_default="-35.0"),
        sa.Column("beta_warning_threshold", sa.Float(), server_default="1.5"),
        sa.Column("beta_critical_threshold", sa.Float(), server_default="2.0"),
        sa.Column("risk_score_warning_threshold", sa.Float(), server_default="60.0"),
        sa.Column("risk_score_critical_threshold", sa.Float(), server_default="80.0"),
        sa.Column("var_warning_threshold", sa.Float(), server_default="-5.0"),
        sa.Column("var_critical_threshold", sa.Float(), server_default="-10.0"),
        *_timestamps(updated=True),
        sa.PrimaryKeyConstraint("id", name="pk_risk_threshold_settings"),
        sa.UniqueConstraint("portfolio_id", name="uq_risk_threshold_settings_portfolio_id"),
    )

    op.create_table(
        "alerts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column(
            "portfolio_id",
            sa.Integer(),
            sa.ForeignKey("portfolios.id", ondelete="CASCADE", name="fk_alerts_portfolio_id_portfolios"),
        ),
        sa.Column("ticker", sa.String(16)),
        sa.Column("metric", sa.String(50), nullable=False),
        sa.Column("previous_value", sa.Float()),
        sa.Column("current_value", sa.Float(), nullable=False),
        sa.Column("change_pct", sa.Float()),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("observed_on", sa.Date(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), server_default=sa.text("'{}'::jsonb")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_alerts"),
        sa.CheckConstraint(
            "severity IN ('info', 'warning', 'critical')", name="ck_alerts_severity_valid"
        ),
    )
    op.create_index("idx_alerts_portfolio_created", "alerts", ["portfolio_id", "created_at"])
    op.create_index(
        "idx_alerts_kind_metric", "alerts", ["kind", "metric", "portfolio_id", "observed_on"]
    )

    # ==========================================================================
    # MARKET REGIMES & HMM
    # ==========================================================================

    op.create_table(
        "market_regimes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("regime_type", sa.String(20), nullable=False),
        sa.Column("volatility_level", sa.Float(), nullable=False),
        sa.Column("market_return", sa.Float()),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("benchmark_ticker", sa.String(16), server_default="SPY"),
        sa.Column("lookback_days", sa.Integer(), server_default="30"),
        sa.Column("threshold_multiplier", sa.Float(), server_default="1.0"),
        *_timestamps(updated=True),
        sa.PrimaryKeyConstraint("id", name="pk_market_regimes"),
        sa.UniqueConstraint("date", name="uq_market_regimes_date"),
        sa.CheckConstraint(
            "confidence >= 0 AND confidence <= 100", name="ck_market_regimes_confidence_range"
        ),
    )
    op.create_index("idx_market_regimes_date", "market_regimes", [sa.text("date DESC")])

    op.create_table(
        "hmm_models",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("model_name", sa.String(100), nullable=False),
        sa.Column("market", sa.String(16), nullable=False),
        sa.Column("trained_on_date", sa.Date(), nullable=False),
        sa.Column("num_states", sa.Integer(), nullable=False),
        sa.Column("state_names", postgresql.JSONB(), nullable=False),
        sa.Column("transition_matrix", postgresql.JSONB(), nullable=False),
        sa.Column("emission_params", postgresql.JSONB(), nullable=False),
        sa.Column("observation_symbols", postgresql.JSONB(), nullable=False),
        sa.Column("training_data_start", sa.Date()),
        sa.Column("training_data_end", sa.Date()),
        sa.Column("model_accuracy", sa.Float()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_hmm_models"),
        sa.UniqueConstraint(
            "model_name", "market", "trained_on_date", name="uq_hmm_models_name_market_date"
        ),
    )
    op.create_index(
        "idx_hmm_models_market_trained", "hmm_models", ["market", "trained_on_date"]
    )

    op.create_table(
        "regime_forecasts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("forecast_date", sa.Date(), nullable=False),
        sa.Column("horizon_days", sa.Integer(), nullable=False),
        sa.Column("predicted_regime", sa.String(20), nullable=False),
        sa.Column("regime_probabilities", postgresql.JSONB(), nullable=False),
        sa.Column("transition_probability", sa.Float(), nullable=False),
        sa.Column("confidence_level", sa.String(10), nullable=False),
        sa.Column(
            "hmm_model_id",
            sa.Integer(),
            sa.ForeignKey("hmm_models.id", ondelete="SET NULL", name="fk_regime_forecasts_hmm_model_id_hmm_models"),
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_regime_forecasts"),
        sa.UniqueConstraint(
            "forecast_date", "horizon_days", name="uq_regime_forecasts_date_horizon"
        ),
    )

    # ==========================================================================
    # ARTIFACT CACHES
    # ==========================================================================

    _cache_table(
        "portfolio_optimization_cache",
        sa.Column("portfolio_id", sa.Integer(), nullable=False),
    )
    _cache_table(
        "portfolio_correlations_cache",
        sa.Column("portfolio_id", sa.Integer(), nullable=False),
        sa.Column("days", sa.Integer(), nullable=False),
    )
    _cache_table(
        "rolling_beta_cache",
        sa.Column("ticker", sa.String(16), nullable=False),
        sa.Column("benchmark", sa.String(16), nullable=False),
        sa.Column("days", sa.Integer(), nullable=False),
    )
    _cache_table(
        "beta_forecast_cache",
        sa.Column("ticker", sa.String(16), nullable=False),
        sa.Column("benchmark", sa.String(16), nullable=False),
        sa.Column("days_ahead", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(30), nullable=False),
    )
    _cache_table(
        "downside_risk_cache",
        sa.Column("portfolio_id", sa.Integer(), nullable=False),
        sa.Column("days", sa.Integer(), nullable=False),
        sa.Column("benchmark", sa.String(16), nullable=False),
    )
    _cache_table(
        "portfolio_news_cache",
        sa.Column("portfolio_id", sa.Integer(), nullable=False),
    )
    _cache_table(
        "recommendation_explanation_cache",
        sa.Column("symbol", sa.String(16), nullable=False),
        sa.Column("narrative_type", sa.String(30), nullable=False),
    )
    _cache_table(
        "long_term_guidance_cache",
        sa.Column("portfolio_id", sa.Integer(), nullable=False),
        sa.Column("goal", sa.String(20), nullable=False),
        sa.Column("horizon_years", sa.Integer(), nullable=False),
        sa.Column("risk_tolerance", sa.String(20), nullable=False),
    )

    # ==========================================================================
    # JOBS
    # ==========================================================================

    op.create_table(
        "job_schedules",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("cron", sa.String(100), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("reentrant", sa.Boolean(), server_default=sa.false()),
        *_timestamps(updated=True),
        sa.PrimaryKeyConstraint("id", name="pk_job_schedules"),
        sa.UniqueConstraint("name", name="uq_job_schedules_name"),
    )
    op.create_index(
        "idx_job_schedules_active",
        "job_schedules",
        ["is_active"],
        postgresql_where=sa.text("is_active = TRUE"),
    )

    op.create_table(
        "job_runs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_name", sa.String(100), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("trigger", sa.String(20), server_default="schedule"),
        sa.Column("items_processed", sa.Integer(), server_default="0"),
        sa.Column("items_failed", sa.Integer(), server_default="0"),
        sa.Column("duration_ms", sa.Integer()),
        sa.Column("error_message", sa.Text()),
        sa.PrimaryKeyConstraint("id", name="pk_job_runs"),
        sa.CheckConstraint(
            "status IN ('running', 'success', 'failed')", name="ck_job_runs_status_valid"
        ),
    )
    op.create_index(
        "idx_job_runs_name_started", "job_runs", ["job_name", sa.text("started_at DESC")]
    )

    # ==========================================================================
    # WATCHLISTS
    # ==========================================================================

    op.create_table(
        "watchlists",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_watchlists"),
        sa.UniqueConstraint("user_id", "name", name="uq_watchlists_user_name"),
    )

    op.create_table(
        "watchlist_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "watchlist_id",
            sa.Integer(),
            sa.ForeignKey("watchlists.id", ondelete="CASCADE", name="fk_watchlist_items_watchlist_id_watchlists"),
            nullable=False,
        ),
        sa.Column("ticker", sa.String(16), nullable=False),
        sa.Column("added_price", sa.Numeric(12, 2)),
        sa.Column("target_price", sa.Numeric(12, 2)),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_watchlist_items"),
        sa.UniqueConstraint(
            "watchlist_id", "ticker", name="uq_watchlist_items_watchlist_ticker"
        ),
    )
    op.create_index("idx_watchlist_items_ticker", "watchlist_items", ["ticker"])

    op.create_table(
        "watchlist_thresholds",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "watchlist_item_id",
            sa.Integer(),
            sa.ForeignKey(
                "watchlist_items.id", ondelete="CASCADE",
                name="fk_watchlist_thresholds_watchlist_item_id_watchlist_items",
            ),
            nullable=False,
        ),
        sa.Column("threshold_type", sa.String(30), nullable=False),
        sa.Column("comparison", sa.String(5), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default=sa.true()),
        sa.PrimaryKeyConstraint("id", name="pk_watchlist_thresholds"),
        sa.UniqueConstraint(
            "watchlist_item_id", "threshold_type", name="uq_watchlist_thresholds_item_type"
        ),
    )

    op.create_table(
        "watchlist_alerts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "watchlist_item_id",
            sa.Integer(),
            sa.ForeignKey(
                "watchlist_items.id", ondelete="CASCADE",
                name="fk_watchlist_alerts_watchlist_item_id_watchlist_items",
            ),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("ticker", sa.String(16), nullable=False),
        sa.Column("alert_type", sa.String(50), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("actual_value", sa.Float()),
        sa.Column("threshold_value", sa.Float()),
        sa.Column("metadata", postgresql.JSONB(), server_default=sa.text("'{}'::jsonb")),
        sa.Column("read", sa.Boolean(), server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_watchlist_alerts"),
    )
    op.create_index(
        "idx_watchlist_alerts_item_type_created",
        "watchlist_alerts",
        ["watchlist_item_id", "alert_type", "created_at"],
    )

    op.create_table(
        "watchlist_monitoring_state",
        sa.Column(
            "watchlist_item_id",
            sa.Integer(),
            sa.ForeignKey(
                "watchlist_items.id", ondelete="CASCADE",
                name="fk_watchlist_monitoring_state_watchlist_item_id_watchlist_items",
            ),
            nullable=False,
        ),
        sa.Column("last_price", sa.Float()),
        sa.Column("last_rsi", sa.Float()),
        sa.Column("last_volume_ratio", sa.Float()),
        sa.Column("last_volatility", sa.Float()),
        sa.Column("last_sentiment_score", sa.Float()),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("watchlist_item_id", name="pk_watchlist_monitoring_state"),
    )


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    for table in (
        "watchlist_monitoring_state",
        "watchlist_alerts",
        "watchlist_thresholds",
        "watchlist_items",
        "watchlists",
        "job_runs",
        "job_schedules",
        *reversed(CACHE_TABLES),
        "regime_forecasts",
        "hmm_models",
        "market_regimes",
        "alerts",
        "risk_threshold_settings",
        "risk_snapshots",
        "cash_flows",
        "detected_transactions",
        "holdings_snapshots",
        "accounts",
        "portfolios",
        "ticker_fetch_failures",
        "price_points",
    ):
        op.drop_table(table)
