"""Shared defaults for scheduled jobs.

Cron expressions have six fields: ``sec min hour dom mon dow``.

Job Categories:
    1. PRICE DATA
       - refresh_prices: Refresh every held ticker (daily 2 AM)

    2. POST-CLOSE ANALYTICS (daily 5 PM)
       - daily_risk_snapshots: Position + portfolio risk snapshots
       - market_regime_update: Rule-based regime classification
       - regime_forecast: HMM forecasts, 30 minutes after the regime update

    3. ARTIFACT CACHES (every 6 hours)
       - optimization_cache, rolling_beta_cache, downside_risk_cache,
         portfolio_correlations

    4. ALERTING
       - check_thresholds: Hourly
       - watchlist_monitoring: Every 30 minutes

    5. MAINTENANCE (weekly, Sunday)
       - hmm_training, cleanup_cache, archive_snapshots
"""

from __future__ import annotations


# =============================================================================
# SCHEDULE DEFINITIONS
# =============================================================================
# Format: job_name -> (cron_expression, human_description)

DEFAULT_SCHEDULES: dict[str, tuple[str, str]] = {
    # =========================================================================
    # 1. PRICE DATA
    # =========================================================================
    "refresh_prices": (
        "0 0 2 * * *",
        "Refresh price history for every ticker held in any portfolio. Daily 2 AM.",
    ),
    "generate_forecasts": (
        "0 0 4 * * *",
        "Invalidate beta forecast caches for the 20 largest holdings. Daily 4 AM.",
    ),
    # =========================================================================
    # 2. POST-CLOSE ANALYTICS
    # =========================================================================
    "daily_risk_snapshots": (
        "0 0 17 * * *",
        "Post-close position and portfolio risk snapshots. Daily 5 PM.",
    ),
    "market_regime_update": (
        "0 0 17 * * *",
        "Classify the market regime from the benchmark. Daily 5 PM.",
    ),
    "regime_forecast": (
        "0 30 17 * * *",
        "HMM regime forecasts for 5, 10 and 30 day horizons. Daily 5:30 PM.",
    ),
    # =========================================================================
    # 3. ARTIFACT CACHES
    # =========================================================================
    "optimization_cache": (
        "0 0 */6 * * *",
        "Recompute portfolio optimization recommendations. Every 6 hours.",
    ),
    "rolling_beta_cache": (
        "0 0 */6 * * *",
        "Recompute 30/60/90 day rolling betas for held tickers. Every 6 hours.",
    ),
    "downside_risk_cache": (
        "0 0 */6 * * *",
        "Recompute portfolio downside risk. Every 6 hours.",
    ),
    "portfolio_correlations": (
        "0 15 */6 * * *",
        "Recompute the correlation matrix of each portfolio's largest positions. Every 6 hours.",
    ),
    # =========================================================================
    # 4. ALERTING
    # =========================================================================
    "check_thresholds": (
        "0 0 * * * *",
        "Evaluate portfolio risk against regime-adjusted thresholds. Hourly.",
    ),
    "watchlist_monitoring": (
        "0 */30 * * * *",
        "Evaluate watchlist threshold, pattern and sentiment rules. Every 30 minutes.",
    ),
    # =========================================================================
    # 5. MAINTENANCE
    # =========================================================================
    "hmm_training": (
        "0 0 5 * * SUN",
        "Retrain the regime HMM on ten years of benchmark history. Weekly Sunday 5 AM.",
    ),
    "cleanup_cache": (
        "0 0 3 * * SUN",
        "Delete expired cache rows and fetch failures. Weekly Sunday 3 AM.",
    ),
    "archive_snapshots": (
        "0 30 3 * * SUN",
        "Delete risk snapshots older than one year. Weekly Sunday 3:30 AM.",
    ),
}


# Minute-level schedules for local testing (JOB_SCHEDULER_TEST_MODE=true)
TEST_MODE_SCHEDULES: dict[str, str] = {
    "refresh_prices": "0 */5 * * * *",
    "generate_forecasts": "0 */10 * * * *",
    "check_thresholds": "0 */2 * * * *",
    "daily_risk_snapshots": "0 */5 * * * *",
    "market_regime_update": "0 */5 * * * *",
    "regime_forecast": "30 */5 * * * *",
    "optimization_cache": "0 */10 * * * *",
    "rolling_beta_cache": "0 */10 * * * *",
    "downside_risk_cache": "0 */10 * * * *",
    "portfolio_correlations": "0 */10 * * * *",
    "watchlist_monitoring": "0 */2 * * * *",
    "hmm_training": "0 */30 * * * *",
    "cleanup_cache": "0 */15 * * * *",
    "archive_snapshots": "0 */15 * * * *",
}


def get_default_schedule(name: str, test_mode: bool = False) -> tuple[str, str]:
    """Cron and description for a job; unknown jobs run hourly."""
    cron, description = DEFAULT_SCHEDULES.get(name, ("0 0 * * * *", f"Job: {name}"))
    if test_mode:
        cron = TEST_MODE_SCHEDULES.get(name, cron)
    return cron, description
