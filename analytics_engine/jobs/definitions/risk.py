"""Risk job definitions.

This module contains jobs for:
- Post-close position and portfolio risk snapshots (daily_risk_snapshots)
- Hourly alert evaluation per portfolio (check_thresholds)
- Weekly deletion of old snapshots (archive_snapshots)
"""

from __future__ import annotations

from analytics_engine.core.exceptions import NotFoundError
from analytics_engine.core.logging import get_logger
from analytics_engine.repositories import holdings_orm

from ..context import JobContext, JobResult
from ..registry import register_job
from ..utils import elapsed_ms, job_timer, log_job_success, run_units


logger = get_logger("jobs.risk")

NO_HOLDINGS_MESSAGE = "No holdings found"
SNAPSHOT_DELAY_SECONDS = 1.0
THRESHOLD_CHECK_DELAY_SECONDS = 1.0


# =============================================================================
# DAILY RISK SNAPSHOTS - Daily 5 PM
# =============================================================================


@register_job("daily_risk_snapshots")
async def daily_risk_snapshots_job(ctx: JobContext) -> JobResult:
    """
    Write position and portfolio risk snapshots for every portfolio.

    A portfolio without holdings is counted as processed rather than
    failed; there is simply nothing to snapshot.

    Schedule: Daily at 5 PM (0 0 17 * * *)
    """
    job_start = job_timer()
    portfolio_ids = await holdings_orm.list_portfolio_ids()
    positions = 0
    empty = 0

    async def snapshot(portfolio_id: int) -> None:
        nonlocal positions, empty
        try:
            result = await ctx.snapshot_service.create_daily_snapshots(portfolio_id)
        except NotFoundError as e:
            if NO_HOLDINGS_MESSAGE not in e.message:
                raise
            logger.info(f"Portfolio {portfolio_id} has no holdings, skipping snapshot")
            empty += 1
            return
        positions += result.positions_written

    result = await run_units(
        "daily_risk_snapshots", portfolio_ids, snapshot, delay=SNAPSHOT_DELAY_SECONDS
    )
    result.message = f"Snapshotted {result.items_processed - empty} portfolios"
    result.details = {"positions_written": positions, "empty_portfolios": empty}

    log_job_success(
        "daily_risk_snapshots",
        result.message,
        items_processed=result.items_processed,
        items_failed=result.items_failed,
        positions_written=positions,
        duration_ms=elapsed_ms(job_start),
    )
    return result


# =============================================================================
# CHECK THRESHOLDS - Hourly
# =============================================================================


@register_job("check_thresholds")
async def check_thresholds_job(ctx: JobContext) -> JobResult:
    """
    Evaluate each portfolio against regime-adjusted thresholds and look for
    risk score spikes over the last week.

    Schedule: Hourly (0 0 * * * *)
    """
    job_start = job_timer()
    portfolio_ids = await holdings_orm.list_portfolio_ids()
    alerts = 0
    stored = 0

    async def check(portfolio_id: int) -> None:
        nonlocal alerts, stored
        outcome = await ctx.alert_evaluator.check_portfolio(portfolio_id)
        alerts += outcome["alerts"]
        stored += outcome["stored"]

    result = await run_units(
        "check_thresholds", portfolio_ids, check, delay=THRESHOLD_CHECK_DELAY_SECONDS
    )
    result.message = f"Checked {result.items_processed} portfolios, {alerts} alerts"
    result.details = {"alerts": alerts, "alerts_stored": stored}

    log_job_success(
        "check_thresholds",
        result.message,
        items_processed=result.items_processed,
        items_failed=result.items_failed,
        alerts=alerts,
        alerts_stored=stored,
        duration_ms=elapsed_ms(job_start),
    )
    return result


# =============================================================================
# ARCHIVE SNAPSHOTS - Weekly Sunday 3:30 AM
# =============================================================================


@register_job("archive_snapshots")
async def archive_snapshots_job(ctx: JobContext) -> JobResult:
    """Delete risk snapshots older than one year."""
    job_start = job_timer()
    removed = await ctx.snapshot_service.archive_older_than()

    message = f"Deleted {removed} old risk snapshots"
    log_job_success(
        "archive_snapshots",
        message,
        snapshots_deleted=removed,
        duration_ms=elapsed_ms(job_start),
    )
    return JobResult(items_processed=removed, message=message)
