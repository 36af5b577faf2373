"""Watchlist monitoring job definition."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError

from analytics_engine.core.logging import get_logger
from analytics_engine.repositories import watchlist_orm
from analytics_engine.services.alert_types import AlertSeverity

from ..context import JobContext, JobResult
from ..registry import register_job
from ..utils import elapsed_ms, job_timer, log_job_success, run_units


logger = get_logger("jobs.watchlist")

MONITOR_DELAY_SECONDS = 0.5


@register_job("watchlist_monitoring")
async def watchlist_monitoring_job(ctx: JobContext) -> JobResult:
    """
    Evaluate threshold, pattern and sentiment rules for every watchlist ticker.

    Rules already alerted within the cooldown window are skipped by the
    monitor. A failure to store alerts is logged and does not fail the
    ticker; the monitoring state was already written.

    Schedule: Every 30 minutes (0 */30 * * * *)
    """
    job_start = job_timer()
    tickers = await watchlist_orm.get_watchlist_tickers()
    today = datetime.now(UTC).date()
    triggered = 0
    stored = 0
    critical = 0

    async def monitor(ticker: str) -> None:
        nonlocal triggered, stored, critical
        results = await ctx.watchlist_monitor.monitor_ticker(ticker)
        if not results:
            return
        triggered += len(results)
        alerts = [r.to_alert(today) for r in results]
        critical += sum(1 for a in alerts if a.severity is AlertSeverity.CRITICAL)
        try:
            stored += await ctx.watchlist_monitor.store_results(results)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to store {len(results)} watchlist alerts for {ticker}: {e}")

    result = await run_units("watchlist_monitoring", tickers, monitor, delay=MONITOR_DELAY_SECONDS)
    result.message = f"Monitored {result.items_processed} tickers, {triggered} alerts triggered"
    result.details = {
        "alerts_triggered": triggered,
        "alerts_stored": stored,
        "critical_alerts": critical,
    }

    log_job_success(
        "watchlist_monitoring",
        result.message,
        items_processed=result.items_processed,
        items_failed=result.items_failed,
        alerts_triggered=triggered,
        alerts_stored=stored,
        critical_alerts=critical,
        duration_ms=elapsed_ms(job_start),
    )
    return result
