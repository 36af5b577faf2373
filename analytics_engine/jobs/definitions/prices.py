"""Price data job definitions.

This module contains jobs for:
- Nightly price refresh of every held ticker (refresh_prices)
- Beta forecast cache invalidation for the largest holdings (generate_forecasts)
"""

from __future__ import annotations

from analytics_engine.cache.store import CacheKind
from analytics_engine.core.logging import get_logger
from analytics_engine.repositories import prices_orm

from ..context import JobContext, JobResult
from ..registry import register_job
from ..utils import elapsed_ms, job_timer, log_job_success, run_units


logger = get_logger("jobs.prices")

REFRESH_DELAY_SECONDS = 0.5
FORECAST_TICKER_LIMIT = 20
FORECAST_DELAY_SECONDS = 0.2


# =============================================================================
# REFRESH PRICES - Daily 2 AM
# =============================================================================


@register_job("refresh_prices")
async def refresh_prices_job(ctx: JobContext) -> JobResult:
    """
    Refresh price history for every ticker held in any portfolio.

    Fresh tickers are skipped without a provider call and still count as
    processed. Provider failures are recorded in the failure cache by the
    price service and counted as failed here.

    Schedule: Daily at 2 AM (0 0 2 * * *)
    """
    job_start = job_timer()
    tickers = await ctx.price_service.get_held_tickers()
    if not tickers:
        log_job_success("refresh_prices", "No held tickers", items_processed=0)
        return JobResult(message="No held tickers")

    written = 0

    async def refresh(ticker: str) -> None:
        nonlocal written
        result = await ctx.price_service.refresh(ticker)
        written += result.rows_written

    result = await run_units("refresh_prices", tickers, refresh, delay=REFRESH_DELAY_SECONDS)
    result.message = f"Refreshed {result.items_processed}/{len(tickers)} tickers"
    result.details = {"rows_written": written}

    log_job_success(
        "refresh_prices",
        result.message,
        items_processed=result.items_processed,
        items_failed=result.items_failed,
        rows_written=written,
        duration_ms=elapsed_ms(job_start),
    )
    return result


# =============================================================================
# GENERATE FORECASTS - Daily 4 AM
# =============================================================================


@register_job("generate_forecasts")
async def generate_forecasts_job(ctx: JobContext) -> JobResult:
    """
    Invalidate beta forecast caches for the most valuable holdings.

    Forecasts are recomputed lazily on the next read, so the job only drops
    the stale rows for the top tickers by market value.

    Schedule: Daily at 4 AM (0 0 4 * * *)
    """
    job_start = job_timer()
    tickers = await prices_orm.get_held_tickers_by_value(FORECAST_TICKER_LIMIT)
    removed = 0

    async def invalidate(ticker: str) -> None:
        nonlocal removed
        removed += await ctx.cache.invalidate(CacheKind.BETA_FORECAST, {"ticker": ticker})

    result = await run_units("generate_forecasts", tickers, invalidate, delay=FORECAST_DELAY_SECONDS)
    result.message = f"Invalidated beta forecasts for {result.items_processed} tickers"
    result.details = {"rows_removed": removed}

    log_job_success(
        "generate_forecasts",
        result.message,
        items_processed=result.items_processed,
        items_failed=result.items_failed,
        rows_removed=removed,
        duration_ms=elapsed_ms(job_start),
    )
    return result
