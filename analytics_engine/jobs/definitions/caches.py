"""Analytics cache job definitions.

This module contains jobs for:
- Portfolio optimization recommendations (optimization_cache)
- Rolling beta per held ticker (rolling_beta_cache)
- Portfolio downside risk (downside_risk_cache)
- Correlation matrix of the largest positions (portfolio_correlations)
- Weekly sweep of expired cache rows and fetch failures (cleanup_cache)

Every recompute job skips units whose cache row is still fresh and reads
stored prices only; refresh_prices owns provider traffic.
"""

from __future__ import annotations

from collections.abc import Iterable

from analytics_engine.cache.store import CacheKind
from analytics_engine.core.logging import get_logger
from analytics_engine.quant_engine import correlations, optimizer, risk
from analytics_engine.quant_engine.types import PricePoint
from analytics_engine.repositories import holdings_orm
from analytics_engine.services.prices import PriceService
from analytics_engine.services.risk_snapshots import aggregate_positions

from ..context import JobContext, JobResult
from ..registry import register_job
from ..utils import elapsed_ms, job_timer, log_job_success, run_units


logger = get_logger("jobs.caches")

ROLLING_BETA_DAYS = 180
ROLLING_BETA_DELAY_SECONDS = 1.0
DOWNSIDE_RISK_DAYS = 90
DOWNSIDE_RISK_DELAY_SECONDS = 2.0
DOWNSIDE_RISK_UNIT_TIMEOUT = 300.0
OPTIMIZATION_DELAY_SECONDS = 1.0
CORRELATION_DELAY_SECONDS = 2.0
CORRELATION_DAYS = 90


async def portfolio_market_values(portfolio_id: int) -> dict[str, float]:
    """Market value per ticker across every account of the portfolio."""
    return aggregate_positions(await holdings_orm.get_latest_holdings(portfolio_id))


async def load_windows(
    price_service: PriceService, tickers: Iterable[str], days: int
) -> dict[str, list[PricePoint]]:
    series = {}
    for ticker in tickers:
        points = await price_service.get_window(ticker, days)
        if points:
            series[ticker] = points
    return series


def _finish(job_name: str, result: JobResult, skipped: int, job_start: float) -> JobResult:
    result.message = (
        f"Recomputed {result.items_processed - skipped} entries, "
        f"{skipped} fresh, {result.items_failed} failed"
    )
    result.details = {"skipped_fresh": skipped}
    log_job_success(
        job_name,
        result.message,
        items_processed=result.items_processed,
        items_failed=result.items_failed,
        skipped_fresh=skipped,
        duration_ms=elapsed_ms(job_start),
    )
    return result


# =============================================================================
# OPTIMIZATION - Every 6 hours
# =============================================================================


@register_job("optimization_cache")
async def optimization_cache_job(ctx: JobContext) -> JobResult:
    """
    Recompute optimization recommendations for every portfolio.

    The average pairwise correlation is taken from the correlations cache
    when a fresh entry exists.

    Schedule: Every 6 hours (0 0 */6 * * *)
    """
    job_start = job_timer()
    portfolio_ids = await holdings_orm.list_portfolio_ids()
    skipped = 0

    async def optimize(portfolio_id: int) -> None:
        nonlocal skipped
        key = {"portfolio_id": portfolio_id}
        if await ctx.cache.is_fresh(CacheKind.OPTIMIZATION, key):
            skipped += 1
            return

        market_values = await portfolio_market_values(portfolio_id)
        if not market_values:
            skipped += 1
            return

        average_correlation = None
        cached = await ctx.cache.get(
            CacheKind.CORRELATIONS, {"portfolio_id": portfolio_id, "days": CORRELATION_DAYS}
        )
        if cached and cached.get("pairs"):
            average_correlation = cached["statistics"]["average_correlation"]

        positions = [
            optimizer.OptimizerPosition(ticker=ticker, market_value=value)
            for ticker, value in market_values.items()
        ]
        payload = optimizer.analyze_portfolio(portfolio_id, positions, average_correlation)
        await ctx.cache.put(CacheKind.OPTIMIZATION, key, payload)

    result = await run_units(
        "optimization_cache", portfolio_ids, optimize, delay=OPTIMIZATION_DELAY_SECONDS
    )
    return _finish("optimization_cache", result, skipped, job_start)


# =============================================================================
# ROLLING BETA - Every 6 hours
# =============================================================================


@register_job("rolling_beta_cache")
async def rolling_beta_cache_job(ctx: JobContext) -> JobResult:
    """
    Recompute 30/60/90 day rolling betas for every held ticker over 180 days
    against the benchmark.

    Schedule: Every 6 hours (0 0 */6 * * *)
    """
    job_start = job_timer()
    benchmark = ctx.settings.default_benchmark
    tickers = [t for t in await ctx.price_service.get_held_tickers() if t != benchmark]
    benchmark_points = await ctx.price_service.get_window(benchmark, ROLLING_BETA_DAYS)
    skipped = 0

    async def compute(ticker: str) -> None:
        nonlocal skipped
        key = {"ticker": ticker, "benchmark": benchmark, "days": ROLLING_BETA_DAYS}
        if await ctx.cache.is_fresh(CacheKind.ROLLING_BETA, key):
            skipped += 1
            return

        points = await ctx.price_service.get_window(ticker, ROLLING_BETA_DAYS)
        payload = risk.rolling_beta_analysis(ticker, benchmark, points, benchmark_points)
        payload["days"] = ROLLING_BETA_DAYS
        await ctx.cache.put(CacheKind.ROLLING_BETA, key, payload)

    result = await run_units(
        "rolling_beta_cache", tickers, compute, delay=ROLLING_BETA_DELAY_SECONDS
    )
    return _finish("rolling_beta_cache", result, skipped, job_start)


# =============================================================================
# DOWNSIDE RISK - Every 6 hours
# =============================================================================


@register_job("downside_risk_cache")
async def downside_risk_cache_job(ctx: JobContext) -> JobResult:
    """
    Recompute Sortino, VaR/ES and drawdown for every portfolio over 90 days.

    Schedule: Every 6 hours (0 0 */6 * * *)
    """
    job_start = job_timer()
    benchmark = ctx.settings.default_benchmark
    portfolio_ids = await holdings_orm.list_portfolio_ids()
    skipped = 0

    async def compute(portfolio_id: int) -> None:
        nonlocal skipped
        key = {"portfolio_id": portfolio_id, "days": DOWNSIDE_RISK_DAYS, "benchmark": benchmark}
        if await ctx.cache.is_fresh(CacheKind.DOWNSIDE_RISK, key):
            skipped += 1
            return

        market_values = await portfolio_market_values(portfolio_id)
        if not market_values:
            skipped += 1
            return

        series = await load_windows(ctx.price_service, market_values, DOWNSIDE_RISK_DAYS)
        payload = risk.portfolio_downside_risk(
            portfolio_id,
            series,
            {t: v for t, v in market_values.items() if t in series},
            DOWNSIDE_RISK_DAYS,
            benchmark,
            ctx.settings.risk_free_rate,
        )
        await ctx.cache.put(CacheKind.DOWNSIDE_RISK, key, payload)

    result = await run_units(
        "downside_risk_cache",
        portfolio_ids,
        compute,
        delay=DOWNSIDE_RISK_DELAY_SECONDS,
        timeout=DOWNSIDE_RISK_UNIT_TIMEOUT,
    )
    return _finish("downside_risk_cache", result, skipped, job_start)


# =============================================================================
# CORRELATIONS - Every 6 hours, 15 minutes past
# =============================================================================


@register_job("portfolio_correlations")
async def portfolio_correlations_job(ctx: JobContext) -> JobResult:
    """
    Correlation matrix of each portfolio's ten largest positions holding at
    least 1% of its value.

    Schedule: Every 6 hours at :15 (0 15 */6 * * *)
    """
    job_start = job_timer()
    portfolio_ids = await holdings_orm.list_portfolio_ids()
    skipped = 0

    async def compute(portfolio_id: int) -> None:
        nonlocal skipped
        key = {"portfolio_id": portfolio_id, "days": CORRELATION_DAYS}
        if await ctx.cache.is_fresh(CacheKind.CORRELATIONS, key):
            skipped += 1
            return

        market_values = await portfolio_market_values(portfolio_id)
        tickers = correlations.select_tickers(market_values)
        if len(tickers) < 2:
            skipped += 1
            return

        series = await load_windows(ctx.price_service, tickers, CORRELATION_DAYS)
        payload = correlations.build_correlation_payload(
            series, {t: market_values[t] for t in series}
        )
        payload.update(portfolio_id=portfolio_id, days=CORRELATION_DAYS)
        await ctx.cache.put(CacheKind.CORRELATIONS, key, payload)

    result = await run_units(
        "portfolio_correlations", portfolio_ids, compute, delay=CORRELATION_DELAY_SECONDS
    )
    return _finish("portfolio_correlations", result, skipped, job_start)


# =============================================================================
# CLEANUP - Weekly Sunday 3 AM
# =============================================================================


@register_job("cleanup_cache")
async def cleanup_cache_job(ctx: JobContext) -> JobResult:
    """Delete expired rows from every cache table and stale fetch failures."""
    job_start = job_timer()
    removed = await ctx.cache.sweep_all()
    failures = await ctx.price_service.failure_store.sweep()

    total = sum(removed.values())
    message = f"Removed {total} expired cache rows and {failures} fetch failures"
    log_job_success(
        "cleanup_cache",
        message,
        **{f"{kind}_removed": count for kind, count in removed.items()},
        fetch_failures_removed=failures,
        duration_ms=elapsed_ms(job_start),
    )
    return JobResult(
        items_processed=total + failures,
        message=message,
        details={"cache": removed, "fetch_failures": failures},
    )
