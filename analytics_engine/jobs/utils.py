"""Shared utilities for job definitions.

Common helpers and logging functions used across all job modules.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

from analytics_engine.core.logging import get_logger

from .context import JobResult


logger = get_logger("jobs.utils")

T = TypeVar("T")

DEFAULT_UNIT_TIMEOUT = 60.0


def log_job_success(job_name: str, message: str, **metrics: Any) -> None:
    """Log a structured job success message with metrics.

    Args:
        job_name: Name of the job (e.g., "refresh_prices")
        message: Human-readable summary message
        **metrics: Key-value pairs of metrics to include in structured log

    Example:
        log_job_success("refresh_prices", "Refreshed 12 tickers",
            items_processed=12, items_failed=0, duration_ms=1234)
    """
    log_data = {
        "job": job_name,
        "status": "success",
        **metrics,
    }
    metrics_str = " ".join(f"{k}={v}" for k, v in metrics.items())
    logger.info(f"{job_name} completed: {message} | {metrics_str}", extra={"extra_fields": log_data})


def job_timer() -> float:
    """Start a job timer.

    Returns:
        Start time from time.monotonic()

    Usage:
        job_start = job_timer()
        # ... do work ...
        duration_ms = elapsed_ms(job_start)
    """
    return time.monotonic()


def elapsed_ms(start: float) -> int:
    """Calculate elapsed time in milliseconds.

    Args:
        start: Start time from job_timer() or time.monotonic()

    Returns:
        Elapsed time in milliseconds as integer
    """
    return int((time.monotonic() - start) * 1000)


async def run_units(
    job_name: str,
    units: Iterable[T],
    handler: Callable[[T], Awaitable[Any]],
    delay: float = 0.0,
    timeout: float = DEFAULT_UNIT_TIMEOUT,
) -> JobResult:
    """
    Run ``handler`` for each unit, isolating failures.

    A unit that raises or exceeds ``timeout`` is counted as failed and the
    loop moves on. ``delay`` seconds are slept between units.

    Args:
        job_name: Job name for log lines
        units: Tickers, portfolio ids or similar work items
        handler: Coroutine function run per unit
        delay: Pause between units in seconds
        timeout: Per-unit timeout in seconds

    Returns:
        JobResult with processed and failed counts
    """
    result = JobResult()
    units = list(units)
    for index, unit in enumerate(units):
        try:
            await asyncio.wait_for(handler(unit), timeout=timeout)
            result.items_processed += 1
        except asyncio.TimeoutError:
            result.items_failed += 1
            logger.warning(f"{job_name}: {unit} timed out after {timeout:.0f}s")
        except Exception as e:
            result.items_failed += 1
            logger.warning(f"{job_name}: {unit} failed: {e}")

        if delay and index < len(units) - 1:
            await asyncio.sleep(delay)
    return result
