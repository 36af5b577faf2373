"""Tests for shared job helpers."""

from __future__ import annotations

import asyncio
import time

import pytest

from analytics_engine.jobs import JobResult
from analytics_engine.jobs.utils import elapsed_ms, job_timer, run_units


class TestRunUnits:
    """Per-unit failure isolation."""

    @pytest.mark.asyncio
    async def test_counts_successes_and_failures(self):
        seen = []

        async def handler(ticker):
            seen.append(ticker)
            if ticker == "BAD":
                raise RuntimeError("provider error")

        result = await run_units("refresh_prices", ["AAPL", "BAD", "MSFT"], handler)
        assert seen == ["AAPL", "BAD", "MSFT"]
        assert (result.items_processed, result.items_failed) == (2, 1)

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self):
        async def handler(unit):
            if unit == 2:
                await asyncio.sleep(5)

        result = await run_units("downside_risk_cache", [1, 2, 3], handler, timeout=0.05)
        assert (result.items_processed, result.items_failed) == (2, 1)

    @pytest.mark.asyncio
    async def test_delay_between_units_only(self):
        async def handler(unit):
            return None

        start = time.monotonic()
        await run_units("rolling_beta_cache", ["A", "B", "C"], handler, delay=0.05)
        elapsed = time.monotonic() - start
        assert 0.1 <= elapsed < 0.5

    @pytest.mark.asyncio
    async def test_no_units(self):
        async def handler(unit):
            raise AssertionError("not called")

        assert await run_units("cleanup_cache", [], handler) == JobResult()


class TestTiming:
    """Job timers."""

    def test_elapsed_ms(self):
        start = job_timer()
        assert elapsed_ms(start) >= 0
        assert elapsed_ms(start - 1.5) >= 1500

    def test_result_str(self):
        assert str(JobResult(items_processed=4, items_failed=1)) == "4 processed, 1 failed"
