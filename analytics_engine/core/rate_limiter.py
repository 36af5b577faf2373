"""Rate limiter for outbound price provider calls.

Two constraints apply at once: a bounded number of in-flight calls and a
minimum spacing between consecutive acquisitions.

Usage:
    limiter = get_rate_limiter("providers")

    async with limiter.acquire():
        await provider.fetch_daily_history("AAPL", 60)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from analytics_engine.core.config import settings
from analytics_engine.core.logging import get_logger


logger = get_logger("core.rate_limiter")


class RateLimiter:
    """
    Concurrency cap plus minimum inter-call spacing.

    Async-compatible; asyncio primitives are created lazily so the limiter can
    be constructed outside a running event loop.
    """

    def __init__(
        self,
        name: str,
        max_concurrent: int = 3,
        requests_per_minute: float = 8.0,
    ):
        """
        Initialize rate limiter.

        Args:
            name: Identifier for logging
            max_concurrent: Maximum number of calls in flight
            requests_per_minute: Sustained rate; spacing is 60 / rpm seconds
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be > 0")

        self.name = name
        self.max_concurrent = max_concurrent
        self.requests_per_minute = requests_per_minute
        self.min_spacing = 60.0 / requests_per_minute
        # First acquisition never waits
        self._last_acquire = time.monotonic() - 60.0
        self._in_flight = 0
        self._semaphore: asyncio.Semaphore | None = None
        self._lock: asyncio.Lock | None = None

    def _primitives(self) -> tuple[asyncio.Semaphore, asyncio.Lock]:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._semaphore, self._lock

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[None]:
        """
        Wait for a permit and for the spacing window, then hold the permit.

        The permit is released when the context exits, including on
        cancellation.
        """
        semaphore, lock = self._primitives()

        async with semaphore:
            async with lock:
                wait_time = self.min_spacing - (time.monotonic() - self._last_acquire)
                if wait_time > 0:
                    logger.debug(f"Rate limiter {self.name} waiting {wait_time:.2f}s")
                    await asyncio.sleep(wait_time)
                self._last_acquire = time.monotonic()

            self._in_flight += 1
            try:
                yield
            finally:
                self._in_flight -= 1

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def status(self) -> dict:
        """Get current rate limiter status."""
        since_last = time.monotonic() - self._last_acquire
        return {
            "name": self.name,
            "in_flight": self._in_flight,
            "permits_available": self.max_concurrent - self._in_flight,
            "max_concurrent": self.max_concurrent,
            "min_spacing_seconds": self.min_spacing,
            "seconds_since_last_acquire": round(since_last, 3),
        }


# Process-wide limiters by name
_limiters: dict[str, RateLimiter] = {}

PROVIDER_LIMITER = "providers"


def get_rate_limiter(
    name: str = PROVIDER_LIMITER,
    max_concurrent: int | None = None,
    requests_per_minute: float | None = None,
) -> RateLimiter:
    """
    Get or create a named rate limiter.

    Args:
        name: Unique name for the limiter
        max_concurrent: Concurrency cap (only used on creation)
        requests_per_minute: Rate (only used on creation)

    Returns:
        RateLimiter instance
    """
    if name not in _limiters:
        concurrent = max_concurrent or settings.provider_max_concurrent
        rpm = requests_per_minute or settings.provider_requests_per_minute
        _limiters[name] = RateLimiter(name, concurrent, rpm)
        logger.info(
            f"Created rate limiter '{name}': {rpm}/min, max_concurrent={concurrent}"
        )
    return _limiters[name]
