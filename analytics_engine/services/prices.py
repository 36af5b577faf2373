"""
Price ingestion service.

Single writer of the ``price_points`` table. Refreshing a ticker goes
through freshness check, failure cache, rate limiter, provider chain,
rate-limit retries and a single-transaction upsert.

Usage:
    from analytics_engine.services.prices import PriceService

    service = PriceService(provider, failure_cache, limiter)
    result = await service.refresh("AAPL", lookback_days=365)
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta

from sqlalchemy.exc import SQLAlchemyError
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
)

from analytics_engine.core.exceptions import (
    CachedFailureError,
    ProviderError,
    ProviderErrorKind,
    StorageError,
    ValidationError,
)
from analytics_engine.core.failure_cache import FailureCache, FailureKind, FailureRecord
from analytics_engine.core.logging import get_logger
from analytics_engine.core.rate_limiter import RateLimiter
from analytics_engine.quant_engine.types import PricePoint
from analytics_engine.repositories import fetch_failures_orm, prices_orm
from analytics_engine.services.data_providers import PriceProvider


logger = get_logger("services.prices")


# =============================================================================
# CONFIGURATION
# =============================================================================

DEFAULT_LOOKBACK_DAYS = 365
MAX_TICKER_LENGTH = 10
FRESH_WRITE_WINDOW = timedelta(hours=6)
RATE_LIMIT_DELAYS = (5.0, 10.0, 15.0)
# US close (16:00 New York) in UTC during daylight saving; an hour late in winter
MARKET_CLOSE_UTC = time(20, 0)

# Canadian fund company codes that no stock API prices
MUTUAL_FUND_PREFIXES = (
    "FID", "DYN", "EDG", "BIP", "LYZ", "RBF", "AGF", "MFC", "RPD", "MMF", "NWT",
)
_MUTUAL_FUND_RE = re.compile(rf"^({'|'.join(MUTUAL_FUND_PREFIXES)})\d+$")


# =============================================================================
# VALIDATION
# =============================================================================


def validate_ticker(ticker: str) -> str:
    """Canonicalize a ticker or raise ``ValidationError``.

    Uppercased and trimmed; exchange suffixes are kept.
    """
    symbol = (ticker or "").strip().upper()
    if not symbol:
        raise ValidationError("Ticker is empty")
    if not any(c.isalpha() for c in symbol):
        raise ValidationError(f"Ticker '{symbol}' has no letters")
    if len(symbol) > MAX_TICKER_LENGTH:
        raise ValidationError(f"Ticker '{symbol}' is longer than {MAX_TICKER_LENGTH} characters")
    if _MUTUAL_FUND_RE.match(symbol):
        raise ValidationError(
            f"Ticker '{symbol}' looks like a mutual fund code that requires manual pricing"
        )
    return symbol


def trading_date(now: datetime) -> date:
    """Date of the last completed session as of ``now``.

    A weekday counts once ``MARKET_CLOSE_UTC`` has passed; before that the
    previous weekday is the latest close a provider can return.
    """
    day = now.date()
    if now.time() < MARKET_CLOSE_UTC:
        day -= timedelta(days=1)
    while day.weekday() >= 5:
        day -= timedelta(days=1)
    return day


def failure_kind_for(error: ProviderError) -> FailureKind:
    if error.kind == ProviderErrorKind.NOT_FOUND:
        return FailureKind.NOT_FOUND
    if error.kind == ProviderErrorKind.RATE_LIMITED:
        return FailureKind.RATE_LIMITED
    return FailureKind.API_ERROR


def _is_rate_limited(error: BaseException) -> bool:
    return isinstance(error, ProviderError) and error.kind == ProviderErrorKind.RATE_LIMITED


# =============================================================================
# FAILURE CACHE PERSISTENCE
# =============================================================================


class FailureCacheStore:
    """Mirrors the in-memory failure cache to ``ticker_fetch_failures``.

    Writes are best effort: a database error is logged and the in-memory
    record still applies.
    """

    def __init__(self, cache: FailureCache):
        self.cache = cache

    async def load(self) -> int:
        records = await fetch_failures_orm.load_live(datetime.now(UTC))
        loaded = self.cache.load(records)
        if loaded:
            logger.info(f"Loaded {loaded} live fetch failures")
        return loaded

    async def record(self, ticker: str, kind: FailureKind, message: str | None = None) -> FailureRecord:
        record = self.cache.record(ticker, kind, message)
        try:
            await fetch_failures_orm.upsert_failure(record)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to persist fetch failure for {ticker}: {e}")
        return record

    async def clear(self, ticker: str) -> None:
        self.cache.clear(ticker)
        try:
            await fetch_failures_orm.delete_failure(ticker)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to clear persisted fetch failure for {ticker}: {e}")

    async def sweep(self) -> int:
        removed = self.cache.sweep()
        try:
            await fetch_failures_orm.delete_expired(datetime.now(UTC))
        except SQLAlchemyError as e:
            logger.warning(f"Failed to sweep persisted fetch failures: {e}")
        return removed


# =============================================================================
# PRICE SERVICE
# =============================================================================


@dataclass(frozen=True)
class RefreshResult:
    ticker: str
    refreshed: bool
    rows_written: int = 0
    latest_date: date | None = None
    reason: str | None = None


class PriceService:
    """Refreshes and reads daily price series."""

    def __init__(
        self,
        provider: PriceProvider,
        failure_cache: FailureCache,
        rate_limiter: RateLimiter,
        clock: Callable[[], datetime] | None = None,
        retry_delays: Sequence[float] = RATE_LIMIT_DELAYS,
    ):
        self.provider = provider
        self.failure_cache = failure_cache
        self.failure_store = FailureCacheStore(failure_cache)
        self.rate_limiter = rate_limiter
        self._clock = clock or (lambda: datetime.now(UTC))
        self.retry_delays = tuple(retry_delays)

    async def is_fresh(self, ticker: str) -> bool:
        """True when stored data already covers the current trading date or
        was written within the last six hours."""
        latest = await prices_orm.get_latest_write(ticker)
        if latest is None:
            return False
        latest_date, written_at = latest
        now = self._clock()
        if latest_date >= trading_date(now):
            return True
        return written_at is not None and now - written_at < FRESH_WRITE_WINDOW

    async def refresh(self, ticker: str, lookback_days: int = DEFAULT_LOOKBACK_DAYS) -> RefreshResult:
        """
        Bring the stored series for ``ticker`` up to date.

        Args:
            ticker: Ticker symbol
            lookback_days: Days of history to request from the provider

        Returns:
            RefreshResult describing what happened

        Raises:
            ValidationError: Ticker is malformed or a mutual fund code
            CachedFailureError: A recent failure is still live; no provider call made
            ProviderError: Every provider failed (recorded in the failure cache)
            StorageError: The upsert failed
        """
        symbol = validate_ticker(ticker)

        if await self.is_fresh(symbol):
            logger.debug(f"Skipping {symbol}: stored prices are fresh")
            return RefreshResult(ticker=symbol, refreshed=False, reason="fresh")

        cached = self.failure_cache.check(symbol)
        if cached is not None:
            raise CachedFailureError(
                f"Ticker {symbol} is in failure cache ({cached.kind.value}) "
                f"until {cached.expires_at.isoformat()}",
                details={"ticker": symbol, "kind": cached.kind.value},
            )

        try:
            points = await self._fetch_with_retry(symbol, lookback_days)
        except ProviderError as e:
            kind = failure_kind_for(e)
            await self.failure_store.record(symbol, kind, e.message)
            logger.warning(f"Price fetch failed for {symbol} ({kind.value}): {e.message}")
            raise

        try:
            written = await prices_orm.upsert_prices(symbol, points)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to store prices for {symbol}: {e}") from e

        await self.failure_store.clear(symbol)
        logger.info(f"Refreshed {written} prices for {symbol}")
        return RefreshResult(
            ticker=symbol,
            refreshed=True,
            rows_written=written,
            latest_date=points[-1].date,
        )

    async def _fetch_with_retry(self, symbol: str, lookback_days: int) -> list[PricePoint]:
        """Fetch under a rate limiter permit; only rate limits are retried."""
        waits = [wait_fixed(delay) for delay in self.retry_delays] or [wait_fixed(0)]
        retrying = AsyncRetrying(
            stop=stop_after_attempt(len(self.retry_delays) + 1),
            wait=wait_chain(*waits),
            retry=retry_if_exception(_is_rate_limited),
            before_sleep=lambda state: logger.warning(
                f"Rate limited fetching {symbol}, retry {state.attempt_number}/{len(self.retry_delays)}"
            ),
            reraise=True,
        )
        return await retrying(self._fetch_once, symbol, lookback_days)

    async def _fetch_once(self, symbol: str, lookback_days: int) -> list[PricePoint]:
        async with self.rate_limiter.acquire():
            points = await self.provider.fetch_daily_history(symbol, lookback_days)
        if not points:
            raise ProviderError(ProviderErrorKind.NOT_FOUND, f"No prices returned for {symbol}")
        return points

    async def ensure_prices(self, ticker: str, lookback_days: int = DEFAULT_LOOKBACK_DAYS) -> None:
        """Refresh when stale; provider trouble is logged and stored data used."""
        try:
            await self.refresh(ticker, lookback_days)
        except (CachedFailureError, ProviderError) as e:
            logger.info(f"Using stored prices for {ticker}: {e.message}")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_history(self, ticker: str) -> list[PricePoint]:
        return await prices_orm.get_history(ticker)

    async def get_history_since(self, ticker: str, start: date) -> list[PricePoint]:
        return await prices_orm.get_history_since(ticker, start)

    async def get_window(self, ticker: str, days: int) -> list[PricePoint]:
        """Closes within the last ``days`` calendar days."""
        start = self._clock().date() - timedelta(days=days)
        return await prices_orm.get_history_since(ticker, start)

    async def get_recent(self, ticker: str, count: int) -> list[PricePoint]:
        """The last ``count`` stored closes, whatever calendar span they cover."""
        return await prices_orm.get_recent(ticker, count)

    async def get_latest_date(self, ticker: str) -> date | None:
        return await prices_orm.get_latest_date(ticker)

    async def get_held_tickers(self) -> list[str]:
        return await prices_orm.get_held_tickers()
