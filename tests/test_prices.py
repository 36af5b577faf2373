"""Tests for the price ingestion service.

The repositories are replaced with in-memory fakes, so no database is needed.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from analytics_engine.core.exceptions import (
    CachedFailureError,
    ProviderError,
    ProviderErrorKind,
    StorageError,
    ValidationError,
)
from analytics_engine.core.failure_cache import FailureCache, FailureKind
from analytics_engine.core.rate_limiter import RateLimiter
from analytics_engine.quant_engine.types import PricePoint
from analytics_engine.services.prices import PriceService, trading_date, validate_ticker

from conftest import FIXED_NOW, make_points, make_trading_points, random_walk


class FakePriceStore:
    """In-memory stand-in for prices_orm keyed by (ticker, date)."""

    def __init__(self, clock):
        self.clock = clock
        self.rows: dict[tuple[str, date], tuple[float, datetime]] = {}

    async def upsert_prices(self, ticker, points):
        for p in points:
            self.rows[(ticker, p.date)] = (p.close, self.clock())
        return len(points)

    async def get_latest_write(self, ticker):
        mine = [(d, written) for (t, d), (_, written) in self.rows.items() if t == ticker]
        if not mine:
            return None
        latest = max(d for d, _ in mine)
        return latest, max(written for _, written in mine)

    async def get_history(self, ticker):
        return sorted(
            (PricePoint(d, close) for (t, d), (close, _) in self.rows.items() if t == ticker),
            key=lambda p: p.date,
        )

    async def get_history_since(self, ticker, start):
        return [p for p in await self.get_history(ticker) if p.date >= start]

    async def get_recent(self, ticker, limit):
        return (await self.get_history(ticker))[-limit:]


def _points_ending(day: date, n: int = 5) -> list[PricePoint]:
    return make_points([100.0 + i for i in range(n)], start=day - timedelta(days=n - 1))


@pytest.fixture
def store(clock):
    return FakePriceStore(clock)


@pytest.fixture
def failures_orm():
    fake = MagicMock()
    fake.upsert_failure = AsyncMock()
    fake.delete_failure = AsyncMock(return_value=True)
    fake.load_live = AsyncMock(return_value=[])
    fake.delete_expired = AsyncMock(return_value=0)
    return fake


@pytest.fixture
def provider():
    fake = MagicMock()
    fake.fetch_daily_history = AsyncMock(return_value=_points_ending(FIXED_NOW.date()))
    return fake


@pytest.fixture
def service(store, failures_orm, provider, clock):
    with patch("analytics_engine.services.prices.prices_orm", store), patch(
        "analytics_engine.services.prices.fetch_failures_orm", failures_orm
    ):
        yield PriceService(
            provider,
            FailureCache(clock=clock),
            RateLimiter("test", max_concurrent=3, requests_per_minute=60_000),
            clock=clock,
            retry_delays=(0.0, 0.0, 0.0),
        )


# =============================================================================
# Validation
# =============================================================================


class TestValidateTicker:
    """Ticker canonicalization."""

    def test_normalizes(self):
        assert validate_ticker("  aapl ") == "AAPL"
        assert validate_ticker("shop.to") == "SHOP.TO"

    @pytest.mark.parametrize("bad", ["", "   ", "1234", "ABCDEFGHIJK", "FID1234", "rbf556"])
    def test_rejects(self, bad):
        with pytest.raises(ValidationError):
            validate_ticker(bad)

    def test_fund_prefix_needs_digits(self):
        """A real ticker starting with a fund prefix is still allowed."""
        assert validate_ticker("BIPC") == "BIPC"

    def test_trading_date_rolls_back_weekends(self):
        saturday = datetime(2026, 10, 17, 12, 0)
        assert trading_date(saturday) == date(2026, 10, 16)

    def test_trading_date_waits_for_close(self):
        """A weekday's session only counts once the market has closed."""
        assert trading_date(FIXED_NOW) == date(2026, 10, 13)
        assert trading_date(datetime(2026, 10, 14, 21, 0)) == date(2026, 10, 14)
        monday_morning = datetime(2026, 10, 12, 9, 0)
        assert trading_date(monday_morning) == date(2026, 10, 9)


# =============================================================================
# Refresh
# =============================================================================


class TestRefresh:
    """Freshness, failure cache, retries and storage."""

    @pytest.mark.asyncio
    async def test_ingest_then_read(self, service, provider):
        """Refreshed closes are readable oldest first."""
        result = await service.refresh("aapl")
        assert result.refreshed is True
        assert result.rows_written == 5
        assert result.latest_date == FIXED_NOW.date()

        history = await service.get_history("AAPL")
        assert [p.close for p in history] == [100.0, 101.0, 102.0, 103.0, 104.0]
        provider.fetch_daily_history.assert_awaited_once_with("AAPL", 365)

    @pytest.mark.asyncio
    async def test_fresh_data_skips_provider(self, service, provider):
        await service.refresh("AAPL")
        result = await service.refresh("AAPL")
        assert result.refreshed is False
        assert result.reason == "fresh"
        assert provider.fetch_daily_history.await_count == 1

    @pytest.mark.asyncio
    async def test_recent_write_counts_as_fresh(self, service, store, clock):
        """Data written under six hours ago is fresh even if the last close is older."""
        await store.upsert_prices("MSFT", _points_ending(FIXED_NOW.date() - timedelta(days=3)))
        clock.advance(hours=5)
        assert await service.is_fresh("MSFT") is True
        clock.advance(hours=2)
        assert await service.is_fresh("MSFT") is False

    @pytest.mark.asyncio
    async def test_overnight_refresh_is_fresh_before_close(self, service, store, clock):
        """Yesterday's close written at 02:00 still covers a 17:00 run."""
        clock.now = datetime(2026, 10, 14, 2, 0, tzinfo=FIXED_NOW.tzinfo)
        await store.upsert_prices("AAPL", _points_ending(date(2026, 10, 13)))
        clock.now = datetime(2026, 10, 14, 17, 0, tzinfo=FIXED_NOW.tzinfo)

        assert await service.is_fresh("AAPL") is True
        clock.advance(hours=4)
        assert await service.is_fresh("AAPL") is False

    @pytest.mark.asyncio
    async def test_not_found_is_cached(self, service, provider, failures_orm):
        """A NOT_FOUND failure suppresses the next attempt without a provider call."""
        provider.fetch_daily_history.side_effect = ProviderError(
            ProviderErrorKind.NOT_FOUND, "No data found"
        )
        with pytest.raises(ProviderError):
            await service.refresh("ZZZZ")

        record = service.failure_cache.check("ZZZZ")
        assert record.kind is FailureKind.NOT_FOUND
        failures_orm.upsert_failure.assert_awaited_once()

        with pytest.raises(CachedFailureError):
            await service.refresh("ZZZZ")
        assert provider.fetch_daily_history.await_count == 1

    @pytest.mark.asyncio
    async def test_cached_failure_expires(self, service, provider, clock):
        provider.fetch_daily_history.side_effect = ProviderError(ProviderErrorKind.NOT_FOUND)
        with pytest.raises(ProviderError):
            await service.refresh("ZZZZ")

        clock.advance(hours=25)
        provider.fetch_daily_history.side_effect = None
        result = await service.refresh("ZZZZ")
        assert result.refreshed is True
        assert service.failure_cache.check("ZZZZ") is None

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, service, provider):
        provider.fetch_daily_history.side_effect = [
            ProviderError(ProviderErrorKind.RATE_LIMITED, "HTTP 429"),
            _points_ending(FIXED_NOW.date()),
        ]
        result = await service.refresh("AAPL")
        assert result.refreshed is True
        assert provider.fetch_daily_history.await_count == 2

    @pytest.mark.asyncio
    async def test_rate_limit_retries_exhausted(self, service, provider):
        """Three retries after the first attempt, then a RATE_LIMITED failure is cached."""
        provider.fetch_daily_history.side_effect = ProviderError(
            ProviderErrorKind.RATE_LIMITED, "HTTP 429"
        )
        with pytest.raises(ProviderError) as exc_info:
            await service.refresh("AAPL")
        assert exc_info.value.kind is ProviderErrorKind.RATE_LIMITED
        assert provider.fetch_daily_history.await_count == 4
        assert service.failure_cache.check("AAPL").kind is FailureKind.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self, service, provider):
        provider.fetch_daily_history.side_effect = ProviderError(ProviderErrorKind.NETWORK, "timeout")
        with pytest.raises(ProviderError):
            await service.refresh("AAPL")
        assert provider.fetch_daily_history.await_count == 1
        assert service.failure_cache.check("AAPL").kind is FailureKind.API_ERROR

    @pytest.mark.asyncio
    async def test_empty_response_is_not_found(self, service, provider):
        provider.fetch_daily_history.return_value = []
        with pytest.raises(ProviderError) as exc_info:
            await service.refresh("AAPL")
        assert exc_info.value.kind is ProviderErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_storage_failure(self, service, store):
        store.upsert_prices = AsyncMock(side_effect=SQLAlchemyError("connection lost"))
        with pytest.raises(StorageError):
            await service.refresh("AAPL")

    @pytest.mark.asyncio
    async def test_failure_persistence_is_best_effort(self, service, provider, failures_orm):
        """A database error while mirroring a failure does not mask the provider error."""
        failures_orm.upsert_failure.side_effect = SQLAlchemyError("down")
        provider.fetch_daily_history.side_effect = ProviderError(ProviderErrorKind.NOT_FOUND)
        with pytest.raises(ProviderError):
            await service.refresh("ZZZZ")
        assert service.failure_cache.check("ZZZZ") is not None

    @pytest.mark.asyncio
    async def test_invalid_ticker_makes_no_call(self, service, provider):
        with pytest.raises(ValidationError):
            await service.refresh("FID1234")
        provider.fetch_daily_history.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ensure_prices_swallows_provider_errors(self, service, provider):
        provider.fetch_daily_history.side_effect = ProviderError(ProviderErrorKind.NOT_FOUND)
        await service.ensure_prices("ZZZZ")
        await service.ensure_prices("ZZZZ")
        assert provider.fetch_daily_history.await_count == 1


class TestReads:
    """Window reads."""

    @pytest.mark.asyncio
    async def test_get_window(self, service, store):
        today = FIXED_NOW.date()
        await store.upsert_prices("SPY", _points_ending(today, n=40))
        window = await service.get_window("SPY", 10)
        assert window[0].date == today - timedelta(days=10)
        assert window[-1].date == today

    @pytest.mark.asyncio
    async def test_get_recent_counts_trading_days(self, service, store):
        """Forty weekday closes span far more than forty calendar days."""
        yesterday = FIXED_NOW.date() - timedelta(days=1)
        await store.upsert_prices("SPY", make_trading_points(random_walk(60), end=yesterday))

        assert len(await service.get_window("SPY", 40)) < 30
        recent = await service.get_recent("SPY", 31)
        assert len(recent) == 31
        assert recent[-1].date == yesterday
