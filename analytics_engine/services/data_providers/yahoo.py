"""Yahoo Finance provider backed by yfinance. Needs no API key.

yfinance is blocking, so every call runs on a small dedicated thread pool.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import pandas as pd
import yfinance as yf
from yfinance.exceptions import YFException, YFRateLimitError, YFTickerMissingError

from analytics_engine.core.exceptions import ProviderError, ProviderErrorKind
from analytics_engine.quant_engine.types import PricePoint

from .base import PriceProvider, TickerMatch, logger


# Single executor for all blocking yfinance calls
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="yfinance")

# (max days, period parameter)
_PERIODS: tuple[tuple[int, str], ...] = (
    (5, "5d"),
    (30, "1mo"),
    (90, "3mo"),
    (180, "6mo"),
    (365, "1y"),
    (730, "2y"),
    (1825, "5y"),
)


def range_for_days(days: int) -> str:
    """Smallest yfinance period covering ``days``."""
    for limit, value in _PERIODS:
        if days <= limit:
            return value
    return "max"


def frame_to_points(df: pd.DataFrame | None) -> list[PricePoint]:
    """Daily closes from a history frame, one per calendar date, oldest first."""
    if df is None or df.empty:
        return []

    # Handle MultiIndex columns (newer yfinance)
    if isinstance(df.columns, pd.MultiIndex):
        df = df.copy()
        df.columns = df.columns.get_level_values(0)
    if "Close" not in df.columns:
        return []

    closes = df["Close"].dropna()
    by_date = {}
    for ts, close in closes.items():
        by_date[pd.Timestamp(ts).date()] = float(close)
    return [PricePoint(date=d, close=c) for d, c in sorted(by_date.items())]


class YahooProvider(PriceProvider):
    name = "yahoo"

    def _classify(self, symbol: str, e: Exception) -> ProviderError:
        if isinstance(e, YFRateLimitError):
            return self._error(ProviderErrorKind.RATE_LIMITED, str(e))
        if isinstance(e, YFTickerMissingError):
            return self._error(ProviderErrorKind.NOT_FOUND, str(e))
        if isinstance(e, YFException):
            return self._error(ProviderErrorKind.BAD_RESPONSE, str(e))
        if isinstance(e, OSError):
            return self._error(ProviderErrorKind.NETWORK, f"yahoo request failed for {symbol}: {e}")
        return self._error(ProviderErrorKind.BAD_RESPONSE, f"yahoo failed for {symbol}: {e}")

    def _fetch_history_sync(self, ticker: str, period: str) -> pd.DataFrame:
        """Fetch daily history from yfinance (blocking)."""
        return yf.Ticker(ticker).history(
            period=period,
            interval="1d",
            auto_adjust=True,
            raise_errors=True,
            timeout=self._timeout,
        )

    def _search_sync(self, keyword: str, max_results: int) -> list[dict[str, Any]]:
        """Search for tickers (blocking)."""
        search = yf.Search(keyword, max_results=max_results, news_count=0)
        return list(getattr(search, "quotes", None) or [])

    async def fetch_daily_history(self, ticker: str, days: int) -> list[PricePoint]:
        loop = asyncio.get_event_loop()
        try:
            df = await loop.run_in_executor(
                _executor, self._fetch_history_sync, ticker, range_for_days(days)
            )
        except Exception as e:
            raise self._classify(ticker, e) from e

        points = frame_to_points(df)
        if not points:
            raise self._error(ProviderErrorKind.NOT_FOUND, f"no closes for {ticker}")
        logger.debug(f"Yahoo returned {len(points)} closes for {ticker}")
        return points

    async def search_by_keyword(self, keyword: str) -> list[TickerMatch]:
        loop = asyncio.get_event_loop()
        try:
            quotes = await loop.run_in_executor(_executor, self._search_sync, keyword, 10)
        except Exception as e:
            raise self._classify(keyword, e) from e

        return [
            TickerMatch(
                symbol=quote["symbol"],
                name=quote.get("longname") or quote.get("shortname") or "",
                instrument_type=quote.get("quoteType", ""),
                region=quote.get("exchange", ""),
                currency=quote.get("currency", ""),
                match_score=float(quote.get("score") or 0.0),
            )
            for quote in quotes
            if quote.get("symbol")
        ]
