"""Alpha Vantage price provider."""

from __future__ import annotations

from datetime import date

import httpx

from analytics_engine.core.config import settings
from analytics_engine.core.exceptions import ProviderErrorKind
from analytics_engine.quant_engine.types import PricePoint

from .base import PriceProvider, TickerMatch, logger


COMPACT_MAX_DAYS = 100


class AlphaVantageProvider(PriceProvider):
    name = "alphavantage"
    base_url = "https://www.alphavantage.co"

    def __init__(
        self,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        super().__init__(client=client, timeout=timeout)
        self.api_key = api_key if api_key is not None else settings.alphavantage_api_key

    async def fetch_daily_history(self, ticker: str, days: int) -> list[PricePoint]:
        response = await self._get(
            "/query",
            params={
                "function": "TIME_SERIES_DAILY",
                "symbol": ticker,
                "outputsize": "compact" if days <= COMPACT_MAX_DAYS else "full",
                "apikey": self.api_key,
            },
        )
        body = self._json(response)

        # Free tier signals throttling through these fields
        if "Note" in body or "Information" in body:
            raise self._error(
                ProviderErrorKind.RATE_LIMITED, body.get("Note") or body.get("Information")
            )
        if "Error Message" in body:
            raise self._error(ProviderErrorKind.NOT_FOUND, body["Error Message"])

        series = body.get("Time Series (Daily)")
        if series is None:
            raise self._error(ProviderErrorKind.BAD_RESPONSE, "missing time series")

        try:
            points = sorted(
                (
                    PricePoint(date=date.fromisoformat(day), close=float(bar["4. close"]))
                    for day, bar in series.items()
                ),
                key=lambda p: p.date,
            )
        except (KeyError, ValueError, TypeError) as e:
            raise self._error(ProviderErrorKind.PARSE, f"bad daily bar: {e}") from e

        if days > 0 and len(points) > days:
            points = points[-days:]
        logger.debug(f"Alpha Vantage returned {len(points)} closes for {ticker}")
        return points

    async def search_by_keyword(self, keyword: str) -> list[TickerMatch]:
        response = await self._get(
            "/query",
            params={"function": "SYMBOL_SEARCH", "keywords": keyword, "apikey": self.api_key},
        )
        body = self._json(response)
        if "bestMatches" not in body:
            raise self._error(ProviderErrorKind.BAD_RESPONSE, "missing bestMatches")
        try:
            return [
                TickerMatch(
                    symbol=match["1. symbol"],
                    name=match["2. name"],
                    instrument_type=match["3. type"],
                    region=match["4. region"],
                    currency=match["8. currency"],
                    match_score=float(match["9. matchScore"]),
                )
                for match in body["bestMatches"]
            ]
        except (KeyError, ValueError) as e:
            raise self._error(ProviderErrorKind.PARSE, f"bad search match: {e}") from e
