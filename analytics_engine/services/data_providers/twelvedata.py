"""Twelve Data price provider."""

from __future__ import annotations

from datetime import date

import httpx

from analytics_engine.core.config import settings
from analytics_engine.core.exceptions import ProviderErrorKind
from analytics_engine.quant_engine.types import PricePoint

from .base import PriceProvider, TickerMatch, logger


MAX_OUTPUT_SIZE = 5000


class TwelveDataProvider(PriceProvider):
    name = "twelvedata"
    base_url = "https://api.twelvedata.com"

    def __init__(
        self,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        super().__init__(client=client, timeout=timeout)
        self.api_key = api_key if api_key is not None else settings.twelvedata_api_key

    async def fetch_daily_history(self, ticker: str, days: int) -> list[PricePoint]:
        response = await self._get(
            "/time_series",
            params={
                "symbol": ticker,
                "interval": "1day",
                "outputsize": min(days, MAX_OUTPUT_SIZE),
                "apikey": self.api_key,
            },
        )
        if response.status_code == 429:
            raise self._error(ProviderErrorKind.RATE_LIMITED, "HTTP 429")
        body = self._json(response)

        if body.get("status") != "ok":
            message = body.get("message") or f"API returned status: {body.get('status')}"
            if "API rate limit" in message or "credits" in message:
                raise self._error(ProviderErrorKind.RATE_LIMITED, message)
            raise self._error(ProviderErrorKind.NOT_FOUND, message)

        values = body.get("values")
        if values is None:
            raise self._error(ProviderErrorKind.BAD_RESPONSE, "missing values in response")

        points = []
        try:
            for value in values:
                # "YYYY-MM-DD" or "YYYY-MM-DD HH:MM:SS"
                day = date.fromisoformat(value["datetime"].split(" ")[0])
                points.append(PricePoint(date=day, close=float(value["close"])))
        except (KeyError, ValueError, TypeError) as e:
            raise self._error(ProviderErrorKind.PARSE, f"bad time series row: {e}") from e

        # Newest first on the wire
        points.reverse()
        logger.debug(f"Twelve Data returned {len(points)} closes for {ticker}")
        return points

    async def search_by_keyword(self, keyword: str) -> list[TickerMatch]:
        response = await self._get(
            "/symbol_search",
            params={"symbol": keyword, "outputsize": 30, "apikey": self.api_key},
        )
        body = self._json(response)
        if body.get("status") != "ok":
            raise self._error(
                ProviderErrorKind.BAD_RESPONSE, f"API returned status: {body.get('status')}"
            )
        return [
            TickerMatch(
                symbol=match.get("symbol", ""),
                name=match.get("instrument_name", ""),
                instrument_type=match.get("instrument_type", ""),
                region=match.get("country", ""),
                currency=match.get("currency", ""),
                # Results are ranked; first is best
                match_score=1.0 - idx * 0.05,
            )
            for idx, match in enumerate(body.get("data", []))
        ]
