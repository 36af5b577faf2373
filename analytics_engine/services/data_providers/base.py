"""
Price provider capability shared by every external data source.

Providers return daily closes oldest first and raise ``ProviderError`` with a
``ProviderErrorKind`` so callers can tell rate limits and unknown tickers
apart from transient failures.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from analytics_engine.core.config import settings
from analytics_engine.core.exceptions import ProviderError, ProviderErrorKind
from analytics_engine.core.logging import get_logger
from analytics_engine.quant_engine.types import PricePoint


logger = get_logger("services.data_providers")


@dataclass(frozen=True)
class TickerMatch:
    """One result of a keyword search."""
    symbol: str
    name: str
    instrument_type: str
    region: str
    currency: str
    match_score: float


class PriceProvider(ABC):
    """Base class for daily price providers.

    Subclasses share one ``httpx.AsyncClient`` per instance. Pass ``client``
    to inject a transport (tests use ``httpx.MockTransport``).
    """

    name: str = "provider"
    base_url: str = ""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float | None = None):
        self._client = client
        self._timeout = timeout or settings.external_api_timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                headers={"User-Agent": "Mozilla/5.0 (compatible; analytics-engine/1.0)"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        """GET with transport failures classified as NETWORK."""
        try:
            return await self._get_client().get(url, params=params)
        except httpx.TimeoutException as e:
            raise ProviderError(
                ProviderErrorKind.NETWORK, f"{self.name} request timed out: {e}", self.name
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(
                ProviderErrorKind.NETWORK, f"{self.name} request failed: {e}", self.name
            ) from e

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                ProviderErrorKind.PARSE, f"{self.name} returned invalid JSON", self.name
            ) from e

    def _error(self, kind: ProviderErrorKind, message: str) -> ProviderError:
        return ProviderError(kind, message, self.name)

    @abstractmethod
    async def fetch_daily_history(self, ticker: str, days: int) -> list[PricePoint]:
        """Daily closes for roughly the last ``days`` days, oldest first."""

    @abstractmethod
    async def search_by_keyword(self, keyword: str) -> list[TickerMatch]:
        """Ticker candidates for a free-text keyword."""
