"""
Ordered provider chain with Canadian routing.

Canadian tickers (``.TO``/``.V`` suffix or a curated set of TSX names) go to
Yahoo first, normalized to ``.TO``. Everything else tries Twelve Data, then
Alpha Vantage, then Yahoo with exchange-suffix variants.
"""

from __future__ import annotations

from dataclasses import dataclass

from analytics_engine.core.exceptions import ProviderError, ProviderErrorKind
from analytics_engine.quant_engine.types import PricePoint

from .base import PriceProvider, TickerMatch, logger


CANADIAN_SUFFIXES = (".TO", ".V")

# TSX listings commonly held without a suffix in brokerage exports
CANADIAN_TICKERS = frozenset({
    "ATD", "BCE", "BMO", "BNS", "CM", "CNQ", "CNR", "CP", "ENB", "FTS",
    "L", "NA", "POW", "RY", "SU", "TD", "TRP", "VFV", "VEQT", "XEQT",
    "XIC", "XIU", "ZAG", "ZSP",
})


def is_canadian(ticker: str) -> bool:
    symbol = ticker.upper()
    return symbol.endswith(CANADIAN_SUFFIXES) or symbol in CANADIAN_TICKERS


def yahoo_variants(ticker: str) -> list[str]:
    """Symbols to try on Yahoo when the ticker carries no exchange suffix."""
    symbol = ticker.upper()
    if "." in symbol:
        return [symbol]
    return [f"{symbol}.TO", f"{symbol}.V", symbol]


@dataclass
class ChainStep:
    """A provider paired with the symbols it should be asked for."""
    provider: PriceProvider
    symbols: list[str]


class MultiProvider(PriceProvider):
    """Tries providers in order until one returns data.

    When every step fails the raised kind is NOT_FOUND if all of them said
    not found, RATE_LIMITED if any of them was throttled, else the last
    error's kind.
    """

    name = "multi"

    def __init__(
        self,
        primary: PriceProvider | None,
        fallback: PriceProvider | None,
        yahoo: PriceProvider,
    ):
        super().__init__()
        self.primary = primary
        self.fallback = fallback
        self.yahoo = yahoo

    def plan(self, ticker: str) -> list[ChainStep]:
        symbol = ticker.upper()
        steps: list[ChainStep] = []
        if is_canadian(symbol):
            yahoo_symbol = symbol if symbol.endswith(CANADIAN_SUFFIXES) else f"{symbol}.TO"
            steps.append(ChainStep(self.yahoo, [yahoo_symbol]))
            for provider in (self.primary, self.fallback):
                if provider is not None:
                    steps.append(ChainStep(provider, [symbol]))
            return steps

        for provider in (self.primary, self.fallback):
            if provider is not None:
                steps.append(ChainStep(provider, [symbol]))
        steps.append(ChainStep(self.yahoo, yahoo_variants(symbol)))
        return steps

    async def fetch_daily_history(self, ticker: str, days: int) -> list[PricePoint]:
        errors: list[ProviderError] = []
        for step in self.plan(ticker):
            for symbol in step.symbols:
                try:
                    points = await step.provider.fetch_daily_history(symbol, days)
                except ProviderError as e:
                    logger.info(f"{step.provider.name} failed for {symbol}: {e.message}")
                    errors.append(e)
                    continue
                if points:
                    if symbol != ticker.upper():
                        logger.info(f"Fetched {ticker} as {symbol} from {step.provider.name}")
                    return points

        raise self._combine(ticker, errors)

    def _combine(self, ticker: str, errors: list[ProviderError]) -> ProviderError:
        if not errors or all(e.kind == ProviderErrorKind.NOT_FOUND for e in errors):
            kind = ProviderErrorKind.NOT_FOUND
        elif any(e.kind == ProviderErrorKind.RATE_LIMITED for e in errors):
            kind = ProviderErrorKind.RATE_LIMITED
        else:
            kind = errors[-1].kind
        return self._error(kind, f"All providers failed for {ticker}")

    async def search_by_keyword(self, keyword: str) -> list[TickerMatch]:
        for provider in (self.primary, self.fallback, self.yahoo):
            if provider is None:
                continue
            try:
                matches = await provider.search_by_keyword(keyword)
            except ProviderError as e:
                logger.warning(f"{provider.name} search failed for '{keyword}': {e.message}")
                continue
            if matches:
                return matches
        return []

    async def aclose(self) -> None:
        for provider in (self.primary, self.fallback, self.yahoo):
            if provider is not None:
                await provider.aclose()
