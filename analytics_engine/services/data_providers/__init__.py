"""Price data providers - centralized external API access."""

from analytics_engine.core.config import settings

from .alphavantage import AlphaVantageProvider
from .base import PriceProvider, TickerMatch
from .multi import MultiProvider, is_canadian
from .twelvedata import TwelveDataProvider
from .yahoo import YahooProvider


def create_price_provider(name: str | None = None) -> PriceProvider:
    """Build the provider selected by ``PRICE_PROVIDER``.

    In ``multi`` mode providers without an API key are left out of the chain.
    """
    choice = (name or settings.price_provider).lower()
    if choice == "twelvedata":
        return TwelveDataProvider()
    if choice == "alphavantage":
        return AlphaVantageProvider()
    return MultiProvider(
        primary=TwelveDataProvider() if settings.twelvedata_api_key else None,
        fallback=AlphaVantageProvider() if settings.alphavantage_api_key else None,
        yahoo=YahooProvider(),
    )


__all__ = [
    "AlphaVantageProvider",
    "MultiProvider",
    "PriceProvider",
    "TickerMatch",
    "TwelveDataProvider",
    "YahooProvider",
    "create_price_provider",
    "is_canadian",
]
