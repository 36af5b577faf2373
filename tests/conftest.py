"""Pytest configuration and fixtures."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import numpy as np
import pytest
from fastapi.testclient import TestClient

from analytics_engine.quant_engine.types import PricePoint


pytest_plugins = ["pytest_asyncio"]


FIXED_NOW = datetime(2026, 10, 14, 15, 30, tzinfo=UTC)  # a Wednesday


def make_points(closes, start: date = date(2025, 1, 1)) -> list[PricePoint]:
    """Consecutive calendar-day closes starting at ``start``."""
    return [PricePoint(date=start + timedelta(days=i), close=float(c)) for i, c in enumerate(closes)]


def make_trading_points(closes, end: date) -> list[PricePoint]:
    """Weekday-only closes, the last one on ``end``."""
    days: list[date] = []
    day = end
    while len(days) < len(closes):
        if day.weekday() < 5:
            days.append(day)
        day -= timedelta(days=1)
    return [PricePoint(date=d, close=float(c)) for d, c in zip(reversed(days), closes)]


def random_walk(n: int, seed: int = 42, drift: float = 0.0005, vol: float = 0.01, start: float = 100.0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    returns = rng.normal(drift, vol, n - 1)
    return start * np.exp(np.concatenate([[0.0], np.cumsum(returns)]))


class MutableClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def sample_closes() -> np.ndarray:
    """Deterministic 260-day random walk."""
    return random_walk(260)


@pytest.fixture
def sample_prices(sample_closes) -> list[PricePoint]:
    return make_points(sample_closes)


@pytest.fixture
def client():
    """Synchronous test client without the startup lifespan (no database, no scheduler)."""
    from analytics_engine.api.app import create_api_app

    app = create_api_app(use_lifespan=False)
    with TestClient(app) as test_client:
        yield test_client
