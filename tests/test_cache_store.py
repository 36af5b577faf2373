"""Tests for the TTL-bound analytics cache."""

from __future__ import annotations

from datetime import date, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import numpy as np
import pytest

from analytics_engine.cache.store import CACHE_SPECS, CacheKind, CacheStore
from analytics_engine.database.orm import PortfolioOptimizationCache, RollingBetaCache


class FakeCacheTable:
    """In-memory stand-in for cache_orm keyed by (model, key columns)."""

    def __init__(self):
        self.rows: dict = {}

    @staticmethod
    def _id(model, key):
        return model, tuple(sorted(key.items()))

    async def get_entry(self, model, key):
        return self.rows.get(self._id(model, key))

    async def upsert_entry(self, model, key, payload, calculated_at, expires_at):
        self.rows[self._id(model, key)] = SimpleNamespace(
            payload=payload, calculated_at=calculated_at, expires_at=expires_at
        )

    async def delete_entry(self, model, key):
        doomed = [
            k for k in self.rows
            if k[0] is model and all(item in k[1] for item in key.items())
        ]
        for k in doomed:
            del self.rows[k]
        return len(doomed)

    async def delete_expired(self, model, now):
        doomed = [k for k, row in self.rows.items() if k[0] is model and row.expires_at <= now]
        for k in doomed:
            del self.rows[k]
        return len(doomed)


@pytest.fixture
def table():
    fake = FakeCacheTable()
    with patch("analytics_engine.cache.store.cache_orm", fake):
        yield fake


class TestCacheSpecs:
    """Per-kind TTLs and key columns."""

    def test_ttls(self):
        assert CACHE_SPECS[CacheKind.CORRELATIONS].ttl == timedelta(hours=6)
        assert CACHE_SPECS[CacheKind.ROLLING_BETA].ttl == timedelta(hours=24)
        assert CACHE_SPECS[CacheKind.EXPLANATION].ttl == timedelta(hours=1)

    def test_every_kind_has_a_table(self):
        assert set(CACHE_SPECS) == set(CacheKind)
        assert CACHE_SPECS[CacheKind.OPTIMIZATION].model is PortfolioOptimizationCache


class TestCacheStore:
    """get / put / invalidate / sweep."""

    @pytest.mark.asyncio
    async def test_put_then_get(self, table, clock):
        store = CacheStore(clock=clock)
        expires = await store.put(CacheKind.OPTIMIZATION, {"portfolio_id": 1}, {"score": 7})
        assert expires == clock() + timedelta(hours=6)
        assert await store.get(CacheKind.OPTIMIZATION, {"portfolio_id": 1}) == {"score": 7}
        assert await store.is_fresh(CacheKind.OPTIMIZATION, {"portfolio_id": 1})

    @pytest.mark.asyncio
    async def test_expired_entry_is_a_miss(self, table, clock):
        store = CacheStore(clock=clock)
        await store.put(CacheKind.CORRELATIONS, {"portfolio_id": 1, "days": 90}, {"pairs": []})
        clock.advance(hours=6)
        assert await store.get(CacheKind.CORRELATIONS, {"portfolio_id": 1, "days": 90}) is None

    @pytest.mark.asyncio
    async def test_custom_ttl(self, table, clock):
        store = CacheStore(clock=clock)
        key = {"portfolio_id": 1}
        await store.put(CacheKind.NEWS, key, {"items": []}, ttl=timedelta(minutes=5))
        clock.advance(minutes=6)
        assert await store.get(CacheKind.NEWS, key) is None

    @pytest.mark.asyncio
    async def test_payload_is_json_normalized(self, table, clock):
        """Dates and numpy scalars are stored as plain JSON values."""
        store = CacheStore(clock=clock)
        key = {"ticker": "AAPL", "benchmark": "SPY", "days": 180}
        await store.put(CacheKind.ROLLING_BETA, key, {"as_of": date(2026, 10, 14), "beta": np.float64(1.25)})
        cached = await store.get(CacheKind.ROLLING_BETA, key)
        assert cached == {"as_of": "2026-10-14", "beta": 1.25}

    @pytest.mark.asyncio
    async def test_key_validation(self, table):
        store = CacheStore()
        with pytest.raises(ValueError):
            await store.get(CacheKind.CORRELATIONS, {"portfolio_id": 1})
        with pytest.raises(ValueError):
            await store.put(CacheKind.OPTIMIZATION, {"portfolio_id": 1, "bogus": 2}, {})

    @pytest.mark.asyncio
    async def test_partial_invalidate(self, table, clock):
        """Invalidation by ticker drops every benchmark and window for it."""
        store = CacheStore(clock=clock)
        for days in (90, 180):
            await store.put(CacheKind.ROLLING_BETA, {"ticker": "AAPL", "benchmark": "SPY", "days": days}, {})
        await store.put(CacheKind.ROLLING_BETA, {"ticker": "MSFT", "benchmark": "SPY", "days": 90}, {})

        assert await store.invalidate(CacheKind.ROLLING_BETA, {"ticker": "AAPL"}) == 2
        assert len(table.rows) == 1

    @pytest.mark.asyncio
    async def test_sweep_all(self, table, clock):
        store = CacheStore(clock=clock)
        await store.put(CacheKind.EXPLANATION, {"symbol": "AAPL", "narrative_type": "risk"}, {})
        await store.put(CacheKind.ROLLING_BETA, {"ticker": "AAPL", "benchmark": "SPY", "days": 90}, {})
        clock.advance(hours=2)
        removed = await store.sweep_all()
        assert removed["explanation"] == 1
        assert removed["rolling_beta"] == 0
        assert set(removed) == {kind.value for kind in CacheKind}
        assert list(table.rows)[0][0] is RollingBetaCache


class TestCacheOrmWiring:
    """The store passes key columns in the declared order."""

    @pytest.mark.asyncio
    async def test_key_order(self, clock):
        fake = MagicMock()
        fake.upsert_entry = AsyncMock()
        with patch("analytics_engine.cache.store.cache_orm", fake):
            await CacheStore(clock=clock).put(
                CacheKind.DOWNSIDE_RISK, {"benchmark": "SPY", "days": 90, "portfolio_id": 3}, {}
            )
        key = fake.upsert_entry.await_args.args[1]
        assert list(key) == ["portfolio_id", "days", "benchmark"]
