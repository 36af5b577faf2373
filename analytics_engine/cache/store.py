"""TTL-bound artifact cache backed by one PostgreSQL table per kind."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from analytics_engine.core.logging import get_logger
from analytics_engine.database.orm import (
    BetaForecastCache,
    CacheEntryMixin,
    DownsideRiskCache,
    ExplanationCache,
    LongTermGuidanceCache,
    PortfolioCorrelationsCache,
    PortfolioNewsCache,
    PortfolioOptimizationCache,
    RollingBetaCache,
)
from analytics_engine.repositories import cache_orm


logger = get_logger("cache.store")


class CacheKind(str, Enum):
    CORRELATIONS = "correlations"
    OPTIMIZATION = "optimization"
    ROLLING_BETA = "rolling_beta"
    DOWNSIDE_RISK = "downside_risk"
    NEWS = "news"
    EXPLANATION = "explanation"
    LONG_TERM_GUIDANCE = "long_term_guidance"
    BETA_FORECAST = "beta_forecast"


@dataclass(frozen=True)
class CacheSpec:
    """Table, key columns and default TTL of a cache kind."""
    model: type[CacheEntryMixin]
    key_columns: tuple[str, ...]
    ttl: timedelta


CACHE_SPECS: dict[CacheKind, CacheSpec] = {
    CacheKind.CORRELATIONS: CacheSpec(
        PortfolioCorrelationsCache, ("portfolio_id", "days"), timedelta(hours=6)
    ),
    CacheKind.OPTIMIZATION: CacheSpec(
        PortfolioOptimizationCache, ("portfolio_id",), timedelta(hours=6)
    ),
    CacheKind.ROLLING_BETA: CacheSpec(
        RollingBetaCache, ("ticker", "benchmark", "days"), timedelta(hours=24)
    ),
    CacheKind.DOWNSIDE_RISK: CacheSpec(
        DownsideRiskCache, ("portfolio_id", "days", "benchmark"), timedelta(hours=6)
    ),
    CacheKind.NEWS: CacheSpec(PortfolioNewsCache, ("portfolio_id",), timedelta(hours=24)),
    CacheKind.EXPLANATION: CacheSpec(
        ExplanationCache, ("symbol", "narrative_type"), timedelta(hours=1)
    ),
    CacheKind.LONG_TERM_GUIDANCE: CacheSpec(
        LongTermGuidanceCache,
        ("portfolio_id", "goal", "horizon_years", "risk_tolerance"),
        timedelta(hours=1),
    ),
    CacheKind.BETA_FORECAST: CacheSpec(
        BetaForecastCache, ("ticker", "benchmark", "days_ahead", "method"), timedelta(hours=24)
    ),
}


def _serialize(payload: Any) -> Any:
    """Round-trip through JSON so dates and numpy scalars store as plain values."""
    return json.loads(json.dumps(payload, default=str))


class CacheStore:
    """
    Uniform get/put over the cache tables.

    ``get`` returns a payload only while ``expires_at`` is in the future;
    ``put`` stamps ``calculated_at`` and ``expires_at`` from the kind's TTL.

    Usage:
        store = CacheStore()
        await store.put(CacheKind.OPTIMIZATION, {"portfolio_id": 1}, payload)
        cached = await store.get(CacheKind.OPTIMIZATION, {"portfolio_id": 1})
    """

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or (lambda: datetime.now(UTC))

    @staticmethod
    def _key(kind: CacheKind, key: dict[str, Any], partial: bool = False) -> dict[str, Any]:
        spec = CACHE_SPECS[kind]
        unknown = set(key) - set(spec.key_columns)
        if unknown:
            raise ValueError(f"Unknown key columns for {kind.value} cache: {sorted(unknown)}")
        if not partial and set(key) != set(spec.key_columns):
            raise ValueError(
                f"{kind.value} cache key needs {list(spec.key_columns)}, got {sorted(key)}"
            )
        return {column: key[column] for column in spec.key_columns if column in key}

    async def get(self, kind: CacheKind, key: dict[str, Any]) -> Any | None:
        row = await cache_orm.get_entry(CACHE_SPECS[kind].model, self._key(kind, key))
        if row is None or row.expires_at <= self._clock():
            logger.debug(f"Cache miss: {kind.value} {key}")
            return None
        logger.debug(f"Cache hit: {kind.value} {key}")
        return row.payload

    async def put(
        self,
        kind: CacheKind,
        key: dict[str, Any],
        payload: Any,
        ttl: timedelta | None = None,
    ) -> datetime:
        """Store ``payload`` and return its expiry."""
        now = self._clock()
        expires_at = now + (ttl or CACHE_SPECS[kind].ttl)
        await cache_orm.upsert_entry(
            CACHE_SPECS[kind].model, self._key(kind, key), _serialize(payload), now, expires_at
        )
        logger.debug(f"Cache set: {kind.value} {key}, expires {expires_at.isoformat()}")
        return expires_at

    async def is_fresh(self, kind: CacheKind, key: dict[str, Any]) -> bool:
        return await self.get(kind, key) is not None

    async def invalidate(self, kind: CacheKind, key: dict[str, Any]) -> int:
        """Delete entries matching a full or partial key."""
        return await cache_orm.delete_entry(
            CACHE_SPECS[kind].model, self._key(kind, key, partial=True)
        )

    async def sweep(self, kind: CacheKind) -> int:
        return await cache_orm.delete_expired(CACHE_SPECS[kind].model, self._clock())

    async def sweep_all(self) -> dict[str, int]:
        """Delete expired rows in every cache table."""
        removed = {kind.value: await self.sweep(kind) for kind in CacheKind}
        logger.info(f"Swept {sum(removed.values())} expired cache rows")
        return removed
