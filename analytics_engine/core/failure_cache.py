"""Short-term memory of per-ticker price fetch failures.

Tickers that recently failed are skipped until their failure record expires,
so providers are not hammered for symbols that have no data. The TTL depends
on the kind of failure.

The in-memory map is the authoritative store. It is mirrored to the
``ticker_fetch_failures`` table by the price service and reloaded from it at
startup (see ``load``).

Usage:
    from analytics_engine.core.failure_cache import FailureCache, FailureKind

    cache = FailureCache()
    cache.record("ZZZZ", FailureKind.NOT_FOUND)
    if cache.check("ZZZZ"):
        ...  # skip provider call
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from analytics_engine.core.logging import get_logger


logger = get_logger("core.failure_cache")


class FailureKind(str, Enum):
    """Kind of fetch failure; determines how long it is remembered."""

    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    API_ERROR = "api_error"

    @property
    def ttl(self) -> timedelta:
        return FAILURE_TTLS[self]

    @classmethod
    def from_string(cls, value: str) -> "FailureKind":
        try:
            return cls(value.lower())
        except ValueError:
            return cls.API_ERROR


FAILURE_TTLS: dict[FailureKind, timedelta] = {
    FailureKind.NOT_FOUND: timedelta(hours=24),
    FailureKind.RATE_LIMITED: timedelta(hours=1),
    FailureKind.API_ERROR: timedelta(hours=6),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FailureRecord:
    """A remembered fetch failure."""

    ticker: str
    kind: FailureKind
    failed_at: datetime
    message: str | None = None
    consecutive_failures: int = 1

    @property
    def ttl(self) -> timedelta:
        return self.kind.ttl

    @property
    def expires_at(self) -> datetime:
        return self.failed_at + self.ttl

    def is_live(self, now: datetime) -> bool:
        return now - self.failed_at < self.ttl


class FailureCache:
    """Map of ticker -> FailureRecord with kind-specific TTLs.

    All operations are synchronous and never await, so each one is atomic
    with respect to other tasks on the event loop.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._records: dict[str, FailureRecord] = {}
        self._clock = clock

    @staticmethod
    def _key(ticker: str) -> str:
        return ticker.strip().upper()

    def record(
        self, ticker: str, kind: FailureKind, message: str | None = None
    ) -> FailureRecord:
        """Remember a failure for ticker, replacing any previous record."""
        key = self._key(ticker)
        now = self._clock()
        previous = self._records.get(key)
        consecutive = 1
        if previous is not None and previous.is_live(now):
            consecutive = previous.consecutive_failures + 1

        record = FailureRecord(
            ticker=key,
            kind=kind,
            failed_at=now,
            message=message,
            consecutive_failures=consecutive,
        )
        self._records[key] = record
        logger.debug(
            f"Recorded {kind.value} failure for {key} "
            f"(retry after {record.expires_at.isoformat()})"
        )
        return record

    def check(self, ticker: str) -> FailureRecord | None:
        """Return the live failure record for ticker, dropping a stale one."""
        key = self._key(ticker)
        record = self._records.get(key)
        if record is None:
            return None
        if record.is_live(self._clock()):
            return record
        self._records.pop(key, None)
        return None

    def clear(self, ticker: str) -> bool:
        """Forget any failure for ticker. Returns True if one was removed."""
        return self._records.pop(self._key(ticker), None) is not None

    def sweep(self) -> int:
        """Remove all expired records. Returns the number removed."""
        now = self._clock()
        expired = [key for key, rec in self._records.items() if not rec.is_live(now)]
        for key in expired:
            self._records.pop(key, None)
        if expired:
            logger.info(f"Swept {len(expired)} expired fetch failures")
        return len(expired)

    def load(self, records: Iterable[FailureRecord]) -> int:
        """Seed the cache with persisted records that are still live."""
        now = self._clock()
        loaded = 0
        for record in records:
            if record.is_live(now):
                self._records[self._key(record.ticker)] = record
                loaded += 1
        return loaded

    def snapshot(self) -> list[FailureRecord]:
        """Live records, for admin/status views."""
        now = self._clock()
        return [rec for rec in self._records.values() if rec.is_live(now)]

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, ticker: object) -> bool:
        if not isinstance(ticker, str):
            return False
        return self.check(ticker) is not None
