"""TTL-bound analytics caches stored in PostgreSQL."""

from .store import CACHE_SPECS, CacheKind, CacheSpec, CacheStore


__all__ = [
    "CACHE_SPECS",
    "CacheKind",
    "CacheSpec",
    "CacheStore",
]
