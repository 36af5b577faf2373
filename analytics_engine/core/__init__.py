"""Core infrastructure: settings, logging, exceptions, rate limiting, failure cache."""

from .config import settings
from .exceptions import (
    AppException,
    CachedFailureError,
    DataMissingError,
    JobError,
    NotFoundError,
    ProviderError,
    ProviderErrorKind,
    SchedulerFatalError,
    StorageError,
    ValidationError,
)


__all__ = [
    "AppException",
    "CachedFailureError",
    "DataMissingError",
    "JobError",
    "NotFoundError",
    "ProviderError",
    "ProviderErrorKind",
    "SchedulerFatalError",
    "StorageError",
    "ValidationError",
    "settings",
]
