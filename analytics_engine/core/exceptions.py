"""Error types raised by the engine and their HTTP rendering.

Services, jobs and providers raise ``AppException`` subclasses. The API
turns them into ``{"error", "message", "status"[, "details"]}`` bodies;
anything else becomes an opaque 500.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class AppException(Exception):
    """Base error. Subclasses pick the status and code; callers may override."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"
    message: str = "Unexpected engine error"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        if message:
            self.message = message
        if error_code:
            self.error_code = error_code
        if status_code:
            self.status_code = status_code
        self.details = dict(details or {})
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
            "status": self.status_code,
        }
        if self.details:
            body["details"] = self.details
        return body


# -----------------------------------------------------------------------------
# Lookups and inputs
# -----------------------------------------------------------------------------


class NotFoundError(AppException):
    """Unknown job, portfolio or model."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"
    message = "Not found"


class ValidationError(AppException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "VALIDATION_ERROR"
    message = "Invalid input"


class DataMissingError(AppException):
    """Too few stored closes to compute the requested metric."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "DATA_MISSING"
    message = "Insufficient price history"


# -----------------------------------------------------------------------------
# Price providers
# -----------------------------------------------------------------------------


class ProviderErrorKind(str, Enum):
    """Why a provider call failed; drives fallback and failure caching."""

    NETWORK = "network"
    BAD_RESPONSE = "bad_response"
    PARSE = "parse"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"


class ProviderError(AppException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "PROVIDER_ERROR"
    message = "Price provider request failed"

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str | None = None,
        provider: str | None = None,
    ):
        self.kind = kind
        self.provider = provider
        details = {"kind": kind.value, "provider": provider} if provider else {"kind": kind.value}
        super().__init__(message=message, details=details)


class CachedFailureError(AppException):
    """The ticker failed recently and its failure record has not expired."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "CACHED_FAILURE"
    message = "Ticker recently failed to fetch"


# -----------------------------------------------------------------------------
# Storage and scheduling
# -----------------------------------------------------------------------------


class StorageError(AppException):
    error_code = "STORAGE_ERROR"
    message = "Database write failed"


class SchedulerFatalError(AppException):
    """Startup cannot continue, e.g. a schedule has a bad cron expression."""

    error_code = "SCHEDULER_FATAL"
    message = "Invalid scheduler configuration"


class JobError(AppException):
    """Job could not be enqueued or executed."""

    error_code = "JOB_ERROR"
    message = "Job execution failed"


def register_exception_handlers(app: FastAPI) -> None:
    """Render engine errors as JSON and hide everything else behind a 500."""
    from .config import settings

    log = logging.getLogger("analytics_engine.api.errors")

    @app.exception_handler(AppException)
    async def handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        log.exception(
            f"Unhandled error on {request.method} {request.url.path}",
            extra={"extra_fields": {"path": request.url.path, "method": request.method}},
        )
        body = AppException(str(exc) if settings.debug else None).to_dict()
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)
