"""Pydantic schemas for API request/response validation."""

from .common import ErrorResponse, HealthResponse
from .jobs import (
    JobHistoryResponse,
    JobRunResponse,
    JobTriggerResponse,
    ScheduledJobResponse,
)


__all__ = [
    "ErrorResponse",
    "HealthResponse",
    "JobHistoryResponse",
    "JobRunResponse",
    "JobTriggerResponse",
    "ScheduledJobResponse",
]
