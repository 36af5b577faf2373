"""Job administration schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class JobRunResponse(BaseModel):
    """One recorded job run."""

    id: int = Field(..., description="Run id")
    job_name: str = Field(..., description="Job name")
    status: str = Field(..., description="running, success or failed")
    trigger: str = Field(..., description="schedule or manual")
    started_at: datetime = Field(..., description="Start time")
    completed_at: datetime | None = Field(None, description="Completion time")
    items_processed: int = Field(default=0, description="Units processed")
    items_failed: int = Field(default=0, description="Units failed")
    duration_ms: int | None = Field(None, description="Execution duration in ms")
    error_message: str | None = Field(None, description="Failure message")

    model_config = {"from_attributes": True}


class JobHistoryResponse(BaseModel):
    """Recent runs of one job."""

    name: str = Field(..., description="Job name")
    runs: list[JobRunResponse] = Field(default_factory=list, description="Runs, newest first")


class ScheduledJobResponse(BaseModel):
    """A scheduled job with its next firing and latest run."""

    name: str = Field(..., description="Job name")
    next_run_time: datetime | None = Field(None, description="Next scheduled run time")
    running: bool = Field(default=False, description="A run is in progress")
    last_run: JobRunResponse | None = Field(None, description="Most recent run")


class JobTriggerResponse(BaseModel):
    """Manual trigger acknowledgement."""

    name: str = Field(..., description="Job name")
    status: str = Field(..., description="Trigger status", examples=["queued"])
    message: str = Field(..., description="Result message")
    created_at: datetime = Field(..., description="Trigger timestamp")
