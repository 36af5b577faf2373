"""Job administration routes: manual triggers, run history, schedule status."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Path, Query, status

from analytics_engine.core.exceptions import JobError, NotFoundError
from analytics_engine.jobs import get_job, get_scheduler, list_job_names
from analytics_engine.jobs.scheduler import JobScheduler
from analytics_engine.repositories import jobs_orm
from analytics_engine.schemas.jobs import (
    JobHistoryResponse,
    JobRunResponse,
    JobTriggerResponse,
    ScheduledJobResponse,
)

router = APIRouter()


def _validate_job_name(name: str = Path(..., min_length=1, max_length=100)) -> str:
    """Validate and normalize job name from path parameter."""
    return name.strip().lower()


def _require_scheduler() -> JobScheduler:
    scheduler = get_scheduler()
    if scheduler is None:
        raise JobError("Job scheduler is not initialized", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return scheduler


@router.get(
    "",
    response_model=list[ScheduledJobResponse],
    summary="List jobs",
    description="Every registered job with its next run time and latest run.",
)
async def list_jobs() -> list[ScheduledJobResponse]:
    """List registered jobs with schedule status."""
    scheduler = get_scheduler()
    scheduled = {j["id"]: j for j in scheduler.get_jobs_status()} if scheduler else {}
    latest = {run.job_name: run for run in await jobs_orm.get_latest_runs()}

    jobs = []
    for name in sorted(list_job_names()):
        info = scheduled.get(name, {})
        run = latest.get(name)
        jobs.append(
            ScheduledJobResponse(
                name=name,
                next_run_time=info.get("next_run_time"),
                running=info.get("running", False),
                last_run=JobRunResponse.model_validate(run) if run else None,
            )
        )
    return jobs


@router.post(
    "/{name}/trigger",
    response_model=JobTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Trigger job now",
    description="Start an immediate run that is tracked like a scheduled one.",
    responses={
        404: {"description": "Job not found"},
        409: {"description": "Job already running"},
    },
)
async def trigger_job(
    name: str = Depends(_validate_job_name),
    scheduler: JobScheduler = Depends(_require_scheduler),
) -> JobTriggerResponse:
    """Manually run a job."""
    scheduler.enqueue_job(name)
    return JobTriggerResponse(
        name=name,
        status="queued",
        message="Job enqueued",
        created_at=datetime.now(UTC),
    )


@router.get(
    "/{name}/history",
    response_model=JobHistoryResponse,
    summary="Job run history",
    description="Most recent runs of a job, newest first.",
    responses={404: {"description": "Job not found"}},
)
async def job_history(
    name: str = Depends(_validate_job_name),
    limit: int = Query(20, ge=1, le=200),
) -> JobHistoryResponse:
    """Get recorded runs for a job."""
    if get_job(name) is None:
        raise NotFoundError(message=f"Job '{name}' not found", details={"name": name})

    runs = await jobs_orm.get_job_history(name, limit=limit)
    return JobHistoryResponse(
        name=name,
        runs=[JobRunResponse.model_validate(run) for run in runs],
    )
