"""Job schedule and job run repository using SQLAlchemy ORM.

Usage:
    from analytics_engine.repositories import jobs_orm as jobs_repo

    run_id = await jobs_repo.create_run("refresh_prices", started_at)
    await jobs_repo.finish_run(run_id, "success", 12, 1, 3400)
    history = await jobs_repo.get_job_history("refresh_prices", limit=20)
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert

from analytics_engine.core.logging import get_logger
from analytics_engine.database.connection import get_session
from analytics_engine.database.orm import JobRun, JobSchedule


logger = get_logger("repositories.jobs_orm")


# =============================================================================
# JOB RUNS
# =============================================================================


async def create_run(job_name: str, started_at: datetime, trigger: str = "schedule") -> int:
    """Insert a running JobRun row.

    Returns:
        The new run id
    """
    async with get_session() as session:
        run = JobRun(
            job_name=job_name,
            started_at=started_at,
            status="running",
            trigger=trigger,
        )
        session.add(run)
        await session.flush()
        run_id = run.id
        await session.commit()
        return run_id


async def finish_run(
    run_id: int,
    status: str,
    items_processed: int,
    items_failed: int,
    duration_ms: int,
    error_message: str | None = None,
) -> None:
    """Finalize a run with its outcome."""
    async with get_session() as session:
        await session.execute(
            update(JobRun)
            .where(JobRun.id == run_id)
            .values(
                completed_at=datetime.now(UTC),
                status=status,
                items_processed=items_processed,
                items_failed=items_failed,
                duration_ms=duration_ms,
                error_message=error_message[:2000] if error_message else None,
            )
        )
        await session.commit()


async def get_job_history(job_name: str, limit: int = 20) -> Sequence[JobRun]:
    """Most recent runs of a job, newest first."""
    async with get_session() as session:
        result = await session.execute(
            select(JobRun)
            .where(JobRun.job_name == job_name)
            .order_by(JobRun.started_at.desc())
            .limit(limit)
        )
        return result.scalars().all()


async def get_latest_runs() -> Sequence[JobRun]:
    """Latest run of every job that has ever run."""
    latest = (
        select(JobRun.job_name, func.max(JobRun.started_at).label("started_at"))
        .group_by(JobRun.job_name)
        .subquery()
    )
    async with get_session() as session:
        result = await session.execute(
            select(JobRun)
            .join(
                latest,
                (JobRun.job_name == latest.c.job_name)
                & (JobRun.started_at == latest.c.started_at),
            )
            .order_by(JobRun.job_name)
        )
        return result.scalars().all()


# =============================================================================
# JOB SCHEDULES
# =============================================================================


async def seed_schedules(defaults: dict[str, tuple[str, str, bool]]) -> None:
    """Insert schedules that do not exist yet; existing rows are left as edited.

    Args:
        defaults: name -> (cron, description, reentrant)
    """
    if not defaults:
        return
    rows = [
        {
            "name": name,
            "cron": cron,
            "description": description,
            "is_active": True,
            "reentrant": reentrant,
        }
        for name, (cron, description, reentrant) in defaults.items()
    ]
    stmt = insert(JobSchedule).values(rows).on_conflict_do_nothing(index_elements=["name"])
    async with get_session() as session:
        await session.execute(stmt)
        await session.commit()


async def list_active_schedules() -> Sequence[JobSchedule]:
    async with get_session() as session:
        result = await session.execute(
            select(JobSchedule).where(JobSchedule.is_active.is_(True)).order_by(JobSchedule.name)
        )
        return result.scalars().all()
