"""Job scheduler using APScheduler with async support."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping
from typing import Any, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from croniter import croniter
from sqlalchemy.exc import SQLAlchemyError

from analytics_engine.core.config import settings
from analytics_engine.core.exceptions import JobError, NotFoundError, SchedulerFatalError
from analytics_engine.core.logging import get_logger, job_run_var
from analytics_engine.repositories import jobs_orm

from .context import JobContext, JobResult
from .job_defaults import get_default_schedule
from .registry import RegisteredJob, get_all_jobs, get_job
from .tracking import JobTracker


logger = get_logger("jobs.scheduler")

CRON_FIELDS = ("second", "minute", "hour", "day", "month", "day_of_week")
REENTRANT_MAX_INSTANCES = 3

# Global scheduler instance
_scheduler: Optional["JobScheduler"] = None


def parse_cron(expression: str, timezone: str | None = None) -> CronTrigger:
    """
    Build a trigger from a six-field ``sec min hour dom mon dow`` expression.

    Raises:
        SchedulerFatalError: Wrong field count or an invalid field
    """
    fields = expression.split()
    if len(fields) != len(CRON_FIELDS):
        raise SchedulerFatalError(
            f"Cron expression '{expression}' must have 6 fields (sec min hour dom mon dow)",
            details={"expression": expression},
        )
    if not croniter.is_valid(" ".join(fields[1:])):
        raise SchedulerFatalError(
            f"Invalid cron expression '{expression}'", details={"expression": expression}
        )
    try:
        return CronTrigger(**dict(zip(CRON_FIELDS, fields)), timezone=timezone or settings.scheduler_timezone)
    except ValueError as e:
        raise SchedulerFatalError(
            f"Invalid cron expression '{expression}': {e}", details={"expression": expression}
        ) from e


class JobScheduler:
    """In-process cron scheduler with per-run tracking."""

    def __init__(self, context: JobContext, tracker: JobTracker | None = None):
        self.context = context
        self.tracker = tracker or JobTracker()
        self._scheduler = AsyncIOScheduler(
            timezone=settings.scheduler_timezone,
            job_defaults={
                "coalesce": True,  # Combine missed runs into one
                "max_instances": 1,  # Only one instance per job at a time
                "misfire_grace_time": 60 * 5,  # 5 minutes grace period
            },
        )
        self._running = False
        self._in_flight: set[asyncio.Task] = set()
        self._active: dict[str, int] = {}

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Validate every schedule, then start firing.

        Raises:
            SchedulerFatalError: A cron expression did not parse; nothing is scheduled
        """
        if self._running:
            logger.warning("Scheduler already running")
            return

        if not settings.scheduler_enabled:
            logger.info("Scheduler disabled via SCHEDULER_ENABLED=false")
            return

        schedules = await self._load_schedules()
        triggers = {name: parse_cron(cron) for name, cron in schedules.items()}

        for name, trigger in triggers.items():
            job = get_job(name)
            self._scheduler.add_job(
                self._wrap_job(job),
                trigger=trigger,
                id=name,
                name=name,
                replace_existing=True,
                max_instances=REENTRANT_MAX_INSTANCES if job.reentrant else 1,
            )
            logger.info(f"Scheduled job: {name} ({schedules[name]})")

        self._scheduler.start()
        self._running = True
        logger.info(f"Job scheduler started with {len(triggers)} jobs")

    async def stop(self) -> None:
        """Stop firing and wait for handlers that are still running."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
        if self._in_flight:
            logger.info(f"Waiting for {len(self._in_flight)} running jobs")
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        logger.info("Job scheduler stopped")

    async def _load_schedules(self) -> dict[str, str]:
        """Cron per registered job: override, then test mode, then stored schedule."""
        registered = get_all_jobs()
        test_mode = settings.job_scheduler_test_mode
        defaults = {
            name: (*get_default_schedule(name), job.reentrant)
            for name, job in registered.items()
        }

        stored: dict[str, str] = {}
        try:
            await jobs_orm.seed_schedules(defaults)
            rows = await jobs_orm.list_active_schedules()
            stored = {row.name: row.cron for row in rows}
        except SQLAlchemyError as e:
            logger.warning(f"Failed to load job schedules from database, using defaults: {e}")
            stored = {name: cron for name, (cron, _, _) in defaults.items()}

        overrides: Mapping[str, str] = settings.schedule_overrides
        schedules: dict[str, str] = {}
        for name, cron in stored.items():
            if name not in registered:
                logger.warning(f"Unknown job: {name}")
                continue
            if name in overrides:
                cron = overrides[name]
            elif test_mode:
                cron = get_default_schedule(name, test_mode=True)[0]
            schedules[name] = cron

        for name in overrides:
            if name not in registered:
                logger.warning(f"Schedule override for unknown job: {name}")
        return schedules

    def _wrap_job(self, job: RegisteredJob):
        """Wrap a handler with tracking and logging."""

        async def wrapper():
            await self._execute_job(job, trigger="schedule")

        return wrapper

    async def _execute_job(self, job: RegisteredJob, trigger: str) -> JobResult | None:
        """Run a handler under a JobRun row; errors are recorded, not raised."""
        if not job.reentrant and self._active.get(job.name):
            logger.info(f"Job {job.name} skipped - already running")
            return None

        task = asyncio.current_task()
        if task is not None:
            self._in_flight.add(task)
        self._active[job.name] = self._active.get(job.name, 0) + 1

        run_id = await self.tracker.start(job.name, trigger)
        token = job_run_var.set(f"{job.name}:{run_id}")
        start = time.monotonic()
        try:
            logger.info(f"Job {job.name} started")
            try:
                result = await asyncio.wait_for(job.handler(self.context), timeout=job.timeout)
            except asyncio.TimeoutError:
                duration_ms = int((time.monotonic() - start) * 1000)
                await self.tracker.fail(run_id, f"Timed out after {job.timeout:.0f}s", duration_ms)
                logger.error(f"Job {job.name} timed out after {duration_ms}ms")
                return None
            except Exception as e:
                duration_ms = int((time.monotonic() - start) * 1000)
                await self.tracker.fail(run_id, e, duration_ms)
                logger.exception(f"Job {job.name} failed after {duration_ms}ms")
                return None

            result = result or JobResult()
            duration_ms = int((time.monotonic() - start) * 1000)
            await self.tracker.succeed(run_id, result, duration_ms)
            logger.info(f"Job {job.name} completed in {duration_ms}ms: {result}")
            return result
        finally:
            job_run_var.reset(token)
            self._active[job.name] -= 1
            if task is not None:
                self._in_flight.discard(task)

    def _manual_job(self, name: str) -> RegisteredJob:
        job = get_job(name)
        if job is None:
            raise NotFoundError(f"Unknown job: {name}", details={"job": name})
        if not job.reentrant and self._active.get(name):
            raise JobError(f"Job {name} is already running", status_code=409)
        return job

    async def run_job_now(self, name: str) -> JobResult | None:
        """
        Manually trigger a job through the same tracking path and wait for it.

        Raises:
            NotFoundError: No job is registered under ``name``
            JobError: The job is not reentrant and is already running
        """
        return await self._execute_job(self._manual_job(name), trigger="manual")

    def enqueue_job(self, name: str) -> asyncio.Task:
        """Start a manual run in the background; ``stop()`` waits for it.

        Raises:
            NotFoundError: No job is registered under ``name``
            JobError: The job is not reentrant and is already running
        """
        job = self._manual_job(name)
        task = asyncio.create_task(self._execute_job(job, trigger="manual"), name=f"job:{name}")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        logger.info(f"Job {name} enqueued")
        return task

    def get_next_run_time(self, name: str):
        """Get next scheduled run time for a job."""
        job = self._scheduler.get_job(name)
        if job:
            return job.next_run_time
        return None

    def get_jobs_status(self) -> list[dict[str, Any]]:
        """Get status of all scheduled jobs."""
        jobs = []
        for job in self._scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run_time": job.next_run_time.isoformat()
                    if job.next_run_time
                    else None,
                    "running": bool(self._active.get(job.id)),
                }
            )
        return jobs


def get_scheduler() -> Optional[JobScheduler]:
    """Get the global scheduler instance."""
    return _scheduler


async def start_scheduler(context: JobContext) -> JobScheduler:
    """Start the global scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = JobScheduler(context)
    await _scheduler.start()
    return _scheduler


async def stop_scheduler() -> None:
    """Stop the global scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
