"""Background job scheduler and job definitions."""

from .context import JobContext, JobResult, build_context
from .registry import get_all_jobs, get_job, list_job_names, register_job
from .scheduler import (
    JobScheduler,
    get_scheduler,
    parse_cron,
    start_scheduler,
    stop_scheduler,
)
from . import definitions  # noqa: F401  registers jobs


__all__ = [
    "JobContext",
    "JobResult",
    "build_context",
    "JobScheduler",
    "get_scheduler",
    "parse_cron",
    "start_scheduler",
    "stop_scheduler",
    "register_job",
    "get_job",
    "get_all_jobs",
    "list_job_names",
]
