"""Job registry for mapping job names to handlers."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from analytics_engine.core.logging import get_logger


if TYPE_CHECKING:
    from .context import JobContext, JobResult


logger = get_logger("jobs.registry")

DEFAULT_JOB_TIMEOUT = 60 * 60

JobHandler = Callable[["JobContext"], Awaitable["JobResult"]]


@dataclass(frozen=True)
class RegisteredJob:
    """A handler plus its execution options."""
    name: str
    handler: JobHandler
    reentrant: bool = False
    timeout: float = DEFAULT_JOB_TIMEOUT


# Global job registry
_registry: dict[str, RegisteredJob] = {}


def register_job(name: str, reentrant: bool = False, timeout: float = DEFAULT_JOB_TIMEOUT) -> Callable:
    """
    Decorator to register an async job handler.

    Usage:
        @register_job("refresh_prices")
        async def refresh_prices_job(ctx: JobContext) -> JobResult:
            ...

    Args:
        name: Job name used by schedules and manual triggers
        reentrant: Allow overlapping runs of this job
        timeout: Whole-run timeout in seconds
    """

    def decorator(func: JobHandler) -> JobHandler:
        _registry[name] = RegisteredJob(name=name, handler=func, reentrant=reentrant, timeout=timeout)
        logger.debug(f"Registered job: {name}")
        return func

    return decorator


def get_job(name: str) -> RegisteredJob | None:
    """Get a registered job by name."""
    return _registry.get(name)


def get_all_jobs() -> dict[str, RegisteredJob]:
    """Get all registered jobs."""
    return _registry.copy()


def list_job_names() -> list[str]:
    """List all registered job names."""
    return list(_registry.keys())
