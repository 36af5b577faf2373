"""JobRun bookkeeping.

Every firing gets a ``job_runs`` row that is finalized on success or
failure. Recording problems are logged and never interrupt the job.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError

from analytics_engine.core.logging import get_logger
from analytics_engine.repositories import jobs_orm

from .context import JobResult


logger = get_logger("jobs.tracking")


class JobTracker:
    """Writes the run row lifecycle: running, then success or failed."""

    async def start(self, job_name: str, trigger: str = "schedule") -> int | None:
        """Insert the running row. Returns None when it could not be written."""
        try:
            return await jobs_orm.create_run(job_name, datetime.now(UTC), trigger)
        except SQLAlchemyError as e:
            logger.error(f"Failed to record start of {job_name}: {e}")
            return None

    async def succeed(self, run_id: int | None, result: JobResult, duration_ms: int) -> None:
        if run_id is None:
            return
        try:
            await jobs_orm.finish_run(
                run_id,
                "success",
                result.items_processed,
                result.items_failed,
                duration_ms,
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to record success of run {run_id}: {e}")

    async def fail(
        self,
        run_id: int | None,
        error: BaseException | str,
        duration_ms: int,
        result: JobResult | None = None,
    ) -> None:
        if run_id is None:
            return
        message = error if isinstance(error, str) else (str(error) or type(error).__name__)
        try:
            await jobs_orm.finish_run(
                run_id,
                "failed",
                result.items_processed if result else 0,
                result.items_failed if result else 0,
                duration_ms,
                error_message=message,
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to record failure of run {run_id}: {e}")
