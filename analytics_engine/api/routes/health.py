"""Health check endpoints."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from analytics_engine.core.config import settings
from analytics_engine.core.logging import get_logger
from analytics_engine.database.connection import get_session
from analytics_engine.jobs import get_scheduler
from analytics_engine.schemas.common import HealthResponse


router = APIRouter(prefix="/health")

logger = get_logger("health")


async def db_healthcheck() -> bool:
    """Check PostgreSQL database health."""
    try:
        async with get_session() as session:
            await session.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Database healthcheck failed: {e}")
        return False


def scheduler_healthcheck() -> bool:
    """Scheduler is running, or intentionally disabled."""
    if not settings.scheduler_enabled:
        return True
    scheduler = get_scheduler()
    return scheduler is not None and scheduler.running


@router.get(
    "",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health status of the engine and its dependencies.",
)
async def health_check() -> HealthResponse:
    """
    Perform health check on the database and the job scheduler.

    The status is degraded when only the scheduler is down.
    """
    checks = {
        "database": await db_healthcheck(),
        "scheduler": scheduler_healthcheck(),
    }

    if all(checks.values()):
        status = "healthy"
    elif checks["database"]:
        status = "degraded"
    else:
        status = "unhealthy"

    return HealthResponse(
        status=status,
        version=settings.app_version,
        timestamp=datetime.now(UTC),
        checks=checks,
    )
