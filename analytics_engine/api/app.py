"""API application factory."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware

from analytics_engine.core.config import settings
from analytics_engine.core.exceptions import register_exception_handlers
from analytics_engine.core.logging import get_logger, setup_logging
from analytics_engine.database.connection import close_database, init_database
from analytics_engine.jobs import build_context, start_scheduler, stop_scheduler
from analytics_engine.schemas.common import ErrorResponse

from .routes import admin_jobs, health


logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - database, shared job context, scheduler.

    A SchedulerFatalError from an invalid cron expression propagates and
    aborts startup before any job has run.
    """
    setup_logging()
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")

    await init_database()
    logger.info("Database engine initialized")

    context = build_context()
    try:
        await context.price_service.failure_store.load()
    except SQLAlchemyError as e:
        logger.warning(f"Could not load persisted fetch failures: {e}")
    app.state.job_context = context

    await start_scheduler(context)

    yield

    logger.info("Shutting down...")
    await stop_scheduler()
    await context.provider.aclose()
    await close_database()
    logger.info("Shutdown complete")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests with their status and duration."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.monotonic()

        response = await call_next(request)

        duration = time.monotonic() - start_time
        path = request.url.path

        logger.info(
            f"{request.method} {path} -> {response.status_code} ({duration:.3f}s)",
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": int(duration * 1000),
                }
            },
        )

        return response


def create_api_app(use_lifespan: bool = True) -> FastAPI:
    """Create and configure the API application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Portfolio analytics scheduling and caching engine",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan if use_lifespan else None,
        responses={
            404: {"model": ErrorResponse, "description": "Not Found"},
            409: {"model": ErrorResponse, "description": "Conflict"},
            500: {"model": ErrorResponse, "description": "Internal Server Error"},
        },
    )

    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(admin_jobs.router, prefix="/api/admin/jobs", tags=["Jobs"])

    return app
