"""API routes package."""

from . import admin_jobs, health


__all__ = [
    "admin_jobs",
    "health",
]
