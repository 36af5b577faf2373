"""Database module with SQLAlchemy async ORM on PostgreSQL.

Use get_session() for all database access.
"""

from .connection import (
    close_database,
    get_engine,
    get_session,
    init_database,
)
from .orm import Base


__all__ = [
    "Base",
    "close_database",
    "get_engine",
    "get_session",
    "init_database",
]
