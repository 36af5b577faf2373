"""Logging setup for the engine.

Every record emitted while a scheduled job runs carries the job's
``name:run_id`` tag, taken from ``job_run_var``. Provider API keys that
end up in request URLs or error strings are masked before output.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

from .config import settings


# "<job name>:<run id>" for the job executing in the current task
job_run_var: ContextVar[Optional[str]] = ContextVar("job_run", default=None)

# Chatty third-party loggers held at WARNING
QUIET_LOGGERS = ("uvicorn.access", "httpx", "apscheduler", "yfinance")

_SECRET_PATTERN = re.compile(
    r"""(?P<key>["']?(?:apikey|api_key|token|secret|password|authorization)["']?\s*[=:]\s*["']?)"""
    r"""(?P<value>[^\s,&'"}\]]+)""",
    re.IGNORECASE,
)


def mask_secrets(text: str) -> str:
    """Replace credential values in ``key=value`` or ``"key": value`` pairs."""
    return _SECRET_PATTERN.sub(lambda m: f"{m.group('key')}***", text)


def _job_fields() -> dict[str, str]:
    tag = job_run_var.get()
    if not tag:
        return {}
    job, _, run_id = tag.partition(":")
    return {"job": job, "run_id": run_id}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **_job_fields(),
        }
        extra = getattr(record, "extra_fields", None)
        if extra:
            payload.update(extra)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        if settings.debug:
            payload["at"] = f"{record.pathname}:{record.lineno}"
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """Plain single-line output for local runs."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-8s %(job_tag)s%(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        tag = job_run_var.get()
        record.job_tag = f"[{tag}] " if tag else ""
        return super().format(record)


class SecretMaskFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = mask_secrets(message)
        if masked != message:
            record.msg, record.args = masked, ()
        return True


def setup_logging() -> None:
    """Install a single stdout handler on the root logger."""
    level = logging.getLevelName(settings.log_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if settings.log_format == "json" else ConsoleFormatter())
    handler.addFilter(SecretMaskFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Logger namespaced under ``analytics_engine``."""
    return logging.getLogger(f"analytics_engine.{name}")
