"""
Structured JSON logging with correlation IDs.

One JSON object per line on stderr. The correlation id lives in a ContextVar
set by the request middleware and again by the worker pool for each job, so
every line written while handling one delivery can be joined up.

The audit fallback channel is pinned at ERROR: a transition that could not be
written to the audit store still reaches stderr when LOG_LEVEL is set above it.
"""
import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

AUDIT_FALLBACK_LOGGER = "hookgate.audit.fallback"

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Copied from `logger.x(..., extra={...})` into the JSON line; anything else is dropped
EXTRA_FIELDS = ("webhook_id", "provider", "topic", "status", "attempt", "error_code", "error_message")

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx")


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: Optional[str]) -> None:
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    """New correlation ID (UUID4 hex, 32 chars)."""
    return uuid.uuid4().hex


class StructuredJsonFormatter(logging.Formatter):
    """Render a LogRecord as a single-line JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
            "message": record.getMessage(),
        }
        for key in EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_structured_logging(log_level: str = "INFO") -> None:
    """
    Install the JSON formatter on the root logger, replacing any handlers.
    Called once from create_app().
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredJsonFormatter())

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    logging.getLogger(AUDIT_FALLBACK_LOGGER).setLevel(min(level, logging.ERROR))
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
