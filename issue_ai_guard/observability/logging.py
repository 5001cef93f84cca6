"""Logging configuration for the generation gateway.

Provides human-readable and JSON log output with request-scoped fields
(user_id, entity_id, feature) carried via contextvars.
"""

import json
import logging
import sys
from contextvars import ContextVar
from typing import Optional

_user_id: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
_entity_id: ContextVar[Optional[str]] = ContextVar("entity_id", default=None)
_feature: ContextVar[Optional[str]] = ContextVar("feature", default=None)


def set_log_context(
    user_id: Optional[str] = None,
    entity_id: Optional[str] = None,
    feature: Optional[str] = None,
):
    """Set contextual logging fields for the current request."""
    if user_id is not None:
        _user_id.set(user_id)
    if entity_id is not None:
        _entity_id.set(entity_id)
    if feature is not None:
        _feature.set(feature)


def clear_log_context():
    """Clear all contextual logging fields."""
    _user_id.set(None)
    _entity_id.set(None)
    _feature.set(None)


def _context_fields() -> dict:
    fields = {
        "user_id": _user_id.get(),
        "entity_id": _entity_id.get(),
        "feature": _feature.get(),
    }
    return {name: value for name, value in fields.items() if value}


class StructuredFormatter(logging.Formatter):
    """JSON log formatter with context fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_entry.update(_context_fields())

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable log formatter with context fields for development."""

    def format(self, record: logging.LogRecord) -> str:
        parts = [
            f"[{self.formatTime(record, self.datefmt)}]",
            f"{record.levelname:8s}",
            f"{record.name}:",
            record.getMessage(),
        ]

        ctx = _context_fields()
        if ctx:
            parts.append("[" + ", ".join(f"{k}={v}" for k, v in ctx.items()) + "]")

        msg = " ".join(parts)

        if record.exc_info and record.exc_info[1]:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


def configure_logging(environment: str = "development", log_level: str = "INFO"):
    """Configure logging for the application.

    Args:
        environment: "production" for JSON output, anything else for human-readable.
        log_level: Logging level string (DEBUG, INFO, WARNING, ERROR).
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    if environment == "production":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(HumanReadableFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    root_logger.addHandler(handler)

    # Quiet noisy third-party loggers
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
