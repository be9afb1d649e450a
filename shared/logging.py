"""
Structured logging setup for all modules.

Provides JSON-structured logging with automatic job_id and episode_id injection.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from shared.config import settings

# Context variables for correlation ids
job_id_context: ContextVar[Optional[Any]] = ContextVar("job_id", default=None)
episode_id_context: ContextVar[Optional[str]] = ContextVar("episode_id", default=None)

# Standard LogRecord attributes, everything else came in through `extra`
_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
    "processName", "relativeCreated", "thread", "threadName", "exc_info",
    "exc_text", "stack_info", "getMessage", "taskName",
}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "module": record.module,
            "logger": record.name,
            "message": record.getMessage(),
        }

        job_id = job_id_context.get()
        if job_id:
            log_data["job_id"] = str(job_id)
        episode_id = episode_id_context.get()
        if episode_id:
            log_data["episode_id"] = episode_id

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                # Convert complex types to strings, keep simple types as-is
                if isinstance(value, (str, int, float, bool, type(None))):
                    log_data[key] = value
                else:
                    log_data[key] = str(value)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: Module name (e.g., "composer.engine")

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Don't add handlers if already configured
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JSONFormatter())
    logger.addHandler(console_handler)

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=100 * 1024 * 1024,  # 100MB
            backupCount=5
        )
        file_handler.setFormatter(JSONFormatter())
        logger.addHandler(file_handler)

    return logger


def set_job_id(job_id: Optional[Any]) -> None:
    """
    Set job_id in context for automatic injection into logs.

    Args:
        job_id: Job ID to set in context
    """
    job_id_context.set(job_id)


def get_job_id() -> Optional[Any]:
    """Get current job_id from context."""
    return job_id_context.get()


def set_episode_id(episode_id: Optional[str]) -> None:
    """Set episode_id in context for automatic injection into logs."""
    episode_id_context.set(episode_id)


def get_episode_id() -> Optional[str]:
    """Get current episode_id from context."""
    return episode_id_context.get()
