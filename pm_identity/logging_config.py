"""Logging setup and helpers for keeping user input out of log structure.

``LOG_FORMAT=json`` emits JSON lines for log aggregation; ``console`` is the
human-readable default.
"""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone

_STANDARD_ATTRS = {
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "lineno", "funcName", "created",
    "msecs", "relativeCreated", "thread", "threadName", "taskName",
    "processName", "process", "exc_info", "exc_text", "stack_info",
    "message",
}


class JsonFormatter(logging.Formatter):
    """One JSON object per record with any ``extra=`` fields attached."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extras = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS:
                continue
            try:
                json.dumps(value)
                extras[key] = value
            except (TypeError, ValueError):
                extras[key] = str(value)
        if extras:
            entry["extra"] = extras
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", log_format: str = "console") -> None:
    """Install the root handler for the service process."""
    if log_format == "json":
        formatter = {"()": "pm_identity.logging_config.JsonFormatter"}
    else:
        formatter = {"format": "[{asctime}] {levelname} {name} {message}", "style": "{"}

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": formatter},
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {"handlers": ["console"], "level": level},
            "loggers": {
                "uvicorn.access": {"level": "WARNING"},
            },
        }
    )


def sanitize_for_log(value: str | None) -> str:
    """Strip line breaks so user input cannot forge extra log entries."""
    if not value:
        return ""
    return value.replace("\r", "").replace("\n", "").replace("\t", " ")


def mask_email(email: str | None) -> str:
    """Mask an address for logging, e.g. ``user@example.com`` -> ``u***@e***.com``."""
    sanitized = sanitize_for_log(email)
    if not sanitized:
        return ""
    local, sep, domain = sanitized.partition("@")
    if not sep or not local:
        return sanitized[0] + "***" if len(sanitized) > 2 else "***"

    masked_local = local[0] + "***" if len(local) > 1 else "***"
    name, dot, tld = domain.rpartition(".")
    if dot and name:
        masked_domain = f"{name[0]}***.{tld}"
    else:
        masked_domain = domain[0] + "***" if domain else "***"
    return f"{masked_local}@{masked_domain}"
