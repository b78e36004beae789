"""
Centralized logging configuration for the catalog sync service.

Structured JSON logging in production, a readable line format otherwise.
Log lines carry the request correlation ID, Snowflake credentials are
redacted, and an optional file handler keeps 48 hours of hourly logs.

All modules should use:
    from catalog_sync.logging_config import get_logger
    logger = get_logger(__name__)
"""

import json
import logging
import os
import re
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any

ROOT_LOGGER = "catalog_sync"

# ---------------------------------------------------------------------------
# Correlation ID context
# ---------------------------------------------------------------------------
_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_HEADER = "x-correlation-id"


def get_correlation_id() -> str:
    """Return the current correlation ID, or empty string if none set."""
    return _correlation_id.get()


def set_correlation_id(cid: str) -> None:
    """Set the correlation ID for the current context."""
    _correlation_id.set(cid)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Environment detection
# ---------------------------------------------------------------------------
def is_production() -> bool:
    """True when APP_ENV (or ENV) is "production"."""
    env = os.environ.get("APP_ENV") or os.environ.get("ENV") or "development"
    return env.lower() == "production"


# ---------------------------------------------------------------------------
# Secret redaction
# ---------------------------------------------------------------------------
_SECRET_ASSIGNMENT = re.compile(
    r"((?:password|passcode|token|secret|private[_-]?key)\s*[:=]\s*)['\"]?[^\s'\",]{4,}['\"]?",
    re.IGNORECASE,
)

# Connector errors can echo these back verbatim.
_SECRET_ENV_KEYS = (
    "SNOWFLAKE_PASSWORD",
    "SNOWFLAKE_PASSCODE",
    "SNOWFLAKE_PRIVATE_KEY",
    "SNOWFLAKE_PRIVATE_KEY_PASSPHRASE",
)


def _redact_secrets(message: str) -> str:
    """Remove secret values from log messages."""
    message = _SECRET_ASSIGNMENT.sub(r"\1[REDACTED]", message)
    for key in _SECRET_ENV_KEYS:
        value = os.environ.get(key)
        if value and len(value) > 4:
            message = message.replace(value, "[REDACTED]")
    return message


def _record_data(record: logging.LogRecord) -> dict[str, Any] | None:
    """The `extra={"data": {...}}` payload of a record, if any."""
    data = getattr(record, "data", None)
    return data if isinstance(data, dict) else None


def _record_error(formatter: logging.Formatter, record: logging.LogRecord) -> str | None:
    if not record.exc_info or record.exc_info[1] is None:
        return None
    return _redact_secrets(formatter.formatException(record.exc_info))


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------
class StructuredJsonFormatter(logging.Formatter):
    """One JSON object per line.

    Keys: timestamp, level, service, context, correlationId, message, plus
    stackTrace for exceptions and data for sync metric payloads.
    """

    LEVEL_NAMES = {"WARNING": "warn", "CRITICAL": "fatal"}

    def __init__(self, service: str = ROOT_LOGGER):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": self.LEVEL_NAMES.get(record.levelname, record.levelname.lower()),
            "service": self.service,
            "context": record.name,
            "correlationId": get_correlation_id() or None,
            "message": _redact_secrets(record.getMessage()),
        }
        stack = _record_error(self, record)
        if stack:
            entry["stackTrace"] = stack
        data = _record_data(record)
        if data is not None:
            entry["data"] = data
        return json.dumps(entry, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Tab-separated lines for a terminal."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        cid = get_correlation_id()
        fields = [
            f"{record.levelname}:",
            created.strftime("%Y-%m-%d %H:%M:%S"),
            f"{record.name} [{cid[:8]}]" if cid else record.name,
            _redact_secrets(record.getMessage()),
        ]
        data = _record_data(record)
        if data is not None:
            fields.append(json.dumps(data, default=str))
        line = "\t".join(fields)

        stack = _record_error(self, record)
        return f"{line}\n{stack}" if stack else line


# ---------------------------------------------------------------------------
# File handler with retention
# ---------------------------------------------------------------------------
LOG_FILE_NAME = "sync.log"
LOG_RETENTION_HOURS = 48


class RetentionFileHandler(TimedRotatingFileHandler):
    """Writes <log_dir>/sync.log, rotated hourly.

    One backup is kept per hour of retention, so the oldest rotated file
    is removed at the rollover that would exceed the window.
    """

    def __init__(self, log_dir: Path, retention_hours: int = LOG_RETENTION_HOURS):
        log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = log_dir / LOG_FILE_NAME
        super().__init__(
            str(self.log_file),
            when="h",
            interval=1,
            backupCount=retention_hours,
            encoding="utf-8",
            utc=True,
        )


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------
_configured = False


def configure_logging(
    log_level: str = "INFO",
    service: str = ROOT_LOGGER,
    log_dir: Path | None = None,
) -> None:
    """Configure the centralized logging system.

    Call once at process startup (HTTP app or CLI). Subsequent
    get_logger() calls inherit this configuration.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        service: Service name included in every structured log entry.
        log_dir: Directory for the retention file handler. Falls back to
            $LOG_DIR; file logging is off when neither is set.
    """
    global _configured

    root_logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if is_production():
        formatter: logging.Formatter = StructuredJsonFormatter(service=service)
    else:
        formatter = DevelopmentFormatter()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root_logger.addHandler(console)

    if log_dir is None and os.environ.get("LOG_DIR"):
        log_dir = Path(os.environ["LOG_DIR"])
    if log_dir is not None:
        try:
            file_handler = RetentionFileHandler(log_dir)
            file_handler.setFormatter(StructuredJsonFormatter(service=service))
            root_logger.addHandler(file_handler)
        except OSError:
            root_logger.warning(f"Could not initialize file logging in {log_dir}")

    root_logger.propagate = False
    _configured = True


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Get a logger under the catalog_sync root.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Configured logging.Logger instance.
    """
    if not _configured:
        configure_logging()

    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)

    logger = logging.getLogger(f"{ROOT_LOGGER}.{name}")
    logger.propagate = True
    return logger
