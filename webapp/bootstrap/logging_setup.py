"""Logging configuration utilities for the web application server."""

import json
import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from webapp.domain.correlation_id import NO_CORRELATION_ID, CorrelationLoggerAdapter

LOGGER_NAME = "webapp"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s :: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 50 * 1024 * 1024
BACKUP_COUNT = 90

REDACTED = "[REDACTED]"

# Each pattern keeps its first group and masks the rest of the match, so the
# name of a setting survives while its value does not.
SENSITIVE_PATTERNS = [
    re.compile(r"(?i)(\b(?:proxy-)?authorization\s*[:=]\s*)(?:(?:bearer|basic)\s+)?[^\s,;&]+"),
    re.compile(r"(?i)(\bbearer\s+)[^\s,;&]+"),
    re.compile(
        r"(?i)(\b[\w-]*(?:token|key|signature|password|secret|cookie)[\w-]*\s*[:=]\s*)[^\s,;&]+"
    ),
    re.compile(r"()\b[A-Fa-f0-9]{32,}\b"),
    re.compile(r"()\b[A-Za-z0-9+/_-]{32,}={0,2}"),
]

EXTRA_KEYS = [
    "event",
    "client",
    "route",
    "method",
    "status_code",
    "error_type",
    "error",
    "host",
    "port",
    "bind_address",
    "base_url",
    "production",
    "directory",
    "path",
    "log_destination",
    "log_level",
    "use_json",
    "destination",
    "grace_seconds",
    "remaining_workers",
    "abandoned_connections",
    "signal",
    "state",
    "previous_state",
    "loaded",
    "skipped",
    "removed",
    "token_prefix",
    "remaining",
    "interval_seconds",
    "reason",
    "failure",
    "duration_ms",
    "local_time",
]


def redact_sensitive(value: str) -> str:
    """Mask credential values in a log value, keeping the surrounding text."""
    if not value:
        return value

    for pattern in SENSITIVE_PATTERNS:
        value = pattern.sub(lambda match: match.group(1) + REDACTED, value)

    return value


class CorrelationIdFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """Ensure correlation_id field exists in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = NO_CORRELATION_ID
        return True


class JsonFormatter(logging.Formatter):
    """JSON formatter with stable key ordering for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON with stable key ordering."""
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }

        for key in EXTRA_KEYS:
            if hasattr(record, key):
                value = getattr(record, key)
                # Routes and addresses are logged verbatim; only free-form values are scrubbed.
                if isinstance(value, str) and key in {"error", "reason"}:
                    value = redact_sensitive(value)
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, sort_keys=True, default=str)


def _resolve_level(level_name: str) -> int:
    """Translate text level names into logging module numeric levels."""
    level = getattr(logging, level_name.upper(), None)
    if isinstance(level, int):
        return level
    return logging.INFO


def _build_handler(
    destination: Optional[str], level: int, use_json: bool = True
) -> logging.Handler:
    """Create a stdout or rotating file handler for the configured logger."""
    if destination and destination.lower() != "stdout":
        target_path = Path(destination)
        target_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            target_path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT
        )
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if use_json:
        handler.setFormatter(JsonFormatter(datefmt=DATE_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))

    handler.addFilter(CorrelationIdFilter())
    return handler


def configure_logging(
    level: str = "INFO", destination: Optional[str] = None, use_json: bool = True
) -> Union[logging.Logger, CorrelationLoggerAdapter]:
    """Configure and return the project logger with the requested handler."""
    logger = logging.getLogger(LOGGER_NAME)
    numeric_level = _resolve_level(level)
    logger.setLevel(numeric_level)
    logger.propagate = False

    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    handler = _build_handler(destination, numeric_level, use_json)
    logger.addHandler(handler)
    adapter = CorrelationLoggerAdapter(logger, {})
    adapter.info(
        "Logging configured",
        extra={
            "event": "logging_configured",
            "destination": destination or "stdout",
            "log_level": logging.getLevelName(numeric_level),
            "use_json": use_json,
        },
    )
    return adapter
