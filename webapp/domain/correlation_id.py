"""Per-request correlation ids carried in a context variable.

Every request read from a connection gets a fresh id unless the client sends
a usable ``X-Request-ID``. The id is echoed on the response and stamped on
each log record written while the request is handled.
"""

import contextvars
import functools
import logging
import re
import uuid
from typing import Any, MutableMapping, Optional

REQUEST_ID_HEADER = "X-Request-ID"
LOGGER_ROOT = "webapp"
NO_CORRELATION_ID = "-"
MAX_INCOMING_LENGTH = 128
INCOMING_ID_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9._:-]*")

_current_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)


def generate_correlation_id() -> str:
    """Generate a new correlation ID using UUID4."""
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    return _current_id.get()


def set_correlation_id(correlation_id: str) -> None:
    _current_id.set(correlation_id)


def clear_correlation_id() -> None:
    _current_id.set(None)


def begin_request() -> str:
    """Assign and return a fresh id for the next request on this thread."""
    correlation_id = generate_correlation_id()
    _current_id.set(correlation_id)
    return correlation_id


def adopt_incoming(value: Optional[str]) -> bool:
    """Replace the current id with a client-supplied one when it is usable.

    The value ends up in response headers and log lines, so anything longer
    than MAX_INCOMING_LENGTH or outside letters, digits and ``._:-`` is
    ignored and the generated id stays.
    """
    if not value:
        return False
    candidate = value.strip()
    if len(candidate) > MAX_INCOMING_LENGTH:
        return False
    if not INCOMING_ID_PATTERN.fullmatch(candidate):
        return False
    _current_id.set(candidate)
    return True


@functools.lru_cache(maxsize=None)
def component_name(logger_name: str) -> str:
    """Return logger_name relative to the project logger, e.g. ``auth.restore``."""
    prefix = LOGGER_ROOT + "."
    if logger_name.startswith(prefix):
        return logger_name[len(prefix) :]
    return logger_name


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that stamps correlation_id and component on records."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        correlation_id = _current_id.get()
        extra["correlation_id"] = (
            NO_CORRELATION_ID if correlation_id is None else correlation_id
        )
        extra["component"] = component_name(self.logger.name)
        kwargs["extra"] = extra
        return msg, kwargs
