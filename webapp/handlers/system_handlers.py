"""System handlers for health checks."""

import logging
from typing import Optional

from webapp.bootstrap.config import SECURITY_HEADERS
from webapp.domain.correlation_id import CorrelationLoggerAdapter
from webapp.domain.http_types import HttpRequest, HttpResponse
from webapp.domain.response_builders import healthz_response
from webapp.lifecycle.state import ServerLifecycle

SYSTEM_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("webapp.handlers.system"), {}
)


def handle_healthz(
    lifecycle: Optional[ServerLifecycle],
    request: HttpRequest,
) -> HttpResponse:
    """Handle /healthz requests with current server state."""
    is_draining = lifecycle.is_draining() if lifecycle is not None else False
    if SYSTEM_LOGGER.logger.isEnabledFor(logging.DEBUG):
        SYSTEM_LOGGER.debug(
            "Health check performed",
            extra={"event": "healthz_check", "state": "draining" if is_draining else "ok"},
        )
    return healthz_response(is_draining, request, SECURITY_HEADERS)
