"""Request access logging stage."""

import logging
from datetime import datetime
from typing import Callable

from webapp.domain.correlation_id import CorrelationLoggerAdapter
from webapp.domain.http_types import HttpRequest, HttpResponse
from webapp.pipeline.filters import Handler, RequestFilter

ACCESS_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webapp.access"), {})

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S %z"


def resolve_client_ip(request: HttpRequest) -> str:
    """Return the originating client address, preferring proxy headers."""
    forwarded_for = request.headers.get("x-forwarded-for", "")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    return request.client_ip


def format_access_line(request: HttpRequest, local_time: datetime) -> str:
    return (
        f"IP:{resolve_client_ip(request)}:{request.request_uri}:"
        f"{local_time.strftime(TIMESTAMP_FORMAT)}"
    )


class AccessLogFilter(RequestFilter):
    """Logs every request that reaches it, then forwards unchanged."""

    name = "access_log"

    def __init__(self, clock: Callable[[], datetime]):
        self._clock = clock

    def process(self, request: HttpRequest, forward: Handler) -> HttpResponse:
        local_time = self._clock()
        ACCESS_LOGGER.info(
            format_access_line(request, local_time),
            extra={
                "event": "access",
                "client": resolve_client_ip(request),
                "route": request.request_uri,
                "method": request.method,
                "local_time": local_time.isoformat(),
            },
        )
        return forward(request)
