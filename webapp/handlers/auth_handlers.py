"""Handlers backed by the in-memory token store."""

import logging
from datetime import datetime
from typing import Callable, Optional

from webapp.bootstrap.config import SECURITY_HEADERS
from webapp.auth.tokens import TokenStore
from webapp.domain.correlation_id import CorrelationLoggerAdapter
from webapp.domain.http_types import HttpRequest, HttpResponse
from webapp.domain.response_builders import json_response, unauthorized_response

AUTH_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webapp.handlers.auth"), {})


def bearer_token(request: HttpRequest) -> Optional[str]:
    """Return the credential from an ``Authorization: Bearer`` header."""
    scheme, _, value = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def handle_session(
    store: TokenStore,
    clock: Callable[[], datetime],
    request: HttpRequest,
) -> HttpResponse:
    """Describe the session that owns the presented bearer token."""
    credential = bearer_token(request)
    record = store.find_by_token(credential, clock()) if credential else None
    if record is None:
        AUTH_LOGGER.info(
            "Session lookup rejected",
            extra={"event": "session_rejected", "route": request.path},
        )
        return unauthorized_response(request, SECURITY_HEADERS)
    return json_response(
        {"username": record.username, "expires_at": record.expires_at.isoformat()},
        request,
        SECURITY_HEADERS,
    )
