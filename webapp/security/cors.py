"""CORS (Cross-Origin Resource Sharing) policy and request filter."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from webapp.bootstrap.config import (
    CORS_ALLOWED_HEADERS,
    CORS_ALLOWED_METHODS,
    CORS_EXPOSE_HEADERS,
    CORS_MAX_AGE,
    DeploymentProfile,
)
from webapp.domain.correlation_id import CorrelationLoggerAdapter
from webapp.domain.http_types import HttpRequest, HttpResponse, should_close
from webapp.pipeline.filters import Handler, RequestFilter

CORS_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webapp.security.cors"), {})

# Browsers may always send these without them being listed.
SIMPLE_REQUEST_HEADERS = {"accept", "accept-language", "content-language", "origin"}


@dataclass
class CorsConfig:
    """CORS configuration for cross-origin resource sharing."""

    allowed_origins: Sequence[str]
    allowed_methods: Sequence[str]
    allowed_headers: Sequence[str]
    expose_headers: Sequence[str]
    allow_credentials: bool
    max_age: int

    @classmethod
    def from_profile(cls, profile: DeploymentProfile) -> "CorsConfig":
        """Build the policy for the active deployment profile."""
        return cls(
            allowed_origins=list(profile.cors_allowed_origins),
            allowed_methods=list(CORS_ALLOWED_METHODS),
            allowed_headers=list(CORS_ALLOWED_HEADERS),
            expose_headers=list(CORS_EXPOSE_HEADERS),
            allow_credentials=False,
            max_age=CORS_MAX_AGE,
        )


def is_preflight_request(request: HttpRequest) -> bool:
    """Check if the request is a CORS preflight OPTIONS request."""
    return request.method == "OPTIONS" and "origin" in request.headers


def determine_allowed_origin(origin: str, cors_config: CorsConfig) -> Optional[str]:
    """Determine the Access-Control-Allow-Origin value for an origin."""
    if "*" in cors_config.allowed_origins:
        return origin if cors_config.allow_credentials else "*"
    if origin in cors_config.allowed_origins:
        return origin
    return None


def _bare_response(
    status_line: str, request: HttpRequest, headers: dict[str, str]
) -> HttpResponse:
    return HttpResponse(status_line, headers, b"", should_close(request.headers))


def preflight_response(
    request: HttpRequest, cors_config: CorsConfig, security_headers: dict[str, str]
) -> HttpResponse:
    """Answer a preflight request without consulting later pipeline stages."""
    headers = {**security_headers}
    origin = request.headers.get("origin", "")
    allowed_origin = determine_allowed_origin(origin, cors_config)
    if allowed_origin is None:
        CORS_LOGGER.info(
            "Preflight from disallowed origin",
            extra={"event": "cors_origin_rejected", "route": request.path},
        )
        return _bare_response("HTTP/1.1 200 OK", request, headers)

    requested_method = request.headers.get("access-control-request-method", "").strip()
    if not requested_method:
        return _bare_response("HTTP/1.1 400 Bad Request", request, headers)
    if requested_method.upper() not in {m.upper() for m in cors_config.allowed_methods}:
        CORS_LOGGER.info(
            "Preflight for disallowed method",
            extra={"event": "cors_method_rejected", "method": requested_method},
        )
        return _bare_response("HTTP/1.1 405 Method Not Allowed", request, headers)

    requested_headers = [
        h.strip()
        for h in request.headers.get("access-control-request-headers", "").split(",")
        if h.strip()
    ]
    allowed = {h.lower() for h in cors_config.allowed_headers} | SIMPLE_REQUEST_HEADERS
    if any(h.lower() not in allowed for h in requested_headers):
        CORS_LOGGER.info(
            "Preflight for disallowed headers",
            extra={"event": "cors_headers_rejected", "route": request.path},
        )
        return _bare_response("HTTP/1.1 403 Forbidden", request, headers)

    headers["Access-Control-Allow-Origin"] = allowed_origin
    if allowed_origin != "*":
        headers["Vary"] = "Origin"
    if cors_config.allow_credentials:
        headers["Access-Control-Allow-Credentials"] = "true"
    headers["Access-Control-Allow-Methods"] = ", ".join(cors_config.allowed_methods)
    if requested_headers:
        headers["Access-Control-Allow-Headers"] = ", ".join(requested_headers)
    if cors_config.max_age > 0:
        headers["Access-Control-Max-Age"] = str(cors_config.max_age)
    return _bare_response("HTTP/1.1 200 OK", request, headers)


def apply_cors_headers(
    headers: dict[str, str],
    request: HttpRequest,
    cors_config: Optional[CorsConfig],
) -> None:
    """Annotate a response for an allowed cross-origin request."""
    if cors_config is None:
        return

    origin = request.headers.get("origin")
    if not origin:
        return

    allowed_origin = determine_allowed_origin(origin, cors_config)
    if not allowed_origin:
        return

    headers["Access-Control-Allow-Origin"] = allowed_origin
    if allowed_origin != "*":
        headers.setdefault("Vary", "Origin")
    if cors_config.allow_credentials:
        headers["Access-Control-Allow-Credentials"] = "true"
    if cors_config.expose_headers:
        headers["Access-Control-Expose-Headers"] = ", ".join(cors_config.expose_headers)


class CorsFilter(RequestFilter):
    """First pipeline stage: answers preflights, annotates everything else."""

    name = "cors"

    def __init__(self, cors_config: CorsConfig, security_headers: dict[str, str]):
        self._config = cors_config
        self._security_headers = security_headers

    def process(self, request: HttpRequest, forward: Handler) -> HttpResponse:
        if is_preflight_request(request):
            return preflight_response(request, self._config, self._security_headers)
        response = forward(request)
        apply_cors_headers(response.headers, request, self._config)
        return response
