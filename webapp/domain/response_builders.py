"""Pure HTTP response builders."""

import json
from typing import Any, Iterable, Optional

from webapp.domain.http_types import HttpRequest, HttpResponse, should_close


def _close_for(request: Optional[HttpRequest]) -> bool:
    return should_close(request.headers) if request is not None else True


def text_response(
    message: str,
    request: HttpRequest,
    security_headers: dict[str, str],
    status_line: str = "HTTP/1.1 200 OK",
) -> HttpResponse:
    """Return a text/plain response."""
    headers = {"Content-Type": "text/plain; charset=utf-8", **security_headers}
    return HttpResponse(
        status_line, headers, message.encode(), should_close(request.headers)
    )


def json_response(
    payload: Any,
    request: HttpRequest,
    security_headers: dict[str, str],
    status_line: str = "HTTP/1.1 200 OK",
) -> HttpResponse:
    """Return an application/json response."""
    headers = {"Content-Type": "application/json", **security_headers}
    body = json.dumps(payload, sort_keys=True).encode()
    return HttpResponse(status_line, headers, body, should_close(request.headers))


def not_found_response(
    request: HttpRequest, security_headers: dict[str, str]
) -> HttpResponse:
    """Return a 404 response reusing the connection preference."""
    return text_response(
        "404 page not found", request, security_headers, "HTTP/1.1 404 Not Found"
    )


def forbidden_response(
    request: Optional[HttpRequest],
    security_headers: dict[str, str],
    reason: str = "",
) -> HttpResponse:
    """Produce a 403 response honoring the caller's connection preference."""
    headers = security_headers.copy()
    body = b""
    if reason:
        headers["Content-Type"] = "text/plain; charset=utf-8"
        body = reason.encode()
    return HttpResponse("HTTP/1.1 403 Forbidden", headers, body, _close_for(request))


def bad_request_response(
    request: Optional[HttpRequest], security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a 400 response honoring the caller's connection preference."""
    return HttpResponse(
        "HTTP/1.1 400 Bad Request",
        security_headers.copy(),
        b"",
        _close_for(request),
    )


def unauthorized_response(
    request: HttpRequest, security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a 401 response asking for a bearer token."""
    headers = {"WWW-Authenticate": "Bearer", **security_headers}
    return HttpResponse(
        "HTTP/1.1 401 Unauthorized", headers, b"", should_close(request.headers)
    )


def entity_too_large_response(security_headers: dict[str, str]) -> HttpResponse:
    """Produce a 413 response that always closes the connection."""
    return HttpResponse(
        "HTTP/1.1 413 Payload Too Large", security_headers.copy(), b"", True
    )


def internal_error_response(security_headers: dict[str, str]) -> HttpResponse:
    """Produce a 500 response that closes the connection."""
    return HttpResponse(
        "HTTP/1.1 500 Internal Server Error", security_headers.copy(), b"", True
    )


def draining_response(security_headers: dict[str, str]) -> HttpResponse:
    """Produce a 503 response indicating the server is draining."""
    headers = {"Connection": "close", **security_headers}
    return HttpResponse(
        "HTTP/1.1 503 Service Unavailable",
        headers,
        b"draining",
        True,
    )


def healthz_response(
    is_draining: bool, request: HttpRequest, security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a health check response based on server state."""
    if is_draining:
        return draining_response(security_headers)
    return text_response("ok", request, security_headers)


def method_not_allowed_response(
    request: HttpRequest,
    security_headers: dict[str, str],
    allowed_methods: Iterable[str],
) -> HttpResponse:
    """Produce a 405 response enumerating the supported HTTP methods."""
    allow_header = ", ".join(sorted(allowed_methods))
    headers = {"Allow": allow_header, **security_headers}
    return HttpResponse(
        "HTTP/1.1 405 Method Not Allowed",
        headers,
        b"",
        should_close(request.headers),
    )
