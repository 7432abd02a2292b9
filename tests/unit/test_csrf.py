"""Unit tests for CSRF token handling."""

import base64
from unittest.mock import MagicMock

import pytest

from webapp.bootstrap.config import SECURITY_HEADERS
from webapp.domain.http_types import HttpRequest, HttpResponse
from webapp.security.csrf import (
    COOKIE_NAME,
    TOKEN_LENGTH,
    CsrfFailure,
    CsrfFilter,
    CsrfPolicy,
    CsrfProtector,
    mask_token,
    unmask_token,
)

REAL_TOKEN = bytes(range(TOKEN_LENGTH))


class Clock:
    """Adjustable wall clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_protector(secure=False, trusted=("*",), clock=None) -> CsrfProtector:
    """Protector with a fixed secret."""
    return CsrfProtector(
        CsrfPolicy(secret="csrf-secret", secure=secure, trusted_origins=list(trusted)),
        clock=clock or Clock(),
    )


def ok_forward(_request):
    """Terminal handler that always succeeds."""
    return HttpResponse("HTTP/1.1 200 OK", {}, b"ok", False)


def cookie_value(set_cookie: str) -> str:
    """Extract the value from a Set-Cookie header."""
    return set_cookie.split(";", 1)[0].split("=", 1)[1]


def test_mask_round_trip_uses_fresh_pad():
    """Masked values differ per call but unmask to the same token."""
    first, second = mask_token(REAL_TOKEN), mask_token(REAL_TOKEN)
    assert first != second
    assert unmask_token(first) == REAL_TOKEN
    assert unmask_token(second) == REAL_TOKEN
    assert len(base64.b64decode(first)) == 2 * TOKEN_LENGTH


@pytest.mark.parametrize("value", ["", "***", base64.b64encode(b"short").decode()])
def test_unmask_rejects_malformed_values(value):
    """Values of the wrong shape unmask to None."""
    assert unmask_token(value) is None


def test_cookie_signature_and_age_are_checked():
    """Tampered and stale cookies read as absent."""
    clock = Clock()
    protector = make_protector(clock=clock)
    value = protector.sign_cookie(REAL_TOKEN)
    assert protector.read_cookie(value) == REAL_TOKEN

    encoded, stamp, signature = value.split(".")
    assert protector.read_cookie(f"{encoded}.{int(stamp) + 1}.{signature}") is None
    assert make_protector(clock=clock).read_cookie(value) == REAL_TOKEN
    other_secret = CsrfProtector(
        CsrfPolicy(secret="other", secure=False, trusted_origins=["*"]), clock=clock
    )
    assert other_secret.read_cookie(value) is None

    clock.now += 12 * 60 * 60 + 1
    assert protector.read_cookie(value) is None


def test_cookie_header_attributes_follow_policy():
    """Secure is only set in secure mode."""
    relaxed = make_protector().cookie_header(REAL_TOKEN)
    strict = make_protector(secure=True).cookie_header(REAL_TOKEN)
    for header in (relaxed, strict):
        assert header.startswith(f"{COOKIE_NAME}=")
        assert "HttpOnly" in header
        assert "SameSite=Lax" in header
        assert "Path=/" in header
        assert "Max-Age=43200" in header
    assert "Secure" not in relaxed
    assert header.endswith("Secure")


def test_safe_request_gets_cookie_and_masked_token():
    """GET passes, issues a cookie and exposes a masked token."""
    protector = make_protector()
    csrf_filter = CsrfFilter(protector, SECURITY_HEADERS)

    response = csrf_filter.process(HttpRequest("GET", "/", {}, b""), ok_forward)

    assert response.status_code == 200
    assert len(response.cookies) == 1
    real = protector.read_cookie(cookie_value(response.cookies[0]))
    assert unmask_token(response.headers["X-CSRF-Token"]) == real


def test_safe_request_with_valid_cookie_is_not_reissued():
    """A valid cookie is kept as is."""
    protector = make_protector()
    cookie = f"{COOKIE_NAME}={protector.sign_cookie(REAL_TOKEN)}"
    response = CsrfFilter(protector, SECURITY_HEADERS).process(
        HttpRequest("HEAD", "/", {"cookie": cookie}, b""), ok_forward
    )
    assert response.cookies == []
    assert unmask_token(response.headers["X-CSRF-Token"]) == REAL_TOKEN


def test_unsafe_request_without_token_is_forbidden():
    """A tokenless POST never reaches the handler."""
    forward = MagicMock()
    response = CsrfFilter(make_protector(), SECURITY_HEADERS).process(
        HttpRequest("POST", "/api/items", {"content-length": "0"}, b""), forward
    )
    forward.assert_not_called()
    assert response.status_code == 403
    assert b"Forbidden - CSRF token invalid" in response.body


def test_unsafe_request_with_header_token_passes():
    """A masked header token matching the cookie is accepted."""
    protector = make_protector()
    headers = {
        "cookie": f"{COOKIE_NAME}={protector.sign_cookie(REAL_TOKEN)}",
        "x-csrf-token": mask_token(REAL_TOKEN),
    }
    response = CsrfFilter(protector, SECURITY_HEADERS).process(
        HttpRequest("PUT", "/api/items", headers, b""), ok_forward
    )
    assert response.status_code == 200


def test_unsafe_request_with_form_token_passes():
    """The token may also arrive as a form field."""
    protector = make_protector()
    body = f"csrf_token={mask_token(REAL_TOKEN)}".replace("+", "%2B").encode()
    headers = {
        "cookie": f"{COOKIE_NAME}={protector.sign_cookie(REAL_TOKEN)}",
        "content-type": "application/x-www-form-urlencoded",
    }
    response = CsrfFilter(protector, SECURITY_HEADERS).process(
        HttpRequest("POST", "/login", headers, body), ok_forward
    )
    assert response.status_code == 200


def test_unsafe_request_with_mismatched_token_is_forbidden():
    """A token minted for another cookie is refused."""
    protector = make_protector()
    headers = {
        "cookie": f"{COOKIE_NAME}={protector.sign_cookie(REAL_TOKEN)}",
        "x-csrf-token": mask_token(bytes(TOKEN_LENGTH)),
    }
    response = CsrfFilter(protector, SECURITY_HEADERS).process(
        HttpRequest("POST", "/", headers, b""), ok_forward
    )
    assert response.status_code == 403


def test_secure_mode_checks_referer():
    """Secure mode requires a same-origin or trusted Origin/Referer."""
    protector = make_protector(secure=True, trusted=["https://www.example.com"])
    base = {
        "host": "api.example.com",
        "cookie": f"{COOKIE_NAME}={protector.sign_cookie(REAL_TOKEN)}",
        "x-csrf-token": mask_token(REAL_TOKEN),
    }

    with pytest.raises(CsrfFailure, match="referer not supplied"):
        protector.verify(HttpRequest("POST", "/", dict(base), b""), REAL_TOKEN)
    with pytest.raises(CsrfFailure, match="referer invalid"):
        protector.verify(
            HttpRequest("POST", "/", {**base, "origin": "https://evil.example"}, b""),
            REAL_TOKEN,
        )
    protector.verify(
        HttpRequest("POST", "/", {**base, "referer": "https://www.example.com/form"}, b""),
        REAL_TOKEN,
    )
    protector.verify(
        HttpRequest("POST", "/", {**base, "origin": "https://api.example.com"}, b""),
        REAL_TOKEN,
    )


def test_protector_requires_secret():
    """An empty secret cannot sign anything."""
    with pytest.raises(ValueError):
        CsrfProtector(CsrfPolicy(secret="", secure=False, trusted_origins=[]))
