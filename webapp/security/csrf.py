"""Double-submit CSRF protection with signed cookies and masked tokens."""

import base64
import binascii
import hashlib
import hmac
import logging
import secrets
import time
import urllib.parse
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from webapp.bootstrap.config import DeploymentProfile
from webapp.domain.correlation_id import CorrelationLoggerAdapter
from webapp.domain.http_types import HttpRequest, HttpResponse
from webapp.domain.response_builders import forbidden_response
from webapp.pipeline.filters import Handler, RequestFilter

CSRF_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webapp.security.csrf"), {})

TOKEN_LENGTH = 32
COOKIE_NAME = "_csrf"
COOKIE_MAX_AGE = 12 * 60 * 60
HEADER_NAME = "X-CSRF-Token"
FORM_FIELD = "csrf_token"

REASON_BAD_TOKEN = "CSRF token invalid"
REASON_NO_TOKEN = "CSRF token not found"
REASON_NO_REFERER = "referer not supplied"
REASON_BAD_REFERER = "referer invalid"


class CsrfFailure(Exception):
    """Raised when an unsafe request fails verification."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _b64decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(padded.encode())


def mask_token(token: bytes) -> str:
    """Return base64(otp || otp XOR token) with a fresh one-time pad."""
    otp = secrets.token_bytes(len(token))
    masked = bytes(a ^ b for a, b in zip(otp, token))
    return base64.b64encode(otp + masked).decode()


def unmask_token(value: str) -> Optional[bytes]:
    """Recover the real token from a masked value, or None when malformed."""
    try:
        raw = base64.b64decode(value.encode(), validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(raw) != TOKEN_LENGTH * 2:
        return None
    otp, masked = raw[:TOKEN_LENGTH], raw[TOKEN_LENGTH:]
    return bytes(a ^ b for a, b in zip(otp, masked))


@dataclass
class CsrfPolicy:
    """Settings that differ between deployment modes."""

    secret: str
    secure: bool
    trusted_origins: Sequence[str]
    max_age: int = COOKIE_MAX_AGE

    @classmethod
    def from_profile(cls, secret: str, profile: DeploymentProfile) -> "CsrfPolicy":
        return cls(
            secret=secret,
            secure=profile.csrf_secure,
            trusted_origins=list(profile.trusted_origins),
        )


class CsrfProtector:
    """Signs, verifies and compares CSRF tokens."""

    def __init__(self, policy: CsrfPolicy, clock: Callable[[], float] = time.time):
        if not policy.secret:
            raise ValueError("CSRF secret must not be empty")
        self._policy = policy
        self._key = policy.secret.encode()
        self._clock = clock

    @property
    def policy(self) -> CsrfPolicy:
        return self._policy

    def _signature(self, payload: str) -> str:
        digest = hmac.new(self._key, payload.encode(), hashlib.sha256).digest()
        return _b64encode(digest)

    def sign_cookie(self, token: bytes) -> str:
        """Return the cookie value: token.timestamp.signature."""
        payload = f"{_b64encode(token)}.{int(self._clock())}"
        return f"{payload}.{self._signature(payload)}"

    def read_cookie(self, value: str) -> Optional[bytes]:
        """Return the real token from a cookie value if it is valid and fresh."""
        parts = value.split(".")
        if len(parts) != 3:
            return None
        encoded, stamp, signature = parts
        payload = f"{encoded}.{stamp}"
        if not hmac.compare_digest(signature, self._signature(payload)):
            return None
        try:
            issued = int(stamp)
            token = _b64decode(encoded)
        except (ValueError, binascii.Error):
            return None
        if self._clock() - issued > self._policy.max_age:
            return None
        if len(token) != TOKEN_LENGTH:
            return None
        return token

    def cookie_header(self, token: bytes) -> str:
        """Build the Set-Cookie value carrying the signed token."""
        attributes = [
            f"{COOKIE_NAME}={self.sign_cookie(token)}",
            "Path=/",
            f"Max-Age={self._policy.max_age}",
            "HttpOnly",
            "SameSite=Lax",
        ]
        if self._policy.secure:
            attributes.append("Secure")
        return "; ".join(attributes)

    def verify_origin(self, request: HttpRequest) -> None:
        """Check Origin or Referer against the request host and trusted origins."""
        source = request.headers.get("origin") or request.headers.get("referer")
        if not source:
            raise CsrfFailure(REASON_NO_REFERER)
        parsed = urllib.parse.urlsplit(source)
        if not parsed.netloc:
            raise CsrfFailure(REASON_BAD_REFERER)
        if parsed.netloc == request.headers.get("host", ""):
            return
        origin = f"{parsed.scheme}://{parsed.netloc}"
        for trusted in self._policy.trusted_origins:
            if trusted == "*" or trusted.rstrip("/") in (origin, parsed.netloc):
                return
        raise CsrfFailure(REASON_BAD_REFERER)

    def verify(self, request: HttpRequest, real_token: Optional[bytes]) -> None:
        """Raise CsrfFailure unless the request carries a matching token."""
        if self._policy.secure:
            self.verify_origin(request)
        if real_token is None:
            raise CsrfFailure(REASON_BAD_TOKEN)
        submitted = request.headers.get(HEADER_NAME.lower()) or request.form_fields().get(
            FORM_FIELD, ""
        )
        if not submitted:
            raise CsrfFailure(REASON_NO_TOKEN)
        candidate = unmask_token(submitted)
        if candidate is None or not hmac.compare_digest(candidate, real_token):
            raise CsrfFailure(REASON_BAD_TOKEN)


class CsrfFilter(RequestFilter):
    """Second pipeline stage: rejects unsafe requests without a valid token."""

    name = "csrf"

    def __init__(self, protector: CsrfProtector, security_headers: dict[str, str]):
        self._protector = protector
        self._security_headers = security_headers

    def process(self, request: HttpRequest, forward: Handler) -> HttpResponse:
        cookie_value = request.cookies().get(COOKIE_NAME)
        real_token = self._protector.read_cookie(cookie_value) if cookie_value else None
        issue_cookie = real_token is None

        if not request.is_safe:
            try:
                self._protector.verify(request, real_token)
            except CsrfFailure as failure:
                CSRF_LOGGER.warning(
                    "CSRF verification failed",
                    extra={
                        "event": "csrf_rejected",
                        "route": request.path,
                        "method": request.method,
                        "failure": failure.reason,
                    },
                )
                response = forbidden_response(
                    request, self._security_headers, f"Forbidden - {failure.reason}\n"
                )
                if issue_cookie:
                    response.cookies.append(
                        self._protector.cookie_header(secrets.token_bytes(TOKEN_LENGTH))
                    )
                return response

        if real_token is None:
            real_token = secrets.token_bytes(TOKEN_LENGTH)
        response = forward(request)
        response.headers[HEADER_NAME] = mask_token(real_token)
        if issue_cookie:
            response.cookies.append(self._protector.cookie_header(real_token))
        return response
