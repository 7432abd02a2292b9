"""Shared HTTP type definitions to avoid circular imports."""

import urllib.parse
from dataclasses import dataclass, field
from http.cookies import CookieError, SimpleCookie
from typing import Iterable, Optional

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request."""

    method: str
    path: str
    headers: dict[str, str]
    body: bytes
    target: str = ""
    client_ip: str = ""

    @property
    def request_uri(self) -> str:
        """Return the raw request target, falling back to the decoded path."""
        return self.target or self.path

    @property
    def is_safe(self) -> bool:
        """Return True for methods that must not change server state."""
        return self.method in SAFE_METHODS

    def cookies(self) -> dict[str, str]:
        """Parse the Cookie header into a name to value mapping."""
        raw = self.headers.get("cookie", "")
        if not raw:
            return {}
        jar = SimpleCookie()
        try:
            jar.load(raw)
        except CookieError:
            return {}
        return {name: morsel.value for name, morsel in jar.items()}

    def form_fields(self) -> dict[str, str]:
        """Decode an application/x-www-form-urlencoded body."""
        content_type = self.headers.get("content-type", "")
        if not content_type.lower().startswith("application/x-www-form-urlencoded"):
            return {}
        try:
            pairs = urllib.parse.parse_qsl(self.body.decode(), keep_blank_values=True)
        except UnicodeDecodeError:
            return {}
        return dict(pairs)


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client."""

    status_line: str
    headers: dict[str, str]
    body: bytes
    close_connection: bool
    body_iter: Optional[Iterable[bytes]] = None
    use_chunked: bool = False
    cookies: list[str] = field(default_factory=list)

    @property
    def status_code(self) -> int:
        """Return the numeric status code from the status line."""
        return int(self.status_line.split(" ", 2)[1])


def should_close(headers: dict[str, str]) -> bool:
    """Determine whether the connection should be closed after responding."""
    return headers.get("connection", "").lower() == "close"
