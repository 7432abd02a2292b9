"""Request routing logic."""

import functools
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from webapp.auth.tokens import TokenStore
from webapp.bootstrap.config import SECURITY_HEADERS, STATIC_ENDPOINT_PREFIX
from webapp.domain.correlation_id import CorrelationLoggerAdapter
from webapp.domain.http_types import HttpRequest, HttpResponse, should_close
from webapp.domain.response_builders import (
    method_not_allowed_response,
    not_found_response,
)
from webapp.handlers.auth_handlers import handle_session
from webapp.handlers.file_handler import StaticFileHandler
from webapp.handlers.system_handlers import handle_healthz
from webapp.lifecycle.state import ServerLifecycle
from webapp.pipeline.filters import Handler

ROUTER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("webapp.pipeline.router"), {}
)

READ_METHODS = frozenset({"GET", "HEAD"})


@dataclass(frozen=True)
class Route:
    """A path, or path prefix, bound to a handler for a set of methods."""

    path: str
    handler: Handler
    methods: frozenset[str]
    prefix: bool = False

    def matches(self, path: str) -> bool:
        if self.prefix:
            return path.startswith(self.path)
        return path == self.path


class Router:
    """Ordered route table; the first route whose path matches wins."""

    def __init__(self, security_headers: Optional[dict[str, str]] = None) -> None:
        self._routes: list[Route] = []
        self._security_headers = (
            SECURITY_HEADERS if security_headers is None else security_headers
        )

    @property
    def routes(self) -> list[Route]:
        return list(self._routes)

    def add_route(
        self, path: str, handler: Handler, methods: Iterable[str] = READ_METHODS
    ) -> None:
        """Bind an exact path."""
        self._routes.append(Route(path, handler, frozenset(methods)))

    def add_prefix(
        self, prefix: str, handler: Handler, methods: Iterable[str] = READ_METHODS
    ) -> None:
        """Bind every path that starts with prefix."""
        self._routes.append(Route(prefix, handler, frozenset(methods), prefix=True))

    def _allowed_methods(self, path: str) -> set[str]:
        allowed: set[str] = set()
        for route in self._routes:
            if route.matches(path):
                allowed |= route.methods
        return allowed

    def dispatch(self, request: HttpRequest) -> HttpResponse:
        """Route the request to the appropriate handler and return a response."""
        for route in self._routes:
            if route.matches(request.path) and request.method in route.methods:
                if ROUTER_LOGGER.logger.isEnabledFor(logging.DEBUG):
                    ROUTER_LOGGER.debug(
                        "Route matched",
                        extra={"event": "route_matched", "route": route.path},
                    )
                return route.handler(request)

        allowed = self._allowed_methods(request.path)
        if not allowed:
            ROUTER_LOGGER.info(
                "No matching route found",
                extra={
                    "event": "route_not_found",
                    "route": request.path,
                    "method": request.method,
                },
            )
            return not_found_response(request, self._security_headers)

        if request.method == "OPTIONS":
            headers = {
                "Allow": ", ".join(sorted(allowed | {"OPTIONS"})),
                **self._security_headers,
            }
            return HttpResponse(
                "HTTP/1.1 200 OK", headers, b"", should_close(request.headers)
            )

        ROUTER_LOGGER.info(
            "Method not allowed for route",
            extra={
                "event": "method_not_allowed",
                "route": request.path,
                "method": request.method,
            },
        )
        return method_not_allowed_response(request, self._security_headers, allowed)

    __call__ = dispatch


def register_routes(
    router: Router,
    directory: str,
    lifecycle: Optional[ServerLifecycle],
    store: TokenStore,
    clock: Callable[[], datetime],
) -> Router:
    """Wire the built-in routes; other route groups use the same add_* calls."""
    router.add_prefix(
        STATIC_ENDPOINT_PREFIX,
        StaticFileHandler(directory, STATIC_ENDPOINT_PREFIX, SECURITY_HEADERS),
    )
    router.add_route("/healthz", functools.partial(handle_healthz, lifecycle))
    router.add_route(
        "/api/auth/session", functools.partial(handle_session, store, clock), {"GET"}
    )
    return router
