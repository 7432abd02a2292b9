"""Composable request filters applied ahead of the router."""

import functools
from abc import ABC, abstractmethod
from typing import Callable, Sequence

from webapp.domain.http_types import HttpRequest, HttpResponse

Handler = Callable[[HttpRequest], HttpResponse]


class RequestFilter(ABC):
    """One pipeline stage.

    A stage either returns its own response, short-circuiting the chain, or
    calls ``forward`` to hand the request to the next stage.
    """

    name = "filter"

    @abstractmethod
    def process(self, request: HttpRequest, forward: Handler) -> HttpResponse:
        """Handle the request or pass it on."""


class FilterChain:
    """Ordered filters wrapping a terminal handler."""

    def __init__(self, filters: Sequence[RequestFilter], terminal: Handler) -> None:
        self._filters = tuple(filters)
        self._terminal = terminal

    @property
    def names(self) -> list[str]:
        """Return the stage names in execution order."""
        return [request_filter.name for request_filter in self._filters]

    def handle(self, request: HttpRequest) -> HttpResponse:
        """Run the request through every stage and the terminal handler."""
        return self._dispatch(0, request)

    def _dispatch(self, index: int, request: HttpRequest) -> HttpResponse:
        if index == len(self._filters):
            return self._terminal(request)
        forward = functools.partial(self._dispatch, index + 1)
        return self._filters[index].process(request, forward)
