"""Static file serving handler."""

import logging
import mimetypes
from pathlib import Path
from typing import Iterator

from webapp.domain.correlation_id import CorrelationLoggerAdapter
from webapp.domain.http_types import HttpRequest, HttpResponse, should_close
from webapp.domain.response_builders import forbidden_response, not_found_response
from webapp.domain.sandbox import ForbiddenPath, StaticRoot

FILE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webapp.handlers.file"), {})


def stream_file(filepath: Path, chunk_size: int = 65536) -> Iterator[bytes]:
    """Yield file contents in fixed-size chunks for streaming responses."""
    if FILE_LOGGER.logger.isEnabledFor(logging.DEBUG):
        FILE_LOGGER.debug(
            "File streaming started",
            extra={"event": "file_streaming_started", "path": filepath.as_posix()},
        )
    with open(filepath, "rb") as file_handle:
        while True:
            chunk = file_handle.read(chunk_size)
            if not chunk:
                break
            yield chunk


def _content_type_for_path(filepath: Path) -> str:
    mime_type, _ = mimetypes.guess_type(filepath.as_posix())
    return mime_type or "application/octet-stream"


def _streaming_file_response(
    request: HttpRequest,
    resolved_path: Path,
    security_headers: dict[str, str],
) -> HttpResponse:
    headers = {
        "Content-Type": _content_type_for_path(resolved_path),
        **security_headers,
    }
    return HttpResponse(
        "HTTP/1.1 200 OK",
        headers,
        b"",
        should_close(request.headers),
        body_iter=stream_file(resolved_path),
        use_chunked=True,
    )


class StaticFileHandler:
    """Serves files below a directory for paths under a URL prefix."""

    def __init__(self, directory: str, prefix: str, security_headers: dict[str, str]):
        self.root = StaticRoot(directory)
        self.prefix = prefix
        self._security_headers = security_headers

    def __call__(self, request: HttpRequest) -> HttpResponse:
        relative = request.path[len(self.prefix) :]
        try:
            resolved_path = self.root.locate(relative)
        except ForbiddenPath:
            FILE_LOGGER.warning(
                "Forbidden path access blocked",
                extra={
                    "event": "forbidden_path",
                    "path": relative,
                    "method": request.method,
                },
            )
            return forbidden_response(request, self._security_headers)

        if resolved_path is None:
            FILE_LOGGER.info(
                "File not found",
                extra={
                    "event": "file_not_found",
                    "path": relative,
                    "method": request.method,
                },
            )
            return not_found_response(request, self._security_headers)

        if FILE_LOGGER.logger.isEnabledFor(logging.DEBUG):
            FILE_LOGGER.debug(
                "Serving static file",
                extra={"event": "file_served", "path": resolved_path.as_posix()},
            )
        return _streaming_file_response(request, resolved_path, self._security_headers)
