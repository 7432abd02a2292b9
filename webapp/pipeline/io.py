"""HTTP Input/Output operations."""

import logging
import socket
import time
import urllib.parse
from typing import Callable, Optional, Tuple

from webapp.bootstrap.config import HEADER_DELIMITER, MAX_BODY_BYTES
from webapp.domain.correlation_id import (
    REQUEST_ID_HEADER,
    CorrelationLoggerAdapter,
    adopt_incoming,
    get_correlation_id,
)
from webapp.domain.http_types import HttpRequest, HttpResponse
from webapp.pipeline.validation import RequestEntityTooLarge

IO_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webapp.pipeline.io"), {})

RECV_SIZE = 4096
MAX_HEADER_BYTES = 64 * 1024


def _recv_with_deadline(client_socket: socket.socket, deadline_ns: int) -> bytes:
    """Receive data from socket with a deadline, raising TimeoutError if exceeded."""
    remaining_ns = deadline_ns - time.monotonic_ns()
    if remaining_ns <= 0:
        raise TimeoutError("Request deadline exceeded")
    timeout_seconds = remaining_ns / 1_000_000_000
    client_socket.settimeout(timeout_seconds)
    return client_socket.recv(RECV_SIZE)


def _wait_for_first_bytes(
    client_socket: socket.socket, idle_timeout: Optional[float]
) -> bytes:
    """Block until the next request starts; empty bytes mean the peer went away."""
    client_socket.settimeout(idle_timeout)
    try:
        return client_socket.recv(RECV_SIZE)
    except socket.timeout:
        if IO_LOGGER.logger.isEnabledFor(logging.DEBUG):
            IO_LOGGER.debug("Idle connection timed out", extra={"event": "idle_timeout"})
        return b""


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Convert raw header lines into a lowercase-keyed dictionary."""
    parsed = {}
    for line in lines:
        name, separator, value = line.partition(":")
        if not separator or not name.strip():
            raise ValueError("Malformed header line")
        parsed[name.strip().lower()] = value.strip()
    return parsed


def parse_request_line(request_line: str) -> Tuple[str, str, str]:
    """Parse the method, decoded path and raw target from the request line."""
    try:
        method, target, version = request_line.split(" ", 2)
    except ValueError as exc:
        raise ValueError("Invalid request line") from exc
    if not version.startswith("HTTP/") or not method.isalpha():
        raise ValueError("Invalid request line")

    parsed_target = urllib.parse.urlsplit(target)
    path = urllib.parse.unquote(parsed_target.path)
    return method.upper(), path, target


def determine_content_length(method: str, headers: dict[str, str]) -> int:
    """Validate and return the declared Content-Length for the request."""
    if "transfer-encoding" in headers:
        raise ValueError("Chunked request bodies are not supported")
    header_value = headers.get("content-length")
    if method == "POST" and header_value is None:
        raise ValueError("Missing Content-Length")
    if header_value is None:
        return 0
    try:
        content_length = int(header_value)
    except ValueError as exc:
        raise ValueError("Invalid Content-Length") from exc
    if content_length < 0:
        raise ValueError("Negative Content-Length")
    if content_length > MAX_BODY_BYTES:
        raise RequestEntityTooLarge
    return content_length


def receive_request(
    client_socket: socket.socket,
    buffer: bytes,
    idle_timeout: Optional[float] = None,
    read_timeout: Optional[float] = None,
    on_request_start: Optional[Callable[[], None]] = None,
) -> Tuple[Optional[HttpRequest], bytes]:
    """Read bytes from the socket until a complete request is available.

    The idle timeout bounds the wait for the first byte of a request; once it
    arrives, the whole request must be read within the read timeout.
    on_request_start runs as soon as that first byte is in hand.
    """
    if not buffer:
        buffer = _wait_for_first_bytes(client_socket, idle_timeout)
        if not buffer:
            return None, b""
    if on_request_start is not None:
        on_request_start()

    deadline_ns = (
        time.monotonic_ns() + int(read_timeout * 1_000_000_000)
        if read_timeout is not None
        else None
    )

    def _recv() -> bytes:
        if deadline_ns is None:
            client_socket.settimeout(None)
            return client_socket.recv(RECV_SIZE)
        return _recv_with_deadline(client_socket, deadline_ns)

    while HEADER_DELIMITER not in buffer:
        if len(buffer) > MAX_HEADER_BYTES:
            raise ValueError("Header block too large")
        chunk = _recv()
        if not chunk:
            return None, b""
        buffer += chunk

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    header_lines = header_block.decode().split("\r\n")
    method, path, target = parse_request_line(header_lines[0])
    headers = parse_headers(header_lines[1:])

    adopt_incoming(headers.get(REQUEST_ID_HEADER.lower()))

    content_length = determine_content_length(method, headers)

    while len(remainder) < content_length:
        chunk = _recv()
        if not chunk:
            return None, b""
        remainder += chunk

    body = remainder[:content_length]
    leftover = remainder[content_length:]
    if IO_LOGGER.logger.isEnabledFor(logging.DEBUG):
        IO_LOGGER.debug(
            "Parsed request",
            extra={"event": "request_parsed", "method": method, "route": path},
        )
    return HttpRequest(method, path, headers, body, target=target), leftover


def send_response(
    client_socket: socket.socket,
    response: HttpResponse,
    method: str = "GET",
    write_timeout: Optional[float] = None,
) -> None:
    """Serialize and send the HTTP response over the socket.

    HEAD requests get the full header block and no body.
    """
    headers = dict(response.headers)
    omit_body = method == "HEAD"

    correlation_id = get_correlation_id()
    if correlation_id:
        headers[REQUEST_ID_HEADER] = correlation_id

    if response.use_chunked:
        headers["Transfer-Encoding"] = "chunked"
    else:
        headers["Content-Length"] = str(len(response.body))
    if response.close_connection:
        headers["Connection"] = "close"
    header_lines = [response.status_line]
    header_lines.extend(f"{name}: {value}" for name, value in headers.items())
    header_lines.extend(f"Set-Cookie: {cookie}" for cookie in response.cookies)
    header_block = "\r\n".join(header_lines).encode() + b"\r\n\r\n"

    client_socket.settimeout(write_timeout)
    if response.use_chunked and response.body_iter is not None:
        client_socket.sendall(header_block)
        try:
            if not omit_body:
                for chunk in response.body_iter:
                    if not chunk:
                        continue
                    size_line = f"{len(chunk):X}\r\n".encode()
                    client_socket.sendall(size_line + chunk + b"\r\n")
                client_socket.sendall(b"0\r\n\r\n")
        finally:
            close = getattr(response.body_iter, "close", None)
            if close is not None:
                close()
    elif omit_body:
        client_socket.sendall(header_block)
    else:
        client_socket.sendall(header_block + response.body)
    if IO_LOGGER.logger.isEnabledFor(logging.DEBUG):
        IO_LOGGER.debug(
            "Sent response",
            extra={"event": "response_sent", "status_code": response.status_code},
        )
