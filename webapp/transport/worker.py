"""Worker thread logic for handling individual client connections."""

import functools
import logging
import socket
import threading
from dataclasses import dataclass
from typing import Optional

from webapp.bootstrap.config import ALLOWED_METHODS, MAX_BODY_BYTES, SECURITY_HEADERS
from webapp.domain.correlation_id import (
    CorrelationLoggerAdapter,
    begin_request,
    clear_correlation_id,
)
from webapp.domain.http_types import HttpRequest, HttpResponse
from webapp.domain.response_builders import (
    bad_request_response,
    draining_response,
    entity_too_large_response,
    internal_error_response,
)
from webapp.lifecycle.state import ServerLifecycle
from webapp.pipeline.io import receive_request, send_response
from webapp.pipeline.validation import RequestEntityTooLarge, validate_request
from webapp.transport.context import WorkerContext

WORKER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("webapp.transport.worker"), {}
)


@dataclass
class _WorkerResources:
    thread: threading.Thread
    client_socket: socket.socket
    client_addr_str: str


def _timeouts(context: WorkerContext) -> tuple[Optional[float], Optional[float], Optional[float]]:
    if context.config is None:
        return None, None, None
    config = context.config
    return config.idle_timeout, config.read_timeout, config.write_timeout


def _read_request_with_validation(
    client_socket: socket.socket,
    buffer: bytes,
    context: WorkerContext,
    client_addr_str: str,
) -> tuple[Optional[HttpRequest], bytes]:
    """Read a request from the socket; protocol errors are answered here."""
    idle_timeout, read_timeout, write_timeout = _timeouts(context)
    on_request_start = None
    if context.lifecycle is not None:
        on_request_start = functools.partial(
            context.lifecycle.mark_active, client_socket
        )
    try:
        return receive_request(
            client_socket, buffer, idle_timeout, read_timeout, on_request_start
        )
    except RequestEntityTooLarge:
        WORKER_LOGGER.warning(
            "Request body size exceeded limit",
            extra={"event": "body_size_exceeded", "client": client_addr_str},
        )
        send_response(
            client_socket,
            entity_too_large_response(SECURITY_HEADERS),
            write_timeout=write_timeout,
        )
    except ValueError:
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={"event": "malformed_request", "client": client_addr_str},
        )
        send_response(
            client_socket,
            bad_request_response(None, SECURITY_HEADERS),
            write_timeout=write_timeout,
        )
    return None, b""


def _process_request(request: HttpRequest, context: WorkerContext) -> HttpResponse:
    validation_response = validate_request(
        request, ALLOWED_METHODS, MAX_BODY_BYTES, SECURITY_HEADERS
    )
    if validation_response is not None:
        return validation_response
    try:
        return context.chain.handle(request)
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Unhandled error while serving request",
            extra={
                "event": "handler_error",
                "route": request.path,
                "method": request.method,
                "error_type": type(error).__name__,
                "error": str(error),
            },
            exc_info=True,
        )
        return internal_error_response(SECURITY_HEADERS)


def _drain_if_requested(
    lifecycle: Optional[ServerLifecycle],
    client_socket: socket.socket,
    buffer: bytes,
    write_timeout: Optional[float],
) -> bool:
    if lifecycle is None or not lifecycle.is_draining():
        return False
    if buffer:
        send_response(
            client_socket, draining_response(SECURITY_HEADERS), write_timeout=write_timeout
        )
    return True


def _cleanup_worker(
    lifecycle: Optional[ServerLifecycle],
    resources: _WorkerResources,
) -> None:
    if lifecycle is not None:
        lifecycle.release_connection(resources.client_socket)
        lifecycle.cleanup_worker(resources.thread)

    try:
        resources.client_socket.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    resources.client_socket.close()

    if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
        WORKER_LOGGER.debug(
            "Socket closed",
            extra={"event": "socket_closed", "client": resources.client_addr_str},
        )
    clear_correlation_id()


def handle_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Process requests on a client socket until the connection is closed."""
    buffer = b""
    lifecycle = context.lifecycle
    current_thread = threading.current_thread()
    client_addr_str = f"{client_address[0]}:{client_address[1]}"
    resources = _WorkerResources(current_thread, client_socket, client_addr_str)
    _, _, write_timeout = _timeouts(context)
    if lifecycle is not None:
        lifecycle.register_worker(current_thread)
        lifecycle.register_connection(client_socket)

    try:
        while True:
            begin_request()

            if _drain_if_requested(lifecycle, client_socket, buffer, write_timeout):
                break

            if lifecycle is not None and not buffer:
                lifecycle.mark_idle(client_socket)
            request, buffer = _read_request_with_validation(
                client_socket, buffer, context, client_addr_str
            )
            if request is None:
                break

            request.client_ip = client_address[0]
            if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
                WORKER_LOGGER.debug(
                    "Request line parsed",
                    extra={
                        "event": "request_line_parsed",
                        "method": request.method,
                        "route": request.path,
                    },
                )

            response = _process_request(request, context)
            if lifecycle is not None and lifecycle.is_draining():
                response.close_connection = True
            send_response(client_socket, response, request.method, write_timeout)

            clear_correlation_id()

            if response.close_connection:
                break
    except (
        ConnectionError,
        TimeoutError,
        OSError,
        UnicodeDecodeError,
    ) as error:
        WORKER_LOGGER.error(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
    finally:
        _cleanup_worker(lifecycle, resources)
