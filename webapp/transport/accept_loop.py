"""Main connection acceptance loop."""

import logging
import socket
import threading

from webapp.bootstrap.config import SECURITY_HEADERS
from webapp.domain.correlation_id import CorrelationLoggerAdapter
from webapp.domain.response_builders import draining_response
from webapp.pipeline.io import send_response
from webapp.transport.context import WorkerContext
from webapp.transport.worker import handle_client

ACCEPT_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("webapp.transport.accept"), {}
)


def _reject_while_draining(client_socket: socket.socket, client_addr_str: str) -> None:
    ACCEPT_LOGGER.info(
        "Connection refused while draining",
        extra={"event": "connection_refused_draining", "client": client_addr_str},
    )
    try:
        send_response(client_socket, draining_response(SECURITY_HEADERS), write_timeout=1.0)
    except OSError as error:
        ACCEPT_LOGGER.debug(
            "Draining response not delivered",
            extra={"event": "draining_send_failed", "error_type": type(error).__name__},
        )
    finally:
        client_socket.close()


def _handle_accepted_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Hand a newly accepted connection to its own worker thread."""
    client_addr_str = f"{client_address[0]}:{client_address[1]}"
    if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
        ACCEPT_LOGGER.debug(
            "Client connection accepted",
            extra={"event": "client_accepted", "client": client_addr_str},
        )

    thread = threading.Thread(
        target=handle_client,
        args=(client_socket, client_address, context),
        name=f"worker-{client_addr_str}",
        daemon=True,
    )
    thread.start()


def run_accept_loop(server_socket: socket.socket, context: WorkerContext) -> None:
    """Accept connections until the lifecycle asks the loop to stop."""
    lifecycle = context.lifecycle
    while True:
        try:
            client_socket, client_address = server_socket.accept()
        except socket.timeout:
            if lifecycle is not None and lifecycle.should_stop():
                break
            continue
        except OSError as error:
            if lifecycle is not None and lifecycle.should_stop():
                break
            ACCEPT_LOGGER.error(
                "Socket accept failed",
                extra={"event": "accept_error", "error_type": type(error).__name__},
            )
            continue

        client_addr_str = f"{client_address[0]}:{client_address[1]}"
        if lifecycle is not None and lifecycle.is_draining():
            _reject_while_draining(client_socket, client_addr_str)
            continue

        _handle_accepted_client(client_socket, client_address, context)

    if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
        ACCEPT_LOGGER.debug("Accept loop exited", extra={"event": "accept_loop_exited"})
