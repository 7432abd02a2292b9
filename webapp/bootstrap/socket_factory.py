"""Listening socket creation."""

import logging
import socket

from webapp.domain.correlation_id import CorrelationLoggerAdapter

SOCKET_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webapp.socket"), {})

ACCEPT_POLL_SECONDS = 0.25


def create_server_socket(host: str, port: int) -> socket.socket:
    """Create, bind and listen on a TCP socket for the given address.

    Raises OSError when the address cannot be bound.
    """
    server_socket = socket.create_server((host, port))
    server_socket.settimeout(ACCEPT_POLL_SECONDS)
    SOCKET_LOGGER.debug(
        "Listening socket created",
        extra={"event": "socket_created", "host": host, "port": port},
    )
    return server_socket


def stop_listening(server_socket: socket.socket) -> None:
    """Stop accepting new connections on a listening socket."""
    try:
        server_socket.shutdown(socket.SHUT_RDWR)
    except OSError:
        # Not every platform allows shutdown() on a listening socket.
        pass
    server_socket.close()
