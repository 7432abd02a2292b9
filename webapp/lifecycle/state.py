"""Server lifecycle state management."""

import enum
import logging
import socket
import threading
import time
from typing import Optional

from webapp.domain.correlation_id import CorrelationLoggerAdapter

LIFECYCLE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webapp.lifecycle"), {})


class LifecycleError(Exception):
    """Raised on an illegal lifecycle transition."""


class ServerState(enum.Enum):
    """Externally observable server states, in the only order they occur."""

    CONFIGURED = "configured"
    LISTENING = "listening"
    DRAINING = "draining"
    STOPPED = "stopped"


_TRANSITIONS = {
    ServerState.CONFIGURED: {ServerState.LISTENING, ServerState.STOPPED},
    ServerState.LISTENING: {ServerState.DRAINING},
    ServerState.DRAINING: {ServerState.STOPPED},
    ServerState.STOPPED: set(),
}


class ServerLifecycle:
    """Manages server lifecycle state, worker threads and client sockets."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state_changed = threading.Condition(self._lock)
        self._state = ServerState.CONFIGURED
        self._stop_event = threading.Event()
        self._draining_event = threading.Event()
        self._workers: set[threading.Thread] = set()
        # socket -> True while waiting for the next request on a kept-alive connection
        self._connections: dict[socket.socket, bool] = {}

    @property
    def state(self) -> ServerState:
        with self._lock:
            return self._state

    def transition(self, target: ServerState) -> ServerState:
        """Move to target, returning the previous state."""
        with self._state_changed:
            previous = self._state
            if target not in _TRANSITIONS[previous]:
                raise LifecycleError(
                    f"Illegal transition {previous.value} -> {target.value}"
                )
            self._state = target
            if target in (ServerState.DRAINING, ServerState.STOPPED):
                self._draining_event.set()
                self._stop_event.set()
            self._state_changed.notify_all()
        LIFECYCLE_LOGGER.info(
            "Server state changed",
            extra={
                "event": "state_changed",
                "state": target.value,
                "previous_state": previous.value,
            },
        )
        return previous

    def wait_for_state(self, target: ServerState, timeout: Optional[float] = None) -> bool:
        """Block until the server has reached target or a later state."""
        order = list(ServerState)
        with self._state_changed:
            return self._state_changed.wait_for(
                lambda: order.index(self._state) >= order.index(target), timeout
            )

    def should_stop(self) -> bool:
        """Check if the server should stop accepting new connections."""
        return self._stop_event.is_set()

    def is_draining(self) -> bool:
        """Check if the server is in draining mode."""
        return self._draining_event.is_set()

    def begin_draining(self) -> bool:
        """Signal the server to begin graceful shutdown.

        Returns False when draining had already begun.
        """
        with self._lock:
            if self._state is not ServerState.LISTENING:
                return False
        try:
            self.transition(ServerState.DRAINING)
        except LifecycleError:
            return False
        LIFECYCLE_LOGGER.info(
            "Beginning graceful shutdown", extra={"event": "drain_started"}
        )
        return True

    def register_worker(self, thread: threading.Thread) -> None:
        """Register a worker thread for tracking."""
        with self._lock:
            self._workers.add(thread)

    def cleanup_worker(self, thread: threading.Thread) -> None:
        """Remove a worker thread from tracking."""
        with self._lock:
            self._workers.discard(thread)

    def has_worker(self, thread: threading.Thread) -> bool:
        """Return True when the worker is currently tracked."""
        with self._lock:
            return thread in self._workers

    def active_worker_count(self) -> int:
        """Return the number of currently tracked worker threads."""
        with self._lock:
            return len(self._workers)

    def register_connection(self, client_socket: socket.socket) -> None:
        with self._lock:
            self._connections[client_socket] = True

    def mark_idle(self, client_socket: socket.socket) -> None:
        """Flag a connection as waiting for its next request.

        A connection going idle after the drain started is woken at once.
        """
        with self._lock:
            if client_socket not in self._connections:
                return
            self._connections[client_socket] = True
            draining = self._draining_event.is_set()
        if draining:
            _shutdown_quietly(client_socket, socket.SHUT_RD)

    def mark_active(self, client_socket: socket.socket) -> None:
        with self._lock:
            if client_socket in self._connections:
                self._connections[client_socket] = False

    def release_connection(self, client_socket: socket.socket) -> None:
        with self._lock:
            self._connections.pop(client_socket, None)

    def close_idle_connections(self) -> int:
        """Wake workers waiting on idle keep-alive connections so they exit."""
        with self._lock:
            idle = [sock for sock, is_idle in self._connections.items() if is_idle]
        for client_socket in idle:
            _shutdown_quietly(client_socket, socket.SHUT_RD)
        return len(idle)

    def abort_connections(self) -> int:
        """Force-close every connection still open after the grace period."""
        with self._lock:
            remaining = list(self._connections)
            self._connections.clear()
        for client_socket in remaining:
            _shutdown_quietly(client_socket, socket.SHUT_RDWR)
        if remaining:
            LIFECYCLE_LOGGER.warning(
                "Abandoning connections after grace period",
                extra={
                    "event": "connections_abandoned",
                    "abandoned_connections": len(remaining),
                },
            )
        return len(remaining)

    def wait_for_workers(self, timeout: float) -> bool:
        """Wait for all worker threads to complete within the timeout."""
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                self._workers = {w for w in self._workers if w.is_alive()}
                active_workers = list(self._workers)
            if not active_workers:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LIFECYCLE_LOGGER.warning(
                    "Shutdown timeout exceeded",
                    extra={
                        "event": "shutdown_timeout",
                        "remaining_workers": len(active_workers),
                    },
                )
                return False
            for worker in active_workers:
                worker.join(timeout=min(0.1, remaining))
                if time.monotonic() >= deadline:
                    break


def _shutdown_quietly(client_socket: socket.socket, how: int) -> None:
    try:
        client_socket.shutdown(how)
    except OSError:
        # Already closed by the worker.
        return
