"""Application server: owns the listener, the accept loop and background tasks."""

import logging
import socket
import threading
import time
from typing import Callable, Optional

from sqlalchemy.engine import Engine

from webapp.auth.storage import TokenStorageError
from webapp.auth.sweeper import ExpirySweeper
from webapp.bootstrap.config import DeploymentProfile, ServerConfig
from webapp.bootstrap.socket_factory import create_server_socket, stop_listening
from webapp.domain.correlation_id import CorrelationLoggerAdapter
from webapp.lifecycle.state import LifecycleError, ServerLifecycle, ServerState
from webapp.transport.accept_loop import run_accept_loop
from webapp.transport.context import WorkerContext

SERVER_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webapp.lifecycle.server"), {})

# Workers get this long to notice their sockets were shut down after the grace period.
ABORT_SETTLE_SECONDS = 1.0


class ListenerError(Exception):
    """Raised when the listening socket cannot be created or bound."""


class AppServer:
    """Runs the listener and background tasks through the server lifecycle."""

    def __init__(
        self,
        profile: DeploymentProfile,
        config: ServerConfig,
        context: WorkerContext,
        restore: Optional[Callable[[], object]] = None,
        sweeper: Optional[ExpirySweeper] = None,
        engine: Optional[Engine] = None,
    ) -> None:
        if context.lifecycle is None:
            context.lifecycle = ServerLifecycle()
        if context.config is None:
            context.config = config
        self.profile = profile
        self.config = config
        self.context = context
        self.lifecycle: ServerLifecycle = context.lifecycle
        self._restore = restore
        self._sweeper = sweeper
        self._engine = engine
        self._lock = threading.Lock()
        self._server_socket: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._restore_thread: Optional[threading.Thread] = None
        self._shutdown_requested = False
        self._drain_started: Optional[float] = None
        self._engine_disposed = False

    @property
    def state(self) -> ServerState:
        return self.lifecycle.state

    @property
    def port(self) -> int:
        """Return the bound port, which differs from the profile when it asked for 0."""
        if self._server_socket is None:
            return self.profile.bind_port
        return self._server_socket.getsockname()[1]

    def start(self) -> None:
        """Bind the listener and start serving.

        Raises ListenerError when the address cannot be bound.
        """
        with self._lock:
            if self.lifecycle.state is not ServerState.CONFIGURED:
                raise LifecycleError("Server has already been started")
            self._start_restore()
            try:
                self._server_socket = create_server_socket(
                    self.profile.bind_host, self.profile.bind_port
                )
            except OSError as error:
                SERVER_LOGGER.critical(
                    "Listener could not be started",
                    extra={
                        "event": "listener_failed",
                        "bind_address": self.profile.bind_address,
                        "error_type": type(error).__name__,
                        "error": str(error),
                    },
                )
                self.lifecycle.transition(ServerState.STOPPED)
                self._dispose_engine()
                raise ListenerError(
                    f"Cannot listen on {self.profile.bind_address}: {error}"
                ) from error

            self._accept_thread = threading.Thread(
                target=run_accept_loop,
                args=(self._server_socket, self.context),
                name="accept-loop",
                daemon=True,
            )
            self._accept_thread.start()
            if self._sweeper is not None:
                self._sweeper.start()
            self.lifecycle.transition(ServerState.LISTENING)

        SERVER_LOGGER.info(
            "Server listening for connections",
            extra={
                "event": "server_listening",
                "host": self.profile.bind_host,
                "port": self.port,
                "base_url": self.profile.base_url,
                "production": self.profile.production,
            },
        )

    def _start_restore(self) -> None:
        if self._restore is None:
            return
        self._restore_thread = threading.Thread(
            target=self._run_restore, name="token-restore", daemon=True
        )
        self._restore_thread.start()

    def _run_restore(self) -> None:
        try:
            self._restore()
        except TokenStorageError as error:
            SERVER_LOGGER.error(
                "Auth token restore failed; serving without restored tokens",
                extra={
                    "event": "restore_failed",
                    "error_type": type(error).__name__,
                    "error": str(error),
                },
            )
        except Exception as error:  # pylint: disable=broad-except
            SERVER_LOGGER.error(
                "Unexpected error during auth token restore",
                extra={"event": "restore_failed", "error_type": type(error).__name__},
                exc_info=True,
            )

    def wait_until_listening(self, timeout: Optional[float] = None) -> bool:
        """Return True once the server is listening, False on timeout or failure."""
        self.lifecycle.wait_for_state(ServerState.LISTENING, timeout)
        return self.lifecycle.state is ServerState.LISTENING

    def wait_for_restore(self, timeout: Optional[float] = None) -> bool:
        """Return True once the background restore has finished."""
        if self._restore_thread is None:
            return True
        self._restore_thread.join(timeout)
        return not self._restore_thread.is_alive()

    def request_shutdown(self) -> bool:
        """Start draining; later calls are ignored and return False."""
        with self._lock:
            if self._shutdown_requested:
                SERVER_LOGGER.info(
                    "Shutdown already in progress", extra={"event": "shutdown_ignored"}
                )
                return False
            self._shutdown_requested = True
            if not self.lifecycle.begin_draining():
                return False
            self._drain_started = time.monotonic()

        SERVER_LOGGER.info(
            "Draining connections",
            extra={
                "event": "shutdown_waiting",
                "grace_seconds": self.config.shutdown_grace_seconds,
            },
        )
        if self._sweeper is not None:
            self._sweeper.stop()
        if self._server_socket is not None:
            stop_listening(self._server_socket)
        self.lifecycle.close_idle_connections()
        return True

    def wait_stopped(self) -> bool:
        """Finish the drain and stop; returns True when no request was abandoned."""
        if self._accept_thread is not None:
            self._accept_thread.join()

        elapsed = 0.0
        if self._drain_started is not None:
            elapsed = time.monotonic() - self._drain_started
        remaining = max(0.0, self.config.shutdown_grace_seconds - elapsed)
        finished = self.lifecycle.wait_for_workers(remaining)
        if not finished:
            self.lifecycle.abort_connections()
            self.lifecycle.wait_for_workers(ABORT_SETTLE_SECONDS)

        self._dispose_engine()
        if self.lifecycle.state is not ServerState.STOPPED:
            self.lifecycle.transition(ServerState.STOPPED)
        SERVER_LOGGER.info(
            "Server shutdown complete",
            extra={"event": "server_stopped", "state": ServerState.STOPPED.value},
        )
        return finished

    def _dispose_engine(self) -> None:
        if self._engine is None or self._engine_disposed:
            return
        self._engine_disposed = True
        self._engine.dispose()
