"""Periodic removal of expired tokens from memory."""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from webapp.auth.tokens import TokenStore
from webapp.domain.correlation_id import CorrelationLoggerAdapter

SWEEP_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webapp.auth.sweeper"), {})


class ExpirySweeper:
    """Background thread that sweeps the token store on a fixed interval."""

    def __init__(
        self,
        store: TokenStore,
        interval_seconds: float,
        clock: Callable[[], datetime],
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("Sweep interval must be positive")
        self._store = store
        self._interval = interval_seconds
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start sweeping; calling start twice is an error."""
        if self._thread is not None:
            raise RuntimeError("Sweeper already started")
        self._thread = threading.Thread(
            target=self._run, name="token-expiry-sweeper", daemon=True
        )
        self._thread.start()
        SWEEP_LOGGER.debug(
            "Token expiry sweeper started",
            extra={"event": "sweeper_started", "interval_seconds": self._interval},
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel the sweep and wait for the thread to exit."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def is_running(self) -> bool:
        """Return True while the sweep thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def sweep_once(self) -> int:
        """Remove expired records now and return the count."""
        removed = self._store.remove_expired(self._clock())
        if removed:
            SWEEP_LOGGER.info(
                "Expired tokens removed",
                extra={
                    "event": "tokens_swept",
                    "removed": removed,
                    "remaining": len(self._store),
                },
            )
        return removed

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self.sweep_once()
            except Exception as error:  # pylint: disable=broad-except
                SWEEP_LOGGER.error(
                    "Token sweep failed",
                    extra={"event": "sweep_error", "error_type": type(error).__name__},
                    exc_info=True,
                )
