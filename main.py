"""Web application server entry point."""

import logging
import os
import signal
import sys
import threading
import time
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from webapp.bootstrap.config import (
    ConfigurationError,
    load_site_settings,
    parse_cli_args,
    resolve_deployment,
)
from webapp.bootstrap.logging_setup import configure_logging
from webapp.bootstrap.wiring import build_app_server
from webapp.domain.correlation_id import CorrelationLoggerAdapter
from webapp.lifecycle.server import ListenerError
from webapp.lifecycle.state import LifecycleError

SERVER_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webapp.server"), {})

EXIT_OK = 0
EXIT_LISTENER_FAILED = 1
EXIT_CONFIGURATION = 2

SHUTDOWN_TIME_FORMAT = "%Y-%m-%d %H:%M:%S %Z"
SIGNAL_POLL_SECONDS = 0.5


def apply_time_zone(zone_name: str) -> None:
    """Make the site time zone the process-wide local time."""
    os.environ["TZ"] = zone_name
    if hasattr(time, "tzset"):
        time.tzset()


def main(argv: Optional[list[str]] = None) -> int:
    """Run the server until SIGINT and return the process exit status."""
    load_dotenv()
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.log_level, args.log_destination)

    try:
        settings = load_site_settings(production=args.production)
        apply_time_zone(settings.time_zone)
        profile = resolve_deployment(settings)
        server = build_app_server(settings, profile, args.dir, args.graceful_timeout)
    except ConfigurationError as error:
        SERVER_LOGGER.critical(
            "Invalid site configuration",
            extra={"event": "configuration_error", "reason": str(error)},
        )
        return EXIT_CONFIGURATION

    stop_requested = threading.Event()

    def handle_sigint(signum: int, _frame) -> None:
        if stop_requested.is_set():
            SERVER_LOGGER.info(
                "Shutdown already requested; signal ignored",
                extra={"event": "signal_ignored", "signal": signum},
            )
            return
        SERVER_LOGGER.info(
            "Received shutdown signal", extra={"event": "signal_received", "signal": signum}
        )
        stop_requested.set()

    signal.signal(signal.SIGINT, handle_sigint)

    SERVER_LOGGER.info(
        "Starting web application server",
        extra={
            "event": "server_starting",
            "bind_address": profile.bind_address,
            "base_url": profile.base_url,
            "production": profile.production,
            "directory": args.dir,
            "grace_seconds": args.graceful_timeout,
            "log_destination": args.log_destination,
            "log_level": args.log_level,
        },
    )
    try:
        server.start()
    except ListenerError:
        return EXIT_LISTENER_FAILED

    while not stop_requested.wait(SIGNAL_POLL_SECONDS):
        pass

    try:
        server.request_shutdown()
        server.wait_stopped()
    except (OSError, LifecycleError, SQLAlchemyError) as error:
        SERVER_LOGGER.error(
            "Error during shutdown",
            extra={
                "event": "shutdown_error",
                "error_type": type(error).__name__,
                "error": str(error),
            },
            exc_info=True,
        )

    local_time = settings.now()
    SERVER_LOGGER.warning(
        f"Server has been shutdown at {local_time.strftime(SHUTDOWN_TIME_FORMAT)}",
        extra={"event": "server_shutdown", "local_time": local_time.isoformat()},
    )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
