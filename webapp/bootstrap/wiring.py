"""Assembly of the request pipeline and application server from settings."""

from typing import Optional

from sqlalchemy.engine import Engine

from webapp.auth.cipher import TokenCipher
from webapp.auth.restore import RestoreResult, restore_tokens
from webapp.auth.storage import create_token_engine
from webapp.auth.sweeper import ExpirySweeper
from webapp.auth.tokens import TokenStore
from webapp.bootstrap.config import (
    SECURITY_HEADERS,
    DeploymentProfile,
    ServerConfig,
    SiteSettings,
)
from webapp.lifecycle.server import AppServer
from webapp.lifecycle.state import ServerLifecycle
from webapp.pipeline.access_log import AccessLogFilter
from webapp.pipeline.filters import FilterChain, Handler
from webapp.pipeline.router import Router, register_routes
from webapp.security.cors import CorsConfig, CorsFilter
from webapp.security.csrf import CsrfFilter, CsrfPolicy, CsrfProtector
from webapp.transport.context import WorkerContext


def build_filter_chain(
    settings: SiteSettings, profile: DeploymentProfile, terminal: Handler
) -> FilterChain:
    """Return the CORS, CSRF and access-log stages in front of terminal."""
    return FilterChain(
        [
            CorsFilter(CorsConfig.from_profile(profile), SECURITY_HEADERS),
            CsrfFilter(
                CsrfProtector(CsrfPolicy.from_profile(settings.csrf_secret, profile)),
                SECURITY_HEADERS,
            ),
            AccessLogFilter(settings.now),
        ],
        terminal,
    )


def build_app_server(
    settings: SiteSettings,
    profile: DeploymentProfile,
    directory: str,
    grace_seconds: float,
    engine: Optional[Engine] = None,
    store: Optional[TokenStore] = None,
) -> AppServer:
    """Wire every component for one server instance."""
    # pylint: disable=too-many-arguments, too-many-positional-arguments
    config = ServerConfig(shutdown_grace_seconds=grace_seconds)
    lifecycle = ServerLifecycle()
    store = TokenStore() if store is None else store
    engine = create_token_engine(settings.db_dsn) if engine is None else engine
    cipher = TokenCipher(settings.token_key)

    router = register_routes(Router(), directory, lifecycle, store, settings.now)
    chain = build_filter_chain(settings, profile, router.dispatch)
    context = WorkerContext(
        directory=directory, chain=chain, lifecycle=lifecycle, config=config
    )

    def restore() -> RestoreResult:
        return restore_tokens(engine, cipher, store, settings.now())

    sweeper = ExpirySweeper(store, settings.token_sweep_minutes * 60, settings.now)
    return AppServer(
        profile, config, context, restore=restore, sweeper=sweeper, engine=engine
    )
