"""Persistent auth token storage backed by SQLAlchemy Core."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    insert,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError, NoSuchModuleError, SQLAlchemyError

from webapp.bootstrap.config import ConfigurationError
from webapp.domain.correlation_id import CorrelationLoggerAdapter

STORAGE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webapp.auth.storage"), {})

metadata = MetaData()

# Timestamps are stored as naive UTC.
yabi_tokens = Table(
    "yabi_tokens",
    metadata,
    Column("token_id", String(64), primary_key=True),
    Column("token_cipher", Text, nullable=False),
    Column("username", String(150), nullable=False, index=True),
    Column("issued_at", DateTime, nullable=False),
    Column("expires_at", DateTime, nullable=False, index=True),
)


class TokenStorageError(Exception):
    """Raised when the token table cannot be read or written."""


@dataclass(frozen=True)
class StoredToken:
    """A token row exactly as persisted, credential still encrypted."""

    token_id: str
    token_cipher: str
    username: str
    issued_at: datetime
    expires_at: datetime


def _to_storage(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_storage(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_token_engine(dsn: str) -> Engine:
    """Create the engine shared by every request path for token queries.

    The DSN is never echoed back because it may carry a password.
    """
    try:
        return create_engine(dsn, pool_pre_ping=True)
    except NoSuchModuleError as exc:
        raise ConfigurationError(
            f"WEBAPP_DB_DSN names an unknown database dialect: {exc}"
        ) from exc
    except ArgumentError as exc:
        raise ConfigurationError("WEBAPP_DB_DSN is not a valid database URL") from exc
    except ImportError as exc:
        raise ConfigurationError(
            f"WEBAPP_DB_DSN needs a driver that is not installed: {exc.name}"
        ) from exc


def fetch_active_tokens(engine: Engine, now: datetime) -> list[StoredToken]:
    """Return every stored token that has not expired at now."""
    query = select(yabi_tokens).where(yabi_tokens.c.expires_at > _to_storage(now))
    try:
        with engine.connect() as connection:
            rows = connection.execute(query).mappings().all()
    except SQLAlchemyError as exc:
        raise TokenStorageError(str(exc)) from exc
    STORAGE_LOGGER.debug(
        "Fetched active tokens", extra={"event": "tokens_fetched", "loaded": len(rows)}
    )
    return [
        StoredToken(
            token_id=row["token_id"],
            token_cipher=row["token_cipher"],
            username=row["username"],
            issued_at=_from_storage(row["issued_at"]),
            expires_at=_from_storage(row["expires_at"]),
        )
        for row in rows
    ]


def save_token(engine: Engine, token: StoredToken) -> None:
    """Persist an encrypted token row."""
    statement = insert(yabi_tokens).values(
        token_id=token.token_id,
        token_cipher=token.token_cipher,
        username=token.username,
        issued_at=_to_storage(token.issued_at),
        expires_at=_to_storage(token.expires_at),
    )
    try:
        with engine.begin() as connection:
            connection.execute(statement)
    except SQLAlchemyError as exc:
        raise TokenStorageError(str(exc)) from exc
