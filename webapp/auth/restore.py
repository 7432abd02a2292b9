"""Boot-time restoration of issued auth tokens into memory."""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.engine import Engine

from webapp.auth.cipher import InvalidToken, TokenCipher
from webapp.auth.storage import fetch_active_tokens
from webapp.auth.tokens import TokenRecord, TokenStore
from webapp.domain.correlation_id import CorrelationLoggerAdapter

RESTORE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webapp.auth.restore"), {})


@dataclass(frozen=True)
class RestoreResult:
    """Counts reported after a restore run."""

    loaded: int
    skipped: int


def restore_tokens(
    engine: Engine, cipher: TokenCipher, store: TokenStore, now: datetime
) -> RestoreResult:
    """Load every unexpired stored token into the store.

    Rows that fail to decrypt are skipped. Raises TokenStorageError when the
    table cannot be queried; the store is left untouched in that case.
    """
    stored = fetch_active_tokens(engine, now)
    records = []
    skipped = 0
    for row in stored:
        try:
            credential = cipher.decrypt(row.token_cipher)
        except (InvalidToken, UnicodeDecodeError):
            skipped += 1
            RESTORE_LOGGER.warning(
                "Skipping token that could not be decrypted",
                extra={"event": "token_decrypt_failed", "token_prefix": row.token_id[:8]},
            )
            continue
        records.append(
            TokenRecord(
                token_id=row.token_id,
                token=credential,
                username=row.username,
                issued_at=row.issued_at,
                expires_at=row.expires_at,
            )
        )
    store.load(records)
    RESTORE_LOGGER.info(
        "Auth tokens restored",
        extra={"event": "tokens_restored", "loaded": len(records), "skipped": skipped},
    )
    return RestoreResult(loaded=len(records), skipped=skipped)
