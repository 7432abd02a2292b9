"""In-memory auth token records and their shared lookup."""

import hmac
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from webapp.domain.rwlock import ReadWriteLock


@dataclass(frozen=True)
class TokenRecord:
    """An issued credential restored from storage or added by the auth API."""

    token_id: str
    token: str
    username: str
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """Return True once the expiry time has been reached."""
        return self.expires_at <= now


class TokenStore:
    """Token lookup shared between request handlers and the expiry sweep.

    Reads take the lock in shared mode; loads, additions and sweeps are
    exclusive.
    """

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._by_id: dict[str, TokenRecord] = {}
        self._by_token: dict[str, str] = {}
        self._loaded = False

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._by_id)

    @property
    def loaded(self) -> bool:
        """Return True once a restore has populated the store."""
        with self._lock.read():
            return self._loaded

    def load(self, records: Iterable[TokenRecord]) -> int:
        """Populate the store with restored records, once per boot.

        Records added since boot are kept; a restored record with the same
        id replaces it.
        """
        with self._lock.write():
            if self._loaded:
                raise RuntimeError("Token store has already been restored")
            for record in records:
                self._put(record)
            self._loaded = True
            return len(self._by_id)

    def add(self, record: TokenRecord) -> None:
        """Insert or replace a single record."""
        with self._lock.write():
            self._put(record)

    def _put(self, record: TokenRecord) -> None:
        previous = self._by_id.pop(record.token_id, None)
        if previous is not None:
            self._unindex(previous)
        self._by_id[record.token_id] = record
        self._by_token[record.token] = record.token_id

    def _unindex(self, record: TokenRecord) -> None:
        """Drop the credential index for a record already removed from _by_id."""
        if self._by_token.get(record.token) != record.token_id:
            return
        del self._by_token[record.token]
        for other in self._by_id.values():
            if other.token == record.token:
                self._by_token[other.token] = other.token_id
                break

    def get(self, token_id: str, now: datetime) -> Optional[TokenRecord]:
        """Return the record for token_id unless it is missing or expired."""
        with self._lock.read():
            record = self._by_id.get(token_id)
        if record is None or record.is_expired(now):
            return None
        return record

    def find_by_token(self, value: str, now: datetime) -> Optional[TokenRecord]:
        """Return the unexpired record whose credential equals value."""
        with self._lock.read():
            token_id = self._by_token.get(value)
            record = self._by_id.get(token_id) if token_id is not None else None
        if record is None or not hmac.compare_digest(record.token, value):
            return None
        if record.is_expired(now):
            return None
        return record

    def remove(self, token_id: str) -> bool:
        """Drop a record; return True when something was removed."""
        with self._lock.write():
            record = self._by_id.pop(token_id, None)
            if record is None:
                return False
            self._unindex(record)
            return True

    def remove_expired(self, now: datetime) -> int:
        """Drop every expired record and return how many were removed."""
        with self._lock.write():
            expired = [
                token_id
                for token_id, record in self._by_id.items()
                if record.is_expired(now)
            ]
            for token_id in expired:
                self._unindex(self._by_id.pop(token_id))
            return len(expired)
