"""
Cursor store backed by the sync_state table.

This module provides key-value persistence for the last processed historyId:
- get_sync_state / set_sync_state: Session-level helpers with upsert logic
- SqlCursorStore: The store the sync engine reads and writes
"""

import logging
from typing import Optional, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from relay.errors import CursorStoreError
from relay.models.sync_state import SyncState

logger = logging.getLogger(__name__)

HISTORY_ID_KEY = "gmail_history_id"


def history_key(email_address: str) -> str:
    """Store key holding the last processed historyId of one mailbox."""
    return f"{HISTORY_ID_KEY}:{email_address.lower()}"


class CursorStore(Protocol):
    def read(self, key: str) -> Optional[str]: ...

    def write(self, key: str, value: str) -> None: ...


# ============ SESSION HELPERS ============

def get_sync_state(db: Session, key: str) -> Optional[str]:
    """Return the stored value for key, or None if absent."""
    row = db.query(SyncState).filter(SyncState.key == key).first()
    return row.value if row else None


def set_sync_state(db: Session, key: str, value: str) -> SyncState:
    """
    Insert or update a key.

    If a row with the same key exists, overwrite its value.
    Otherwise, create a new row.
    """
    existing = db.query(SyncState).filter(SyncState.key == key).first()

    if existing:
        existing.value = value
        db.commit()
        db.refresh(existing)
        return existing

    row = SyncState(key=key, value=value)
    db.add(row)

    try:
        db.commit()
        db.refresh(row)
        return row
    except IntegrityError:
        # Race condition - another process created it
        db.rollback()
        existing = db.query(SyncState).filter(SyncState.key == key).first()
        existing.value = value
        db.commit()
        return existing


# ============ STORE ============

class SqlCursorStore:
    """
    Durable cursor store. Each call opens its own short-lived session, so
    the store is safe to use from the engine's worker threads.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def read(self, key: str) -> Optional[str]:
        try:
            with self._session_factory() as db:
                return get_sync_state(db, key)
        except SQLAlchemyError as e:
            raise CursorStoreError(f"read {key} failed: {e}") from e

    def write(self, key: str, value: str) -> None:
        try:
            with self._session_factory() as db:
                set_sync_state(db, key, value)
        except SQLAlchemyError as e:
            raise CursorStoreError(f"write {key} failed: {e}") from e
        logger.debug(f"[CursorStore] {key} = {value}")
