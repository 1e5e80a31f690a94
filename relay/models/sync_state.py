"""
SyncState model for storing persistent sync metadata.

Used to store:
- gmail_history_id:<emailAddress>: Last processed Gmail historyId per mailbox
"""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from relay.database import Base


class SyncState(Base):
    """
    Key-value store for sync state metadata.
    
    Persists across server restarts, unlike the engine's in-memory state.
    """
    __tablename__ = "sync_state"

    id = Column(Integer, primary_key=True)
    key = Column(String(320), unique=True, nullable=False, index=True)
    value = Column(String(255))
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<SyncState(key={self.key}, value={self.value})>"
