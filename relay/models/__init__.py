"""
SQLAlchemy models for the relay.

This package contains:
- SyncState: Key-value rows holding the last processed historyId per mailbox
"""

from relay.models.sync_state import SyncState

__all__ = ["SyncState"]
