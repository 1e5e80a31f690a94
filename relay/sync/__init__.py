"""
Mailbox sync: notification queue, single-flight engine, per-mailbox registry.
"""

from relay.sync.engine import SyncEngine
from relay.sync.models import Notification, OutcomeStatus, SyncOutcome, SyncState
from relay.sync.queue import NotificationQueue
from relay.sync.registry import EngineRegistry

__all__ = [
    "EngineRegistry",
    "Notification",
    "NotificationQueue",
    "OutcomeStatus",
    "SyncEngine",
    "SyncOutcome",
    "SyncState",
]
