from collections import deque
from typing import Deque, Optional

from relay.errors import QueueFullError
from relay.sync.models import Notification


class NotificationQueue:
    """
    FIFO buffer of notifications awaiting resolution.

    All access happens on the event loop thread, so deque operations are
    atomic with respect to the draining worker.
    """

    def __init__(self, max_length: Optional[int] = None):
        self.max_length = max_length
        self._items: Deque[Notification] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def enqueue(self, notification: Notification) -> None:
        """
        Append to the tail.

        Raises:
            QueueFullError: the queue already holds max_length notifications
        """
        if self.max_length is not None and len(self._items) >= self.max_length:
            raise QueueFullError(f"queue is full ({self.max_length} pending)")
        self._items.append(notification)

    def enqueue_front(self, notification: Notification) -> None:
        """Put a deferred notification back at the head. Not subject to max_length."""
        self._items.appendleft(notification)

    def dequeue_oldest(self) -> Optional[Notification]:
        """Remove and return the head, or None when empty."""
        if not self._items:
            return None
        return self._items.popleft()
