"""
Data types flowing through the sync engine.

- Notification: one decoded Pub/Sub push, carrying the historyId cursor
- SyncState: per-mailbox cursor and lock flags, owned by one engine
- SyncOutcome: result handed back to the waiting intake request
"""

import asyncio
import base64
import binascii
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from relay.errors import MalformedNotificationError


class OutcomeStatus(str, Enum):
    RESOLVED = "resolved"
    BASELINE = "baseline"
    STALE = "stale"
    REBASELINED = "rebaselined"
    DEFERRED = "deferred"
    TRANSIENT_ERROR = "transient_error"
    SERVER_ERROR = "server_error"


# Status code returned to Pub/Sub for each outcome
HTTP_STATUS = {
    OutcomeStatus.RESOLVED: 200,
    OutcomeStatus.BASELINE: 200,
    OutcomeStatus.STALE: 200,
    OutcomeStatus.REBASELINED: 200,
    OutcomeStatus.DEFERRED: 202,
    OutcomeStatus.TRANSIENT_ERROR: 503,
    OutcomeStatus.SERVER_ERROR: 500,
}


@dataclass(frozen=True)
class SyncOutcome:
    status: OutcomeStatus
    cursor: int
    detail: str = ""
    forwarded: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.status]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "historyId": self.cursor,
            "detail": self.detail,
            "forwarded": self.forwarded,
            "skipped": self.skipped,
            "failed": self.failed,
        }


@dataclass(frozen=True, eq=False)
class Notification:
    """
    One inbound Gmail push notification.

    `response` is completed exactly once by the engine with a SyncOutcome.
    """

    email_address: str
    cursor: int
    received_at: datetime
    message_id: Optional[str] = None
    publish_time: Optional[str] = None
    subscription: Optional[str] = None
    raw_data: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    response: Optional[asyncio.Future] = None

    @classmethod
    def from_envelope(
        cls,
        body: Any,
        headers: Optional[Mapping[str, str]] = None,
        response: Optional[asyncio.Future] = None,
    ) -> "Notification":
        """
        Decode a Pub/Sub push envelope.

        Envelope shape:
            {"message": {"data": base64(JSON), "messageId": ..., "publishTime": ...},
             "subscription": ...}
        where the decoded data is {"emailAddress": ..., "historyId": ...}.

        Raises:
            MalformedNotificationError: missing fields or undecodable data
        """
        if not isinstance(body, dict):
            raise MalformedNotificationError("body is not a JSON object")

        # Pub/Sub wraps the notification in a 'message' object
        message = body.get("message")
        if not isinstance(message, dict):
            raise MalformedNotificationError("missing message")

        data = message.get("data")
        if not data or not isinstance(data, str):
            raise MalformedNotificationError("missing message.data")

        try:
            decoded = base64.b64decode(data, validate=True).decode("utf-8")
            payload = json.loads(decoded)
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            raise MalformedNotificationError(f"decode failed: {e}") from e

        if not isinstance(payload, dict):
            raise MalformedNotificationError("decoded data is not a JSON object")

        email_address = payload.get("emailAddress")
        history_id = payload.get("historyId")
        if not email_address or history_id is None:
            raise MalformedNotificationError("missing emailAddress or historyId")

        if isinstance(history_id, bool):
            raise MalformedNotificationError(f"historyId is not an integer: {history_id!r}")
        try:
            cursor = int(history_id)
        except (TypeError, ValueError):
            raise MalformedNotificationError(f"historyId is not an integer: {history_id!r}")

        return cls(
            email_address=str(email_address),
            cursor=cursor,
            received_at=datetime.now(timezone.utc),
            message_id=message.get("messageId") or message.get("message_id"),
            publish_time=message.get("publishTime") or message.get("publish_time"),
            subscription=body.get("subscription"),
            raw_data=data,
            headers=dict(headers or {}),
            response=response,
        )

    def respond(self, outcome: SyncOutcome) -> bool:
        """Complete the waiting request. Returns False if it was already completed."""
        if self.response is None or self.response.done():
            return False
        self.response.set_result(outcome)
        return True

    def forward_payload(self, item_id: str, labels: List[str]) -> Dict[str, Any]:
        """JSON body sent downstream for one qualifying message."""
        return {
            "emailAddress": self.email_address,
            "historyId": self.cursor,
            "itemId": item_id,
            "labelIds": sorted(labels),
            "messageId": self.message_id,
            "publishTime": self.publish_time,
            "subscription": self.subscription,
            "receivedAt": self.received_at.isoformat(),
            "raw": {
                "base64Data": self.raw_data,
                "headers": dict(self.headers),
            },
        }


@dataclass
class SyncState:
    """
    Cursor and lock flags of one mailbox.

    last_processed_cursor only ever moves forward; see SyncEngine.
    """

    last_processed_cursor: Optional[int] = None
    initialized: bool = False
    initialization_in_flight: bool = False
    processing_in_flight: bool = False

    def advance(self, cursor: int) -> bool:
        """Move the cursor to `cursor` unless that would move it back."""
        if self.last_processed_cursor is not None and cursor < self.last_processed_cursor:
            return False
        self.last_processed_cursor = cursor
        return True

    def snapshot(self) -> Dict[str, Any]:
        return {
            "lastProcessedCursor": self.last_processed_cursor,
            "initialized": self.initialized,
            "initializationInFlight": self.initialization_in_flight,
            "processingInFlight": self.processing_in_flight,
        }
