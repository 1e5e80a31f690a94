import base64
import json
import threading
from datetime import datetime, timezone

import httplib2
import pytest
from googleapiclient.errors import HttpError

from relay.errors import CursorStoreError, ForwardError, TokenError
from relay.services.qualification import LabelPredicate
from relay.sync.engine import SyncEngine
from relay.sync.models import Notification

MAILBOX = "user@example.com"


class FakeTokenProvider:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0

    def get_token(self) -> str:
        self.calls += 1
        if self.fail:
            raise TokenError("invalid_grant")
        return "token-123"


class FakeChangeSource:
    """In-memory mailbox. Records every call for assertions."""

    def __init__(self, current_cursor: int = 100, changes=None, labels=None):
        self.current_cursor = current_cursor
        self.changes = list(changes or [])
        self.labels = dict(labels or {})
        self.profile_error = None
        self.list_error = None
        self.tag_errors = {}
        self.profile_calls = 0
        self.list_calls = []
        self.tag_calls = []
        self._lock = threading.Lock()

    def get_current_cursor(self) -> int:
        with self._lock:
            self.profile_calls += 1
        if self.profile_error is not None:
            raise self.profile_error
        return self.current_cursor

    def list_changes(self, since, until=None):
        self.list_calls.append((since, until))
        if self.list_error is not None:
            raise self.list_error
        return list(self.changes)

    def get_tags(self, item_id):
        self.tag_calls.append(item_id)
        if item_id in self.tag_errors:
            raise self.tag_errors[item_id]
        return set(self.labels.get(item_id, ()))


class FakeForwarder:
    def __init__(self, fail_ids=()):
        self.fail_ids = set(fail_ids)
        self.payloads = []

    def forward(self, payload: dict) -> None:
        if payload["itemId"] in self.fail_ids:
            raise ForwardError("webhook timed out after 10.0s")
        self.payloads.append(payload)


class MemoryCursorStore:
    def __init__(self, initial=None):
        self.values = dict(initial or {})
        self.fail_reads = False
        self.fail_writes = False

    def read(self, key):
        if self.fail_reads:
            raise CursorStoreError("database is locked")
        return self.values.get(key)

    def write(self, key, value):
        if self.fail_writes:
            raise CursorStoreError("database is locked")
        self.values[key] = value


def make_engine(source, forwarder=None, store=None, token_provider=None,
                required=("INBOX", "UNREAD"), max_queue_length=None) -> SyncEngine:
    """Must be called inside a running event loop."""
    return SyncEngine(
        email_address=MAILBOX,
        token_provider=token_provider or FakeTokenProvider(),
        change_source_factory=lambda token: source,
        forwarder=forwarder or FakeForwarder(),
        predicate=LabelPredicate.of(required),
        cursor_store=store,
        max_queue_length=max_queue_length,
    )


def make_notification(cursor: int, loop, email_address: str = MAILBOX) -> Notification:
    return Notification(
        email_address=email_address,
        cursor=cursor,
        received_at=datetime(2026, 2, 10, 0, 0, tzinfo=timezone.utc),
        message_id=f"pubsub-{cursor}",
        publish_time="2026-02-10T00:00:00Z",
        subscription="projects/p/subscriptions/gmail-push",
        raw_data="e30=",
        response=loop.create_future(),
    )


def encode_data(payload: dict) -> str:
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def envelope(history_id, email_address: str = MAILBOX) -> dict:
    return {
        "message": {
            "data": encode_data({"emailAddress": email_address, "historyId": history_id}),
            "messageId": "2070443601311540",
            "publishTime": "2026-02-10T00:00:00.000Z",
        },
        "subscription": "projects/p/subscriptions/gmail-push",
    }


@pytest.fixture
def source():
    return FakeChangeSource()


@pytest.fixture
def forwarder():
    return FakeForwarder()


@pytest.fixture
def store():
    return MemoryCursorStore()


# ============ GMAIL API FAKES ============


class _Call:
    def __init__(self, result=None, error=None):
        self._result = result
        self._error = error

    def execute(self):
        if self._error is not None:
            raise self._error
        return self._result


class _History:
    def __init__(self, pages):
        self.pages = list(pages)
        self.calls = []

    def list(self, **params):
        self.calls.append(params)
        page = self.pages.pop(0)
        if isinstance(page, Exception):
            return _Call(error=page)
        return _Call(result=page)


class _Messages:
    def __init__(self, labels):
        self.labels = labels

    def get(self, userId, id, format):
        labels = self.labels.get(id)
        if labels is None:
            return _Call(error=http_error(404))
        if isinstance(labels, Exception):
            return _Call(error=labels)
        return _Call(result={"id": id, "labelIds": labels})


class _Users:
    def __init__(self, history, messages, profile):
        self._history = history
        self._messages = messages
        self._profile = profile

    def history(self):
        return self._history

    def messages(self):
        return self._messages

    def getProfile(self, userId):
        if isinstance(self._profile, Exception):
            return _Call(error=self._profile)
        return _Call(result=self._profile)


class FakeGmail:
    def __init__(self, pages=(), labels=None, profile=None):
        self.history = _History(pages)
        self._users = _Users(self.history, _Messages(labels or {}), profile or {})

    def users(self):
        return self._users


def http_error(status: int) -> HttpError:
    resp = httplib2.Response({"status": status})
    return HttpError(resp, b'{"error": {"message": "Requested entity was not found."}}')

