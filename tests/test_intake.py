import time

import pytest
from fastapi.testclient import TestClient

from conftest import (
    MAILBOX,
    FakeChangeSource,
    FakeForwarder,
    FakeTokenProvider,
    MemoryCursorStore,
    envelope,
    make_engine,
)
from main import create_app
from relay.config import Settings
from relay.errors import ChangeSourceError
from relay.sync import EngineRegistry


def _client(source, forwarder=None, store=None, tokens=None, max_queue_length=None, response_timeout=5.0,
            mailbox_lookup=None):
    tokens = tokens or FakeTokenProvider()
    registry = EngineRegistry(
        lambda email: make_engine(
            source,
            forwarder or FakeForwarder(),
            store,
            token_provider=tokens,
            max_queue_length=max_queue_length,
        ),
        mailbox_address=None if mailbox_lookup else MAILBOX,
        mailbox_lookup=mailbox_lookup,
    )
    app = create_app(
        settings=Settings(response_timeout=response_timeout),
        registry=registry,
        token_provider=tokens,
    )
    return TestClient(app)


def test_health_check() -> None:
    with _client(FakeChangeSource()) as client:
        response = client.get("/")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.parametrize("path", ["/", "/api/v1/gmail/events"])
def test_push_lifecycle(path) -> None:
    source = FakeChangeSource(
        current_cursor=100,
        changes=["abc", "abc", "xyz"],
        labels={"abc": {"INBOX", "UNREAD"}, "xyz": {"INBOX"}},
    )
    forwarder = FakeForwarder()
    store = MemoryCursorStore()

    with _client(source, forwarder, store) as client:
        baseline = client.post(path, json=envelope(100))
        resolved = client.post(path, json=envelope(105))
        duplicate = client.post(path, json=envelope(105))

    assert baseline.status_code == 200
    assert baseline.json()["status"] == "baseline"

    assert resolved.status_code == 200
    body = resolved.json()
    assert body["status"] == "resolved"
    assert (body["forwarded"], body["skipped"], body["failed"]) == (1, 1, 0)
    assert [p["itemId"] for p in forwarder.payloads] == ["abc"]

    assert duplicate.status_code == 200
    assert duplicate.json()["status"] == "stale"
    assert source.list_calls == [(100, 105)]
    assert store.values["gmail_history_id:user@example.com"] == "105"


def test_forwarded_payload_includes_request_headers() -> None:
    source = FakeChangeSource(changes=["abc"], labels={"abc": {"INBOX", "UNREAD"}})
    forwarder = FakeForwarder()

    with _client(source, forwarder) as client:
        client.post("/", json=envelope(100))
        client.post("/", json=envelope(101), headers={"X-Goog-Test": "1"})

    assert forwarder.payloads[0]["raw"]["headers"]["x-goog-test"] == "1"


@pytest.mark.parametrize("kwargs", [
    {"content": b"not json", "headers": {"Content-Type": "application/json"}},
    {"json": {"subscription": "s"}},
    {"json": {"message": {"messageId": "1"}}},
    {"json": {"message": {"data": "eyJoaXN0b3J5SWQiOiAxfQ=="}}},
])
def test_malformed_push_is_rejected(kwargs) -> None:
    source = FakeChangeSource()

    with _client(source) as client:
        response = client.post("/api/v1/gmail/events", **kwargs)
        status = client.get("/api/v1/gmail/sync/status").json()

    assert response.status_code == 400
    assert status == {"mailboxes": {}}
    assert source.profile_calls == 0


def test_token_failure_asks_for_redelivery() -> None:
    with _client(FakeChangeSource(), tokens=FakeTokenProvider(fail=True)) as client:
        response = client.post("/", json=envelope(100))

    assert response.status_code == 503
    assert response.json()["status"] == "transient_error"


def test_full_queue_is_rejected() -> None:
    with _client(FakeChangeSource(), max_queue_length=0) as client:
        response = client.post("/", json=envelope(100))

    assert response.status_code == 503


def test_slow_resolution_answers_accepted() -> None:
    class _SlowSource(FakeChangeSource):
        def get_current_cursor(self) -> int:
            time.sleep(0.3)
            return super().get_current_cursor()

    with _client(_SlowSource(), response_timeout=0.05) as client:
        response = client.post("/", json=envelope(100))

    assert response.status_code == 202
    assert response.json()["status"] == "deferred"


def test_sync_status_reports_mailboxes() -> None:
    with _client(FakeChangeSource(current_cursor=100)) as client:
        client.post("/", json=envelope(100))
        response = client.get("/api/v1/gmail/sync/status")

    mailbox = response.json()["mailboxes"][MAILBOX]
    assert mailbox["initialized"] is True
    assert mailbox["lastProcessedCursor"] == 100
    assert mailbox["queueDepth"] == 0


def test_push_for_unserved_mailbox_is_rejected() -> None:
    source = FakeChangeSource()
    with _client(source) as client:
        response = client.post("/", json=envelope(100, email_address="someone@elsewhere.test"))
        status = client.get("/api/v1/gmail/sync/status").json()

    assert response.status_code == 400
    assert status == {"mailboxes": {}}
    assert source.profile_calls == 0


def test_served_mailbox_match_ignores_case() -> None:
    with _client(FakeChangeSource(current_cursor=100)) as client:
        response = client.post("/", json=envelope(100, email_address=MAILBOX.upper()))

    assert response.status_code == 200
    assert response.json()["status"] == "baseline"


def test_served_mailbox_is_looked_up_once() -> None:
    lookups = []

    def lookup() -> str:
        lookups.append(1)
        return MAILBOX

    with _client(FakeChangeSource(current_cursor=100), mailbox_lookup=lookup) as client:
        first = client.post("/", json=envelope(100))
        second = client.post("/", json=envelope(100))
        other = client.post("/", json=envelope(101, email_address="someone@elsewhere.test"))

    assert (first.status_code, second.status_code, other.status_code) == (200, 200, 400)
    assert len(lookups) == 1


def test_failed_mailbox_lookup_asks_for_redelivery() -> None:
    def lookup() -> str:
        raise ChangeSourceError("getProfile failed: timed out")

    with _client(FakeChangeSource(), mailbox_lookup=lookup) as client:
        response = client.post("/", json=envelope(100))
        status = client.get("/api/v1/gmail/sync/status").json()

    assert response.status_code == 503
    assert status == {"mailboxes": {}}
