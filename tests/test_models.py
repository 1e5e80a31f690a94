import asyncio

import pytest

from conftest import MAILBOX, encode_data, envelope, make_notification
from relay.errors import MalformedNotificationError
from relay.sync.models import Notification, OutcomeStatus, SyncOutcome, SyncState


def test_from_envelope_decodes_push() -> None:
    notification = Notification.from_envelope(envelope(12345), headers={"user-agent": "APIs-Google"})

    assert notification.email_address == MAILBOX
    assert notification.cursor == 12345
    assert notification.message_id == "2070443601311540"
    assert notification.publish_time == "2026-02-10T00:00:00.000Z"
    assert notification.subscription == "projects/p/subscriptions/gmail-push"
    assert notification.headers == {"user-agent": "APIs-Google"}


def test_from_envelope_accepts_string_history_id_and_snake_case_fields() -> None:
    body = {
        "message": {
            "data": encode_data({"emailAddress": MAILBOX, "historyId": "987"}),
            "message_id": "m-1",
            "publish_time": "2026-02-10T00:00:00Z",
        }
    }
    notification = Notification.from_envelope(body)

    assert notification.cursor == 987
    assert notification.message_id == "m-1"
    assert notification.publish_time == "2026-02-10T00:00:00Z"
    assert notification.subscription is None


@pytest.mark.parametrize(
    "body",
    [
        [],
        {},
        {"message": {}},
        {"message": {"data": "%%%not-base64%%%"}},
        {"message": {"data": encode_data({"emailAddress": MAILBOX})}},
        {"message": {"data": encode_data({"historyId": 5})}},
        {"message": {"data": encode_data({"emailAddress": MAILBOX, "historyId": "abc"})}},
        {"message": {"data": encode_data({"emailAddress": MAILBOX, "historyId": True})}},
        {"message": {"data": encode_data(["not", "an", "object"])}},
    ],
)
def test_from_envelope_rejects_malformed(body) -> None:
    with pytest.raises(MalformedNotificationError):
        Notification.from_envelope(body)


def test_from_envelope_rejects_stray_characters_in_data() -> None:
    data = encode_data({"emailAddress": MAILBOX, "historyId": 12345})
    tampered = data[:8] + "*" + data[8:]

    with pytest.raises(MalformedNotificationError):
        Notification.from_envelope({"message": {"data": tampered}})


def test_respond_completes_exactly_once() -> None:
    loop = asyncio.new_event_loop()
    try:
        notification = make_notification(5, loop)
        first = SyncOutcome(OutcomeStatus.STALE, cursor=5)
        second = SyncOutcome(OutcomeStatus.RESOLVED, cursor=5)

        assert notification.respond(first) is True
        assert notification.respond(second) is False
        assert notification.response.result() is first
    finally:
        loop.close()


def test_sync_state_advance_is_monotonic() -> None:
    state = SyncState()

    assert state.advance(10) is True
    assert state.advance(7) is False
    assert state.last_processed_cursor == 10
    assert state.advance(10) is True
    assert state.snapshot()["lastProcessedCursor"] == 10


def test_outcome_http_status() -> None:
    assert SyncOutcome(OutcomeStatus.DEFERRED, cursor=1).http_status == 202
    assert SyncOutcome(OutcomeStatus.TRANSIENT_ERROR, cursor=1).http_status == 503
    assert SyncOutcome(OutcomeStatus.SERVER_ERROR, cursor=1).to_dict()["status"] == "server_error"
