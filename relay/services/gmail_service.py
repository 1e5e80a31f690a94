import logging
import socket
from typing import List, Optional, Set

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from relay.errors import ChangeSourceError, CursorExpiredError

logger = logging.getLogger(__name__)

# Failures raised underneath googleapiclient: httplib2 transport errors, and
# RefreshError from AuthorizedHttp when Gmail answers 401 to a bare token
TRANSPORT_ERRORS = (httplib2.HttpLib2Error, socket.timeout, OSError, GoogleAuthError)


def get_gmail_service(token: str, timeout: float = 10.0):
    """
    Creates and returns a Gmail API service instance for a bearer token.

    Every request made through the service is bounded by `timeout` seconds.
    """
    creds = Credentials(token=token)
    http = AuthorizedHttp(creds, http=httplib2.Http(timeout=timeout))

    # Build and return Gmail service
    return build("gmail", "v1", http=http, cache_discovery=False)


class GmailChangeSource:
    """
    Reads mailbox changes through the Gmail History API.

    Args:
        service: Authenticated Gmail API service
        user_id: Mailbox to read, "me" for the token's own account
    """

    def __init__(self, service, user_id: str = "me"):
        self.service = service
        self.user_id = user_id

    @classmethod
    def from_token(cls, token: str, timeout: float = 10.0) -> "GmailChangeSource":
        return cls(get_gmail_service(token, timeout))

    def get_current_cursor(self) -> int:
        """Current historyId of the mailbox, used as the cold-start baseline."""
        try:
            profile = self.service.users().getProfile(userId=self.user_id).execute()
        except HttpError as e:
            raise ChangeSourceError(f"getProfile failed: {e}") from e
        except TRANSPORT_ERRORS as e:
            raise ChangeSourceError(f"getProfile failed: {e}") from e

        history_id = profile.get("historyId")
        if history_id is None:
            raise ChangeSourceError("getProfile returned no historyId")
        return int(history_id)

    def get_mailbox_address(self) -> str:
        """Email address of the mailbox the token reads."""
        try:
            profile = self.service.users().getProfile(userId=self.user_id).execute()
        except HttpError as e:
            raise ChangeSourceError(f"getProfile failed: {e}") from e
        except TRANSPORT_ERRORS as e:
            raise ChangeSourceError(f"getProfile failed: {e}") from e

        address = profile.get("emailAddress")
        if not address:
            raise ChangeSourceError("getProfile returned no emailAddress")
        return address

    def list_changes(self, since: int, until: Optional[int] = None) -> List[str]:
        """
        Fetch ids of messages added after historyId `since`.

        Follows nextPageToken until the listing is exhausted. History records
        newer than `until` belong to a later notification and are left for it.

        Args:
            since: Last processed historyId (exclusive)
            until: Triggering historyId (inclusive), or None for no bound

        Returns:
            Message ids in history order; duplicates are kept

        Raises:
            CursorExpiredError: Gmail no longer has history for `since`
            ChangeSourceError: any other API or transport failure
        """
        message_ids = []
        page_token = None

        while True:
            params = {
                "userId": self.user_id,
                "startHistoryId": str(since),
                "historyTypes": "messageAdded",
            }
            if page_token:
                params["pageToken"] = page_token

            try:
                response = self.service.users().history().list(**params).execute()
            except HttpError as e:
                if e.resp.status == 404:
                    raise CursorExpiredError(f"historyId {since} expired") from e
                raise ChangeSourceError(f"history.list failed: {e}") from e
            except TRANSPORT_ERRORS as e:
                raise ChangeSourceError(f"history.list failed: {e}") from e

            for record in response.get("history", []):
                if until is not None and int(record.get("id", 0)) > until:
                    continue
                message_ids.extend(_added_message_ids(record))

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        logger.debug(f"[Gmail] history {since} → {until}: {len(message_ids)} added entries")
        return message_ids

    def get_tags(self, item_id: str) -> Set[str]:
        """Current label ids of one message."""
        try:
            msg = self.service.users().messages().get(
                userId=self.user_id,
                id=item_id,
                format="minimal"
            ).execute()
        except HttpError as e:
            raise ChangeSourceError(f"messages.get {item_id} failed: {e}") from e
        except TRANSPORT_ERRORS as e:
            raise ChangeSourceError(f"messages.get {item_id} failed: {e}") from e

        return set(msg.get("labelIds", []))


def _added_message_ids(record: dict) -> List[str]:
    """Message ids of one history record, preferring messagesAdded entries."""
    added = record.get("messagesAdded")
    if added is not None:
        return [a["message"]["id"] for a in added if a.get("message", {}).get("id")]
    return [m["id"] for m in record.get("messages", []) if m.get("id")]


def register_gmail_watch(service, topic_name: str, label_ids: List[str]) -> dict:
    """
    Register Gmail push notifications via Cloud Pub/Sub.

    This tells Gmail to send real-time notifications whenever mailbox changes occur.
    Watch expires after ~7 days and must be renewed.

    Args:
        service: Authenticated Gmail API service
        topic_name: Fully qualified topic, projects/<project>/topics/<topic>
        label_ids: Only changes to these labels trigger a notification

    Returns:
        Dictionary with 'historyId' (baseline) and 'expiration' (timestamp in ms)
    """
    request_body = {
        "topicName": topic_name,
        "labelIds": list(label_ids)
    }

    response = service.users().watch(
        userId="me",
        body=request_body
    ).execute()

    return response


def stop_gmail_watch(service) -> None:
    """Cancel the active watch for the token's mailbox."""
    service.users().stop(userId="me").execute()
