"""
Bearer token acquisition for the Gmail API.

Two modes:
- OAuthTokenProvider: exchanges client id/secret + refresh token for a
  short-lived access token on every call
- StaticTokenProvider: returns a pre-issued access token (GMAIL_ACCESS_TOKEN)
"""

import functools
import logging
from typing import Protocol

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from relay.config import Settings
from relay.errors import ConfigError, TokenError

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
]


class TokenProvider(Protocol):
    def get_token(self) -> str: ...


class OAuthTokenProvider:
    """Refreshes an authorized-user credential against Google's token endpoint."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        token_uri: str,
        timeout: float = 10.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.token_uri = token_uri
        self.timeout = timeout
        self._session = requests.Session()

    def get_token(self) -> str:
        creds = Credentials(
            token=None,
            refresh_token=self.refresh_token,
            client_id=self.client_id,
            client_secret=self.client_secret,
            token_uri=self.token_uri,
            scopes=SCOPES,
        )
        # google-auth does not pass a timeout to the transport on refresh
        request = functools.partial(Request(session=self._session), timeout=self.timeout)

        try:
            creds.refresh(request)
        except (GoogleAuthError, requests.RequestException) as e:
            raise TokenError(f"token refresh failed: {e}") from e

        if not creds.token:
            raise TokenError("token endpoint returned no access token")
        return creds.token


class StaticTokenProvider:
    """Hands out one configured access token. It is never refreshed."""

    def __init__(self, token: str):
        self._token = token

    def get_token(self) -> str:
        if not self._token:
            raise TokenError("no access token configured")
        return self._token


def build_token_provider(settings: Settings) -> TokenProvider:
    """
    Pick the token provider for the configured credentials.

    Raises:
        ConfigError: neither a refresh token nor an access token is set
    """
    if settings.uses_refresh_token:
        return OAuthTokenProvider(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            refresh_token=settings.refresh_token,
            token_uri=settings.token_uri,
            timeout=settings.request_timeout,
        )

    if settings.static_access_token:
        logger.warning("[TokenProvider] Using static GMAIL_ACCESS_TOKEN; it will not be refreshed")
        return StaticTokenProvider(settings.static_access_token)

    raise ConfigError(
        "Gmail credentials not configured: set GMAIL_CLIENT_ID, GMAIL_CLIENT_SECRET "
        "and GMAIL_REFRESH_TOKEN, or GMAIL_ACCESS_TOKEN"
    )
