"""
Downstream webhook client.

One bounded attempt per payload; retries are left to the caller.
"""

import logging
from typing import Optional, Protocol

import requests

from relay.errors import ForwardError

logger = logging.getLogger(__name__)


class ForwardSink(Protocol):
    def forward(self, payload: dict) -> None: ...


class WebhookForwarder:
    """POSTs payloads as JSON to the configured webhook URL."""

    def __init__(self, url: Optional[str], timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    def forward(self, payload: dict) -> None:
        if not self.url:
            raise ForwardError("FORWARD_WEBHOOK_URL not configured")

        try:
            response = self._session.post(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise ForwardError(f"webhook timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise ForwardError(f"webhook request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise ForwardError(f"webhook returned {response.status_code}: {response.text[:200]}")

        logger.debug(f"[Forwarder] Delivered payload for {payload.get('itemId')} ({response.status_code})")
