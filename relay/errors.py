"""
Exception types raised by the relay.

Collaborators wrap their library errors into these so the sync engine can
decide, per failure kind, whether the caller should redeliver.
"""


class RelayError(Exception):
    """Base class for all relay errors."""


class ConfigError(RelayError):
    """Invalid or missing configuration value."""


class MalformedNotificationError(RelayError):
    """Push envelope could not be decoded into a notification."""


class QueueFullError(RelayError):
    """Notification queue reached its configured maximum length."""


class TokenError(RelayError):
    """Bearer token could not be obtained."""


class ChangeSourceError(RelayError):
    """Gmail API call failed or timed out."""


class CursorExpiredError(ChangeSourceError):
    """The start historyId is too old for Gmail to list history from it."""


class CursorStoreError(RelayError):
    """Cursor store read or write failed."""


class ForwardError(RelayError):
    """Downstream webhook rejected the payload or could not be reached."""
