"""
Runtime settings for the relay.

Values come from the process environment; a local .env file is loaded first
so development setups need no exported variables.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from relay.errors import ConfigError

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

DEFAULT_REQUIRED_LABELS = ("INBOX", "UNREAD")


def _get_str(env: Mapping[str, str], key: str, default: Optional[str] = None) -> Optional[str]:
    value = env.get(key)
    if value is None or not value.strip():
        return default
    return value.strip()


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    value = _get_str(env, key)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    if parsed <= 0:
        raise ConfigError(f"{key} must be positive, got {parsed}")
    return parsed


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    value = _get_str(env, key)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {value!r}")
    if parsed <= 0:
        raise ConfigError(f"{key} must be positive, got {parsed}")
    return parsed


def _get_list(env: Mapping[str, str], key: str, default: tuple) -> tuple:
    value = env.get(key)
    if value is None:
        return tuple(default)
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    """Immutable relay configuration."""

    forward_webhook_url: Optional[str] = None

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    refresh_token: Optional[str] = None
    token_uri: str = GOOGLE_TOKEN_URI
    static_access_token: Optional[str] = None
    mailbox_address: Optional[str] = None

    database_url: Optional[str] = None

    required_labels: tuple = DEFAULT_REQUIRED_LABELS
    max_queue_length: int = 100
    request_timeout: float = 10.0
    response_timeout: float = 25.0

    gcp_project_id: Optional[str] = None
    pubsub_topic: str = "gmail-relay-events"
    watch_label_ids: tuple = ("INBOX",)

    log_level: str = "INFO"
    port: int = 8080

    @property
    def uses_refresh_token(self) -> bool:
        return bool(self.refresh_token and self.client_id and self.client_secret)

    @property
    def topic_name(self) -> Optional[str]:
        """Fully qualified Pub/Sub topic, or None when no project is set."""
        if not self.gcp_project_id:
            return None
        return f"projects/{self.gcp_project_id}/topics/{self.pubsub_topic}"


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        env: Mapping to read instead of os.environ (used by tests).
             When omitted, .env is loaded into os.environ first.

    Raises:
        ConfigError: a numeric setting is not a positive number
    """
    if env is None:
        load_dotenv()
        env = os.environ

    required_labels = _get_list(env, "REQUIRED_LABELS", DEFAULT_REQUIRED_LABELS)
    ai_label_id = _get_str(env, "AI_LABEL_ID")
    if ai_label_id and ai_label_id not in required_labels:
        required_labels = required_labels + (ai_label_id,)

    return Settings(
        forward_webhook_url=_get_str(env, "FORWARD_WEBHOOK_URL"),
        client_id=_get_str(env, "GMAIL_CLIENT_ID"),
        client_secret=_get_str(env, "GMAIL_CLIENT_SECRET"),
        refresh_token=_get_str(env, "GMAIL_REFRESH_TOKEN"),
        token_uri=_get_str(env, "GMAIL_TOKEN_URI", GOOGLE_TOKEN_URI),
        static_access_token=_get_str(env, "GMAIL_ACCESS_TOKEN"),
        mailbox_address=_get_str(env, "GMAIL_ADDRESS"),
        database_url=_get_str(env, "DATABASE_URL"),
        required_labels=required_labels,
        max_queue_length=_get_int(env, "MAX_QUEUE_LENGTH", 100),
        request_timeout=_get_float(env, "REQUEST_TIMEOUT_SECONDS", 10.0),
        response_timeout=_get_float(env, "RESPONSE_TIMEOUT_SECONDS", 25.0),
        gcp_project_id=_get_str(env, "GCP_PROJECT_ID"),
        pubsub_topic=_get_str(env, "PUBSUB_TOPIC", "gmail-relay-events"),
        watch_label_ids=_get_list(env, "WATCH_LABEL_IDS", ("INBOX",)),
        log_level=(_get_str(env, "LOG_LEVEL", "INFO") or "INFO").upper(),
        port=_get_int(env, "PORT", 8080),
    )
