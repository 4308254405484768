# =============================================================================
# Tinyphone Events -- Configuration
# =============================================================================

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping
from urllib.parse import urlsplit, urlunsplit

from .constants import (
    CLOSE_TIMEOUT,
    DEFAULT_BASE_URL,
    DEFAULT_TIMEOUT_SECONDS,
    ENV_PREFIX,
    EVENTS_PATH,
    MAX_MESSAGE_SIZE,
    RECONNECT_DELAY,
)

_WS_SCHEMES = {
    "http": "ws",
    "https": "wss",
    "ws": "ws",
    "wss": "wss",
}


def events_url(base_url: str) -> str:
    """Derive the event stream endpoint from the server's HTTP base URL.

    ``http`` maps to ``ws`` and ``https`` to ``wss``; ``/events`` is
    appended to the base path.

    Raises:
        ValueError: If the URL has no host or an unsupported scheme.
    """
    parts = urlsplit(base_url.strip())
    scheme = _WS_SCHEMES.get(parts.scheme.lower())
    if scheme is None or not parts.netloc:
        raise ValueError(f"Unsupported Tinyphone base URL: {base_url!r}")
    path = parts.path.rstrip("/") + EVENTS_PATH
    return urlunsplit((scheme, parts.netloc, path, parts.query, ""))


@dataclass
class TinyphoneSettings:
    """Connection settings for the event stream.

    Attributes:
        base_url: HTTP(S) address of the Tinyphone API.
        timeout_seconds: Limit for opening the WebSocket (handshake).
        reconnect_delay: Fixed pause between reconnect attempts.
        close_timeout: Limit for the closing handshake.
        max_message_size: Largest logical message accepted, in bytes.
    """

    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    reconnect_delay: float = RECONNECT_DELAY
    close_timeout: float = CLOSE_TIMEOUT
    max_message_size: int = MAX_MESSAGE_SIZE

    @property
    def events_url(self) -> str:
        return events_url(self.base_url)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        prefix: str = ENV_PREFIX,
    ) -> TinyphoneSettings:
        """Build settings from ``TINYPHONE_*`` environment variables.

        Reads ``BASE_URL``, ``TIMEOUT_SECONDS`` and ``RECONNECT_DELAY``;
        anything unset keeps its default.

        Raises:
            ValueError: If a numeric variable does not parse.
        """
        env = os.environ if environ is None else environ
        settings = cls()
        base_url = env.get(f"{prefix}BASE_URL")
        if base_url:
            settings.base_url = base_url
        settings.timeout_seconds = _float_var(
            env, f"{prefix}TIMEOUT_SECONDS", settings.timeout_seconds
        )
        settings.reconnect_delay = _float_var(
            env, f"{prefix}RECONNECT_DELAY", settings.reconnect_delay
        )
        return settings


def _float_var(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value
