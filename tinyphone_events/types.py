# =============================================================================
# Tinyphone Events -- Type Definitions
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class ConnectionStatus(str, Enum):
    """Event stream connection lifecycle status.

    Typical flow: DISCONNECTED -> CONNECTING -> CONNECTED, then
    RECONNECTING -> CONNECTING -> CONNECTED after every drop. FAILED is
    entered when a connect attempt fails and is left on the next attempt.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class FrameKind(str, Enum):
    """Transport-level fragment type."""

    TEXT = "text"
    BINARY = "binary"
    CLOSE = "close"


class MessageKind(str, Enum):
    """Outcome of classifying one logical message."""

    WELCOME = "welcome"
    ACCOUNT = "account"
    CALL = "call"
    UNCLASSIFIED = "unclassified"


class EventKind(str, Enum):
    """Tag of an event delivered to consumers."""

    STATUS = "status"
    RAW = "raw"
    WELCOME = "welcome"
    ACCOUNT = "account"
    CALL = "call"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Fragment:
    """One transport fragment of a logical message.

    Attributes:
        kind: Text, binary, or close.
        data: Payload bytes (UTF-8 for text fragments).
        final: True when this fragment ends the logical message.
        close_code: Close code for CLOSE fragments, when the peer sent one.
        close_reason: Close reason for CLOSE fragments.
    """

    kind: FrameKind
    data: bytes = b""
    final: bool = False
    close_code: int | None = None
    close_reason: str = ""


@dataclass(frozen=True, slots=True)
class RawMessage:
    """A completed text payload and its arrival number (starting at 1)."""

    text: str
    sequence: int


@dataclass(frozen=True, slots=True)
class WelcomeNotice:
    """Greeting the server sends once per new connection."""

    message: str = ""
    subscription: Any = None


@dataclass(frozen=True, slots=True)
class AccountEvent:
    """Registration state change of a SIP account.

    Attributes:
        account: Account name/id, e.g. ``"alice"``.
        status: Server status string, e.g. ``"REGISTERED"``.
        data: The whole decoded object, untouched.
    """

    account: str
    status: str
    data: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True, slots=True)
class CallEvent:
    """Call state change.

    ``direction``, ``party`` and ``duration`` are passed through as the
    server sent them; this package does not interpret them.
    """

    id: str
    state: str
    direction: str = ""
    party: str = ""
    duration: int = 0
    data: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


TypedMessage = Union[WelcomeNotice, AccountEvent, CallEvent]


@dataclass(frozen=True, slots=True)
class Classification:
    """Exactly one classification per :class:`RawMessage`.

    ``value`` holds the decoded message, or ``None`` when unclassified.
    """

    kind: MessageKind
    raw: RawMessage
    value: TypedMessage | None = None


@dataclass(frozen=True, slots=True)
class StatusChange:
    """A connection status transition (``previous != current``)."""

    previous: ConnectionStatus
    current: ConnectionStatus


@dataclass(frozen=True, slots=True)
class TinyphoneEvent:
    """An event delivered to consumers.

    Attributes:
        kind: Which notification this is.
        payload: :class:`StatusChange` for STATUS, the literal text for RAW,
            :class:`WelcomeNotice` / :class:`AccountEvent` /
            :class:`CallEvent` for the typed kinds, the exception for ERROR.
        sequence: Arrival number of the originating message, if any.
    """

    kind: EventKind
    payload: Any
    sequence: int | None = None


@dataclass
class ConnectionStats:
    """Counters for one client across all of its connections."""

    messages_received: int = 0
    messages_sent: int = 0
    bytes_received: int = 0
    bytes_sent: int = 0
    reconnect_count: int = 0
    connect_failures: int = 0
    connected_since: float | None = None
