# =============================================================================
# Tinyphone Events -- Message Classifier
# =============================================================================
#
# Inbound wire shapes (UTF-8 text frames):
#   Welcome:  {"subcription": true, "message": "..."}
#   Account:  {"type": "ACCOUNT", "account": "...", "status": "..."}
#   Call:     {"type": "CALL", "id": ..., "state": "...", ...}
#   Anything else is unclassified and only surfaces as raw text.
#
# The "type" comparison is case-insensitive. Decoding never raises past
# classify(); every failure degrades to the next rule.
# =============================================================================

from __future__ import annotations

from typing import Any, Callable, TypeVar

import orjson

from ._logging import logger
from .constants import TYPE_ACCOUNT, TYPE_CALL, WELCOME_MARKER
from .errors import TinyphoneDecodeError
from .types import (
    AccountEvent,
    CallEvent,
    Classification,
    MessageKind,
    RawMessage,
    WelcomeNotice,
)

T = TypeVar("T")
D = TypeVar("D")


def decode_or_default(decoder: Callable[[Any], T], data: Any, default: D) -> T | D:
    """Return ``decoder(data)``, or *default* if it cannot be decoded.

    Only :class:`TinyphoneDecodeError` is absorbed; anything else is a bug
    in the decoder and propagates.
    """
    try:
        return decoder(data)
    except TinyphoneDecodeError as exc:
        logger.debug("Could not decode payload, using default: %s", exc)
        return default


def parse_json(text: str | bytes) -> Any:
    try:
        return orjson.loads(text)
    except orjson.JSONDecodeError as exc:
        raise TinyphoneDecodeError(f"Invalid JSON: {exc}") from exc


def _object(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise TinyphoneDecodeError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _text(document: dict[str, Any], name: str) -> str:
    value = document.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TinyphoneDecodeError(
            f"Field {name!r} must be a string, got {type(value).__name__}"
        )
    return value


def _identifier(document: dict[str, Any], name: str) -> str:
    value = document.get(name)
    if value is None:
        return ""
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise TinyphoneDecodeError(
            f"Field {name!r} must be a string or integer, got {type(value).__name__}"
        )
    return str(value)


def _integer(document: dict[str, Any], name: str) -> int:
    value = document.get(name)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise TinyphoneDecodeError(
            f"Field {name!r} must be an integer, got {type(value).__name__}"
        )
    return value


def decode_welcome(text: str) -> WelcomeNotice:
    document = _object(parse_json(text))
    return WelcomeNotice(
        message=_text(document, "message"),
        subscription=document.get(WELCOME_MARKER),
    )


def decode_account(data: Any) -> AccountEvent:
    document = _object(data)
    return AccountEvent(
        account=_text(document, "account"),
        status=_text(document, "status"),
        data=document,
    )


def decode_call(data: Any) -> CallEvent:
    document = _object(data)
    return CallEvent(
        id=_identifier(document, "id"),
        state=_text(document, "state"),
        direction=_text(document, "direction"),
        party=_text(document, "party"),
        duration=_integer(document, "duration"),
        data=document,
    )


class MessageClassifier:
    """Decide what a logical message is. First match wins:

    1. The welcome marker occurs in the text and the text decodes as a
       welcome notice.
    2. The text is a JSON object whose ``type`` is ACCOUNT or CALL (any
       case) and it decodes as that event.
    3. Otherwise the message is unclassified.
    """

    def __init__(self, *, welcome_marker: str = WELCOME_MARKER) -> None:
        self._welcome_marker = welcome_marker
        self._decoders: dict[str, tuple[MessageKind, Callable[[Any], Any]]] = {
            TYPE_ACCOUNT: (MessageKind.ACCOUNT, decode_account),
            TYPE_CALL: (MessageKind.CALL, decode_call),
        }

    def classify(self, message: RawMessage) -> Classification:
        text = message.text

        if self._welcome_marker in text:
            welcome = decode_or_default(decode_welcome, text, None)
            if welcome is not None:
                return Classification(MessageKind.WELCOME, message, welcome)

        document = decode_or_default(parse_json, text, None)
        if isinstance(document, dict):
            event_type = document.get("type")
            if isinstance(event_type, str):
                entry = self._decoders.get(event_type.upper())
                if entry is None:
                    logger.debug("Received unknown event type: %s", event_type)
                else:
                    kind, decoder = entry
                    value = decode_or_default(decoder, document, None)
                    if value is not None:
                        return Classification(kind, message, value)

        return Classification(MessageKind.UNCLASSIFIED, message)
