# =============================================================================
# Tinyphone Events -- Frame Reassembler
# =============================================================================
#
# Turns transport fragments into complete text messages. The server only
# sends text; binary fragments are skipped without touching a pending
# text message.
# =============================================================================

from __future__ import annotations

from ._logging import logger
from .types import Fragment, FrameKind, RawMessage


class FrameReassembler:
    """Accumulate TEXT fragments until the end of a logical message.

    Sequence numbers keep counting across :meth:`reset` so they stay
    unique for the lifetime of the reassembler.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._sequence = 0

    @property
    def pending(self) -> int:
        """Bytes of an incomplete message currently buffered."""
        return len(self._buffer)

    @property
    def sequence(self) -> int:
        """Sequence number of the last emitted message (0 if none)."""
        return self._sequence

    def feed(self, fragment: Fragment) -> RawMessage | None:
        """Add one fragment; return a message when it completes one."""
        if fragment.kind is FrameKind.CLOSE:
            self.reset()
            return None
        if fragment.kind is not FrameKind.TEXT:
            logger.debug("Ignoring %s fragment (%d bytes)", fragment.kind.value, len(fragment.data))
            return None

        self._buffer += fragment.data
        if not fragment.final:
            return None

        text = self._buffer.decode("utf-8", errors="replace")
        self._buffer.clear()
        self._sequence += 1
        return RawMessage(text=text, sequence=self._sequence)

    def reset(self) -> None:
        """Drop any partially received message."""
        if self._buffer:
            logger.debug("Discarding %d bytes of incomplete message", len(self._buffer))
        self._buffer.clear()
