"""Length-prefixed message framing and shared work-order states."""

from __future__ import annotations

import enum
import struct

HEADER = struct.Struct(">I")


class WorkOrderStatus(str, enum.Enum):
    """Life-cycle states of a work order."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    def __str__(self) -> str:
        return self.value


def pack_message(data: bytes) -> bytes:
    """Prefix ``data`` with its length as a 4-byte big-endian integer."""
    payload = bytes(data)
    try:
        header = HEADER.pack(len(payload))
    except struct.error as exc:
        raise ValueError(f"message too large to frame: {len(payload)} bytes") from exc
    return header + payload


def unpack_message(buffer: bytes | bytearray) -> tuple[bytes, bytes] | None:
    """Split one complete frame off the front of ``buffer``.

    Returns ``(message, remainder)`` or ``None`` when the buffer does not yet
    hold a whole frame.
    """
    if len(buffer) < HEADER.size:
        return None
    (length,) = HEADER.unpack_from(buffer)
    end = HEADER.size + length
    if len(buffer) < end:
        return None
    return bytes(buffer[HEADER.size:end]), bytes(buffer[end:])


class FrameDecoder:
    """Accumulates stream data and yields complete framed messages."""

    def __init__(self) -> None:
        self._buffer = b""

    @property
    def buffered(self) -> int:
        """Number of bytes held that do not yet form a complete frame."""
        return len(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        """Add received bytes and return every message now complete."""
        self._buffer += bytes(data)
        messages = []
        while (frame := unpack_message(self._buffer)) is not None:
            message, self._buffer = frame
            messages.append(message)
        return messages