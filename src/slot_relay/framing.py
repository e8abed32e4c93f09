"""
Message framing for the relay wire protocol.

One read from a client is one message; nothing is reassembled across reads.
Two framings are available:

- ``NulTerminatedFraming`` (default): the received chunk is read as a
  zero-terminated text string. The message ends at the first zero byte, and
  anything after it is dropped. A chunk without a zero byte fills the whole
  buffer, so its text is cut to leave room for the terminator. Outgoing
  messages are the text followed by a single zero byte.
- ``LengthPrefixedFraming``: a 4-byte big-endian length header followed by
  the payload. A header announcing more bytes than arrived in the read yields
  only the bytes that did arrive.
"""

from __future__ import annotations

import struct
from abc import ABC, abstractmethod

HEADER_SIZE = 4
TERMINATOR = b"\x00"


class Framing(ABC):
    """Encodes outgoing payloads and decodes one received chunk."""

    name: str = ""

    @abstractmethod
    def encode(self, payload: bytes) -> bytes:
        """Return the wire form of ``payload``."""

    @abstractmethod
    def decode(self, chunk: bytes) -> bytes:
        """Return the payload carried by one received chunk."""

    def wire_length(self, payload: bytes) -> int:
        """Length of ``payload`` once framed."""
        return len(self.encode(payload))

    def is_empty(self, payload: bytes) -> bool:
        """True when the payload carries nothing worth relaying."""
        return len(payload) == 0

    def fit(self, payload: bytes, capacity: int) -> bytes:
        """Cut ``payload`` so its framed form is at most ``capacity`` bytes."""
        room = max(capacity - len(self.encode(b"")), 0)
        return payload[:room]

    @abstractmethod
    def split_frame(self, buffer: bytes) -> tuple[bytes | None, bytes]:
        """
        Take the first complete frame off a receive buffer.

        Returns ``(payload, rest)``, or ``(None, buffer)`` when no complete
        frame is buffered yet. Only clients use this; the server never
        reassembles.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class NulTerminatedFraming(Framing):
    name = "nul"

    def encode(self, payload: bytes) -> bytes:
        return payload + TERMINATOR

    def decode(self, chunk: bytes) -> bytes:
        end = chunk.find(TERMINATOR)
        if end == -1:
            return bytes(chunk)
        return bytes(chunk[:end])

    def wire_length(self, payload: bytes) -> int:
        # text length plus the terminator
        return len(payload) + 1

    def is_empty(self, payload: bytes) -> bool:
        return self.wire_length(payload) <= 1

    def split_frame(self, buffer: bytes) -> tuple[bytes | None, bytes]:
        end = buffer.find(TERMINATOR)
        if end == -1:
            return None, buffer
        return buffer[:end], buffer[end + 1 :]


class LengthPrefixedFraming(Framing):
    name = "length-prefixed"

    def encode(self, payload: bytes) -> bytes:
        return struct.pack(">I", len(payload)) + payload

    def decode(self, chunk: bytes) -> bytes:
        if len(chunk) < HEADER_SIZE:
            return b""
        length: int = struct.unpack(">I", chunk[:HEADER_SIZE])[0]
        return bytes(chunk[HEADER_SIZE : HEADER_SIZE + length])

    def split_frame(self, buffer: bytes) -> tuple[bytes | None, bytes]:
        if len(buffer) < HEADER_SIZE:
            return None, buffer
        length: int = struct.unpack(">I", buffer[:HEADER_SIZE])[0]
        end = HEADER_SIZE + length
        if len(buffer) < end:
            return None, buffer
        return buffer[HEADER_SIZE:end], buffer[end:]


FRAMINGS: dict[str, type[Framing]] = {
    NulTerminatedFraming.name: NulTerminatedFraming,
    LengthPrefixedFraming.name: LengthPrefixedFraming,
}


def get_framing(name: str) -> Framing:
    """Return a framing instance by its configuration name."""
    try:
        return FRAMINGS[name]()
    except KeyError:
        raise ValueError(
            f"Unknown framing '{name}', expected one of {sorted(FRAMINGS)}"
        ) from None
