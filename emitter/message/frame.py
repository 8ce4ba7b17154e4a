"""Messages and the compressed frames that carry them between servers."""

from __future__ import annotations

import zlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

from emitter.message.id import MessageId, new_id
from emitter.message.ssid import Ssid

_MAX_VARINT_BYTES = 10


class FrameDecodeError(ValueError):
    """Raised when a frame cannot be decoded."""


@dataclass
class Message:
    """A message to be forwarded or stored."""

    id: MessageId
    channel: bytes
    payload: bytes
    ttl: int = 0

    def size(self) -> int:
        """Return the byte size of the payload."""
        return len(self.payload)

    def time(self) -> int:
        """Return the message time in seconds since the Unix epoch."""
        return self.id.time()

    def ssid(self) -> Ssid:
        """Return the SSID from the message ID."""
        return self.id.ssid()

    def contract(self) -> int:
        """Return the contract from the message ID."""
        return self.id.contract()

    def stored(self) -> bool:
        """Return whether the message is or should be stored."""
        return self.ttl > 0

    def expires(self) -> datetime:
        """Return the expiration time in UTC."""
        return datetime.fromtimestamp(self.time(), tz=timezone.utc) + timedelta(seconds=self.ttl)


def new_message(ssid: Iterable[int], channel: bytes, payload: bytes) -> Message:
    """Create a message with a fresh ID."""
    return Message(id=new_id(ssid), channel=bytes(channel), payload=bytes(payload))


def _put_uvarint(out: bytearray, value: int) -> None:
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)


def _put_bytes(out: bytearray, data: bytes) -> None:
    _put_uvarint(out, len(data))
    out += data


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    @property
    def exhausted(self) -> bool:
        return self._pos >= len(self._data)

    def uvarint(self) -> int:
        value = 0
        for shift in range(0, 7 * _MAX_VARINT_BYTES, 7):
            if self.exhausted:
                raise FrameDecodeError("truncated varint")
            byte = self._data[self._pos]
            self._pos += 1
            value |= (byte & 0x7F) << shift
            if byte < 0x80:
                return value
        raise FrameDecodeError("varint is too long")

    def take(self, size: int) -> bytes:
        end = self._pos + size
        if end > len(self._data):
            raise FrameDecodeError("truncated field")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def blob(self) -> bytes:
        return self.take(self.uvarint())


class Frame(list):
    """A list of messages sent over the wire as one unit."""

    def sort_by_time(self) -> None:
        """Sort the messages by time, oldest first."""
        self.sort(key=lambda m: m.time())

    def limit(self, n: int) -> None:
        """Keep only the newest n messages, sorted by time."""
        self.sort_by_time()
        if len(self) > n:
            del self[: len(self) - n]

    def encode(self) -> bytes:
        """Encode and compress the frame."""
        out = bytearray()
        _put_uvarint(out, len(self))
        for message in self:
            _put_bytes(out, bytes(message.id))
            _put_bytes(out, message.channel)
            _put_bytes(out, message.payload)
            _put_uvarint(out, message.ttl)
        return zlib.compress(bytes(out))


def decode_frame(buf: bytes) -> Frame:
    """Decompress and decode a frame produced by Frame.encode."""
    try:
        raw = zlib.decompress(buf)
    except zlib.error as exc:
        raise FrameDecodeError(f"invalid frame compression: {exc}") from exc

    reader = _Reader(raw)
    count = reader.uvarint()
    frame = Frame()
    for _ in range(count):
        frame.append(
            Message(
                id=MessageId(reader.blob()),
                channel=reader.blob(),
                payload=reader.blob(),
                ttl=reader.uvarint(),
            )
        )
    if not reader.exhausted:
        raise FrameDecodeError("trailing data after frame")
    return frame