"""MQTT control packets and their wire encoding."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar, Optional

MAX_REMAINING_LENGTH = 268435455
"""The largest body length the fixed header can express."""

_MAX_UINT16 = 0xFFFF


class PacketType(IntEnum):
    """MQTT control packet types."""

    CONNECT = 1
    CONNACK = 2
    PUBLISH = 3
    PUBACK = 4
    PUBREC = 5
    PUBREL = 6
    PUBCOMP = 7
    SUBSCRIBE = 8
    SUBACK = 9
    UNSUBSCRIBE = 10
    UNSUBACK = 11
    PINGREQ = 12
    PINGRESP = 13
    DISCONNECT = 14


@dataclass
class StaticHeader:
    """The flags carried in the first byte of the fixed header."""

    dup: bool = False
    retain: bool = False
    qos: int = 0


@dataclass
class TopicQos:
    """A topic paired with a quality of service level."""

    topic: bytes = b""
    qos: int = 0


def encode_length(body_length: int) -> tuple[int, int]:
    """Encode a remaining length; return the byte count and the packed bytes as an integer."""
    if not 0 <= body_length <= MAX_REMAINING_LENGTH:
        raise ValueError(f"body length {body_length} cannot be encoded")
    if body_length == 0:
        return 1, 0

    bit_field = 0
    num_bytes = 0
    while body_length > 0:
        digit = body_length % 128
        body_length //= 128
        if body_length > 0:
            digit |= 0x80
        bit_field = (bit_field << 8) | digit
        num_bytes += 1
    return num_bytes, bit_field


def _uint16(value: int) -> bytes:
    if not 0 <= value <= _MAX_UINT16:
        raise ValueError(f"{value} is not an unsigned 16-bit integer")
    return struct.pack(">H", value)


def _string(value: bytes) -> bytes:
    data = bytes(value)
    if len(data) > _MAX_UINT16:
        raise ValueError(f"string of {len(data)} bytes is too long to encode")
    return struct.pack(">H", len(data)) + data


class Packet:
    """Base of every MQTT control packet."""

    packet_type: ClassVar[PacketType]
    name: ClassVar[str]

    def _header(self) -> Optional[StaticHeader]:
        return None

    def _body(self) -> bytes:
        return b""

    def _first_byte(self) -> int:
        first = self.packet_type << 4
        header = self._header()
        if header is not None:
            first |= int(bool(header.dup)) << 3
            first |= header.qos << 1
            first |= int(bool(header.retain))
        return first & 0xFF

    def encode(self) -> bytes:
        """Return the complete encoded packet."""
        body = self._body()
        count, bit_field = encode_length(len(body))
        return bytes([self._first_byte()]) + bit_field.to_bytes(count, "big") + body

    def encode_to(self, writer) -> int:
        """Write the encoded packet to a writer and return the bytes written."""
        data = self.encode()
        written = writer.write(data)
        return len(data) if written is None else written

    def __str__(self) -> str:
        return self.name


@dataclass
class Connect(Packet):
    """A connection request."""

    packet_type: ClassVar[PacketType] = PacketType.CONNECT
    name: ClassVar[str] = "connect"

    proto_name: bytes = b""
    version: int = 0
    username_flag: bool = False
    password_flag: bool = False
    will_retain_flag: bool = False
    will_qos: int = 0
    will_flag: bool = False
    clean_session_flag: bool = False
    keep_alive: int = 0
    client_id: bytes = b""
    will_topic: bytes = b""
    will_message: bytes = b""
    username: bytes = b""
    password: bytes = b""

    def _body(self) -> bytes:
        flags = (
            int(self.username_flag) << 7
            | int(self.password_flag) << 6
            | int(self.will_retain_flag) << 5
            | self.will_qos << 3
            | int(self.will_flag) << 2
            | int(self.clean_session_flag) << 1
        ) & 0xFF
        parts = [
            _string(self.proto_name),
            bytes([self.version & 0xFF, flags]),
            _uint16(self.keep_alive),
            _string(self.client_id),
        ]
        if self.will_flag:
            parts += [_string(self.will_topic), _string(self.will_message)]
        if self.username_flag:
            parts.append(_string(self.username))
        if self.password_flag:
            parts.append(_string(self.password))
        return b"".join(parts)


@dataclass
class Connack(Packet):
    """A connection acknowledgement.

    Return codes: 0 accepted, 1 unacceptable protocol version, 2 identifier
    rejected, 3 server unavailable, 4 bad user name or password, 5 not authorised.
    """

    packet_type: ClassVar[PacketType] = PacketType.CONNACK
    name: ClassVar[str] = "connack"

    return_code: int = 0

    def _body(self) -> bytes:
        return bytes([0, self.return_code & 0xFF])


@dataclass
class Publish(Packet):
    """A message published to a topic."""

    packet_type: ClassVar[PacketType] = PacketType.PUBLISH
    name: ClassVar[str] = "pub"

    header: StaticHeader = field(default_factory=StaticHeader)
    topic: bytes = b""
    message_id: int = 0
    payload: bytes = b""

    def _header(self) -> Optional[StaticHeader]:
        return self.header

    def _body(self) -> bytes:
        body = _string(self.topic)
        if self.header.qos > 0:
            body += _uint16(self.message_id)
        return body + bytes(self.payload)


@dataclass
class _MessageIdPacket(Packet):
    message_id: int = 0

    def _body(self) -> bytes:
        return _uint16(self.message_id)


@dataclass
class Puback(_MessageIdPacket):
    """Acknowledges a QoS 1 publish."""

    packet_type: ClassVar[PacketType] = PacketType.PUBACK
    name: ClassVar[str] = "puback"


@dataclass
class Pubrec(_MessageIdPacket):
    """Acknowledges receipt of a QoS 2 publish."""

    packet_type: ClassVar[PacketType] = PacketType.PUBREC
    name: ClassVar[str] = "pubrec"


@dataclass
class Pubrel(_MessageIdPacket):
    """Releases a QoS 2 publish after a pubrec."""

    packet_type: ClassVar[PacketType] = PacketType.PUBREL
    name: ClassVar[str] = "pubrel"

    header: Optional[StaticHeader] = None

    def _header(self) -> Optional[StaticHeader]:
        return self.header


@dataclass
class Pubcomp(_MessageIdPacket):
    """Completes the QoS 2 flow."""

    packet_type: ClassVar[PacketType] = PacketType.PUBCOMP
    name: ClassVar[str] = "pubcomp"


@dataclass
class Subscribe(Packet):
    """Requests subscriptions to topics."""

    packet_type: ClassVar[PacketType] = PacketType.SUBSCRIBE
    name: ClassVar[str] = "sub"

    header: Optional[StaticHeader] = None
    message_id: int = 0
    subscriptions: list[TopicQos] = field(default_factory=list)

    def _header(self) -> Optional[StaticHeader]:
        return self.header

    def _body(self) -> bytes:
        parts = [_uint16(self.message_id)]
        for item in self.subscriptions:
            parts.append(_string(item.topic))
            parts.append(bytes([item.qos & 0xFF]))
        return b"".join(parts)


@dataclass
class Suback(Packet):
    """Acknowledges a subscribe with the granted QoS levels."""

    packet_type: ClassVar[PacketType] = PacketType.SUBACK
    name: ClassVar[str] = "suback"

    message_id: int = 0
    qos: list[int] = field(default_factory=list)

    def _body(self) -> bytes:
        return _uint16(self.message_id) + bytes(q & 0xFF for q in self.qos)


@dataclass
class Unsubscribe(Packet):
    """Requests removal of subscriptions."""

    packet_type: ClassVar[PacketType] = PacketType.UNSUBSCRIBE
    name: ClassVar[str] = "unsub"

    header: Optional[StaticHeader] = None
    message_id: int = 0
    topics: list[TopicQos] = field(default_factory=list)

    def _header(self) -> Optional[StaticHeader]:
        return self.header

    def _body(self) -> bytes:
        return _uint16(self.message_id) + b"".join(_string(t.topic) for t in self.topics)


@dataclass
class Unsuback(_MessageIdPacket):
    """Acknowledges an unsubscribe."""

    packet_type: ClassVar[PacketType] = PacketType.UNSUBACK
    name: ClassVar[str] = "unsuback"


@dataclass
class Pingreq(Packet):
    """A keep-alive request."""

    packet_type: ClassVar[PacketType] = PacketType.PINGREQ
    name: ClassVar[str] = "pingreq"


@dataclass
class Pingresp(Packet):
    """A keep-alive response."""

    packet_type: ClassVar[PacketType] = PacketType.PINGRESP
    name: ClassVar[str] = "pingresp"


@dataclass
class Disconnect(Packet):
    """Signals the end of the session."""

    packet_type: ClassVar[PacketType] = PacketType.DISCONNECT
    name: ClassVar[str] = "disconnect"