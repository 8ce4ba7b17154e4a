"""Decoding of MQTT control packets from a byte stream."""

from __future__ import annotations

from typing import Callable, Optional

from emitter.network.mqtt.packets import (
    Connack,
    Connect,
    Disconnect,
    Packet,
    PacketType,
    Pingreq,
    Pingresp,
    Puback,
    Pubcomp,
    Publish,
    Pubrec,
    Pubrel,
    StaticHeader,
    Suback,
    Subscribe,
    TopicQos,
    Unsuback,
    Unsubscribe,
)

_FLAGGED_TYPES = frozenset(
    {PacketType.PUBLISH, PacketType.SUBSCRIBE, PacketType.UNSUBSCRIBE, PacketType.PUBREL}
)


class DecodeError(ValueError):
    """Raised when a packet cannot be decoded."""


class PacketTooLargeError(DecodeError):
    """Raised when a packet body exceeds the allowed size."""


def _read_full(reader, size: int) -> bytes:
    data = bytearray()
    while len(data) < size:
        chunk = reader.read(size - len(data))
        if not chunk:
            raise DecodeError(
                f"unexpected end of stream: wanted {size} bytes, got {len(data)}"
            )
        data += chunk
    return bytes(data)


class _Cursor:
    """Sequential reader over a packet body."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    @property
    def exhausted(self) -> bool:
        return self._pos >= len(self._data)

    def skip(self, count: int) -> None:
        self._take(count)

    def _take(self, count: int) -> bytes:
        end = self._pos + count
        if end > len(self._data):
            raise DecodeError("packet body is truncated")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def byte(self) -> int:
        return self._take(1)[0]

    def uint16(self) -> int:
        return int.from_bytes(self._take(2), "big")

    def string(self) -> bytes:
        return self._take(self.uint16())

    def rest(self) -> bytes:
        chunk = self._data[self._pos:]
        self._pos = len(self._data)
        return chunk


def decode_static_header(reader):
    """Read the fixed header; return (header or None, body length, packet type)."""
    first = _read_full(reader, 1)[0]
    message_type = (first & 0xF0) >> 4

    header: Optional[StaticHeader] = None
    if message_type in _FLAGGED_TYPES:
        header = StaticHeader(
            dup=bool(first & 0x08),
            retain=bool(first & 0x01),
            qos=(first & 0x06) >> 1,
        )

    length = 0
    multiplier = 1
    digit = 0x80
    while digit & 0x80:
        digit = _read_full(reader, 1)[0]
        length += (digit & 0x7F) * multiplier
        multiplier *= 128

    return header, length, message_type


def _decode_connect(body: _Cursor, header: Optional[StaticHeader]) -> Packet:
    proto_name = body.string()
    version = body.byte()
    flags = body.byte()
    keep_alive = body.uint16()
    client_id = body.string()
    packet = Connect(
        proto_name=proto_name,
        version=version,
        username_flag=bool(flags & 0x80),
        password_flag=bool(flags & 0x40),
        will_retain_flag=bool(flags & 0x20),
        will_qos=flags & 0x18,
        will_flag=bool(flags & 0x04),
        clean_session_flag=bool(flags & 0x02),
        keep_alive=keep_alive,
        client_id=client_id,
    )
    if packet.will_flag:
        packet.will_topic = body.string()
        packet.will_message = body.string()
    if packet.username_flag:
        packet.username = body.string()
    if packet.password_flag:
        packet.password = body.string()
    return packet


def _decode_connack(body: _Cursor, header: Optional[StaticHeader]) -> Packet:
    body.skip(1)  # the first byte carries no information here
    return Connack(return_code=body.byte())


def _decode_publish(body: _Cursor, header: Optional[StaticHeader]) -> Packet:
    header = header or StaticHeader()
    topic = body.string()
    message_id = body.uint16() if header.qos > 0 else 0
    return Publish(header=header, topic=topic, message_id=message_id, payload=body.rest())


def _decode_puback(body: _Cursor, header: Optional[StaticHeader]) -> Packet:
    return Puback(message_id=body.uint16())


def _decode_pubrec(body: _Cursor, header: Optional[StaticHeader]) -> Packet:
    return Pubrec(message_id=body.uint16())


def _decode_pubrel(body: _Cursor, header: Optional[StaticHeader]) -> Packet:
    return Pubrel(message_id=body.uint16(), header=header)


def _decode_pubcomp(body: _Cursor, header: Optional[StaticHeader]) -> Packet:
    return Pubcomp(message_id=body.uint16())


def _decode_subscribe(body: _Cursor, header: Optional[StaticHeader]) -> Packet:
    message_id = body.uint16()
    subscriptions = []
    while not body.exhausted:
        topic = body.string()
        subscriptions.append(TopicQos(topic=topic, qos=body.byte()))
    return Subscribe(header=header, message_id=message_id, subscriptions=subscriptions)


def _decode_suback(body: _Cursor, header: Optional[StaticHeader]) -> Packet:
    message_id = body.uint16()
    return Suback(message_id=message_id, qos=list(body.rest()))


def _decode_unsubscribe(body: _Cursor, header: Optional[StaticHeader]) -> Packet:
    message_id = body.uint16()
    topics = []
    while not body.exhausted:
        topics.append(TopicQos(topic=body.string()))
    return Unsubscribe(header=header, message_id=message_id, topics=topics)


def _decode_unsuback(body: _Cursor, header: Optional[StaticHeader]) -> Packet:
    return Unsuback(message_id=body.uint16())


_EMPTY_PACKETS: dict[int, Callable[[], Packet]] = {
    PacketType.PINGREQ: Pingreq,
    PacketType.PINGRESP: Pingresp,
    PacketType.DISCONNECT: Disconnect,
}

_DECODERS: dict[int, Callable[[_Cursor, Optional[StaticHeader]], Packet]] = {
    PacketType.CONNECT: _decode_connect,
    PacketType.CONNACK: _decode_connack,
    PacketType.PUBLISH: _decode_publish,
    PacketType.PUBACK: _decode_puback,
    PacketType.PUBREC: _decode_pubrec,
    PacketType.PUBREL: _decode_pubrel,
    PacketType.PUBCOMP: _decode_pubcomp,
    PacketType.SUBSCRIBE: _decode_subscribe,
    PacketType.SUBACK: _decode_suback,
    PacketType.UNSUBSCRIBE: _decode_unsubscribe,
    PacketType.UNSUBACK: _decode_unsuback,
}


def decode_packet(reader, max_message_size):
    """Read and decode one packet from a binary reader."""
    header, length, message_type = decode_static_header(reader)

    empty = _EMPTY_PACKETS.get(message_type)
    if empty is not None:
        return empty()

    if length > max_message_size:
        raise PacketTooLargeError(
            f"message size {length} exceeds the limit of {max_message_size}"
        )

    body = _read_full(reader, length)
    decoder = _DECODERS.get(message_type)
    if decoder is None:
        raise DecodeError(f"invalid zero-length packet with type {message_type}")
    return decoder(_Cursor(body), header)