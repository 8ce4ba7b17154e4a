"""A byte-stream transport over a message-oriented websocket connection."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from enum import IntEnum
from typing import BinaryIO, Protocol

WRITE_WAIT = 10.0  # seconds allowed to write a message to the peer
PONG_WAIT = 60.0  # seconds allowed to read the next pong from the peer
PING_PERIOD = PONG_WAIT * 9 / 10  # must be less than PONG_WAIT
CLOSE_GRACE_PERIOD = 10.0  # seconds before a connection is force-closed

SUBPROTOCOLS = ("mqttv3.1", "mqttv3", "mqtt")


class MessageType(IntEnum):
    """Websocket frame opcodes."""

    TEXT = 1
    BINARY = 2
    CLOSE = 8
    PING = 9
    PONG = 10


class MessageWriter(Protocol):
    def write(self, data: bytes) -> int | None: ...

    def close(self) -> None: ...


class WebsocketConnection(ABC):
    """A websocket connection delivering whole messages."""

    @abstractmethod
    def next_reader(self) -> tuple[int, BinaryIO]:
        """Return the type of the next message and a reader for its body."""

    @abstractmethod
    def next_writer(self, message_type: int) -> MessageWriter:
        """Return a writer for a new outgoing message."""

    @abstractmethod
    def close(self) -> None:
        """Close the connection."""

    @abstractmethod
    def local_address(self):
        """Return the local network address."""

    @abstractmethod
    def remote_address(self):
        """Return the remote network address."""

    @abstractmethod
    def set_read_deadline(self, t: datetime | None) -> None:
        """Set the deadline for reads."""

    @abstractmethod
    def set_write_deadline(self, t: datetime | None) -> None:
        """Set the deadline for writes."""


class WebsocketTransport:
    """Exposes a websocket connection as a continuous byte stream."""

    def __init__(self, socket: WebsocketConnection) -> None:
        self._socket = socket
        self._reader: BinaryIO | None = None
        self._write_lock = threading.Lock()

    def _next_data_reader(self) -> BinaryIO:
        while True:
            opcode, reader = self._socket.next_reader()
            if opcode in (MessageType.BINARY, MessageType.TEXT):
                return reader

    def read(self, size: int) -> bytes:
        """Read up to size bytes, moving across message boundaries as needed."""
        while True:
            if self._reader is None:
                self._reader = self._next_data_reader()
            if size == 0:
                return b""
            chunk = self._reader.read(size)
            if chunk:
                return chunk
            self._reader = None

    def write(self, data: bytes) -> int:
        """Send data as one binary message and return the bytes written."""
        with self._write_lock:
            writer = self._socket.next_writer(MessageType.BINARY)
            written = writer.write(data)
            writer.close()
        return len(data) if written is None else written

    def close(self) -> None:
        """Close the underlying connection."""
        self._socket.close()

    def local_address(self):
        """Return the local network address."""
        return self._socket.local_address()

    def remote_address(self):
        """Return the remote network address."""
        return self._socket.remote_address()

    def set_deadline(self, t: datetime | None) -> None:
        """Set both read and write deadlines."""
        self._socket.set_read_deadline(t)
        self._socket.set_write_deadline(t)

    def set_read_deadline(self, t: datetime | None) -> None:
        """Set the deadline for reads."""
        self._socket.set_read_deadline(t)

    def set_write_deadline(self, t: datetime | None) -> None:
        """Set the deadline for writes."""
        self._socket.set_write_deadline(t)