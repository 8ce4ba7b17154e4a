import io
from datetime import datetime

import pytest

from emitter.network.websocket import MessageType, WebsocketConnection, WebsocketTransport


class BufferWriter:
    def __init__(self):
        self.buffer = bytearray()
        self.closed = False

    def write(self, data):
        self.buffer += data
        return len(data)

    def close(self):
        self.closed = True


class FakeConnection(WebsocketConnection):
    def __init__(self, messages=None, writer=None):
        self.messages = list(messages) if messages is not None else None
        self.writer = writer
        self.read_deadline = None
        self.write_deadline = None
        self.closed = False
        self.requested_types = []

    def next_reader(self):
        if not self.messages:
            raise EOFError("no more messages")
        opcode, data = self.messages.pop(0)
        return opcode, io.BytesIO(data)

    def next_writer(self, message_type):
        self.requested_types.append(message_type)
        if self.writer is None:
            raise EOFError("cannot write")
        return self.writer

    def close(self):
        self.closed = True

    def local_address(self):
        return ""

    def remote_address(self):
        return ""

    def set_read_deadline(self, t):
        self.read_deadline = t

    def set_write_deadline(self, t):
        self.write_deadline = t


def test_read_eof():
    transport = WebsocketTransport(FakeConnection())
    with pytest.raises(EOFError):
        transport.read(0)


def test_read():
    message = b"hello world"
    transport = WebsocketTransport(FakeConnection([(MessageType.BINARY, message)]))
    assert transport.read(64) == message


def test_read_in_chunks_across_messages():
    conn = FakeConnection([(MessageType.BINARY, b"abcd"), (MessageType.TEXT, b"ef")])
    transport = WebsocketTransport(conn)
    assert transport.read(3) == b"abc"
    assert transport.read(3) == b"d"
    assert transport.read(3) == b"ef"
    with pytest.raises(EOFError):
        transport.read(3)


def test_read_skips_control_messages():
    conn = FakeConnection(
        [(MessageType.PING, b"ping"), (MessageType.PONG, b""), (MessageType.BINARY, b"data")]
    )
    transport = WebsocketTransport(conn)
    assert transport.read(16) == b"data"


def test_write():
    message = b"hello world"
    writer = BufferWriter()
    conn = FakeConnection(writer=writer)
    transport = WebsocketTransport(conn)
    assert transport.write(message) == len(message)
    assert bytes(writer.buffer) == message
    assert writer.closed
    assert conn.requested_types == [MessageType.BINARY]


def test_write_error():
    transport = WebsocketTransport(FakeConnection())
    with pytest.raises(EOFError):
        transport.write(b"x")


def test_misc():
    conn = FakeConnection()
    transport = WebsocketTransport(conn)

    transport.close()
    assert conn.closed

    first = datetime(2020, 1, 1)
    transport.set_deadline(first)
    assert conn.read_deadline == first
    assert conn.write_deadline == first

    second = datetime(2021, 1, 1)
    transport.set_read_deadline(second)
    assert conn.read_deadline == second
    assert conn.write_deadline == first

    third = datetime(2022, 1, 1)
    transport.set_write_deadline(third)
    assert conn.write_deadline == third

    assert transport.local_address() == ""
    assert transport.remote_address() == ""