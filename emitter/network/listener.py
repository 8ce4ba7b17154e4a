"""A TCP listener that routes connections to sub-listeners by sniffing their first bytes."""

from __future__ import annotations

import errno
import socket
import ssl
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional, Union

Matcher = Callable[[object], bool]
ErrorHandler = Callable[[BaseException], bool]

_POLL_INTERVAL = 0.1
_TEMPORARY_ERRNOS = frozenset({errno.EMFILE, errno.ENFILE, errno.ENOBUFS, errno.ENOMEM})


class NotMatchedError(Exception):
    """A connection was not matched by any registered matcher."""

    temporary = True

    def __init__(self, address) -> None:
        super().__init__(f"Unable to match connection {address}")
        self.address = address


class ListenerClosedError(OSError):
    """The listener has been closed."""

    temporary = False

    def __init__(self, message: str = "mux: listener closed") -> None:
        super().__init__(message)


def _is_temporary(err: BaseException) -> bool:
    flag = getattr(err, "temporary", None)
    if flag is not None:
        return bool(flag)
    if isinstance(err, (ConnectionAbortedError, InterruptedError, TimeoutError)):
        return True
    return isinstance(err, OSError) and err.errno in _TEMPORARY_ERRNOS


class _Sniffer:
    """Reads from a socket, recording bytes while sniffing so they can be replayed."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._buffer = bytearray()
        self._read_pos = 0
        self._size = 0
        self.sniffing = False
        self.deadline: Optional[float] = None

    def reset(self, sniffing: bool) -> None:
        self.sniffing = sniffing
        self._read_pos = 0
        self._size = len(self._buffer)

    def read(self, size: int) -> bytes:
        if self._size > self._read_pos:
            end = min(self._read_pos + size, self._size)
            chunk = bytes(self._buffer[self._read_pos:end])
            self._read_pos = end
            return chunk
        if not self.sniffing:
            if self._buffer:
                self._buffer = bytearray()
                self._read_pos = self._size = 0
            return self._sock.recv(size)

        if self.deadline is not None:
            remaining = self.deadline - time.monotonic()
            if remaining <= 0:
                return b""
            self._sock.settimeout(remaining)
        try:
            data = self._sock.recv(size)
        except OSError:
            # A failed sniff simply ends the stream seen by the matcher.
            return b""
        self._buffer += data
        return data


class SniffedConnection:
    """A socket whose first bytes, already inspected by matchers, are read again."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._sniffer = _Sniffer(sock)

    @property
    def socket(self) -> socket.socket:
        """The underlying socket."""
        return self._sock

    def recv(self, size: int) -> bytes:
        """Receive up to size bytes, replaying sniffed data first."""
        return self._sniffer.read(size)

    def sendall(self, data: bytes) -> None:
        """Send all of the data."""
        self._sock.sendall(data)

    def send(self, data: bytes) -> int:
        """Send data and return the number of bytes sent."""
        return self._sock.send(data)

    def settimeout(self, timeout: Optional[float]) -> None:
        """Set the timeout of the underlying socket."""
        self._sock.settimeout(timeout)

    def getpeername(self):
        """Return the remote address."""
        return self._sock.getpeername()

    def getsockname(self):
        """Return the local address."""
        return self._sock.getsockname()

    def shutdown(self, how: int) -> None:
        """Shut down one or both halves of the connection."""
        self._sock.shutdown(how)

    def close(self) -> None:
        """Close the connection."""
        self._sock.close()

    def __enter__(self) -> "SniffedConnection":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _start_sniffing(self) -> _Sniffer:
        self._sniffer.reset(True)
        return self._sniffer

    def _done_sniffing(self) -> None:
        self._sniffer.reset(False)

    def _set_read_deadline(self, deadline: Optional[float]) -> None:
        self._sniffer.deadline = deadline
        if deadline is None:
            self._sock.settimeout(None)


class MuxListener:
    """A listener that accepts only the connections routed to it."""

    def __init__(self, owner: "Listener", capacity: int) -> None:
        self._owner = owner
        self._capacity = capacity
        self._items: deque[SniffedConnection] = deque()
        self._cond = threading.Condition()
        self._closed = False

    def accept(self) -> SniffedConnection:
        """Wait for the next matched connection."""
        with self._cond:
            while not self._items and not self._closed:
                self._cond.wait()
            if self._items:
                conn = self._items.popleft()
                self._cond.notify_all()
                return conn
        raise ListenerClosedError()

    def close(self) -> None:
        """Close the root listener."""
        self._owner.close()

    def address(self):
        """Return the network address of the root listener."""
        return self._owner.address()

    def _offer(self, conn: SniffedConnection, closing: threading.Event) -> bool:
        with self._cond:
            while len(self._items) >= self._capacity and not self._closed and not closing.is_set():
                self._cond.wait()
            if self._closed or closing.is_set():
                return False
            self._items.append(conn)
            self._cond.notify_all()
            return True

    def _wake(self) -> None:
        with self._cond:
            self._cond.notify_all()

    def _shutdown(self) -> list[SniffedConnection]:
        with self._cond:
            self._closed = True
            drained = list(self._items)
            self._items.clear()
            self._cond.notify_all()
        return drained


@dataclass
class _Processor:
    matchers: tuple[Matcher, ...]
    listener: MuxListener


def _parse_address(address: Union[str, tuple[str, int]]) -> tuple[str, int]:
    if isinstance(address, tuple):
        return str(address[0]), int(address[1])
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {address!r}")
    return host.strip("[]"), int(port)


class Listener:
    """Accepts TCP connections and hands each to the first sub-listener whose matcher fits."""

    def __init__(
        self,
        address: Union[str, tuple[str, int]],
        ssl_context: Optional[ssl.SSLContext] = None,
        *,
        buffer_size: int = 1024,
    ) -> None:
        host, port = _parse_address(address)
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        self._root = socket.create_server((host, port), family=family)
        self._root.settimeout(_POLL_INTERVAL)
        self._address = self._root.getsockname()
        self._ssl_context = ssl_context
        self._buffer_size = buffer_size
        self._error_handler: ErrorHandler = lambda err: True
        self._processors: list[_Processor] = []
        self._read_timeout = 0.0
        self._closed = threading.Event()
        self._closing = threading.Event()
        self._active = 0
        self._active_cond = threading.Condition()

    def __enter__(self) -> "Listener":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _accept_raw(self) -> tuple[socket.socket, object]:
        while True:
            if self._closed.is_set():
                raise ListenerClosedError()
            try:
                return self._root.accept()
            except TimeoutError:
                continue
            except OSError:
                if self._closed.is_set():
                    raise ListenerClosedError() from None
                raise

    def accept(self) -> socket.socket:
        """Wait for and return the next raw connection."""
        return self._accept_raw()[0]

    def match(self, *args: Matcher) -> MuxListener:
        """Return a listener receiving connections matched by any of the matchers."""
        mux = MuxListener(self, self._buffer_size)
        self._processors.append(_Processor(matchers=tuple(args), listener=mux))
        return mux

    def serve_async(self, matcher: Matcher, serve: Callable[[MuxListener], object]) -> threading.Thread:
        """Register a matcher and run serve on its listener in a background thread."""
        mux = self.match(matcher)
        thread = threading.Thread(target=serve, args=(mux,), daemon=True)
        thread.start()
        return thread

    def set_read_timeout(self, timeout: float) -> None:
        """Set how long, in seconds, matchers may wait for a connection's first bytes."""
        self._read_timeout = float(timeout)

    def handle_error(self, handler: ErrorHandler) -> None:
        """Register a handler deciding whether serving continues after an error."""
        self._error_handler = handler

    def _handle_err(self, err: BaseException) -> bool:
        if not self._error_handler(err):
            return False
        return _is_temporary(err)

    def serve(self) -> None:
        """Accept and route connections until an error stops the listener, then raise it."""
        try:
            while True:
                try:
                    raw, _ = self._accept_raw()
                except OSError as err:
                    if not self._handle_err(err):
                        raise
                    continue
                with self._active_cond:
                    self._active += 1
                threading.Thread(target=self._serve_connection, args=(raw,), daemon=True).start()
        finally:
            self._closing.set()
            for processor in self._processors:
                processor.listener._wake()
            with self._active_cond:
                while self._active:
                    self._active_cond.wait()
            for processor in self._processors:
                for conn in processor.listener._shutdown():
                    conn.close()

    def _serve_connection(self, raw: socket.socket) -> None:
        try:
            self._route(raw)
        finally:
            with self._active_cond:
                self._active -= 1
                self._active_cond.notify_all()

    def _route(self, raw: socket.socket) -> None:
        try:
            peer = raw.getpeername()
        except OSError:
            peer = None
        if self._ssl_context is not None:
            if self._read_timeout > 0:
                raw.settimeout(self._read_timeout)
            try:
                raw = self._ssl_context.wrap_socket(raw, server_side=True)
            except OSError:
                raw.close()
                return

        conn = SniffedConnection(raw)
        if self._read_timeout > 0:
            conn._set_read_deadline(time.monotonic() + self._read_timeout)

        for processor in list(self._processors):
            for matcher in processor.matchers:
                if matcher(conn._start_sniffing()):
                    conn._done_sniffing()
                    conn._set_read_deadline(None)
                    if not processor.listener._offer(conn, self._closing):
                        conn.close()
                    return

        conn.close()
        if not self._handle_err(NotMatchedError(peer)):
            self.close()

    def close(self) -> None:
        """Close the root listener."""
        self._closed.set()
        self._root.close()

    def address(self):
        """Return the listener's network address."""
        return self._address