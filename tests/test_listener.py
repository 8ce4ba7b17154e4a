import socket
import threading
import time

import pytest

from emitter.network.listener import (
    Listener,
    ListenerClosedError,
    NotMatchedError,
    SniffedConnection,
)
from emitter.network.matcher import match_any, match_http, match_prefix


@pytest.fixture
def listener():
    lst = Listener("127.0.0.1:0")
    yield lst
    lst.close()


def _start_serving(lst):
    errors = []

    def run():
        try:
            lst.serve()
        except Exception as exc:
            errors.append(exc)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread, errors


def _accept_async(mux):
    results = []

    def run():
        try:
            results.append(mux.accept())
        except Exception as exc:
            results.append(exc)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread, results


def _connect(lst):
    return socket.create_connection(lst.address()[:2], timeout=2)


def _recv_exact(conn, size):
    data = b""
    while len(data) < size:
        chunk = conn.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline and not predicate():
        time.sleep(0.01)
    return predicate()


def test_http_connection_is_routed_and_replayed(listener):
    http = listener.match(match_http())
    listener.match(match_any())
    serve_thread, errors = _start_serving(listener)
    accept_thread, results = _accept_async(http)

    request = b"GET / HTTP/1.0\r\n\r\n"
    with _connect(listener) as client:
        client.sendall(request)
        accept_thread.join(2)
        conn = results[0]
        assert isinstance(conn, SniffedConnection)
        assert _recv_exact(conn, len(request)) == request
        conn.sendall(b"ok")
        assert _recv_exact(client, 2) == b"ok"
        conn.close()

    listener.close()
    serve_thread.join(2)
    assert isinstance(errors[0], ListenerClosedError)


def test_timeout_falls_through_to_any(listener):
    listener.set_read_timeout(0.1)
    http = listener.match(match_http())
    other = listener.match(match_any())
    serve_thread, errors = _start_serving(listener)
    http_thread, http_results = _accept_async(http)
    any_thread, any_results = _accept_async(other)

    with _connect(listener) as client:
        any_thread.join(2)
        conn = any_results[0]
        conn.sendall(b"any")
        conn.close()
        assert _recv_exact(client, 3) == b"any"

    listener.close()
    serve_thread.join(2)
    http_thread.join(2)
    assert isinstance(http_results[0], ListenerClosedError)
    assert isinstance(errors[0], ListenerClosedError)


def test_unmatched_connection_is_closed_and_reported(listener):
    seen = []

    def handler(err):
        seen.append(err)
        return True

    listener.handle_error(handler)
    listener.match(match_http())
    serve_thread, errors = _start_serving(listener)

    with _connect(listener) as client:
        client.sendall(b"XYZXYZXY")
        assert client.recv(16) == b""

    assert _wait_for(lambda: seen)
    assert isinstance(seen[0], NotMatchedError)
    assert seen[0].temporary is True

    listener.close()
    serve_thread.join(2)
    assert isinstance(errors[0], ListenerClosedError)


def test_error_handler_refusal_stops_serving(listener):
    listener.handle_error(lambda err: False)
    listener.match(match_http())
    serve_thread, errors = _start_serving(listener)

    with _connect(listener) as client:
        client.sendall(b"XYZXYZXY")
        client.recv(16)

    serve_thread.join(3)
    assert not serve_thread.is_alive()
    assert isinstance(errors[0], ListenerClosedError)


def test_sniffed_bytes_replayed_across_matchers(listener):
    mux = listener.match(match_prefix("FOO"), match_prefix("BAR"))
    serve_thread, _ = _start_serving(listener)
    accept_thread, results = _accept_async(mux)

    with _connect(listener) as client:
        client.sendall(b"BARBAZ")
        accept_thread.join(2)
        conn = results[0]
        assert _recv_exact(conn, 6) == b"BARBAZ"
        conn.close()

    listener.close()
    serve_thread.join(2)
    assert not serve_thread.is_alive()


def test_serve_async_runs_handler(listener):
    def serve(mux):
        conn = mux.accept()
        conn.sendall(b"hi")
        conn.close()

    handler_thread = listener.serve_async(match_any(), serve)
    serve_thread, _ = _start_serving(listener)

    with _connect(listener) as client:
        assert _recv_exact(client, 2) == b"hi"

    handler_thread.join(2)
    listener.close()
    serve_thread.join(2)
    assert not handler_thread.is_alive()


def test_direct_accept_returns_socket(listener):
    with _connect(listener) as client:
        conn = listener.accept()
        try:
            assert conn.getpeername() == client.getsockname()
        finally:
            conn.close()


def test_accept_after_close_raises(listener):
    listener.close()
    with pytest.raises(ListenerClosedError):
        listener.accept()


def test_address_has_assigned_port(listener):
    host, port = listener.address()[:2]
    assert host == "127.0.0.1"
    assert port > 0


def test_invalid_address_raises():
    with pytest.raises(ValueError):
        Listener("127.0.0.1:notaport")
    with pytest.raises(ValueError):
        Listener("nocolon")


def test_mux_close_closes_root(listener):
    mux = listener.match(match_any())
    mux.close()
    assert mux.address() == listener.address()
    with pytest.raises(ListenerClosedError):
        listener.accept()