"""An HTTP client for JSON and binary APIs, with optional host load-balancing."""

from __future__ import annotations

import ipaddress
import itertools
import json
import socket
import threading
from dataclasses import dataclass, field
from http.client import HTTPConnection, HTTPSConnection
from typing import Any, Iterable, Optional, Union
from urllib.parse import urljoin, urlsplit

ACCEPT = "application/json, application/binary"
BINARY_CONTENT_TYPE = "application/binary"
DEFAULT_PORT = 80

_MAX_REDIRECTS = 10

Address = tuple[str, int]


@dataclass(frozen=True)
class HeaderValue:
    """An HTTP header with its value."""

    header: str
    value: str


HeaderLike = Union[HeaderValue, tuple[str, str]]


def _as_header(value: HeaderLike) -> HeaderValue:
    if isinstance(value, HeaderValue):
        return value
    name, text = value
    return HeaderValue(str(name), str(text))


class HttpStatusError(Exception):
    """Raised when the server answers with a 4xx or 5xx status code."""

    def __init__(self, status: int) -> None:
        super().__init__(f"http status code {status} received")
        self.status = status


@dataclass
class Response:
    """A successful HTTP response."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def content_type(self) -> str:
        """The Content-Type header of the response, or an empty string."""
        return self.headers.get("content-type", "")

    def decode(self) -> Any:
        """Decode the body: binary payloads are returned as bytes, anything else as JSON."""
        if self.content_type == BINARY_CONTENT_TYPE:
            return bytes(self.body)
        return json.loads(self.body)


def _send(
    method: str,
    url: str,
    body: Optional[bytes],
    headers: dict[str, str],
    timeout: float,
    address: Optional[Address],
) -> tuple[int, dict[str, str], bytes]:
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https"):
        raise ValueError(f"unsupported URL {url!r}")
    if parts.hostname is None:
        raise ValueError(f"URL {url!r} has no host")

    default_port = 443 if parts.scheme == "https" else DEFAULT_PORT
    target_host, target_port = address or (parts.hostname, parts.port or default_port)
    connection_class = HTTPSConnection if parts.scheme == "https" else HTTPConnection
    connection = connection_class(target_host, target_port, timeout=timeout)

    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    request_headers = dict(headers)
    if not any(name.lower() == "host" for name in request_headers):
        request_headers["Host"] = parts.netloc

    try:
        connection.request(method, path, body=body, headers=request_headers)
        response = connection.getresponse()
        data = response.read()
        received = {name.lower(): value for name, value in response.getheaders()}
        return response.status, received, data
    finally:
        connection.close()


class Client:
    """Issues HTTP requests; a host client balances them over the host's addresses."""

    def __init__(
        self,
        timeout: float,
        headers: Iterable[HeaderLike] = (),
        addresses: Iterable[Address] = (),
        host: Optional[str] = None,
    ) -> None:
        self.timeout = float(timeout)
        self.host = host
        self._headers = tuple(_as_header(h) for h in headers)
        self._addresses = tuple(addresses)
        self._cycle = itertools.cycle(self._addresses) if self._addresses else None
        self._lock = threading.Lock()

    def get(self, url: str, *args: HeaderLike) -> Optional[Response]:
        """Issue a GET; return None when the server sends no content."""
        return self._do(url, "GET", None, args)

    def post(self, url: str, body: bytes, *args: HeaderLike) -> Optional[Response]:
        """Issue a POST with the body; return None when the server sends no content."""
        return self._do(url, "POST", None if body is None else bytes(body), args)

    def _next_address(self) -> Optional[Address]:
        if self._cycle is None:
            return None
        with self._lock:
            return next(self._cycle)

    def _build_headers(self, extra: Iterable[HeaderLike]) -> dict[str, str]:
        merged: dict[str, tuple[str, str]] = {}
        for header in (*self._headers, HeaderValue("Accept", ACCEPT), *map(_as_header, extra)):
            merged[header.header.lower()] = (header.header, header.value)
        return dict(merged.values())

    def _do(
        self,
        url: str,
        method: str,
        body: Optional[bytes],
        extra: Iterable[HeaderLike],
    ) -> Optional[Response]:
        headers = self._build_headers(extra)
        address = self._next_address()
        for _ in range(_MAX_REDIRECTS + 1):
            status, received, data = _send(method, url, body, headers, self.timeout, address)
            if status == 308:
                # Follow directly, without balancing, so the location is asked as given.
                url = urljoin(url, received.get("location", ""))
                address = None
                continue
            if 400 <= status <= 599:
                raise HttpStatusError(status)
            if status == 204:
                return None
            return Response(status=status, headers=received, body=data)
        raise HttpStatusError(308)


def new_client(timeout: float, *args: HeaderLike) -> Client:
    """Create a client that sends each request to the host named in its URL."""
    return Client(timeout, headers=args)


def _resolve(host: str, default_port: int) -> list[Address]:
    text = host if "//" in host else f"//{host}"
    parts = urlsplit(text)
    hostname = parts.hostname
    if not hostname:
        raise ValueError(f"invalid host {host!r}")
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        if not any(ch.isalpha() for ch in hostname):
            raise ValueError(f"invalid host {host!r}") from None
    port = parts.port or default_port

    addresses: list[Address] = []
    for *_, sockaddr in socket.getaddrinfo(hostname, port, type=socket.SOCK_STREAM):
        address = (str(sockaddr[0]), int(sockaddr[1]))
        if address not in addresses:
            addresses.append(address)
    if not addresses:
        raise ValueError(f"host {host!r} did not resolve to any address")
    return addresses


def new_host_client(host: str, timeout: float, *args: HeaderLike) -> Client:
    """Create a client that round-robins requests over the addresses of a host."""
    return Client(timeout, headers=args, addresses=_resolve(host, DEFAULT_PORT), host=host)