"""Connection matchers that sniff the first bytes of a stream."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Union

Matcher = Callable[[BinaryIO], bool]

DEFAULT_HTTP_METHODS = (
    "OPTIONS",
    "GET",
    "HEAD",
    "POST",
    "PATCH",
    "PUT",
    "DELETE",
    "TRACE",
    "CONNECT",
)


def _read_full(reader, size: int) -> bytes:
    """Read up to size bytes, stopping early only at end of stream."""
    chunks = bytearray()
    while len(chunks) < size:
        chunk = reader.read(size - len(chunks))
        if not chunk:
            break
        chunks += chunk
    return bytes(chunks)


def _split_prefix(values: list[bytes]) -> tuple[bytes, list[bytes]]:
    if not values or not values[0]:
        return b"", values
    if len(values) == 1:
        return values[0], [b""]
    length = 0
    for column in zip(*values):
        if any(byte != column[0] for byte in column):
            break
        length += 1
    prefix = values[0][:length]
    return prefix, [value[length:] for value in values]


@dataclass
class _Node:
    prefix: bytes = b""
    next: dict[int, "_Node"] = field(default_factory=dict)
    terminal: bool = False

    @classmethod
    def build(cls, values: list[bytes]) -> "_Node":
        if not values:
            return cls(prefix=b"", terminal=True)
        if len(values) == 1:
            return cls(prefix=values[0], terminal=True)

        prefix, rest = _split_prefix(values)
        node = cls(prefix=prefix)
        groups: dict[int, list[bytes]] = defaultdict(list)
        for value in rest:
            if not value:
                node.terminal = True
                continue
            groups[value[0]].append(value[1:])
        node.next = {first: cls.build(tails) for first, tails in groups.items()}
        return node

    def match(self, data: bytes, prefix: bool) -> bool:
        length = len(self.prefix)
        if length > 0:
            length = min(length, len(data))
            if data[:length] != self.prefix:
                return False

        if self.terminal and (prefix or len(self.prefix) == len(data)):
            return True
        if length >= len(data):
            return False

        following = self.next.get(data[length])
        if following is None:
            return False
        return following.match(data[length + 1:], prefix)


class PatriciaTree:
    """An immutable patricia tree over byte strings."""

    def __init__(self, *values: Union[str, bytes]) -> None:
        encoded = [v.encode() if isinstance(v, str) else bytes(v) for v in values]
        self._root = _Node.build(encoded)
        self._max_depth = max((len(v) for v in encoded), default=0) + 1

    def match_prefix(self, reader) -> bool:
        """Whether the stream starts with one of the tree's strings."""
        return self._root.match(_read_full(reader, self._max_depth), True)

    def match(self, reader) -> bool:
        """Whether the whole stream equals one of the tree's strings."""
        return self._root.match(_read_full(reader, self._max_depth), False)


def match_any() -> Matcher:
    """Return a matcher that accepts every connection."""
    return lambda reader: True


def match_prefix(*args: Union[str, bytes]) -> Matcher:
    """Return a matcher for streams starting with any of the given strings."""
    return PatriciaTree(*args).match_prefix


def match_http(*args: str) -> Matcher:
    """Return a matcher for HTTP requests, with optional extra methods."""
    return match_prefix(*DEFAULT_HTTP_METHODS, *args)