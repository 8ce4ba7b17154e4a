"""Lexicographically sortable message identifiers."""

from __future__ import annotations

import os
import struct
import threading
import time as _time
from typing import Iterable

from emitter.message.ssid import WILDCARD, Ssid

_MAX_UINT32 = 0xFFFFFFFF
_FIXED = 16

RETAINED_TTL = _MAX_UINT32
"""TTL used for retained messages (the maximum TTL)."""

OFFSET = 1514764800
"""Epoch of message times (start of 2018, UTC)."""

_UNIQUE = int.from_bytes(os.urandom(4), "big")


class _Sequence:
    """A thread-safe, wrapping 32-bit counter."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    def next(self) -> int:
        with self._lock:
            self._value = (self._value + 1) & _MAX_UINT32
            return self._value


_sequence = _Sequence()


def _u32(value: int) -> bytes:
    return struct.pack(">I", value & _MAX_UINT32)


def _encode_time(t: int) -> bytes:
    return _u32(_MAX_UINT32 - ((t - OFFSET) & _MAX_UINT32))


class MessageId(bytearray):
    """A 128-bit message ID prefix followed by the SSID parts."""

    def _word(self, start: int) -> int:
        return struct.unpack_from(">I", self, start)[0]

    def set_time(self, t: int) -> None:
        """Set the time (seconds since the Unix epoch) on the ID."""
        self[4:8] = _encode_time(t)

    def time(self) -> int:
        """Return the time of the ID in seconds since the Unix epoch."""
        return (_MAX_UINT32 - self._word(4)) + OFFSET

    def contract(self) -> int:
        """Return the contract from the ID."""
        return self._word(_FIXED)

    def ssid(self) -> Ssid:
        """Return the SSID stored in the ID."""
        count = (len(self) - _FIXED) // 4
        return Ssid(struct.unpack_from(f">{count}I", self, _FIXED))

    def has_prefix(self, ssid: Iterable[int], cutoff: int) -> bool:
        """Check the prefix against the SSID and that the time is not before cutoff."""
        parts = tuple(ssid)
        return self._word(0) == parts[0] ^ parts[1] and self.time() >= cutoff

    def match(self, query: Iterable[int], since: int, until: int) -> bool:
        """Match the ID against an SSID query and inclusive time bounds."""
        parts = tuple(query)
        if len(parts) * 4 > len(self) - _FIXED:
            return False
        # Deeper parts are less likely to match, so they are checked first.
        for index in reversed(range(len(parts))):
            expected = parts[index]
            if expected != WILDCARD and expected != self._word(_FIXED + index * 4):
                return False
        return since <= self.time() <= until


def new_id(ssid: Iterable[int]) -> MessageId:
    """Create a new message ID for the current time."""
    parts = Ssid(ssid)
    now = int(_time.time()) - OFFSET
    header = struct.pack(
        ">IIII",
        parts[0] ^ parts[1],
        _MAX_UINT32 - (now & _MAX_UINT32),
        _MAX_UINT32 - _sequence.next(),  # reverse order
        _UNIQUE,
    )
    return MessageId(header + struct.pack(f">{len(parts)}I", *parts))


def new_prefix(ssid: Iterable[int], since: int) -> MessageId:
    """Create an ID holding only the prefix, for seeking from a given time."""
    parts = tuple(ssid)
    return MessageId(_u32(parts[0] ^ parts[1]) + _encode_time(since))