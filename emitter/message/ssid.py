"""Subscription identifiers, subscriber sets and subscription counters."""

from __future__ import annotations

import dataclasses
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from itertools import islice
from typing import Callable, Iterable, Iterator, Optional

_MAX_UINT32 = 0xFFFFFFFF

# Constant parts of an SSID.
SYSTEM = 0
PRESENCE = 3869262148
QUERY = 3939663052
WILDCARD = 1815237614
SHARE = 1480642916


class Ssid(tuple):
    """A subscription ID: a contract followed by hashes of the channel parts."""

    def __new__(cls, parts: Iterable[int] = ()) -> "Ssid":
        values = tuple(int(p) for p in parts)
        for value in values:
            if not 0 <= value <= _MAX_UINT32:
                raise ValueError(f"SSID part {value} is not an unsigned 32-bit integer")
        return super().__new__(cls, values)

    def contract(self) -> int:
        """Return the contract part of the SSID."""
        return self[0]

    def hash_code(self) -> int:
        """Combine every part of the SSID into a single hash."""
        h = 0
        for part in self:
            h ^= part
        return h

    def encode(self) -> str:
        """Encode as hex; wildcards become dots so the result is usable as a regex."""
        return "".join("." * 8 if part == WILDCARD else f"{part:08x}" for part in self)


QUERY_SSID = Ssid((SYSTEM, QUERY))


def new_ssid(contract: int, query: Iterable[int]) -> Ssid:
    """Create an SSID from a contract and the hashed channel parts."""
    return Ssid((contract, *query))


def new_ssid_for_presence(original: Iterable[int]) -> Ssid:
    """Create the presence SSID for an existing SSID."""
    return Ssid((SYSTEM, PRESENCE, *original))


def new_ssid_for_share(original: Iterable[int]) -> Ssid:
    """Create the shared-subscription SSID for an existing SSID."""
    parts = tuple(original)
    return Ssid((parts[0], SHARE, *parts[1:]))


class SubscriberType(IntEnum):
    """The kind of a subscriber."""

    DIRECT = 0
    REMOTE = 1


class Subscriber(ABC):
    """A value associated with a subscription."""

    @abstractmethod
    def id(self) -> str:
        """Return the unique identifier of the subscriber."""

    @abstractmethod
    def type(self) -> SubscriberType:
        """Return the kind of subscriber."""

    @abstractmethod
    def send(self, message) -> None:
        """Deliver a message to the subscriber."""


class Subscribers:
    """A set of subscribers, unique by their identifier."""

    def __init__(self, subscribers: Iterable[Subscriber] = ()) -> None:
        self._items: dict[str, Subscriber] = {}
        for subscriber in subscribers:
            self.add_unique(subscriber)

    def add_unique(self, value: Optional[Subscriber]) -> bool:
        """Add a subscriber unless one with the same ID is present."""
        if value is None:
            return False
        key = value.id()
        if key in self._items:
            return False
        self._items[key] = value
        return True

    def add_range(
        self,
        other: "Subscribers",
        filter: Optional[Callable[[Subscriber], bool]] = None,
    ) -> None:
        """Add every subscriber of another set that passes the filter."""
        for key, value in other._items.items():
            if filter is None or filter(value):
                self._items[key] = value

    def remove(self, value: Optional[Subscriber]) -> bool:
        """Remove a subscriber; return whether it was present."""
        if value is None:
            return False
        return self._items.pop(value.id(), None) is not None

    def reset(self) -> None:
        """Remove every subscriber."""
        self._items.clear()

    def random(self, rnd: int) -> Optional[Subscriber]:
        """Pick a subscriber using a random 32-bit unsigned integer."""
        if not self._items:
            return None
        index = ((rnd & _MAX_UINT32) * len(self._items)) >> 32
        return next(islice(self._items.values(), index, None))

    def __contains__(self, value: object) -> bool:
        return isinstance(value, Subscriber) and value.id() in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Subscriber]:
        return iter(self._items.values())

    def __repr__(self) -> str:
        return f"Subscribers({list(self._items)!r})"


@dataclass
class Subscription:
    """A topic subscription."""

    ssid: Ssid
    subscriber: Subscriber


@dataclass
class Counter:
    """A single subscription counter."""

    ssid: Ssid
    channel: bytes
    count: int = 0


class Counters:
    """Thread-safe counters of subscriptions, keyed by SSID hash."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[int, Counter] = {}

    def increment(self, ssid: Ssid, channel: bytes) -> bool:
        """Increment the counter; return True if this is the first subscription."""
        ssid = Ssid(ssid)
        with self._lock:
            key = ssid.hash_code()
            counter = self._counters.get(key)
            if counter is None:
                counter = self._counters[key] = Counter(ssid, bytes(channel))
            counter.count += 1
            return counter.count == 1

    def decrement(self, ssid: Ssid) -> bool:
        """Decrement the counter; return True if no subscriptions remain."""
        key = Ssid(ssid).hash_code()
        with self._lock:
            counter = self._counters.get(key)
            if counter is None:
                return False
            counter.count -= 1
            if counter.count <= 0:
                del self._counters[key]
                return True
            return False

    def all(self) -> list[Counter]:
        """Return copies of every counter."""
        with self._lock:
            return [dataclasses.replace(c) for c in self._counters.values()]

    def get(self, ssid: Ssid) -> Optional[Counter]:
        """Return a copy of the counter for the SSID, or None."""
        with self._lock:
            counter = self._counters.get(Ssid(ssid).hash_code())
            return None if counter is None else dataclasses.replace(counter)

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)