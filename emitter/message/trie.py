"""A trie of subscriptions supporting wildcard and shared-group lookups."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from emitter.message.ssid import SHARE, WILDCARD, Ssid, Subscriber, Subscribers, Subscription

_MAX_UINT32 = 0xFFFFFFFF

SubscriberFilter = Optional[Callable[[Subscriber], bool]]


@dataclass(eq=False)
class _Node:
    word: int
    parent: Optional["_Node"] = None
    subs: Subscribers = field(default_factory=Subscribers)
    children: dict[int, "_Node"] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return len(self.subs) == 0 and not self.children

    def prune(self) -> None:
        """Detach this node and every ancestor left empty by the removal."""
        node = self
        while node.parent is not None:
            parent = node.parent
            parent.children.pop(node.word, None)
            if not parent.is_empty():
                break
            node = parent


class Trie:
    """A thread-safe collection of subscriptions with lookup by SSID."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._root = _Node(word=0)
        self._count = 0
        seed = time.time_ns()
        self._rand = (((seed >> 32) ^ seed) & _MAX_UINT32) or 1

    def __len__(self) -> int:
        with self._lock:
            return self._count

    def subscribe(self, ssid: Iterable[int], subscriber: Subscriber) -> Subscription:
        """Add the subscriber under the SSID and return the subscription."""
        ssid = Ssid(ssid)
        with self._lock:
            current = self._root
            for word in ssid:
                child = current.children.get(word)
                if child is None:
                    child = current.children[word] = _Node(word=word, parent=current)
                current = child
            if current.subs.add_unique(subscriber):
                self._count += 1
        return Subscription(ssid=ssid, subscriber=subscriber)

    def unsubscribe(self, ssid: Iterable[int], subscriber: Subscriber) -> None:
        """Remove the subscriber from the SSID, if subscribed."""
        with self._lock:
            current = self._root
            for word in ssid:
                child = current.children.get(word)
                if child is None:
                    return
                current = child
            if current.subs.remove(subscriber):
                self._count -= 1
            if current.is_empty():
                current.prune()

    def lookup(self, ssid: Iterable[int], filter: SubscriberFilter = None) -> Subscribers:
        """Return the subscribers matching the SSID, one per shared group."""
        query = tuple(ssid)
        subs = Subscribers()
        with self._lock:
            self._collect(query, 0, subs, self._root, filter)
            if query:
                contract_node = self._root.children.get(query[0])
                if contract_node is not None:
                    share_node = contract_node.children.get(SHARE)
                    if share_node is not None:
                        self._random_by_group(query[1:], subs, share_node, filter)
        return subs

    def _collect(
        self,
        query: tuple,
        depth: int,
        subs: Subscribers,
        node: _Node,
        filter: SubscriberFilter,
    ) -> None:
        subs.add_range(node.subs, filter)
        if depth >= len(query):
            return
        exact = node.children.get(query[depth])
        if exact is not None:
            self._collect(query, depth + 1, subs, exact, filter)
        wildcard = node.children.get(WILDCARD)
        if wildcard is not None:
            self._collect(query, depth + 1, subs, wildcard, filter)

    def _next_random(self) -> int:
        x = self._rand
        x ^= (x << 13) & _MAX_UINT32
        x ^= x >> 17
        x ^= (x << 5) & _MAX_UINT32
        self._rand = x
        return x

    def _random_by_group(
        self,
        query: tuple,
        subs: Subscribers,
        share_node: _Node,
        filter: SubscriberFilter,
    ) -> None:
        group = Subscribers()
        for node in share_node.children.values():
            group.reset()
            self._collect(query, 0, group, node, filter)
            if len(group) == 0:
                continue
            subs.add_unique(group.random(self._next_random()))