import threading

import pytest

from emitter.message.ssid import (
    PRESENCE,
    QUERY_SSID,
    SHARE,
    WILDCARD,
    Counter,
    Counters,
    Ssid,
    Subscriber,
    Subscribers,
    SubscriberType,
    Subscription,
    new_ssid,
    new_ssid_for_presence,
    new_ssid_for_share,
)

MASK = 0xFFFFFFFF


class FakeSubscriber(Subscriber):
    def __init__(self, ident):
        self._ident = ident
        self.received = []

    def id(self):
        return self._ident

    def type(self):
        return SubscriberType.DIRECT

    def send(self, message):
        self.received.append(message)


def test_ssid_presence():
    ssid = new_ssid_for_presence(Ssid((1, 2, 3)))
    assert ssid == (0, 3869262148, 1, 2, 3)
    assert ssid[1] == PRESENCE


def test_ssid_share():
    ssid = new_ssid_for_share(Ssid((1, 2, 3)))
    assert ssid == (1, SHARE, 2, 3)


def test_ssid_contract_and_hash():
    ssid = new_ssid(0, [10, 20, 50])
    assert ssid.contract() == 0
    assert ssid.hash_code() == 0x2C


@pytest.mark.parametrize(
    "parts, expected",
    [
        ([10, 20, 50], "000000000000000a0000001400000032"),
        ([10, WILDCARD, 50], "000000000000000a........00000032"),
    ],
)
def test_ssid_encode(parts, expected):
    assert new_ssid(0, parts).encode() == expected


def test_ssid_rejects_out_of_range():
    with pytest.raises(ValueError):
        Ssid((1, 1 << 32))
    with pytest.raises(ValueError):
        Ssid((-1,))


def test_query_ssid():
    assert QUERY_SSID == (0, 3939663052)
    assert QUERY_SSID.contract() == 0
    assert QUERY_SSID.hash_code() == 3939663052


def test_subscribers_add_remove():
    subs = Subscribers()
    sub = FakeSubscriber("x")
    assert subs.add_unique(sub) is True
    assert subs.add_unique(sub) is False
    assert sub in subs
    assert subs.remove(sub) is True
    assert subs.remove(sub) is False
    assert sub not in subs
    assert len(subs) == 0


def test_subscribers_none_is_ignored():
    subs = Subscribers()
    assert subs.add_unique(None) is False
    assert subs.remove(None) is False
    assert len(subs) == 0


def test_subscribers_add_range_with_filter():
    source = Subscribers(FakeSubscriber(str(i)) for i in range(6))
    target = Subscribers()
    target.add_range(source, lambda s: int(s.id()) % 2 == 0)
    assert sorted(s.id() for s in target) == ["0", "2", "4"]
    target.add_range(source)
    assert len(target) == 6


def test_subscribers_reset():
    subs = Subscribers(FakeSubscriber(str(i)) for i in range(3))
    subs.reset()
    assert len(subs) == 0
    assert list(subs) == []


def test_collisions():
    subs = Subscribers()
    count = 100000
    for i in range(count):
        subs.add_unique(FakeSubscriber(str(i)))
    assert len(subs) == count


def test_random_empty():
    assert Subscribers().random(12345) is None


def _check_random(count, iterations):
    subs = Subscribers(FakeSubscriber(str(i)) for i in range(count))
    n = 1552127721834
    x = ((n >> 32) ^ n) & MASK
    out = {}
    for _ in range(iterations):
        x ^= (x << 13) & MASK
        x ^= x >> 17
        x ^= (x << 5) & MASK
        chosen = subs.random(x)
        out[chosen.id()] = out.get(chosen.id(), 0) + 1

    assert len(out) == count
    average = iterations / count
    for value in out.values():
        assert abs(value - average) / average <= 0.05


@pytest.mark.parametrize("count", range(2, 20))
def test_random_distribution(count):
    _check_random(count, 100000)


def test_subscription_holds_values():
    sub = FakeSubscriber("a")
    subscription = Subscription(Ssid((1, 2)), sub)
    assert subscription.ssid == (1, 2)
    assert subscription.subscriber.id() == "a"


def test_counters_new_is_empty():
    counters = Counters()
    assert counters.all() == []
    assert len(counters) == 0


def test_counters_increment_creates():
    counters = Counters()
    ssid = Ssid((0,))
    assert counters.increment(ssid, b"test") is True
    counter = counters.get(ssid)
    assert counter == Counter(ssid=ssid, channel=b"test", count=1)


def test_counters_all():
    counters = Counters()
    ssid = Ssid((0,))
    counters.increment(ssid, b"test")
    all_counters = counters.all()
    assert len(all_counters) == 1
    assert all_counters[0] == counters.get(ssid)


def test_counters_increment_decrement():
    counters = Counters()
    ssid1 = Ssid((0,))
    ssid2 = Ssid((1,))

    assert counters.increment(ssid1, b"test") is True
    assert counters.get(ssid1).count == 1

    assert counters.increment(ssid2, b"test") is True
    assert counters.get(ssid2).count == 1

    assert counters.increment(ssid2, b"test") is False
    assert counters.get(ssid2).count == 2

    assert counters.decrement(ssid2) is False
    assert counters.get(ssid2).count == 1

    assert counters.decrement(ssid2) is True
    assert counters.get(ssid2) is None


def test_counters_decrement_missing():
    assert Counters().decrement(Ssid((5, 6))) is False


def test_counters_concurrent_increment():
    counters = Counters()
    ssid = Ssid((7, 8))

    def work():
        for _ in range(500):
            counters.increment(ssid, b"c")

    threads = [threading.Thread(target=work) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert counters.get(ssid).count == 2000