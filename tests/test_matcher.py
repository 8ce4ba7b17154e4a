import io

import pytest

from emitter.network.matcher import PatriciaTree, match_any, match_http, match_prefix


def reader(text):
    return io.BytesIO(text.encode())


def check_tree(*values):
    tree = PatriciaTree(*values)
    for s in values:
        assert tree.match(reader(s)), f"{s} is not matched by {s}"
        assert tree.match_prefix(reader(s + s)), f"{s + s} is not prefix-matched by {s}"
        assert not tree.match(reader(s + s)), f"{s + s} matches {s}"
        assert not tree.match(reader(s + "$"))
        assert tree.match_prefix(reader(s + "$"))
        # Truncated inputs must not blow up.
        assert isinstance(tree.match_prefix(reader(s[:-1])), bool)
        assert isinstance(tree.match(reader(s[:-1])), bool)


def test_one_prefix():
    check_tree("prefix")


def test_non_overlapping():
    check_tree("foo", "bar", "dummy")


def test_overlapping():
    check_tree("foo", "far", "farther", "boo", "ba", "bar")


def test_truncated_single_value_does_not_match():
    tree = PatriciaTree("prefix")
    assert not tree.match(reader("prefi"))
    assert not tree.match_prefix(reader("prefi"))


def test_overlapping_shorter_word_matches_exactly():
    tree = PatriciaTree("far", "farther")
    assert tree.match(reader("far"))
    assert not tree.match(reader("farth"))
    assert tree.match_prefix(reader("farth"))


def test_non_member_rejected():
    tree = PatriciaTree("foo", "bar")
    assert not tree.match_prefix(reader("baz"))
    assert not tree.match(reader("qux"))


def test_match_any():
    assert match_any()(io.BytesIO(b"\x00\x01")) is True


@pytest.mark.parametrize(
    "data,expected",
    [
        (b"GET / HTTP/1.1\r\n", True),
        (b"POST /x HTTP/1.1\r\n", True),
        (b"OPTIONS * HTTP/1.1\r\n", True),
        (b"\x10\x0c\x00\x04MQTT", False),
        (b"", False),
    ],
)
def test_match_http(data, expected):
    assert match_http()(io.BytesIO(data)) is expected


def test_match_http_extra_method():
    matcher = match_http("PRI")
    assert matcher(io.BytesIO(b"PRI * HTTP/2.0"))
    assert not match_http()(io.BytesIO(b"PRI * HTTP/2.0"))


def test_match_prefix_bytes():
    matcher = match_prefix(b"\x10", b"\x20")
    assert matcher(io.BytesIO(b"\x10abc"))
    assert not matcher(io.BytesIO(b"\x30abc"))