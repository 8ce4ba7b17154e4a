# emitter

Building blocks for a publish/subscribe message broker, in plain Python with
no third-party dependencies.

## Modules

- `emitter.message.ssid` – subscription identifiers (`Ssid`, `new_ssid`,
  `new_ssid_for_presence`, `new_ssid_for_share`), the `Subscriber` base class,
  subscriber sets (`Subscribers`, unique by subscriber ID) and thread-safe
  subscription counters (`Counters`).
- `emitter.message.id` – `MessageId`, a 16-byte sortable prefix (SSID hash,
  reversed time, reversed sequence number, random value) followed by the SSID
  parts; `new_id`, `new_prefix`, prefix and time-window matching.
- `emitter.message.frame` – `Message` and `Frame`, a list of messages that can
  be sorted by time, limited to the newest entries, encoded into a
  zlib-compressed byte string and read back with `decode_frame` (which raises
  `FrameDecodeError` on bad input).
- `emitter.message.trie` – `Trie`, a thread-safe subscription tree with
  wildcard segments and shared subscription groups (one randomly chosen
  subscriber per group on lookup).
- `emitter.network.mqtt.packets` – MQTT 3.1 packet dataclasses (`Connect`,
  `Publish`, `Subscribe`, …), `Packet.encode` / `Packet.encode_to` and
  `encode_length`.
- `emitter.network.mqtt.codec` – `decode_packet` and `decode_static_header`,
  raising `DecodeError` or `PacketTooLargeError`.
- `emitter.network.matcher` – `PatriciaTree` and the matchers `match_any`,
  `match_prefix` and `match_http`, which inspect the first bytes of a stream.
- `emitter.network.listener` – `Listener`, a TCP listener (optionally wrapped
  in TLS) that sniffs the first bytes of each connection and hands it, as a
  `SniffedConnection` that replays those bytes, to the first `MuxListener`
  whose matcher accepts it.
- `emitter.network.websocket` – `WebsocketTransport`, a byte-stream view over
  any object implementing the `WebsocketConnection` interface.
- `emitter.network.http` – an HTTP `Client` (`new_client`, `new_host_client`)
  that follows 308 redirects, raises `HttpStatusError` on 4xx/5xx, returns
  `None` on 204 and otherwise a `Response` whose `decode()` parses JSON or
  returns raw bytes for `application/binary`.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Examples

Encoding a subscription identifier:

```python
from emitter.message.ssid import new_ssid

ssid = new_ssid(0, [10, 20, 50])
print(ssid.encode())   # 000000000000000a0000001400000032
```

Looking up subscribers with a wildcard subscription:

```python
from emitter.message.ssid import WILDCARD, Subscriber, SubscriberType
from emitter.message.trie import Trie

class Printer(Subscriber):
    def __init__(self, name):
        self.name = name
    def id(self):
        return self.name
    def type(self):
        return SubscriberType.DIRECT
    def send(self, message):
        print(self.name, message)

trie = Trie()
trie.subscribe([1, WILDCARD], Printer("a"))
print(len(trie.lookup([1, 7])))   # 1
```

Round-tripping an MQTT packet:

```python
import io
from emitter.network.mqtt.codec import decode_packet
from emitter.network.mqtt.packets import Publish, StaticHeader

packet = Publish(header=StaticHeader(qos=1), topic=b"a/b/c", message_id=69, payload=b"hi")
print(decode_packet(io.BytesIO(packet.encode()), 65536) == packet)   # True
```

Recognising HTTP traffic from the first bytes of a stream:

```python
import io
from emitter.network.matcher import match_http

print(match_http()(io.BytesIO(b"GET / HTTP/1.1\r\n")))   # True
```

## What this package does not do

It provides components only. There is no broker server or command to run,
no message storage, no authentication or channel keys, and no websocket
handshake: `WebsocketTransport` works over a connection object you supply.