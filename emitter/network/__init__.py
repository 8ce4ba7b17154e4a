"""Network layer: protocol-sniffing listener, matchers, websocket transport, HTTP client and MQTT."""