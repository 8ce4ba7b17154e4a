"""MQTT packet types, their encoding and the packet decoder."""