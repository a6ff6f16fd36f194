# sonar

`sonar` is a small request/response protocol for talking to a device over a
byte-oriented link such as a serial port. It is built in layers, each a plain
class driven by callbacks:

- **Link layer** (`sonar.link_layer.LinkLayer`): HDLC-style framing (`0x7E`
  flag bytes, `0x7D` escapes), a two-byte header, a CRC-16 footer, sequence
  numbers, retries every 100 ms, a 300 ms request timeout, and a connection
  that the client opens and keeps alive (maintenance request after 500 ms of
  silence, disconnect after 1000 ms).
- **Application layer** (`sonar.application_layer.ApplicationLayer`): read,
  write and notify operations addressed by a 12-bit attribute ID, with the
  operation (`Operation.READ`, `Operation.WRITE`, `Operation.NOTIFY`) in the
  top four bits.
- **Attribute layer** (`sonar.attribute_server.AttributeServer`,
  `sonar.attribute_client.AttributeClient`): the server publishes a list of
  its attributes; on connect the client enumerates it through the control
  attributes `0x101` (count), `0x102` (offset) and `0x103` (list, eight
  entries at a time) and marks as available the attributes both sides
  registered with the same operations.

No layer opens a port or starts a thread. You supply a millisecond clock and a
`write_byte` function, feed received bytes in, and call `process()` regularly
(ideally every millisecond).

## Installation

```
pip install .
```

Tests are run with `pip install .[test]` followed by `pytest`.

## Defining attributes

```python
from sonar.attribute import Attribute, AttributeOps

LED = Attribute(attribute_id=0x200, ops=AttributeOps.READ | AttributeOps.WRITE, max_size=1)
```

Attribute IDs must fit in the low 12 bits, and must not be one of the control
IDs above. `Attribute.list_entry()` gives the 16-bit value (ID plus operation
bits) that appears in the server's attribute list.

## Wiring a server

The layers refer to each other, so the callbacks below are lambdas resolved
when they are called.

```python
import time
from sonar.application_layer import ApplicationLayer
from sonar.attribute_server import AttributeServer
from sonar.link_layer import LinkLayer

led_state = bytearray(1)

def read_handler(attr, max_size):
    return bytes(led_state)

def write_handler(attr, data):
    led_state[:] = data
    return True

link = LinkLayer(
    is_server=True,
    receive_buffer_size=64,
    get_system_time_ms=lambda: int(time.monotonic() * 1000),
    write_byte=port_write_byte,
    connection_changed=lambda connected: print("connected:", connected),
    request=lambda data: app.handle_request(data),
    request_complete=lambda success, data: app.handle_response(success, data),
)
app = ApplicationLayer(
    is_server=True,
    send_data=link.send_request,
    set_response=link.set_response,
    attribute_read_handler=lambda attribute_id: attrs.handle_read_request(attribute_id),
    attribute_write_handler=lambda attribute_id, data: attrs.handle_write_request(attribute_id, data),
    notify_request_complete=lambda attribute_id, success: attrs.handle_notify_response(attribute_id, success),
)
attrs = AttributeServer(
    send_notify_request=app.notify_request,
    read_response=app.read_response,
    read_handler=read_handler,
    write_handler=write_handler,
    notify_complete=lambda success: None,
)
attrs.register(LED)

while True:
    link.handle_receive_data(port_read_available())
    link.process()
```

`attrs.notify(attr, data)` pushes a value to the client, and
`attrs.notify_read_data(attr)` pushes whatever `read_handler` returns; both
need an attribute with `AttributeOps.NOTIFY`.

## Wiring a client

```python
from sonar.application_layer import ApplicationLayer
from sonar.attribute_client import AttributeClient
from sonar.link_layer import LinkLayer

link = LinkLayer(
    is_server=False,
    receive_buffer_size=64,
    get_system_time_ms=lambda: int(time.monotonic() * 1000),
    write_byte=port_write_byte,
    connection_changed=lambda connected: attrs.low_level_connection_changed(connected),
    request=lambda data: app.handle_request(data),
    request_complete=lambda success, data: app.handle_response(success, data),
)
app = ApplicationLayer(
    is_server=False,
    send_data=link.send_request,
    set_response=link.set_response,
    attribute_notify_handler=lambda attribute_id, data: attrs.handle_notify_request(attribute_id, data),
    read_request_complete=lambda attribute_id, success, data: attrs.handle_read_response(attribute_id, success, data),
    write_request_complete=lambda attribute_id, success: attrs.handle_write_response(attribute_id, success),
)
attrs = AttributeClient(
    send_read_request=app.read_request,
    send_write_request=app.write_request,
    connection_changed=lambda connected: print("connected:", connected),
    read_complete=lambda success, data: print("read", success, data),
    write_complete=lambda success: print("write", success),
    notify_handler=lambda attr, data: True,
)
attrs.register(LED)

while True:
    link.handle_receive_data(port_read_available())
    link.process()
```

`attrs.is_connected()` becomes true once enumeration has finished, and
`attrs.is_available(attr)` tells whether the server offers an attribute with
the same operations. Only one request may be outstanding at a time, and
attributes must be registered before the connection is established.

## Errors

Refused operations (not connected, a request already pending, an attribute
not registered or not available, data larger than `max_size`, a malformed
packet) raise `sonar.framing.SonarError`. Problems found in received data are
logged on the `sonar` logger and counted: `LinkLayer.get_and_clear_errors()`
returns a `sonar.link_layer.SonarErrors` holding the framing counters
(`ReceiveErrors`: bad header, bad CRC, buffer overflow, bad escape) and the
link counters (`LinkErrors`: invalid packet, unexpected packet, bad sequence
number, retries), then resets them.

## Low-level pieces

`sonar.crc16.crc16(data, crc)` computes the CRC-16 used by the frames
(starting from `0xFFFF` by default), `sonar.framing.PacketHeader` encodes and
decodes the two-byte header, `sonar.framing.escape(data)` applies byte
stuffing, and `sonar.transmit.LinkTransmitter` and
`sonar.receive.LinkReceiver` encode and decode whole frames.

## What this package does not do

There is no ready-made client or server object that joins the layers; you
wire them together as shown above. The package has no command-line tool and
does not open serial ports, read from them or run a processing loop for you.