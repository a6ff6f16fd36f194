import pytest

from sonar.framing import SonarError
from sonar.link_layer import (
    CONNECTION_MAINTENANCE_INTERVAL_MS,
    CONNECTION_TIMEOUT_MS,
    REQUEST_RETRY_INTERVAL_MS,
    REQUEST_TIMEOUT_MS,
    LinkLayer,
    SonarErrors,
)
from sonar.receive import LinkReceiver
from sonar.transmit import LinkTransmitter


class Clock:
    def __init__(self, now=5):
        self.now = now

    def __call__(self):
        return self.now


class Endpoint:
    def __init__(self):
        self.out = bytearray()
        self.events = []
        self.requests = []
        self.completions = []
        self.reply = b"ok"
        self.skip_response = False
        self.raise_error = False
        self.layer = None

    def on_request(self, data):
        self.requests.append(bytes(data))
        if self.raise_error:
            raise SonarError("rejected")
        if self.reply is None:
            return False
        if not self.skip_response:
            self.layer.set_response(self.reply)
        return True

    def on_complete(self, success, data):
        self.completions.append((success, bytes(data)))

    def take(self):
        raw = bytes(self.out)
        self.out.clear()
        return raw


def endpoint(is_server, clock):
    ep = Endpoint()
    ep.layer = LinkLayer(
        is_server, 64, clock, ep.out.append, ep.events.append,
        ep.on_request, ep.on_complete,
    )
    return ep


def pump(src, dst):
    dst.layer.handle_receive_data(src.take())


def connected(clock):
    client = endpoint(False, clock)
    server = endpoint(True, clock)
    client.layer.process()
    pump(client, server)
    pump(server, client)
    return client, server


def decode(raw, from_server):
    packets = []
    receiver = LinkReceiver(not from_server, 256, lambda *p: packets.append(p))
    receiver.process_data(raw)
    return packets


def frame(is_server, is_response, is_link_control, seq, chunks):
    out = bytearray()
    LinkTransmitter(is_server, out.append).send_packet(is_response, is_link_control, seq, chunks)
    return bytes(out)


@pytest.fixture
def clock():
    return Clock()


def test_client_sends_connection_request(clock):
    client = endpoint(False, clock)
    client.layer.process()
    raw = client.take()
    assert raw[1] == 0x14
    packets = decode(raw, from_server=False)
    assert len(packets) == 1
    is_response, is_link_control, _, data = packets[0]
    assert (is_response, is_link_control, data) == (False, True, bytes([clock.now]))
    assert not client.layer.is_connected()


def test_connect_loopback(clock):
    client, server = connected(clock)
    assert client.layer.is_connected()
    assert server.layer.is_connected()
    assert client.events == [True]
    assert server.events == [True]


def test_request_response_round_trip(clock):
    client, server = connected(clock)
    client.layer.send_request([b"ab", b"cd"])
    pump(client, server)
    assert server.requests == [b"abcd"]
    pump(server, client)
    assert client.completions == [(True, b"ok")]


def test_server_initiated_request(clock):
    client, server = connected(clock)
    client.reply = b"ack"
    server.layer.send_request(b"note")
    pump(server, client)
    assert client.requests == [b"note"]
    pump(client, server)
    assert server.completions == [(True, b"ack")]


def test_consecutive_requests(clock):
    client, server = connected(clock)
    for payload in (b"one", b"two", b"three"):
        client.layer.send_request([payload])
        pump(client, server)
        pump(server, client)
    assert server.requests == [b"one", b"two", b"three"]
    assert client.completions == [(True, b"ok")] * 3
    assert server.layer.get_and_clear_errors() == SonarErrors()


def test_send_request_not_connected(clock):
    client = endpoint(False, clock)
    with pytest.raises(SonarError):
        client.layer.send_request([b"x"])


def test_send_request_while_pending(clock):
    client, _ = connected(clock)
    client.layer.send_request([b"x"])
    with pytest.raises(SonarError):
        client.layer.send_request([b"y"])


def test_set_response_outside_handler(clock):
    client, _ = connected(clock)
    with pytest.raises(SonarError):
        client.layer.set_response(b"x")


def test_retry_resends_same_packet(clock):
    client, server = connected(clock)
    client.layer.send_request([b"hi"])
    first = client.take()
    clock.now += REQUEST_RETRY_INTERVAL_MS
    client.layer.process()
    second = client.take()
    assert second == first
    assert client.layer.get_and_clear_errors().link_layer.retries == 1
    server.layer.handle_receive_data(second)
    pump(server, client)
    assert client.completions == [(True, b"ok")]


def test_no_retry_before_interval(clock):
    client, _ = connected(clock)
    client.layer.send_request([b"hi"])
    client.take()
    clock.now += REQUEST_RETRY_INTERVAL_MS - 1
    client.layer.process()
    assert client.take() == b""


def test_request_timeout(clock):
    client, _ = connected(clock)
    client.layer.send_request([b"hi"])
    clock.now += REQUEST_TIMEOUT_MS
    client.layer.process()
    assert client.completions == [(False, b"")]
    assert client.layer.get_and_clear_errors().link_layer.retries == 0
    client.layer.send_request([b"again"])
    assert client.take() != b""


def test_connection_timeout_reconnects(clock):
    client, _ = connected(clock)
    client.take()
    clock.now += CONNECTION_TIMEOUT_MS
    client.layer.process()
    assert client.events == [True, False]
    assert not client.layer.is_connected()
    packets = decode(client.take(), from_server=False)
    assert [(p[0], p[1], p[3]) for p in packets] == [(False, True, bytes([clock.now & 0xFF]))]


def test_connection_timeout_fails_pending_request(clock):
    client, _ = connected(clock)
    clock.now += CONNECTION_TIMEOUT_MS - 100
    client.layer.send_request([b"late"])
    clock.now += 100
    client.layer.process()
    assert client.events == [True, False]
    assert client.completions == [(False, b"")]


def test_maintenance_request(clock):
    client, server = connected(clock)
    clock.now += CONNECTION_MAINTENANCE_INTERVAL_MS
    client.layer.process()
    raw = client.take()
    packets = decode(raw, from_server=False)
    assert len(packets) == 1
    assert (packets[0][0], packets[0][1], packets[0][3]) == (False, True, b"")
    server.layer.handle_receive_data(raw)
    pump(server, client)
    assert client.layer.is_connected()
    assert client.events == [True]
    client.layer.send_request([b"x"])
    assert server.requests == []


def test_duplicate_request_resends_response(clock):
    client, server = connected(clock)
    client.layer.send_request([b"abc"])
    raw = client.take()
    server.layer.handle_receive_data(raw)
    first = server.take()
    server.layer.handle_receive_data(raw)
    second = server.take()
    assert first == second
    assert server.requests == [b"abc"]


def test_failed_request_sends_nothing(clock):
    client, server = connected(clock)
    server.reply = None
    client.layer.send_request([b"abc"])
    raw = client.take()
    server.layer.handle_receive_data(raw)
    assert server.take() == b""
    server.layer.handle_receive_data(raw)
    assert server.take() == b""
    assert server.requests == [b"abc"]


def test_handler_raising_is_failure(clock):
    client, server = connected(clock)
    server.raise_error = True
    client.layer.send_request([b"abc"])
    pump(client, server)
    assert server.requests == [b"abc"]
    assert server.take() == b""


def test_handler_without_response_sends_nothing(clock):
    client, server = connected(clock)
    server.skip_response = True
    client.layer.send_request([b"abc"])
    pump(client, server)
    assert server.take() == b""


def test_data_packet_when_not_connected(clock):
    server = endpoint(True, clock)
    server.layer.handle_receive_data(frame(False, False, False, 1, [b"x"]))
    assert server.requests == []
    assert server.layer.get_and_clear_errors().link_layer.unexpected_packet == 1


def test_maintenance_when_not_connected(clock):
    server = endpoint(True, clock)
    server.layer.handle_receive_data(frame(False, False, True, 1, None))
    assert server.take() == b""
    assert server.layer.get_and_clear_errors().link_layer.unexpected_packet == 1


def test_link_control_bad_length(clock):
    server = endpoint(True, clock)
    server.layer.handle_receive_data(frame(False, False, True, 1, [b"xy"]))
    assert not server.layer.is_connected()
    assert server.layer.get_and_clear_errors().link_layer.invalid_packet == 1


def test_non_incrementing_sequence(clock):
    server = endpoint(True, clock)
    server.layer.handle_receive_data(frame(False, False, True, 1, [b"\x05"]))
    assert server.layer.is_connected()
    server.take()
    server.layer.handle_receive_data(frame(False, False, False, 3, [b"x"]))
    assert server.requests == []
    assert server.layer.get_and_clear_errors().link_layer.invalid_sequence_number == 1
    server.layer.handle_receive_data(frame(False, False, False, 2, [b"y"]))
    assert server.requests == [b"y"]


def test_response_without_pending_request(clock):
    client, _ = connected(clock)
    client.layer.handle_receive_data(frame(True, True, False, 0, [b"x"]))
    assert client.completions == []
    assert client.layer.get_and_clear_errors().link_layer.unexpected_packet == 1


def test_response_with_wrong_sequence(clock):
    client, server = connected(clock)
    client.layer.send_request([b"abc"])
    pump(client, server)
    response = decode(server.take(), from_server=True)[0]
    wrong = (response[2] + 1) & 0xFF
    client.layer.handle_receive_data(frame(True, True, False, wrong, [b"ok"]))
    assert client.completions == []
    assert client.layer.get_and_clear_errors().link_layer.invalid_sequence_number == 1


def test_reconnect_request_disconnects_first(clock):
    _, server = connected(clock)
    server.layer.handle_receive_data(frame(False, False, True, 9, [b"\x20"]))
    assert server.events == [True, False, True]
    assert server.layer.is_connected()


def test_errors_include_receive_errors_and_clear(clock):
    server = endpoint(True, clock)
    raw = bytearray(frame(False, False, True, 1, [b"\x01"]))
    raw[3] ^= 0x03
    server.layer.handle_receive_data(bytes(raw))
    errors = server.layer.get_and_clear_errors()
    assert errors.link_layer_receive.invalid_crc == 1
    assert not server.layer.is_connected()
    assert server.layer.get_and_clear_errors() == SonarErrors()