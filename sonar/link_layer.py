"""Link layer: connection management, sequencing, retries and timeouts."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from .framing import SonarError
from .receive import LinkReceiver, ReceiveErrors
from .transmit import LinkTransmitter

logger = logging.getLogger("sonar")

# How long before we disconnect if no valid packet was received. The client
# sends a connection maintenance request at half this interval.
CONNECTION_TIMEOUT_MS = 1000
CONNECTION_MAINTENANCE_INTERVAL_MS = 500
REQUEST_RETRY_INTERVAL_MS = 100
REQUEST_TIMEOUT_MS = 300

assert (
    CONNECTION_TIMEOUT_MS
    >= CONNECTION_MAINTENANCE_INTERVAL_MS + REQUEST_TIMEOUT_MS + REQUEST_RETRY_INTERVAL_MS
), "the connection timeout must leave room for a maintenance request"


@dataclass
class LinkErrors:
    """Counters of problems seen by the link layer."""

    invalid_packet: int = 0
    unexpected_packet: int = 0
    invalid_sequence_number: int = 0
    retries: int = 0


@dataclass
class SonarErrors:
    """All error counters of a SONAR endpoint."""

    link_layer_receive: ReceiveErrors = field(default_factory=ReceiveErrors)
    link_layer: LinkErrors = field(default_factory=LinkErrors)


@dataclass
class _Connection:
    is_active: bool = False
    prev_sequence_num: int = 0
    last_packet_time_ms: int = 0


@dataclass
class _PendingRequest:
    is_active: bool = False
    is_link_control: bool = False
    sequence_num: int = 0
    first_request_time_ms: int = 0
    last_request_time_ms: int = 0
    chunks: tuple[bytes, ...] = ()


@dataclass
class _PendingResponse:
    is_pending: bool = False
    is_active: bool = False
    is_link_control: bool = False
    sequence_num: int = 0
    data: bytes = b""


def _as_chunks(chunks: Iterable[bytes] | bytes | None) -> tuple[bytes, ...]:
    if chunks is None:
        return ()
    if isinstance(chunks, (bytes, bytearray, memoryview)):
        return (bytes(chunks),)
    return tuple(bytes(chunk) for chunk in chunks)


class LinkLayer:
    """One end of a SONAR link.

    Callbacks:
    ``connection_changed(connected)`` when the connection state changes;
    ``request(data) -> bool`` for each new request, which on success must call
    :meth:`set_response`; ``request_complete(success, data)`` when a request
    issued with :meth:`send_request` finishes.
    """

    def __init__(
        self,
        is_server: bool,
        receive_buffer_size: int,
        get_system_time_ms: Callable[[], int],
        write_byte: Callable[[int], None],
        connection_changed: Callable[[bool], None],
        request: Callable[[bytes], bool],
        request_complete: Callable[[bool, bytes], None],
    ) -> None:
        self.is_server = is_server
        self._now = get_system_time_ms
        self._connection_changed = connection_changed
        self._request = request
        self._request_complete = request_complete
        self._errors = LinkErrors()
        self._connection = _Connection()
        self._pending_request = _PendingRequest()
        self._pending_response = _PendingResponse()
        self._receiver = LinkReceiver(is_server, receive_buffer_size, self._receive_packet)
        self._transmitter = LinkTransmitter(is_server, write_byte)

    def _set_pending_request(self, is_link_control: bool, chunks: tuple[bytes, ...]) -> None:
        request = self._pending_request
        request.is_active = True
        request.first_request_time_ms = self._now()
        request.sequence_num = (request.sequence_num + 1) & 0xFF
        request.is_link_control = is_link_control
        request.chunks = chunks

    def _send_pending_request(self) -> None:
        request = self._pending_request
        request.last_request_time_ms = self._now()
        self._transmitter.send_packet(
            False, request.is_link_control, request.sequence_num, request.chunks
        )

    def _send_pending_response(self) -> None:
        response = self._pending_response
        self._transmitter.send_packet(
            True, response.is_link_control, response.sequence_num, (response.data,)
        )

    def _disconnect(self) -> None:
        had_pending_request = self._pending_request.is_active
        # clear state before the callbacks so that no new request is issued from them
        self._pending_request.is_active = False
        self._connection.is_active = False
        logger.info("Disconnected")
        self._connection_changed(False)
        if had_pending_request:
            if self._pending_request.is_link_control:
                logger.info("Disconnected with link control request pending")
            else:
                self._request_complete(False, b"")

    def _handle_link_control(self, is_response: bool, sequence_num: int, data: bytes) -> bool:
        if self.is_server == is_response:
            logger.error("Invalid packet: Wrong direction for link control packet")
            self._errors.invalid_packet += 1
            return False

        if is_response:
            if data:
                logger.error("Invalid packet: Link control packet with data")
                self._errors.invalid_packet += 1
                return False
            request = self._pending_request
            request_length = sum(len(chunk) for chunk in request.chunks)
            did_connect = (
                not self._connection.is_active and request.is_link_control and request_length == 1
            )
            request.is_active = False
            self._connection.is_active = True
            if did_connect:
                logger.info("Connected")
                self._connection_changed(True)
            return True

        if not data:
            # connection maintenance request
            if not self._connection.is_active:
                logger.error("Invalid packet: Connection maintenance request while not connected")
                self._errors.unexpected_packet += 1
                return False
        elif len(data) == 1:
            # connection request
            if self._connection.is_active:
                self._disconnect()
            logger.info("Connected")
            self._pending_request.sequence_num = (data[0] - 1) & 0xFF
            self._connection.is_active = True
            self._connection_changed(True)
        else:
            logger.error("Invalid packet: Invalid link control data length (%d)", len(data))
            self._errors.invalid_packet += 1
            return False

        response = self._pending_response
        response.is_active = True
        response.sequence_num = sequence_num
        response.is_link_control = True
        response.data = b""
        self._send_pending_response()
        return True

    def _receive_packet(
        self, is_response: bool, is_link_control: bool, sequence_num: int, data: bytes
    ) -> None:
        connection = self._connection
        request = self._pending_request
        if not is_link_control and not connection.is_active:
            logger.error("Invalid packet: Not connected")
            self._errors.unexpected_packet += 1
            return
        if is_response and not request.is_active:
            logger.error("Invalid packet: Got response without any pending request")
            self._errors.unexpected_packet += 1
            return
        if is_response and sequence_num != request.sequence_num:
            logger.error("Invalid packet: Response sequence number does not match request")
            self._errors.invalid_sequence_number += 1
            return
        if not is_link_control and not is_response:
            if sequence_num == connection.prev_sequence_num:
                # a retry of the previous request: resend the last response, if any
                if self._pending_response.is_active:
                    self._send_pending_response()
                return
            if (sequence_num - 1) & 0xFF != connection.prev_sequence_num:
                logger.error("Invalid packet: Non-incrementing sequence number")
                self._errors.invalid_sequence_number += 1
                return

        if is_link_control:
            if not self._handle_link_control(is_response, sequence_num, data):
                return
            if not is_response:
                connection.prev_sequence_num = sequence_num
        elif is_response:
            # clear first so that the completion handler may issue another request
            request.is_active = False
            self._request_complete(True, data)
        else:
            connection.prev_sequence_num = sequence_num
            response = self._pending_response
            response.is_active = False
            response.is_pending = True
            response.is_link_control = False
            response.sequence_num = sequence_num
            try:
                success = bool(self._request(data))
            except SonarError as exc:
                logger.error("Request failed: %s", exc)
                success = False
            set_response = not response.is_pending
            response.is_pending = False
            if not success:
                return
            if not set_response:
                logger.error("Request handler did not set a response")
                return
            self._send_pending_response()

        connection.last_packet_time_ms = self._now()

    def is_connected(self) -> bool:
        """Whether the link is currently connected."""
        return self._connection.is_active

    def handle_receive_data(self, data: Iterable[int]) -> None:
        """Feed bytes received from the physical link."""
        self._receiver.process_data(data)

    def send_request(self, chunks: Iterable[bytes] | bytes | None) -> None:
        """Send a request whose payload is the concatenation of ``chunks``."""
        if not self._connection.is_active:
            raise SonarError("not connected")
        if self._pending_request.is_active:
            raise SonarError("request already pending")
        self._set_pending_request(False, _as_chunks(chunks))
        self._send_pending_request()

    def process(self) -> None:
        """Run timeouts, retries and connection upkeep; call this regularly."""
        time_ms = self._now()
        ms_since_last_packet = (time_ms - self._connection.last_packet_time_ms) & 0xFFFFFFFF

        if self._connection.is_active and ms_since_last_packet >= CONNECTION_TIMEOUT_MS:
            logger.info("Connection timed out")
            self._disconnect()

        request = self._pending_request
        if request.is_active:
            if time_ms - request.first_request_time_ms >= REQUEST_TIMEOUT_MS:
                request.is_active = False
                if request.is_link_control:
                    logger.warning("Link control request timed out")
                else:
                    logger.warning("Sonar request timed out")
                    self._request_complete(False, b"")
            elif time_ms - request.last_request_time_ms >= REQUEST_RETRY_INTERVAL_MS:
                self._send_pending_request()
                self._errors.retries += 1
        elif not self.is_server:
            if not self._connection.is_active:
                # connect, seeding the sequence number from the clock
                connection_data = time_ms & 0xFF
                self._connection.prev_sequence_num = (connection_data - 1) & 0xFF
                self._set_pending_request(True, (bytes((connection_data,)),))
                self._send_pending_request()
            elif ms_since_last_packet >= CONNECTION_MAINTENANCE_INTERVAL_MS:
                self._set_pending_request(True, ())
                self._send_pending_request()

    def set_response(self, data: bytes | None) -> None:
        """Set the response to the request being handled; only valid inside ``request``."""
        response = self._pending_response
        if not response.is_pending:
            raise SonarError("not pending a response")
        response.is_pending = False
        response.is_active = True
        response.data = bytes(data or b"")

    def get_and_clear_errors(self) -> SonarErrors:
        """Return all error counters and reset them."""
        errors, self._errors = self._errors, LinkErrors()
        return SonarErrors(
            link_layer_receive=self._receiver.get_and_clear_errors(), link_layer=errors
        )