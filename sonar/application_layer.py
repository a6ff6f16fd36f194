"""Application layer: attribute read, write and notify requests."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import IntEnum

from .framing import SonarError

logger = logging.getLogger("sonar")

ATTRIBUTE_ID_MASK = 0x0FFF
OP_MASK = 0xF000
OP_OFFSET = 12
HEADER_SIZE = 2


class Operation(IntEnum):
    """Operation encoded in the top four bits of the attribute ID field."""

    READ = 1 << OP_OFFSET
    WRITE = 2 << OP_OFFSET
    NOTIFY = 3 << OP_OFFSET


@dataclass
class _PendingRequest:
    is_active: bool = False
    pending_read_response: bool = False
    header: int = 0


class ApplicationLayer:
    """Encodes attribute requests and dispatches received ones.

    Callbacks:
    ``send_data(chunks)`` sends a request payload (raising SonarError on failure);
    ``set_response(data)`` sets the response while a request is handled;
    ``attribute_read_handler(attribute_id) -> bool`` must call :meth:`read_response`;
    ``attribute_write_handler(attribute_id, data) -> bool``;
    ``attribute_notify_handler(attribute_id, data) -> bool``;
    ``read_request_complete(attribute_id, success, data)``;
    ``write_request_complete(attribute_id, success)``;
    ``notify_request_complete(attribute_id, success)``.
    """

    def __init__(
        self,
        is_server: bool,
        send_data: Callable[[Iterable[bytes]], object],
        set_response: Callable[[bytes], None],
        attribute_read_handler: Callable[[int], bool] | None = None,
        attribute_write_handler: Callable[[int, bytes], bool] | None = None,
        attribute_notify_handler: Callable[[int, bytes], bool] | None = None,
        read_request_complete: Callable[[int, bool, bytes], None] | None = None,
        write_request_complete: Callable[[int, bool], None] | None = None,
        notify_request_complete: Callable[[int, bool], None] | None = None,
    ) -> None:
        self.is_server = is_server
        self._send_data = send_data
        self._set_response = set_response
        self._read_handler = attribute_read_handler
        self._write_handler = attribute_write_handler
        self._notify_handler = attribute_notify_handler
        self._read_complete = read_request_complete
        self._write_complete = write_request_complete
        self._notify_complete = notify_request_complete
        self._request = _PendingRequest()

    @property
    def request_pending(self) -> bool:
        """Whether a request issued by this side is awaiting its response."""
        return self._request.is_active

    def _issue_request(self, attribute_id: int, op: Operation, data: bytes) -> None:
        if self._request.is_active:
            raise SonarError("application layer request already pending")
        if not 0 <= attribute_id <= 0xFFFF or attribute_id & OP_MASK:
            raise SonarError(f"invalid attribute ID: 0x{attribute_id:x}")
        if op in (Operation.READ, Operation.WRITE):
            is_invalid_op = self.is_server
        else:
            is_invalid_op = not self.is_server
        if is_invalid_op:
            raise SonarError(
                f"invalid application layer operation (is_server={self.is_server}, op={op.name})"
            )

        header = attribute_id | op
        self._request.is_active = True
        self._request.header = header
        try:
            self._send_data((header.to_bytes(HEADER_SIZE, "little"), bytes(data)))
        except BaseException:
            self._request.is_active = False
            raise

    def read_request(self, attribute_id: int) -> None:
        """Send a read request for an attribute (client only)."""
        self._issue_request(attribute_id, Operation.READ, b"")

    def write_request(self, attribute_id: int, data: bytes) -> None:
        """Send a write request for an attribute (client only)."""
        self._issue_request(attribute_id, Operation.WRITE, data)

    def notify_request(self, attribute_id: int, data: bytes) -> None:
        """Send a notify request for an attribute (server only)."""
        self._issue_request(attribute_id, Operation.NOTIFY, data)

    def handle_request(self, data: bytes) -> bool:
        """Handle a received request, setting the response on success.

        Raises SonarError on a malformed or misdirected packet; returns the
        attribute handler's verdict otherwise.
        """
        data = bytes(data)
        if len(data) < HEADER_SIZE:
            raise SonarError("invalid application layer packet: too short")
        header = int.from_bytes(data[:HEADER_SIZE], "little")
        payload = data[HEADER_SIZE:]
        op = header & OP_MASK
        attribute_id = header & ATTRIBUTE_ID_MASK

        if op == Operation.READ:
            if not self.is_server:
                raise SonarError("invalid application layer packet: read request from server")
            if payload:
                raise SonarError(
                    f"invalid application layer packet: read request with data ({len(payload)})"
                )
            if self._read_handler is None:
                logger.error("No read handler for attribute (0x%x)", attribute_id)
                return False
            self._request.pending_read_response = True
            try:
                success = bool(self._read_handler(attribute_id))
                set_response = not self._request.pending_read_response
            finally:
                self._request.pending_read_response = False
            if not success:
                return False
            if not set_response:
                raise SonarError("no read response was set")
            return True

        if op == Operation.WRITE:
            if not self.is_server:
                raise SonarError("invalid application layer packet: write request from server")
            if self._write_handler is None or not self._write_handler(attribute_id, payload):
                return False
            self._set_response(b"")
            return True

        if op == Operation.NOTIFY:
            if self.is_server:
                raise SonarError("invalid application layer packet: notify request from client")
            if self._notify_handler is None or not self._notify_handler(attribute_id, payload):
                return False
            self._set_response(b"")
            return True

        raise SonarError(f"invalid application layer packet: invalid op (0x{op:x})")

    def handle_response(self, success: bool, data: bytes) -> None:
        """Handle the response to the pending request."""
        if not self._request.is_active:
            logger.error("Unexpected response")
            return
        self._request.is_active = False
        header = self._request.header
        attribute_id = header & ATTRIBUTE_ID_MASK
        op = header & OP_MASK
        if op == Operation.READ:
            if self._read_complete is not None:
                self._read_complete(attribute_id, success, bytes(data or b""))
        elif op == Operation.WRITE:
            if self._write_complete is not None:
                self._write_complete(attribute_id, success)
        elif op == Operation.NOTIFY:
            if self._notify_complete is not None:
                self._notify_complete(attribute_id, success)
        else:
            logger.error("Invalid operation (0x%x)", header)

    def read_response(self, data: bytes) -> None:
        """Set the read response; valid only inside ``attribute_read_handler``."""
        if not self._request.pending_read_response:
            raise SonarError("unexpected read response")
        self._request.pending_read_response = False
        self._set_response(bytes(data))