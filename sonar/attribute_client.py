"""Client side of the attribute protocol."""

from __future__ import annotations

import logging
import struct
from collections.abc import Callable

from .application_layer import ATTRIBUTE_ID_MASK, OP_MASK
from .attribute import (
    CTRL_ATTR_LIST_ID,
    CTRL_ATTR_LIST_LENGTH,
    CTRL_ATTR_LIST_OP_BIT_RESERVED,
    CTRL_ATTR_OFFSET_ID,
    CTRL_NUM_ATTRS_ID,
    Attribute,
    AttributeOps,
)
from .framing import SonarError

logger = logging.getLogger("sonar")

_U16 = struct.Struct("<H")


class AttributeClient:
    """Enumerates the server's attributes and issues reads and writes.

    Callbacks:
    ``send_read_request(attribute_id)`` and ``send_write_request(attribute_id, data)``
    send requests (raising SonarError on failure);
    ``connection_changed(connected)`` reports the attribute-level connection state;
    ``read_complete(success, data)`` and ``write_complete(success)`` report the
    end of a read or write; ``notify_handler(attr, data) -> bool`` handles a
    notify request from the server.
    """

    def __init__(
        self,
        send_read_request: Callable[[int], object],
        send_write_request: Callable[[int, bytes], object],
        connection_changed: Callable[[bool], None],
        read_complete: Callable[[bool, bytes], None],
        write_complete: Callable[[bool], None],
        notify_handler: Callable[[Attribute, bytes], bool],
    ) -> None:
        self._send_read_request = send_read_request
        self._send_write_request = send_write_request
        self._connection_changed = connection_changed
        self._read_complete = read_complete
        self._write_complete = write_complete
        self._notify_handler = notify_handler
        self._attrs: dict[int, Attribute] = {}
        self._available: set[int] = set()
        self._num_attrs = 0
        self._attr_offset = 0
        self._connected = False

    def _is_registered(self, attr: Attribute) -> bool:
        return self._attrs.get(attr.attribute_id) == attr

    def _try_send_read(self, attribute_id: int) -> None:
        try:
            self._send_read_request(attribute_id)
        except SonarError as exc:
            logger.error("Failed to read attribute (0x%x): %s", attribute_id, exc)

    def _try_send_write(self, attribute_id: int, data: bytes) -> None:
        try:
            self._send_write_request(attribute_id, data)
        except SonarError as exc:
            logger.error("Failed to write attribute (0x%x): %s", attribute_id, exc)

    def _disconnect(self) -> None:
        self._connected = False
        self._connection_changed(False)

    def _num_attrs_read_complete(self, success: bool, data: bytes) -> None:
        if not success or len(data) < _U16.size:
            logger.error("Failed to read num_attrs")
            self._disconnect()
            return
        (self._num_attrs,) = _U16.unpack_from(data)
        self._attr_offset = 0
        self._try_send_write(CTRL_ATTR_OFFSET_ID, _U16.pack(self._attr_offset))

    def _attr_list_read_complete(self, success: bool, data: bytes) -> None:
        if not success:
            logger.error("Failed to read attr_list")
            self._disconnect()
            return

        num_attr_ids = (self._num_attrs - self._attr_offset) & 0xFFFF
        has_more = num_attr_ids > CTRL_ATTR_LIST_LENGTH
        if has_more:
            num_attr_ids = CTRL_ATTR_LIST_LENGTH
        num_attr_ids = min(num_attr_ids, len(data) // _U16.size)
        for (entry,) in _U16.iter_unpack(data[: num_attr_ids * _U16.size]):
            attr = self._attrs.get(entry & ATTRIBUTE_ID_MASK)
            if attr is None:
                # not supported locally
                continue
            if entry & CTRL_ATTR_LIST_OP_BIT_RESERVED:
                logger.error("Invalid attribute ops for attribute (0x%x)", entry)
                continue
            if int(attr.ops) != entry & OP_MASK:
                # ops mismatch between client and server
                continue
            self._available.add(attr.attribute_id)

        if has_more:
            self._attr_offset = (self._attr_offset + CTRL_ATTR_LIST_LENGTH) & 0xFFFF
            self._try_send_write(CTRL_ATTR_OFFSET_ID, _U16.pack(self._attr_offset))
        else:
            logger.info("Connected")
            self._connected = True
            self._connection_changed(True)

    def _attr_offset_write_complete(self, success: bool) -> None:
        if not success:
            logger.error("Failed to write attr_offset")
            self._disconnect()
            return
        self._try_send_read(CTRL_ATTR_LIST_ID)

    def register(self, attr: Attribute) -> None:
        """Register an attribute the client supports; only before connecting."""
        if attr is None:
            raise SonarError("invalid parameters")
        if attr.attribute_id & OP_MASK:
            raise SonarError(f"invalid attribute ID (0x{attr.attribute_id:x})")
        if attr.attribute_id in self._attrs:
            raise SonarError(
                f"attribute with this ID (0x{attr.attribute_id:x}) already registered"
            )
        if self._connected:
            raise SonarError("must register all attributes before a connection is established")
        self._attrs[attr.attribute_id] = attr

    def low_level_connection_changed(self, connected: bool) -> None:
        """React to the link connecting (start enumeration) or disconnecting."""
        if connected:
            self._try_send_read(CTRL_NUM_ATTRS_ID)
            return
        logger.info("Disconnected")
        self._available.clear()
        self._connected = False
        self._connection_changed(False)

    def is_connected(self) -> bool:
        """Whether enumeration has finished and the client is connected."""
        return self._connected

    def is_available(self, attr: Attribute) -> bool:
        """Whether ``attr`` is registered and offered by the server with the same ops."""
        return self._is_registered(attr) and attr.attribute_id in self._available

    def _validate(self, attr: Attribute | None, op: AttributeOps, name: str) -> Attribute:
        if attr is None:
            raise SonarError("unknown attribute")
        if not attr.ops & op:
            raise SonarError(f"{name} not allowed for attribute (0x{attr.attribute_id:x})")
        if not self._is_registered(attr):
            raise SonarError("attribute not registered")
        if attr.attribute_id not in self._available:
            raise SonarError("attribute not available")
        return attr

    def read(self, attr: Attribute) -> None:
        """Issue a read request for an attribute."""
        attr = self._validate(attr, AttributeOps.READ, "read")
        self._send_read_request(attr.attribute_id)

    def write(self, attr: Attribute, data: bytes) -> None:
        """Issue a write request for an attribute."""
        attr = self._validate(attr, AttributeOps.WRITE, "write")
        data = bytes(data)
        if len(data) > attr.max_size:
            raise SonarError("write data is too big")
        self._send_write_request(attr.attribute_id, data)

    def handle_read_response(self, attribute_id: int, success: bool, data: bytes) -> None:
        """Handle the response to a read request."""
        data = bytes(data or b"")
        if attribute_id == CTRL_NUM_ATTRS_ID:
            self._num_attrs_read_complete(success, data)
            return
        if attribute_id == CTRL_ATTR_LIST_ID:
            self._attr_list_read_complete(success, data)
            return
        attr = self._attrs.get(attribute_id)
        if attr is None or not attr.ops & AttributeOps.READ:
            logger.error("Unexpected read response")
            return
        if success and len(data) > attr.max_size:
            logger.error(
                "Read response is too big (%d) for attribute (0x%x)", len(data), attribute_id
            )
            return
        if attribute_id not in self._available:
            logger.error("Unexpected read response for unavailable attribute (0x%x)", attribute_id)
            return
        self._read_complete(success, data)

    def handle_write_response(self, attribute_id: int, success: bool) -> None:
        """Handle the response to a write request."""
        if attribute_id == CTRL_ATTR_OFFSET_ID:
            self._attr_offset_write_complete(success)
            return
        attr = self._attrs.get(attribute_id)
        if attr is None or not attr.ops & AttributeOps.WRITE:
            logger.error("Unexpected write response")
            return
        if attribute_id not in self._available:
            logger.error("Unexpected write response for unavailable attribute")
            return
        self._write_complete(success)

    def handle_notify_request(self, attribute_id: int, data: bytes) -> bool:
        """Handle a notify request from the server; False if it is refused."""
        data = bytes(data or b"")
        attr = self._attrs.get(attribute_id)
        if attr is None:
            logger.error("Got notify request for unknown attribute (0x%x)", attribute_id)
            return False
        if not attr.ops & AttributeOps.NOTIFY:
            logger.error("Notify request not supported for attribute (0x%x)", attribute_id)
            return False
        if len(data) > attr.max_size:
            logger.error(
                "Notify request is too big (%d) for attribute (0x%x)", len(data), attribute_id
            )
            return False
        if attribute_id not in self._available:
            logger.error("Notify request for an attribute which is not available")
            return False
        return bool(self._notify_handler(attr, data))