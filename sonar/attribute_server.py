"""Server side of the attribute protocol."""

from __future__ import annotations

import logging
import struct
from collections.abc import Callable

from .application_layer import OP_MASK
from .attribute import (
    CTRL_ATTR_LIST_ID,
    CTRL_ATTR_LIST_LENGTH,
    CTRL_ATTR_OFFSET_ID,
    CTRL_NUM_ATTRS_ID,
    Attribute,
    AttributeOps,
)
from .framing import SonarError

logger = logging.getLogger("sonar")

_U16 = struct.Struct("<H")
_ATTR_LIST = struct.Struct(f"<{CTRL_ATTR_LIST_LENGTH}H")


class AttributeServer:
    """Serves registered attributes and the control attributes.

    Callbacks:
    ``send_notify_request(attribute_id, data)`` sends a notify request
    (raising SonarError on failure);
    ``read_response(data)`` sets the response to a read request;
    ``read_handler(attr, max_size) -> bytes`` returns an attribute's value;
    ``write_handler(attr, data) -> bool`` applies a write;
    ``notify_complete(success)`` reports the end of a notify request.
    """

    def __init__(
        self,
        send_notify_request: Callable[[int, bytes], object],
        read_response: Callable[[bytes], None],
        read_handler: Callable[[Attribute, int], bytes],
        write_handler: Callable[[Attribute, bytes], bool],
        notify_complete: Callable[[bool], None],
    ) -> None:
        self._send_notify_request = send_notify_request
        self._read_response = read_response
        self._read_handler = read_handler
        self._write_handler = write_handler
        self._notify_complete = notify_complete
        self._attrs: dict[int, Attribute] = {}
        self._attr_offset = 0

    @property
    def num_attrs(self) -> int:
        """Number of registered attributes."""
        return len(self._attrs) & 0xFFFF

    def register(self, attr: Attribute) -> None:
        """Register an attribute served by this side."""
        if attr is None:
            raise SonarError("invalid parameters")
        if attr.attribute_id & OP_MASK:
            raise SonarError(f"invalid attribute ID (0x{attr.attribute_id:x})")
        if attr.attribute_id in self._attrs:
            raise SonarError(
                f"attribute with this ID (0x{attr.attribute_id:x}) already registered"
            )
        self._attrs[attr.attribute_id] = attr

    def _validate_for_notify(self, attr: Attribute | None) -> Attribute:
        if attr is None:
            raise SonarError("unknown attribute")
        if not attr.ops & AttributeOps.NOTIFY:
            raise SonarError(f"notify not allowed for attribute (0x{attr.attribute_id:x})")
        if self._attrs.get(attr.attribute_id) != attr:
            raise SonarError("attribute not registered")
        return attr

    def notify(self, attr: Attribute, data: bytes) -> None:
        """Send a notify request carrying ``data``."""
        attr = self._validate_for_notify(attr)
        data = bytes(data)
        if len(data) > attr.max_size:
            raise SonarError("notify data is too big")
        self._send_notify_request(attr.attribute_id, data)

    def notify_read_data(self, attr: Attribute) -> None:
        """Send a notify request carrying the value the read handler returns."""
        attr = self._validate_for_notify(attr)
        if not attr.ops & AttributeOps.READ:
            raise SonarError("read request not supported")
        data = bytes(self._read_handler(attr, attr.max_size))
        if len(data) > attr.max_size:
            raise SonarError("notify data is too big")
        self._send_notify_request(attr.attribute_id, data)

    def _attr_list(self) -> bytes:
        # newest registrations come first
        entries = [attr.list_entry() for attr in reversed(self._attrs.values())]
        chunk = entries[self._attr_offset : self._attr_offset + CTRL_ATTR_LIST_LENGTH]
        chunk += [0] * (CTRL_ATTR_LIST_LENGTH - len(chunk))
        return _ATTR_LIST.pack(*chunk)

    def handle_read_request(self, attribute_id: int) -> bool:
        """Handle a read request, setting the response; False if it is refused."""
        if attribute_id == CTRL_NUM_ATTRS_ID:
            self._read_response(_U16.pack(self.num_attrs))
            return True
        if attribute_id == CTRL_ATTR_OFFSET_ID:
            self._read_response(_U16.pack(self._attr_offset))
            return True
        if attribute_id == CTRL_ATTR_LIST_ID:
            self._read_response(self._attr_list())
            return True
        attr = self._attrs.get(attribute_id)
        if attr is None:
            logger.error("Got read request for unknown attribute (0x%x)", attribute_id)
            return False
        if not attr.ops & AttributeOps.READ:
            logger.error("Read request not supported for attribute (0x%x)", attribute_id)
            return False
        self._read_response(bytes(self._read_handler(attr, attr.max_size)))
        return True

    def handle_write_request(self, attribute_id: int, data: bytes) -> bool:
        """Handle a write request; False if it is refused."""
        data = bytes(data)
        if attribute_id == CTRL_ATTR_OFFSET_ID:
            if len(data) != _U16.size:
                logger.error("Invalid request length (%d) for CTRL_ATTR_OFFSET", len(data))
                return False
            (self._attr_offset,) = _U16.unpack(data)
            return True
        attr = self._attrs.get(attribute_id)
        if attr is None:
            logger.error("Got write request for unknown attribute (0x%x)", attribute_id)
            return False
        if not attr.ops & AttributeOps.WRITE:
            logger.error("Write request not supported for attribute (0x%x)", attribute_id)
            return False
        if len(data) > attr.max_size:
            logger.error(
                "Write request is too big (%d) for attribute (0x%x)", len(data), attribute_id
            )
            return False
        return bool(self._write_handler(attr, data))

    def handle_notify_response(self, attribute_id: int, success: bool) -> None:
        """Handle the response to a notify request."""
        attr = self._attrs.get(attribute_id)
        if attr is None or not attr.ops & AttributeOps.NOTIFY:
            logger.error("Unexpected notify response")
            return
        self._notify_complete(success)