"""Decoding and validation of received link layer packets."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .crc16 import CRC16_INITIAL_VALUE, crc16
from .framing import (
    ESCAPE_BYTE,
    ESCAPE_XOR,
    FLAG_BYTE,
    FOOTER_SIZE,
    HEADER_SIZE,
    PacketHeader,
    SonarError,
)

logger = logging.getLogger("sonar")

PacketHandler = Callable[[bool, bool, int, bytes], None]


@dataclass
class ReceiveErrors:
    """Counters of problems seen while receiving."""

    invalid_header: int = 0
    invalid_crc: int = 0
    buffer_overflow: int = 0
    invalid_escape_sequence: int = 0


class LinkReceiver:
    """Unescapes incoming bytes into packets and hands valid ones on.

    ``packet_handler`` is called as
    ``packet_handler(is_response, is_link_control, sequence_num, data)``.
    """

    def __init__(self, is_server: bool, buffer_size: int, packet_handler: PacketHandler) -> None:
        self.is_server = is_server
        self.buffer_size = buffer_size
        self._packet_handler = packet_handler
        self._errors = ReceiveErrors()
        self._buffer = bytearray()
        self._packet_started = False
        self._escaping = False

    def _drop_packet(self) -> None:
        self._packet_started = False
        self._buffer.clear()

    def _process_packet(self) -> None:
        if len(self._buffer) < HEADER_SIZE + FOOTER_SIZE:
            return
        frame = bytes(self._buffer)
        body = frame[:-FOOTER_SIZE]
        received_crc = int.from_bytes(frame[-FOOTER_SIZE:], "little")
        try:
            header = PacketHeader.from_bytes(body[:HEADER_SIZE])
        except SonarError as exc:
            logger.error("Invalid packet: %s", exc)
            self._errors.invalid_header += 1
            return
        if received_crc != crc16(body, CRC16_INITIAL_VALUE):
            logger.error("Invalid packet: bad CRC")
            self._errors.invalid_crc += 1
            return
        if header.is_server_to_client == self.is_server:
            logger.error("Invalid packet: wrong direction")
            self._errors.invalid_header += 1
            return
        self._packet_handler(
            header.is_response, header.is_link_control, header.sequence_num, body[HEADER_SIZE:]
        )

    def _store_byte(self, byte: int) -> None:
        if len(self._buffer) < self.buffer_size:
            self._buffer.append(byte)
        else:
            logger.error("Invalid packet: overflowed buffer")
            self._errors.buffer_overflow += 1
            self._drop_packet()

    def _receive_byte(self, byte: int) -> None:
        if self._packet_started:
            if self._escaping:
                self._escaping = False
                if byte in (ESCAPE_BYTE, FLAG_BYTE):
                    logger.error("Illegal escape sequence in data")
                    self._errors.invalid_escape_sequence += 1
                    self._drop_packet()
                else:
                    self._store_byte(byte ^ ESCAPE_XOR)
            elif byte == ESCAPE_BYTE:
                self._escaping = True
            elif byte != FLAG_BYTE:
                self._store_byte(byte)
        else:
            self._escaping = False

        if byte == FLAG_BYTE:
            # a flag byte always ends the current packet and starts a new one
            self._process_packet()
            self._packet_started = True
            self._buffer.clear()

    def process_data(self, data: Iterable[int]) -> None:
        """Feed received bytes into the decoder."""
        for byte in data:
            self._receive_byte(byte)

    def get_and_clear_errors(self) -> ReceiveErrors:
        """Return the error counters and reset them."""
        errors, self._errors = self._errors, ReceiveErrors()
        return errors