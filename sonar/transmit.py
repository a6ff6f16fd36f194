"""Encoding and sending of link layer packets."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from .crc16 import CRC16_INITIAL_VALUE, crc16
from .framing import FLAG_BYTE, PacketHeader, escape


class LinkTransmitter:
    """Frames packets and writes them one byte at a time."""

    def __init__(self, is_server: bool, write_byte: Callable[[int], None]) -> None:
        self.is_server = is_server
        self._write_byte = write_byte

    def _write_encoded(self, data: bytes) -> None:
        for byte in escape(data):
            self._write_byte(byte)

    def send_packet(
        self,
        is_response: bool,
        is_link_control: bool,
        sequence_num: int,
        chunks: Iterable[bytes] | None,
    ) -> None:
        """Send one packet whose payload is the concatenation of ``chunks``."""
        header = PacketHeader(
            is_response=is_response,
            is_server_to_client=self.is_server,
            is_link_control=is_link_control,
            sequence_num=sequence_num,
        ).to_bytes()

        self._write_byte(FLAG_BYTE)
        self._write_encoded(header)
        crc = crc16(header, CRC16_INITIAL_VALUE)
        for chunk in chunks or ():
            chunk = bytes(chunk)
            self._write_encoded(chunk)
            crc = crc16(chunk, crc)
        self._write_encoded(crc.to_bytes(2, "little"))
        self._write_byte(FLAG_BYTE)