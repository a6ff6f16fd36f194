"""Wire-level constants, the link layer header and HDLC-style byte escaping."""

from __future__ import annotations

from dataclasses import dataclass

SONAR_VERSION = 1

FLAG_BYTE = 0x7E
ESCAPE_BYTE = 0x7D
ESCAPE_XOR = 0x20

FLAG_RESPONSE = 1 << 0
FLAG_DIRECTION = 1 << 1
FLAG_LINK_CONTROL = 1 << 2
FLAG_RESERVED = 1 << 3
FLAG_VERSION_MASK = 0xF0
FLAG_VERSION_OFFSET = 4

HEADER_SIZE = 2
FOOTER_SIZE = 2


class SonarError(Exception):
    """Raised when SONAR data is malformed or an operation is not allowed."""


@dataclass(frozen=True)
class PacketHeader:
    """The two-byte header at the front of every link layer packet."""

    is_response: bool
    is_server_to_client: bool
    is_link_control: bool
    sequence_num: int

    def __post_init__(self) -> None:
        if not 0 <= self.sequence_num <= 0xFF:
            raise ValueError(f"sequence number out of range: {self.sequence_num}")

    def to_bytes(self) -> bytes:
        """Encode the header as it appears on the wire (before escaping)."""
        flags = SONAR_VERSION << FLAG_VERSION_OFFSET
        if self.is_link_control:
            flags |= FLAG_LINK_CONTROL
        if self.is_server_to_client:
            flags |= FLAG_DIRECTION
        if self.is_response:
            flags |= FLAG_RESPONSE
        return bytes((flags, self.sequence_num))

    @classmethod
    def from_bytes(cls, data: bytes) -> PacketHeader:
        """Decode a header, raising SonarError on a malformed one."""
        if len(data) != HEADER_SIZE:
            raise SonarError(f"header must be {HEADER_SIZE} bytes, got {len(data)}")
        flags, sequence_num = data[0], data[1]
        if flags & FLAG_RESERVED:
            raise SonarError("bad reserved bits")
        version = (flags & FLAG_VERSION_MASK) >> FLAG_VERSION_OFFSET
        if version != SONAR_VERSION:
            raise SonarError(f"bad version ({version})")
        return cls(
            is_response=bool(flags & FLAG_RESPONSE),
            is_server_to_client=bool(flags & FLAG_DIRECTION),
            is_link_control=bool(flags & FLAG_LINK_CONTROL),
            sequence_num=sequence_num,
        )


def escape(data: bytes) -> bytes:
    """Escape flag and escape bytes so that the data can sit between flags."""
    out = bytearray()
    for byte in data:
        if byte in (FLAG_BYTE, ESCAPE_BYTE):
            out.append(ESCAPE_BYTE)
            byte ^= ESCAPE_XOR
        out.append(byte)
    return bytes(out)