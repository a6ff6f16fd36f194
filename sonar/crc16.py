"""CRC-16 (CCITT polynomial 0x1021) used to protect link layer frames."""

from collections.abc import Iterable

CRC16_INITIAL_VALUE = 0xFFFF


def crc16(data: Iterable[int], crc: int = CRC16_INITIAL_VALUE) -> int:
    """Continue a CRC-16 computation over ``data`` starting from ``crc``."""
    crc &= 0xFFFF
    for byte in data:
        x = ((crc >> 8) ^ byte) & 0xFF
        x ^= x >> 4
        crc = ((crc << 8) ^ (x << 12) ^ (x << 5) ^ x) & 0xFFFF
    return crc