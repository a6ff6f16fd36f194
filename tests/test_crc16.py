import pytest

from sonar.crc16 import CRC16_INITIAL_VALUE, crc16


def test_default_seed_is_initial_value():
    assert CRC16_INITIAL_VALUE == 0xFFFF
    assert crc16(b"123456789", CRC16_INITIAL_VALUE) == crc16(b"123456789") == 0x29B1


def test_empty_data_returns_seed():
    assert crc16(b"") == CRC16_INITIAL_VALUE
    assert crc16(b"", 0x1234) == 0x1234


def test_standard_check_value():
    assert crc16(b"123456789") == 0x29B1


@pytest.mark.parametrize("split", [0, 1, 4, 9])
def test_incremental_matches_whole(split):
    data = b"123456789"
    assert crc16(data[split:], crc16(data[:split])) == crc16(data)


def test_result_fits_in_16_bits():
    for seed in (0, 0xFFFF, 0x8000):
        assert 0 <= crc16(bytes(range(256)), seed) <= 0xFFFF


def test_detects_single_bit_change():
    assert crc16(b"\x00\x01\x02") != crc16(b"\x00\x01\x03")


def test_accepts_list_of_ints():
    assert crc16([0x31, 0x32, 0x33]) == crc16(b"123")