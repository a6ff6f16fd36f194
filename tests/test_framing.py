import pytest

from sonar.framing import (
    ESCAPE_BYTE,
    FLAG_BYTE,
    PacketHeader,
    SonarError,
    escape,
)


def test_wire_constants_are_escaped():
    assert FLAG_BYTE == 0x7E
    assert ESCAPE_BYTE == 0x7D
    assert escape(bytes([FLAG_BYTE, ESCAPE_BYTE])) == bytes([0x7D, 0x5E, 0x7D, 0x5D])


def test_client_request_header_bytes():
    header = PacketHeader(False, False, False, 5)
    assert header.to_bytes() == bytes([0x10, 5])


def test_flag_bits():
    header = PacketHeader(True, True, True, 0)
    assert header.to_bytes()[0] == 0x10 | 0x01 | 0x02 | 0x04


@pytest.mark.parametrize(
    "fields",
    [
        (False, False, False, 0),
        (True, False, True, 255),
        (False, True, False, 17),
        (True, True, True, 126),
    ],
)
def test_header_round_trip(fields):
    header = PacketHeader(*fields)
    assert PacketHeader.from_bytes(header.to_bytes()) == header


def test_reserved_bit_rejected():
    with pytest.raises(SonarError):
        PacketHeader.from_bytes(bytes([0x18, 0]))


def test_bad_version_rejected():
    with pytest.raises(SonarError):
        PacketHeader.from_bytes(bytes([0x20, 0]))


def test_wrong_length_rejected():
    with pytest.raises(SonarError):
        PacketHeader.from_bytes(bytes([0x10]))


def test_sequence_number_out_of_range():
    with pytest.raises(ValueError):
        PacketHeader(False, False, False, 256)


def test_escape_special_bytes():
    assert escape(bytes([0x7E, 0x7D, 0x01])) == bytes([0x7D, 0x5E, 0x7D, 0x5D, 0x01])


def test_escape_plain_data_unchanged():
    data = bytes(b for b in range(256) if b not in (0x7E, 0x7D))
    assert escape(data) == data


def test_escaped_output_has_no_flag_bytes():
    assert FLAG_BYTE not in escape(bytes(range(256)))