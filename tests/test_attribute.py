import pytest

from sonar.attribute import (
    CTRL_ATTR_LIST_OP_BIT_RESERVED,
    Attribute,
    AttributeOps,
)


def test_list_entry_encodes_read_bit():
    attr = Attribute(0x001, AttributeOps.READ, 4)
    assert attr.list_entry() == 0x1001


def test_list_entry_round_trip():
    ops = AttributeOps.WRITE | AttributeOps.NOTIFY
    attr = Attribute(0x2AB, ops, 8)
    entry = attr.list_entry()
    assert entry & 0x0FFF == attr.attribute_id
    assert entry & 0xF000 == int(ops)
    assert not entry & CTRL_ATTR_LIST_OP_BIT_RESERVED


def test_ops_coerced_to_flag():
    attr = Attribute(0x10, int(AttributeOps.READ | AttributeOps.WRITE), 2)
    assert attr.ops == AttributeOps.READ | AttributeOps.WRITE
    assert AttributeOps.WRITE in attr.ops


def test_reserved_op_bit_rejected():
    with pytest.raises(ValueError):
        Attribute(0x10, CTRL_ATTR_LIST_OP_BIT_RESERVED, 2)


def test_negative_max_size_rejected():
    with pytest.raises(ValueError):
        Attribute(0x10, AttributeOps.READ, -1)


def test_attribute_id_out_of_range_rejected():
    with pytest.raises(ValueError):
        Attribute(0x10000, AttributeOps.READ, 1)