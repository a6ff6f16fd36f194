"""Attribute definitions and the control attributes used for enumeration."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntFlag


class AttributeOps(IntFlag):
    """Operations an attribute supports, as encoded in the attribute list."""

    READ = 1 << 12
    WRITE = 1 << 13
    NOTIFY = 1 << 14


CTRL_ATTR_LIST_OP_BIT_RESERVED = 1 << 15
CTRL_ATTR_LIST_LENGTH = 8

CTRL_NUM_ATTRS_ID = 0x101
CTRL_ATTR_OFFSET_ID = 0x102
CTRL_ATTR_LIST_ID = 0x103

_ALL_OPS = AttributeOps.READ | AttributeOps.WRITE | AttributeOps.NOTIFY


@dataclass(frozen=True)
class Attribute:
    """An attribute: its ID, the operations it supports and its largest payload."""

    attribute_id: int
    ops: AttributeOps
    max_size: int

    def __post_init__(self) -> None:
        if not 0 <= self.attribute_id <= 0xFFFF:
            raise ValueError(f"attribute ID out of range: {self.attribute_id}")
        if self.max_size < 0:
            raise ValueError(f"max_size must not be negative: {self.max_size}")
        ops = int(self.ops)
        if ops & ~int(_ALL_OPS):
            raise ValueError(f"invalid attribute ops: 0x{ops:x}")
        object.__setattr__(self, "ops", AttributeOps(ops))

    def list_entry(self) -> int:
        """The 16-bit value describing this attribute in the attribute list."""
        return self.attribute_id | int(self.ops)