"""Encoded data blocks of a sorted string table."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

SIZEOF_U16 = 2
SIZEOF_U32 = 4


def compute_prefix(lhs: bytes, rhs: bytes) -> int:
    """Return the length of the common prefix of two byte strings."""
    length = 0
    for a, b in zip(lhs, rhs):
        if a != b:
            break
        length += 1
    return length


@dataclass
class Block:
    """Row data followed by a table of u16 row offsets and their count."""

    data: bytes
    offsets: list[int] = field(default_factory=list)

    def encode(self) -> bytes:
        """Serialise as data, big-endian u16 offsets, then a u16 offset count."""
        count = len(self.offsets)
        try:
            trailer = struct.pack(f">{count}HH", *self.offsets, count)
        except struct.error as exc:
            raise ValueError(f"block offsets do not fit in u16: {exc}") from exc
        return bytes(self.data) + trailer

    @classmethod
    def decode(cls, data: bytes) -> "Block":
        """Parse a block produced by :meth:`encode`."""
        data = bytes(data)
        if len(data) < SIZEOF_U16:
            raise ValueError("block too short to hold an offset count")
        (count,) = struct.unpack_from(">H", data, len(data) - SIZEOF_U16)
        data_end = len(data) - SIZEOF_U16 - count * SIZEOF_U16
        if data_end < 0:
            raise ValueError("block too short for its offset table")
        offsets = list(struct.unpack_from(f">{count}H", data, data_end))
        return cls(data=data[:data_end], offsets=offsets)

    def size(self) -> int:
        """Return the encoded size of the block in bytes."""
        return len(self.data) + len(self.offsets) * SIZEOF_U16 + SIZEOF_U16