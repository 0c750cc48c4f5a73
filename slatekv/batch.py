"""Write batches: ordered puts and deletes applied atomically."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Union


@dataclass(frozen=True)
class PutOp:
    """Store ``value`` under ``key``."""

    key: bytes
    value: bytes


@dataclass(frozen=True)
class DeleteOp:
    """Remove ``key``."""

    key: bytes


WriteOp = Union[PutOp, DeleteOp]


def _check_key(key: bytes) -> bytes:
    key = bytes(key)
    if not key:
        raise ValueError("key cannot be empty")
    return key


@dataclass
class WriteBatch:
    """An ordered collection of write operations.

    All operations are applied atomically. When several operations touch the
    same key, the last one wins. The batch has no size limit.
    """

    _ops: list[WriteOp] = field(default_factory=list)

    def put(self, key: bytes, value: bytes) -> None:
        """Add a put of ``key`` -> ``value``. The key must not be empty."""
        self._ops.append(PutOp(_check_key(key), bytes(value)))

    def delete(self, key: bytes) -> None:
        """Add a delete of ``key``. The key must not be empty."""
        self._ops.append(DeleteOp(_check_key(key)))

    def __iter__(self) -> Iterator[WriteOp]:
        return iter(self._ops)

    def __len__(self) -> int:
        return len(self._ops)