"""A minimal object store interface with an in-memory implementation."""

from __future__ import annotations

import abc
import itertools
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional, Union


class ObjectStoreError(Exception):
    """Base class for object store failures."""


class NotFoundError(ObjectStoreError):
    """The requested object does not exist."""

    def __init__(self, location: str) -> None:
        super().__init__(f"Object at location {location} not found")
        self.location = location


class RangeStartTooLargeError(ObjectStoreError):
    """A range starts at or beyond the end of the object."""

    def __init__(self, requested: int, length: int) -> None:
        super().__init__(
            f"Range start too large, requested: {requested}, length: {length}"
        )
        self.requested = requested
        self.length = length


class InconsistentRangeError(ObjectStoreError):
    """A bounded range whose start is not before its end."""

    def __init__(self, start: int, end: int) -> None:
        super().__init__(f"Range started at {start} and ended at {end}")
        self.start = start
        self.end = end


@dataclass(frozen=True)
class ObjectMeta:
    """Metadata describing a stored object."""

    location: str
    last_modified: datetime
    size: int
    e_tag: Optional[str] = None
    version: Optional[str] = None


@dataclass(frozen=True)
class BoundedRange:
    """Bytes ``start`` (inclusive) to ``end`` (exclusive)."""

    start: int
    end: int


@dataclass(frozen=True)
class OffsetRange:
    """Bytes from ``offset`` to the end of the object."""

    offset: int


@dataclass(frozen=True)
class SuffixRange:
    """The last ``suffix`` bytes of the object."""

    suffix: int


GetRange = Union[BoundedRange, OffsetRange, SuffixRange]


@dataclass
class GetOptions:
    """Options for a read. With ``head`` set only metadata is wanted."""

    range: Optional[GetRange] = None
    head: bool = False


@dataclass
class GetResult:
    """Result of a read: metadata, the byte range served and the payload chunks."""

    meta: ObjectMeta
    range: range
    attributes: dict[str, str] = field(default_factory=dict)
    payload: Iterable[bytes] = ()

    def read_all(self) -> bytes:
        """Consume the payload and return it as one byte string."""
        return b"".join(self.payload)


def normalize_path(location: str) -> str:
    """Drop leading, trailing and repeated slashes from a location."""
    return "/".join(part for part in str(location).split("/") if part)


def resolve_range(get_range: Optional[GetRange], size: int) -> range:
    """Turn a requested range into concrete offsets within an object of ``size``."""
    if get_range is None:
        return range(0, size)
    if isinstance(get_range, BoundedRange):
        if get_range.start >= size:
            raise RangeStartTooLargeError(get_range.start, size)
        if get_range.start >= get_range.end:
            raise InconsistentRangeError(get_range.start, get_range.end)
        return range(get_range.start, min(get_range.end, size))
    if isinstance(get_range, OffsetRange):
        if get_range.offset >= size:
            raise RangeStartTooLargeError(get_range.offset, size)
        return range(get_range.offset, size)
    if isinstance(get_range, SuffixRange):
        return range(max(size - get_range.suffix, 0), size)
    raise TypeError(f"unsupported range: {get_range!r}")


class ObjectStore(abc.ABC):
    """Interface of a flat key -> blob store."""

    @abc.abstractmethod
    def get_opts(
        self, location: str, options: Optional[GetOptions] = None
    ) -> GetResult:
        """Read an object, or part of one."""

    @abc.abstractmethod
    def head(self, location: str) -> ObjectMeta:
        """Return the metadata of an object."""

    @abc.abstractmethod
    def put(
        self,
        location: str,
        data: bytes,
        attributes: Optional[dict[str, str]] = None,
    ) -> ObjectMeta:
        """Store an object, replacing any existing one."""

    @abc.abstractmethod
    def delete(self, location: str) -> None:
        """Remove an object."""

    @abc.abstractmethod
    def list(self, prefix: Optional[str] = None) -> Iterator[ObjectMeta]:
        """Yield metadata of objects under ``prefix``."""

    @abc.abstractmethod
    def copy(self, src: str, dst: str) -> None:
        """Copy an object to a new location."""

    @abc.abstractmethod
    def rename(self, src: str, dst: str) -> None:
        """Move an object to a new location."""


@dataclass
class _Entry:
    data: bytes
    meta: ObjectMeta
    attributes: dict[str, str]


class InMemoryObjectStore(ObjectStore):
    """A thread-safe object store held entirely in memory."""

    def __init__(self) -> None:
        self._objects: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._etags = itertools.count()

    def _entry(self, location: str) -> _Entry:
        key = normalize_path(location)
        try:
            return self._objects[key]
        except KeyError:
            raise NotFoundError(key) from None

    def get_opts(
        self, location: str, options: Optional[GetOptions] = None
    ) -> GetResult:
        options = options or GetOptions()
        with self._lock:
            entry = self._entry(location)
        if options.head:
            return GetResult(
                meta=entry.meta,
                range=range(0, 0),
                attributes=dict(entry.attributes),
                payload=(),
            )
        served = resolve_range(options.range, entry.meta.size)
        return GetResult(
            meta=entry.meta,
            range=served,
            attributes=dict(entry.attributes),
            payload=iter([entry.data[served.start : served.stop]]),
        )

    def head(self, location: str) -> ObjectMeta:
        with self._lock:
            return self._entry(location).meta

    def put(
        self,
        location: str,
        data: bytes,
        attributes: Optional[dict[str, str]] = None,
    ) -> ObjectMeta:
        key = normalize_path(location)
        data = bytes(data)
        with self._lock:
            meta = ObjectMeta(
                location=key,
                last_modified=datetime.now(timezone.utc),
                size=len(data),
                e_tag=str(next(self._etags)),
            )
            self._objects[key] = _Entry(data, meta, dict(attributes or {}))
        return meta

    def delete(self, location: str) -> None:
        with self._lock:
            self._objects.pop(normalize_path(location), None)

    def list(self, prefix: Optional[str] = None) -> Iterator[ObjectMeta]:
        base = normalize_path(prefix) if prefix is not None else ""
        with self._lock:
            metas = sorted(
                (entry.meta for entry in self._objects.values()),
                key=lambda meta: meta.location,
            )
        for meta in metas:
            if not base or meta.location.startswith(base + "/"):
                yield meta

    def copy(self, src: str, dst: str) -> None:
        dst_key = normalize_path(dst)
        with self._lock:
            entry = self._entry(src)
            meta = replace(
                entry.meta,
                location=dst_key,
                last_modified=datetime.now(timezone.utc),
                e_tag=str(next(self._etags)),
            )
            self._objects[dst_key] = _Entry(entry.data, meta, dict(entry.attributes))

    def rename(self, src: str, dst: str) -> None:
        self.copy(src, dst)
        if normalize_path(src) != normalize_path(dst):
            self.delete(src)