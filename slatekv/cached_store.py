"""An object store wrapper that caches object parts on local disk."""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from typing import Iterator, Optional, Union

from slatekv.cache_storage import FsCacheEntry, FsCacheStorage
from slatekv.evictor import CacheStats
from slatekv.object_store import (
    BoundedRange,
    GetOptions,
    GetRange,
    GetResult,
    ObjectMeta,
    ObjectStore,
    ObjectStoreError,
    OffsetRange,
    SuffixRange,
    resolve_range,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


class InvalidCachePartSizeError(ValueError):
    """The cache part size is zero or not a multiple of 1024."""

    def __init__(self, part_size_bytes: int) -> None:
        super().__init__(
            f"invalid cache part size {part_size_bytes}: "
            "must be a positive multiple of 1024"
        )
        self.part_size_bytes = part_size_bytes


class CachedObjectStore(ObjectStore):
    """Serves reads through a local disk cache split into fixed-size parts.

    Objects not yet cached are prefetched with a single aligned request and
    written to disk part by part; later reads are served from the cached
    parts, falling back to the wrapped store for any part that is missing.
    Writes and listings go straight to the wrapped store.
    """

    def __init__(
        self,
        object_store: ObjectStore,
        root_folder: PathLike,
        max_cache_size_bytes: Optional[int],
        part_size_bytes: int,
        scan_interval: Optional[float] = None,
        stats: Optional[CacheStats] = None,
    ) -> None:
        if part_size_bytes <= 0 or part_size_bytes % 1024 != 0:
            raise InvalidCachePartSizeError(part_size_bytes)
        self.object_store = object_store
        self.part_size_bytes = part_size_bytes
        self.stats = stats if stats is not None else CacheStats()
        self.cache_storage = FsCacheStorage(
            root_folder, max_cache_size_bytes, scan_interval, self.stats
        )

    def __str__(self) -> str:
        return f"CachedObjectStore({self.object_store}, {self.cache_storage})"

    def _entry(self, location: str) -> FsCacheEntry:
        return self.cache_storage.entry(location, self.part_size_bytes)

    def start_evictor(self) -> None:
        """Start background eviction of cached files, if a size limit is set."""
        self.cache_storage.start_evictor()

    def cached_head(self, location: str) -> ObjectMeta:
        """Return object metadata, from the cache when available."""
        try:
            cached = self._entry(location).read_head()
        except ObjectStoreError:
            cached = None
        if cached is not None:
            return cached[0]

        result = self.object_store.get_opts(location, GetOptions(range=None, head=True))
        meta = result.meta
        try:
            self.save_result(result)
        except ObjectStoreError as exc:
            logger.warning("failed to cache head of %s: %s", location, exc)
        return meta

    def cached_get_opts(
        self, location: str, options: Optional[GetOptions] = None
    ) -> GetResult:
        """Read an object or a range of it, serving cached parts from disk."""
        options = options or GetOptions()
        get_range = options.range
        meta, attributes = self._maybe_prefetch_range(location, options)
        served = self.canonicalize_range(get_range, meta.size)
        parts = self.split_range_into_parts(served)
        return GetResult(
            meta=meta,
            range=served,
            attributes=attributes,
            payload=self._read_parts(location, parts),
        )

    def _maybe_prefetch_range(
        self, location: str, options: GetOptions
    ) -> tuple[ObjectMeta, dict[str, str]]:
        try:
            cached = self._entry(location).read_head()
        except ObjectStoreError as exc:
            logger.warning("failed to read cached head of %s: %s", location, exc)
            cached = None
        if cached is not None:
            return cached

        if options.range is not None:
            options = replace(options, range=self.align_get_range(options.range))

        result = self.object_store.get_opts(location, options)
        meta = result.meta
        attributes = dict(result.attributes)
        try:
            self.save_result(result)
        except ObjectStoreError as exc:
            logger.warning("failed to cache %s: %s", location, exc)
        return meta, attributes

    def save_result(self, result: GetResult) -> int:
        """Write a read result to the cache as a head file and part files.

        The result's range must start on a part boundary and end on one or at
        the end of the object. Returns the object size.
        """
        part_size = self.part_size_bytes
        start, end = result.range.start, result.range.stop
        if start % part_size != 0:
            raise ValueError(f"result range start {start} is not part-aligned")
        if end % part_size != 0 and end != result.meta.size:
            raise ValueError(f"result range end {end} is not part-aligned")

        entry = self._entry(result.meta.location)
        entry.save_head(result.meta, result.attributes)

        buffer = bytearray()
        part_number = start // part_size
        for chunk in result.payload:
            buffer.extend(chunk)
            while len(buffer) >= part_size:
                entry.save_part(part_number, bytes(buffer[:part_size]))
                del buffer[:part_size]
                part_number += 1

        if buffer:
            entry.save_part(part_number, bytes(buffer))
        return result.meta.size

    def split_range_into_parts(self, byte_range: range) -> list[tuple[int, range]]:
        """Split a byte range into (part number, range within that part) pairs."""
        part_size = self.part_size_bytes
        aligned = self.align_range(byte_range, part_size)
        part_ids = list(range(aligned.start // part_size, aligned.stop // part_size))
        if not part_ids:
            return []
        bounds = [[0, part_size] for _ in part_ids]
        bounds[0][0] = byte_range.start % part_size
        if byte_range.stop % part_size != 0:
            bounds[-1][1] = byte_range.stop % part_size
        return [
            (part_id, range(lo, hi)) for part_id, (lo, hi) in zip(part_ids, bounds)
        ]

    def _read_parts(
        self, location: str, parts: list[tuple[int, range]]
    ) -> Iterator[bytes]:
        for part_id, range_in_part in parts:
            yield self._read_part(location, part_id, range_in_part)

    def _read_part(self, location: str, part_id: int, range_in_part: range) -> bytes:
        entry = self._entry(location)
        self.stats.object_store_cache_part_access += 1
        try:
            cached = entry.read_part(part_id, range_in_part.start, range_in_part.stop)
        except ObjectStoreError:
            cached = None
        if cached is not None:
            self.stats.object_store_cache_part_hits += 1
            return cached

        part_size = self.part_size_bytes
        result = self.object_store.get_opts(
            location,
            GetOptions(
                range=BoundedRange(part_id * part_size, (part_id + 1) * part_size)
            ),
        )
        meta = result.meta
        attributes = dict(result.attributes)
        data = result.read_all()
        try:
            entry.save_head(meta, attributes)
        except ObjectStoreError as exc:
            logger.warning("failed to cache head of %s: %s", location, exc)
        try:
            entry.save_part(part_id, data)
        except ObjectStoreError as exc:
            logger.warning("failed to cache part %d of %s: %s", part_id, location, exc)
        return data[range_in_part.start : range_in_part.stop]

    def canonicalize_range(
        self, get_range: Optional[GetRange], object_size: int
    ) -> range:
        """Resolve a requested range to concrete offsets within the object."""
        return resolve_range(get_range, object_size)

    def align_get_range(self, get_range: GetRange) -> GetRange:
        """Widen a requested range outward to part boundaries."""
        part_size = self.part_size_bytes
        if isinstance(get_range, BoundedRange):
            aligned = self.align_range(range(get_range.start, get_range.end), part_size)
            return BoundedRange(aligned.start, aligned.stop)
        if isinstance(get_range, SuffixRange):
            aligned = self.align_range(range(0, get_range.suffix), part_size)
            return SuffixRange(aligned.stop)
        if isinstance(get_range, OffsetRange):
            return OffsetRange(get_range.offset - get_range.offset % part_size)
        raise TypeError(f"unsupported range: {get_range!r}")

    def align_range(self, byte_range: range, alignment: int) -> range:
        """Round the start down and the end up to multiples of ``alignment``."""
        start = byte_range.start - byte_range.start % alignment
        end = -(-byte_range.stop // alignment) * alignment
        return range(start, end)

    def get_opts(
        self, location: str, options: Optional[GetOptions] = None
    ) -> GetResult:
        return self.cached_get_opts(location, options)

    def head(self, location: str) -> ObjectMeta:
        return self.cached_head(location)

    def put(
        self,
        location: str,
        data: bytes,
        attributes: Optional[dict[str, str]] = None,
    ) -> ObjectMeta:
        return self.object_store.put(location, data, attributes)

    def delete(self, location: str) -> None:
        self.object_store.delete(location)

    def list(self, prefix: Optional[str] = None) -> Iterator[ObjectMeta]:
        return self.object_store.list(prefix)

    def copy(self, src: str, dst: str) -> None:
        self.object_store.copy(src, dst)

    def rename(self, src: str, dst: str) -> None:
        self.object_store.rename(src, dst)