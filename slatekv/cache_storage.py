"""On-disk cache of object parts and object metadata."""

from __future__ import annotations

import json
import os
import random
import string
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from slatekv.evictor import CacheEvictor, CacheStats
from slatekv.object_store import ObjectMeta, ObjectStoreError, normalize_path

PathLike = Union[str, os.PathLike]

_PART_PREFIX = "_part"
_HEAD_NAME = "_head"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_SUFFIX_ALPHABET = string.ascii_letters + string.digits


def make_part_path(
    root_folder: PathLike, location: str, part_number: int, part_size: int
) -> Path:
    """Return the file holding part ``part_number`` of ``location``.

    The part size is part of the file name, so changing it does not require
    the cache to be invalidated.
    """
    if part_size % (1024 * 1024) == 0:
        size_name = f"{part_size // (1024 * 1024)}mb"
    else:
        size_name = f"{part_size // 1024}kb"
    return (
        Path(root_folder)
        / normalize_path(location)
        / f"{_PART_PREFIX}{size_name}-{part_number:09d}"
    )


def make_head_path(root_folder: PathLike, location: str) -> Path:
    """Return the file holding the cached metadata of ``location``."""
    return Path(root_folder) / normalize_path(location) / _HEAD_NAME


def _parse_timestamp(text: str) -> datetime:
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class LocalCacheHead:
    """Serialisable form of an object's metadata and attributes."""

    location: str
    last_modified: str
    size: int
    e_tag: Optional[str] = None
    version: Optional[str] = None
    attributes: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_meta(
        cls, meta: ObjectMeta, attributes: Optional[dict[str, str]] = None
    ) -> "LocalCacheHead":
        """Build a head record from object metadata."""
        return cls(
            location=meta.location,
            last_modified=meta.last_modified.isoformat(),
            size=meta.size,
            e_tag=meta.e_tag,
            version=meta.version,
            attributes={str(k): str(v) for k, v in (attributes or {}).items()},
        )

    def meta(self) -> ObjectMeta:
        """Return the stored metadata; an unparsable timestamp becomes the epoch."""
        return ObjectMeta(
            location=self.location,
            last_modified=_parse_timestamp(self.last_modified),
            size=self.size,
            e_tag=self.e_tag,
            version=self.version,
        )

    def to_json(self) -> str:
        """Serialise as JSON."""
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, text: str) -> "LocalCacheHead":
        """Parse JSON produced by :meth:`to_json`; raise ValueError if malformed."""
        try:
            raw = json.loads(text)
            head = cls(
                location=str(raw["location"]),
                last_modified=str(raw["last_modified"]),
                size=int(raw["size"]),
                e_tag=raw.get("e_tag"),
                version=raw.get("version"),
                attributes={str(k): str(v) for k, v in raw["attributes"].items()},
            )
        except (KeyError, TypeError, AttributeError, json.JSONDecodeError) as exc:
            raise ValueError(f"malformed cache head: {exc}") from exc
        return head


@dataclass
class FsCacheEntry:
    """Cached parts and metadata of one object, kept in one folder."""

    root_folder: Path
    location: str
    part_size: int
    evictor: Optional[CacheEvictor] = None

    def _atomic_write(self, path: Path, data: bytes) -> None:
        suffix = "".join(random.choices(_SUFFIX_ALPHABET, k=24))
        tmp_path = path.with_suffix(f"._tmp{suffix}")
        try:
            tmp_path.parent.mkdir(parents=True, exist_ok=True)
            if self.evictor is not None:
                self.evictor.track_entry_accessed(path, len(data), True)
            with open(tmp_path, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
        except OSError as exc:
            raise ObjectStoreError(f"failed to write cache file {path}: {exc}") from exc

    def save_part(self, part_number: int, data: bytes) -> None:
        """Store a part unless it is already cached."""
        part_path = make_part_path(
            self.root_folder, self.location, part_number, self.part_size
        )
        if part_path.exists():
            return
        self._atomic_write(part_path, bytes(data))

    def read_part(self, part_number: int, start: int, end: int) -> Optional[bytes]:
        """Return bytes ``start:end`` of a cached part, or None if not cached."""
        part_path = make_part_path(
            self.root_folder, self.location, part_number, self.part_size
        )
        if not part_path.exists():
            return None
        if self.evictor is not None:
            self.evictor.track_entry_accessed(part_path, self.part_size, False)
        length = max(end - start, 0)
        try:
            with open(part_path, "rb") as handle:
                handle.seek(start)
                data = handle.read(length)
        except OSError as exc:
            raise ObjectStoreError(f"failed to read cache file {part_path}: {exc}") from exc
        if len(data) != length:
            raise ObjectStoreError(
                f"cache file {part_path} is shorter than the requested range"
            )
        return data

    def cached_parts(self) -> list[int]:
        """Return the numbers of the cached parts, in file name order."""
        folder = make_head_path(self.root_folder, self.location).parent
        try:
            children = list(folder.iterdir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise ObjectStoreError(f"failed to list cache folder {folder}: {exc}") from exc

        names = sorted(
            child.name
            for child in children
            if not child.is_dir() and child.name.startswith(_PART_PREFIX)
        )
        numbers = []
        for name in names:
            tail = name.rsplit("-", 1)[-1]
            if tail.isdigit():
                numbers.append(int(tail))
        return numbers

    def save_head(
        self, meta: ObjectMeta, attributes: Optional[dict[str, str]] = None
    ) -> None:
        """Store the object's metadata unless a readable copy already exists."""
        try:
            if self.read_head() is not None:
                return
        except ObjectStoreError:
            pass
        head = LocalCacheHead.from_meta(meta, attributes)
        self._atomic_write(
            make_head_path(self.root_folder, self.location),
            head.to_json().encode("utf-8"),
        )

    def read_head(self) -> Optional[tuple[ObjectMeta, dict[str, str]]]:
        """Return cached metadata and attributes, or None if not cached."""
        head_path = make_head_path(self.root_folder, self.location)
        try:
            size = head_path.stat().st_size
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise ObjectStoreError(f"failed to stat {head_path}: {exc}") from exc

        if self.evictor is not None:
            self.evictor.track_entry_accessed(head_path, size, False)

        try:
            content = head_path.read_text(encoding="utf-8")
            head = LocalCacheHead.from_json(content)
        except (OSError, ValueError) as exc:
            raise ObjectStoreError(f"failed to read cache head {head_path}: {exc}") from exc
        return head.meta(), dict(head.attributes)


class FsCacheStorage:
    """A local folder caching objects, optionally bounded in size."""

    def __init__(
        self,
        root_folder: PathLike,
        max_cache_size_bytes: Optional[int] = None,
        scan_interval: Optional[float] = None,
        stats: Optional[CacheStats] = None,
    ) -> None:
        self.root_folder = Path(root_folder)
        self.evictor: Optional[CacheEvictor] = None
        if max_cache_size_bytes is not None:
            self.evictor = CacheEvictor(
                self.root_folder, max_cache_size_bytes, scan_interval, stats
            )

    def entry(self, location: str, part_size: int) -> FsCacheEntry:
        """Return the cache entry for ``location`` split into ``part_size`` parts."""
        return FsCacheEntry(
            root_folder=self.root_folder,
            location=location,
            part_size=part_size,
            evictor=self.evictor,
        )

    def start_evictor(self) -> None:
        """Start background eviction, if a size limit was given."""
        if self.evictor is not None:
            self.evictor.start()

    def __str__(self) -> str:
        return f"FsCacheStorage({self.root_folder})"