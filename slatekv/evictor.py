"""Size-bounded eviction of files in a local disk cache."""

from __future__ import annotations

import logging
import os
import queue
import random
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

_QUEUE_CAPACITY = 100


@dataclass
class CacheStats:
    """Counters and gauges describing the local object store cache."""

    object_store_cache_keys: int = 0
    object_store_cache_bytes: int = 0
    object_store_cache_evicted_keys: int = 0
    object_store_cache_evicted_bytes: int = 0
    object_store_cache_part_access: int = 0
    object_store_cache_part_hits: int = 0


class EvictionIndex:
    """Tracks cached files and evicts them once the cache grows too large.

    Eviction picks two distinct entries at random and removes the one that was
    accessed less recently, an approximation of LRU.
    """

    def __init__(
        self,
        root_folder: PathLike,
        max_cache_size_bytes: int,
        stats: Optional[CacheStats] = None,
        batch_factor: int = 10,
    ) -> None:
        self.root_folder = Path(root_folder)
        self.max_cache_size_bytes = max_cache_size_bytes
        self.stats = stats if stats is not None else CacheStats()
        self.batch_factor = batch_factor
        self.cache_size_bytes = 0
        self._entries: dict[Path, tuple[float, int]] = {}
        self._track_lock = threading.Lock()
        self._entries_lock = threading.RLock()

    def __len__(self) -> int:
        with self._entries_lock:
            return len(self._entries)

    def __contains__(self, path: object) -> bool:
        with self._entries_lock:
            return Path(path) in self._entries  # type: ignore[arg-type]

    def _sync_gauges(self) -> None:
        with self._entries_lock:
            self.stats.object_store_cache_keys = len(self._entries)
            self.stats.object_store_cache_bytes = self.cache_size_bytes

    def scan_entries(self, evict: bool) -> None:
        """Walk the cache folder and record every file with its access time."""

        def on_error(err: OSError) -> None:
            logger.warning("evictor: failed to walk the cache folder: %s", err)

        for dirpath, _dirnames, filenames in os.walk(self.root_folder, onerror=on_error):
            for name in filenames:
                path = Path(dirpath) / name
                try:
                    stat = path.stat()
                except OSError as err:
                    logger.warning(
                        "evictor: failed to get the metadata of the cache file: %s", err
                    )
                    continue
                self.track_entry_accessed(path, stat.st_size, stat.st_atime, evict)

    def track_entry_accessed(
        self,
        path: PathLike,
        size: int,
        accessed_time: float,
        evict: bool,
    ) -> int:
        """Record an access and, if ``evict`` is set, evict when over the limit.

        Returns the number of bytes evicted.
        """
        path = Path(path)
        with self._track_lock:
            with self._entries_lock:
                is_new = path not in self._entries
                self._entries[path] = (accessed_time, size)
                if is_new:
                    self.cache_size_bytes += size
                self._sync_gauges()

            if not evict or self.cache_size_bytes <= self.max_cache_size_bytes:
                return 0

            total = 0
            for _ in range(self.batch_factor):
                evicted = self.maybe_evict_once()
                if evicted == 0:
                    break
                total += evicted
            return total

    def maybe_evict_once(self) -> int:
        """Remove one file from disk and the index; return its size, or 0."""
        target = self.pick_evict_target()
        if target is None:
            return 0
        path, size = target

        try:
            os.remove(path)
        except FileNotFoundError as err:
            logger.warning("evictor: failed to remove the cache file: %s", err)
        except OSError as err:
            logger.warning("evictor: failed to remove the cache file: %s", err)
            return 0

        logger.debug("evictor: evicted cache file: %s, bytes: %d", path, size)

        with self._entries_lock:
            if self._entries.pop(path, None) is not None:
                self.cache_size_bytes -= size
            self.stats.object_store_cache_evicted_bytes += size
            self.stats.object_store_cache_evicted_keys += 1
            self._sync_gauges()
        return size

    def pick_evict_target(self) -> Optional[tuple[Path, int]]:
        """Pick the older of two random entries; None if fewer than two exist."""
        with self._entries_lock:
            if len(self._entries) < 2:
                return None
            first, second = random.sample(list(self._entries.items()), 2)
        (path0, (atime0, size0)), (path1, (atime1, size1)) = first, second
        if atime0 <= atime1:
            return path0, size0
        return path1, size1


class CacheEvictor:
    """Runs an :class:`EvictionIndex` in background threads.

    Accesses are queued and applied by a worker thread; a second thread scans
    the cache folder once at start and then every ``scan_interval`` seconds.
    """

    def __init__(
        self,
        root_folder: PathLike,
        max_cache_size_bytes: int,
        scan_interval: Optional[float] = None,
        stats: Optional[CacheStats] = None,
    ) -> None:
        self.root_folder = Path(root_folder)
        self.max_cache_size_bytes = max_cache_size_bytes
        self.scan_interval = scan_interval
        self.stats = stats if stats is not None else CacheStats()
        self.index: Optional[EvictionIndex] = None
        self._queue: "queue.Queue[Optional[tuple[Path, int, bool]]]" = queue.Queue(
            _QUEUE_CAPACITY
        )
        self._state_lock = threading.Lock()
        self._stopping = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def started(self) -> bool:
        """True once :meth:`start` has been called and before :meth:`stop`."""
        return self.index is not None and not self._stopping.is_set()

    def start(self) -> None:
        """Start the scan and eviction threads. May be called only once."""
        with self._state_lock:
            if self.index is not None:
                raise RuntimeError("evictor already started")
            self.index = EvictionIndex(
                self.root_folder, self.max_cache_size_bytes, self.stats
            )
            self._threads = [
                threading.Thread(
                    target=self._scan_loop, name="cache-evictor-scan", daemon=True
                ),
                threading.Thread(
                    target=self._evict_loop, name="cache-evictor", daemon=True
                ),
            ]
            for thread in self._threads:
                thread.start()

    def stop(self) -> None:
        """Drain queued accesses and stop the background threads."""
        with self._state_lock:
            if self.index is None or self._stopping.is_set():
                return
            self._stopping.set()
            self._queue.put(None)
            threads, self._threads = self._threads, []
        for thread in threads:
            thread.join()

    def track_entry_accessed(self, path: PathLike, size: int, evict: bool) -> None:
        """Queue an access for the worker; ignored unless the evictor is running."""
        if not self.started:
            return
        self._queue.put((Path(path), size, evict))

    def __enter__(self) -> "CacheEvictor":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _evict_loop(self) -> None:
        index = self.index
        assert index is not None
        while True:
            work = self._queue.get()
            if work is None:
                return
            path, size, evict = work
            index.track_entry_accessed(path, size, time.time(), evict)

    def _scan_loop(self) -> None:
        index = self.index
        assert index is not None
        index.scan_entries(True)
        if self.scan_interval is None:
            return
        while not self._stopping.wait(self.scan_interval):
            index.scan_entries(True)