# slatekv

Storage building blocks for a key-value database that keeps its data in an
object store. Pure Python, standard library only, synchronous API.

## What is inside

- `slatekv.batch`: `WriteBatch`, an ordered list of `PutOp` and `DeleteOp`
  writes. `put(key, value)` and `delete(key)` append an operation and raise
  `ValueError` for an empty key; a batch supports `len()` and iteration in
  the order the operations were added.
- `slatekv.block`: `Block`, holding row data and a list of u16 row offsets.
  `encode()` writes the data, the big-endian u16 offsets and a u16 offset
  count; `Block.decode(data)` reads that form back; `size()` gives the
  encoded length. `compute_prefix(lhs, rhs)` returns the length of the common
  prefix of two byte strings.
- `slatekv.object_store`: the abstract `ObjectStore` (`get_opts`, `head`,
  `put`, `delete`, `list`, `copy`, `rename`), the range types
  `BoundedRange`, `OffsetRange` and `SuffixRange`, `GetOptions`,
  `GetResult` (with `read_all()`), `ObjectMeta`, and a thread-safe
  `InMemoryObjectStore`. Errors derive from `ObjectStoreError`:
  `NotFoundError`, `RangeStartTooLargeError`, `InconsistentRangeError`.
- `slatekv.cache_storage`: `FsCacheStorage` and `FsCacheEntry`, which keep an
  object's metadata (a JSON `LocalCacheHead` in a `_head` file) and its
  fixed-size parts (`_part<size>-<number>` files) in a folder per object.
  `make_part_path` and `make_head_path` give those file paths.
- `slatekv.evictor`: `EvictionIndex`, which tracks cached files and, once the
  total size passes a limit, deletes the older of two randomly picked files
  (up to ten per pass); `CacheEvictor`, which runs an index on background
  threads, rescanning the folder at start and every `scan_interval` seconds;
  and `CacheStats`, the counters both update.
- `slatekv.cached_store`: `CachedObjectStore`, an `ObjectStore` that reads
  through a local part cache. On first read it fetches the request widened to
  part boundaries and stores the parts; later reads come from disk and fall
  back to the wrapped store for missing parts. Writes, deletes, listings,
  copies and renames go straight to the wrapped store.
- `slatekv.bench_stats`: `RandomKeyGenerator` and `FixedSetKeyGenerator` for
  benchmark keys, and `StatsRecorder`, which sums puts and gets into
  10-second windows (at most 180 kept) and reports totals over a look-back
  with `operations_since(lookback)`.

## Installing

    pip install .

For running the tests:

    pip install ".[test]"
    pytest

## A short example

```python
from slatekv.batch import WriteBatch
from slatekv.object_store import InMemoryObjectStore, GetOptions, BoundedRange
from slatekv.cached_store import CachedObjectStore

batch = WriteBatch()
batch.put(b"key1", b"value1")
batch.delete(b"key2")
print(len(batch))  # 2

inner = InMemoryObjectStore()
inner.put("data/file", b"x" * 5000)
store = CachedObjectStore(inner, "/tmp/slatekv-cache", None, 1024)
result = store.get_opts("data/file", GetOptions(range=BoundedRange(1000, 2048)))
print(len(result.read_all()))  # 1048
```

The part size of a `CachedObjectStore` must be a positive multiple of 1024;
otherwise `InvalidCachePartSizeError` is raised. Passing a
`max_cache_size_bytes` and calling `start_evictor()` keeps the cache folder
under that size. Reads that start at or past the end of an object raise
`RangeStartTooLargeError`; a bounded range whose start is not before its end
raises `InconsistentRangeError`.

## What it does not do

This package is a set of parts, not a database. It has no memtable, write-ahead
log, table writer or block builder, no manifest handling, no compaction and no
way to apply a `WriteBatch` to stored data. It has no command-line tool and
no benchmark runner: `slatekv.bench_stats` only generates keys and keeps the
statistics. The only object store provided is the in-memory one.