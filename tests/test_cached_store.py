import os

import pytest

from slatekv.cache_storage import make_part_path
from slatekv.cached_store import CachedObjectStore, InvalidCachePartSizeError
from slatekv.object_store import (
    BoundedRange,
    GetOptions,
    InMemoryObjectStore,
    NotFoundError,
    ObjectStoreError,
    OffsetRange,
    SuffixRange,
)

LOCATION = "/data/testfile1"


def make_store(tmp_path, inner=None, part_size=1024):
    inner = inner if inner is not None else InMemoryObjectStore()
    return inner, CachedObjectStore(inner, tmp_path / "cache", None, part_size)


def test_invalid_part_size(tmp_path):
    inner = InMemoryObjectStore()
    with pytest.raises(InvalidCachePartSizeError):
        CachedObjectStore(inner, tmp_path, None, 0)
    with pytest.raises(InvalidCachePartSizeError):
        CachedObjectStore(inner, tmp_path, None, 1000)


def test_save_result_not_aligned(tmp_path):
    payload = os.urandom(1024 * 3 + 32)
    inner, store = make_store(tmp_path)
    inner.put(LOCATION, payload)
    result = inner.get_opts(LOCATION)
    entry = store.cache_storage.entry(LOCATION, 1024)

    assert store.save_result(result) == 1024 * 3 + 32

    head = entry.read_head()
    assert head[0].size == 1024 * 3 + 32

    assert len(entry.cached_parts()) == 4
    assert entry.read_part(0, 0, 1024) == payload[0:1024]
    assert entry.read_part(1, 0, 1024) == payload[1024:2048]
    assert entry.read_part(2, 0, 1024) == payload[2048:3072]

    os.remove(make_part_path(tmp_path / "cache", LOCATION, 2, 1024))
    assert entry.read_part(2, 0, 1024) is None
    assert entry.cached_parts() == [0, 1, 3]

    os.remove(make_part_path(tmp_path / "cache", LOCATION, 3, 1024))
    assert entry.read_part(3, 0, 1024) is None
    assert entry.cached_parts() == [0, 1]


def test_save_result_aligned(tmp_path):
    payload = os.urandom(1024 * 3)
    inner, store = make_store(tmp_path)
    inner.put(LOCATION, payload)
    result = inner.get_opts(LOCATION)
    entry = store.cache_storage.entry(LOCATION, 1024)

    assert store.save_result(result) == 1024 * 3
    assert len(entry.cached_parts()) == 3
    assert entry.read_part(0, 0, 1024) == payload[0:1024]
    assert entry.read_part(1, 0, 1024) == payload[1024:2048]
    assert entry.read_part(2, 0, 1024) == payload[2048:3072]

    os.remove(make_part_path(tmp_path / "cache", LOCATION, 2, 1024))
    assert entry.read_part(2, 0, 1024) is None
    assert len(entry.cached_parts()) == 2


def test_save_result_rejects_unaligned_start(tmp_path):
    inner, store = make_store(tmp_path)
    inner.put(LOCATION, os.urandom(3000))
    result = inner.get_opts(LOCATION, GetOptions(range=BoundedRange(10, 2048)))
    with pytest.raises(ValueError):
        store.save_result(result)


@pytest.mark.parametrize(
    "get_range, size, expected",
    [
        (None, 1024 * 3, [(0, range(0, 1024)), (1, range(0, 1024)), (2, range(0, 1024))]),
        (
            None,
            1024 * 3 + 12,
            [
                (0, range(0, 1024)),
                (1, range(0, 1024)),
                (2, range(0, 1024)),
                (3, range(0, 12)),
            ],
        ),
        (None, 12, [(0, range(0, 12))]),
        (BoundedRange(0, 1024), 1024, [(0, range(0, 1024))]),
        (BoundedRange(128, 1024), 20000, [(0, range(128, 1024))]),
        (BoundedRange(128, 1024 + 12), 20000, [(0, range(128, 1024)), (1, range(0, 12))]),
        (
            BoundedRange(128, 1024 * 2 + 12),
            20000,
            [(0, range(128, 1024)), (1, range(0, 1024)), (2, range(0, 12))],
        ),
        (
            BoundedRange(1024 * 2, 1024 * 3 + 12),
            200000,
            [(2, range(0, 1024)), (3, range(0, 12))],
        ),
        (
            BoundedRange(1024 * 2 - 2, 1024 * 3 + 12),
            20000,
            [(1, range(1022, 1024)), (2, range(0, 1024)), (3, range(0, 12))],
        ),
        (SuffixRange(128), 1024, [(0, range(896, 1024))]),
        (
            SuffixRange(1024 * 2 + 8),
            1024 * 4,
            [(1, range(1016, 1024)), (2, range(0, 1024)), (3, range(0, 1024))],
        ),
        (
            OffsetRange(8),
            1024 * 4,
            [
                (0, range(8, 1024)),
                (1, range(0, 1024)),
                (2, range(0, 1024)),
                (3, range(0, 1024)),
            ],
        ),
        (
            OffsetRange(1024 * 2 + 8),
            1024 * 4,
            [(2, range(8, 1024)), (3, range(0, 1024))],
        ),
        (
            OffsetRange(1024 * 2 + 8),
            1024 * 4 + 2,
            [(2, range(8, 1024)), (3, range(0, 1024)), (4, range(0, 2))],
        ),
    ],
)
def test_split_range_into_parts(tmp_path, get_range, size, expected):
    _, store = make_store(tmp_path)
    canonical = store.canonicalize_range(get_range, size)
    assert store.split_range_into_parts(canonical) == expected


def test_canonicalize_range_errors(tmp_path):
    _, store = make_store(tmp_path)
    with pytest.raises(ObjectStoreError):
        store.canonicalize_range(BoundedRange(5000, 6000), 1024)
    with pytest.raises(ObjectStoreError):
        store.canonicalize_range(BoundedRange(10, 10), 1024)
    with pytest.raises(ObjectStoreError):
        store.canonicalize_range(OffsetRange(1024), 1024)


def test_align_range(tmp_path):
    _, store = make_store(tmp_path)
    assert store.align_range(range(9, 1025), 1024) == range(0, 2048)
    assert store.align_range(range(1024 + 1, 2048 + 4), 1024) == range(1024, 3072)


def test_align_get_range(tmp_path):
    _, store = make_store(tmp_path)
    assert store.align_get_range(BoundedRange(9, 1025)) == BoundedRange(0, 2048)
    assert store.align_get_range(BoundedRange(9, 2048)) == BoundedRange(0, 2048)
    assert store.align_get_range(SuffixRange(12)) == SuffixRange(1024)
    assert store.align_get_range(SuffixRange(1024)) == SuffixRange(1024)
    assert store.align_get_range(OffsetRange(1024)) == OffsetRange(1024)
    assert store.align_get_range(OffsetRange(12)) == OffsetRange(0)


def _attempt(store, location, get_range):
    try:
        result = store.get_opts(location, GetOptions(range=get_range))
        return result.range, result.meta, result.read_all(), None
    except ObjectStoreError as exc:
        return None, None, None, exc


def test_cached_object_store_matches_inner_store(tmp_path):
    inner, store = make_store(tmp_path)
    path = "/data/testdata1"
    payload = os.urandom(1024 * 3 + 2)
    inner.put(path, payload)

    test_ranges = [
        OffsetRange(260817),
        None,
        BoundedRange(1000, 2048),
        BoundedRange(1000, 260817),
        SuffixRange(10),
        SuffixRange(260817),
        OffsetRange(1000),
        OffsetRange(0),
        OffsetRange(1028),
        OffsetRange(260817),
        OffsetRange(1024 * 3 + 2),
        OffsetRange(1024 * 3 + 1),
        BoundedRange(2900, 2048),
        BoundedRange(10, 10),
    ]
    for get_range in test_ranges:
        want = _attempt(inner, path, get_range)
        got = _attempt(store, path, get_range)
        if want[3] is None:
            assert got[3] is None, get_range
            assert got[0] == want[0]
            assert got[1] == want[1]
            assert got[2] == want[2]
        else:
            assert got[3] is not None and isinstance(got[3], ObjectStoreError)
            if "range" in str(want[3]).lower():
                assert "range" in str(got[3]).lower()


def test_cached_reads_hit_cache(tmp_path):
    inner, store = make_store(tmp_path)
    payload = os.urandom(1024 * 3 + 32)
    inner.put(LOCATION, payload)

    assert store.get_opts(LOCATION).read_all() == payload
    assert store.stats.object_store_cache_part_access == 4
    assert store.stats.object_store_cache_part_hits == 4

    data = store.get_opts(LOCATION, GetOptions(range=BoundedRange(100, 2000))).read_all()
    assert data == payload[100:2000]
    assert store.stats.object_store_cache_part_hits == 6


def test_missing_part_falls_back_to_inner_store(tmp_path):
    inner, store = make_store(tmp_path)
    payload = os.urandom(1024 * 3)
    inner.put(LOCATION, payload)
    assert store.get_opts(LOCATION).read_all() == payload

    part_path = make_part_path(tmp_path / "cache", LOCATION, 1, 1024)
    os.remove(part_path)
    hits_before = store.stats.object_store_cache_part_hits

    data = store.get_opts(LOCATION, GetOptions(range=BoundedRange(1100, 1200))).read_all()
    assert data == payload[1100:1200]
    assert store.stats.object_store_cache_part_hits == hits_before
    assert part_path.exists()
    assert store.cache_storage.entry(LOCATION, 1024).cached_parts() == [0, 1, 2]


def test_cached_head(tmp_path):
    inner, store = make_store(tmp_path)
    inner.put(LOCATION, b"x" * 2000, {"Content-Type": "text/plain"})

    meta = store.head(LOCATION)
    assert meta.size == 2000
    cached = store.cache_storage.entry(LOCATION, 1024).read_head()
    assert cached[0].size == 2000
    assert cached[1] == {"Content-Type": "text/plain"}

    inner.delete(LOCATION)
    assert store.head(LOCATION).size == 2000


def test_head_of_missing_object(tmp_path):
    _, store = make_store(tmp_path)
    with pytest.raises(NotFoundError):
        store.head("/missing")


def test_writes_go_to_inner_store(tmp_path):
    inner, store = make_store(tmp_path)
    store.put("/a/one", b"hello")
    assert inner.get_opts("/a/one").read_all() == b"hello"

    store.copy("/a/one", "/a/two")
    assert [meta.location for meta in store.list("/a")] == ["a/one", "a/two"]

    store.rename("/a/two", "/a/three")
    assert [meta.location for meta in inner.list("/a")] == ["a/one", "a/three"]

    store.delete("/a/one")
    with pytest.raises(NotFoundError):
        inner.head("/a/one")


def test_str(tmp_path):
    _, store = make_store(tmp_path)
    text = str(store)
    assert text.startswith("CachedObjectStore(")
    assert "FsCacheStorage(" in text