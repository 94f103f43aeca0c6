"""LocalCache freshness, atomic records, read-through with stale fallback."""
import json

import pytest

from pantry_core.cache import CacheEntry, LocalCache, is_fresh, read_through
from pantry_core.constants import KEY_DASHBOARD_DATA, KEY_LAST_FETCH_TIME, KEY_MY_LIST
from pantry_core.errors import ApiError, NetworkError
from pantry_core.storage import JsonFileStore, MemoryStore

HOUR = 60 * 60 * 1000
MINUTE = 60 * 1000


@pytest.fixture
def cache(store, clock):
    return LocalCache(store, clock=clock, window_ms=HOUR)


def test_is_fresh_is_strictly_less_than_window():
    entry = CacheEntry({"items": []}, fetched_at=1000)
    assert is_fresh(entry, 500, now=1499)
    assert not is_fresh(entry, 500, now=1500)


@pytest.mark.parametrize("window", [1, 10, HOUR])
def test_fresh_immediately_after_write(cache, window):
    entry = cache.write(KEY_DASHBOARD_DATA, {"items": [1]})
    assert cache.is_fresh(entry, window)


def test_value_and_timestamp_stored_as_one_record(cache, store, clock):
    cache.write(KEY_DASHBOARD_DATA, {"items": ["milk"]})
    record = store.get(KEY_DASHBOARD_DATA)
    assert record == {"value": {"items": ["milk"]}, KEY_LAST_FETCH_TIME: clock.now()}


def test_read_missing_key_is_absent(cache):
    assert cache.read(KEY_DASHBOARD_DATA) is None


@pytest.mark.parametrize("raw", ["not a record", {"value": 1}, {"value": 1, KEY_LAST_FETCH_TIME: "yesterday"}])
def test_malformed_record_is_treated_as_absent(cache, store, raw):
    store.set(KEY_DASHBOARD_DATA, raw)
    assert cache.read(KEY_DASHBOARD_DATA) is None


def test_thirty_minutes_later_is_served_from_cache(cache, clock):
    cache.write(KEY_DASHBOARD_DATA, {"items": ["eggs"]})
    clock.advance(30 * MINUTE)
    calls = []

    result = read_through(cache, KEY_DASHBOARD_DATA, lambda: calls.append(1) or {"items": ["new"]})

    assert calls == []
    assert result.value == {"items": ["eggs"]}
    assert result.from_cache and not result.stale


def test_ninety_minutes_later_is_stale_and_refetched(cache, clock):
    cache.write(KEY_DASHBOARD_DATA, {"items": ["eggs"]})
    clock.advance(90 * MINUTE)
    assert cache.read_fresh(KEY_DASHBOARD_DATA) is None

    result = read_through(cache, KEY_DASHBOARD_DATA, lambda: {"items": ["new"]})

    assert result.value == {"items": ["new"]}
    assert not result.from_cache
    entry = cache.read(KEY_DASHBOARD_DATA)
    assert entry.value == {"items": ["new"]}
    assert entry.fetched_at == clock.now()


def test_failed_refresh_serves_stale_copy(cache, clock):
    cache.write(KEY_MY_LIST, [{"id": "p1"}])
    clock.advance(2 * HOUR)

    def fetch():
        raise NetworkError("offline")

    result = read_through(cache, KEY_MY_LIST, fetch)
    assert result.stale
    assert result.value == [{"id": "p1"}]


def test_failed_fetch_without_cache_propagates(cache):
    def fetch():
        raise ApiError(500, "boom")

    with pytest.raises(ApiError):
        read_through(cache, KEY_MY_LIST, fetch)


def test_force_bypasses_fresh_entry(cache):
    cache.write(KEY_MY_LIST, ["old"])
    result = read_through(cache, KEY_MY_LIST, lambda: ["new"], force=True)
    assert result.value == ["new"]


def test_invalidate_and_invalidate_all(cache, store):
    cache.write(KEY_DASHBOARD_DATA, {})
    cache.write(KEY_MY_LIST, [])
    cache.write("recipes", [])
    store.set("unrelated", "keep")

    cache.invalidate(KEY_MY_LIST)
    assert cache.read(KEY_MY_LIST) is None
    assert cache.read(KEY_DASHBOARD_DATA) is not None

    cache.invalidate_all()
    assert cache.read(KEY_DASHBOARD_DATA) is None
    assert cache.read("recipes") is None
    assert store.get("unrelated") == "keep"


def test_json_file_store_persists_across_instances(tmp_path, clock):
    path = tmp_path / "storage.json"
    cache = LocalCache(JsonFileStore(path), clock=clock)
    cache.write(KEY_DASHBOARD_DATA, {"stores": ["Aldi"]})

    reopened = LocalCache(JsonFileStore(path), clock=clock)
    entry = reopened.read(KEY_DASHBOARD_DATA)
    assert entry.value == {"stores": ["Aldi"]}
    assert entry.fetched_at == clock.now()
    assert not path.with_suffix(".json.tmp").exists()


def test_json_file_store_recovers_from_corrupt_file(tmp_path):
    path = tmp_path / "storage.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileStore(path)
    assert store.get("token") is None
    store.set("token", "abc")
    assert json.loads(path.read_text(encoding="utf-8")) == {"token": "abc"}


def test_memory_store_operations():
    store = MemoryStore({"a": 1})
    store.set("b", 2)
    store.remove("a")
    store.remove("missing")
    assert store.keys() == ["b"]
    store.clear()
    assert store.get("b") is None
