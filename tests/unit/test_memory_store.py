"""
Unit tests -- in-memory cache store (fake clock, no sleeping).
"""
import logging

import pytest

from src.cache.base import CacheBackend, CacheContext, CacheStats, is_expired
from src.cache.memory_store import MemoryCacheStore
from src.cache.null_store import NullCacheStore
from src.core.errors import CacheError


def _put_query(store, n: int, ttl_hours=None):
    store.cache_query(f"query_{n}", "123", f"hash_{n}", {"n": n}, {"rows": [n]}, 1, ttl_hours)


def test_satisfies_backend_protocol(memory_store):
    assert isinstance(memory_store, CacheBackend)
    assert isinstance(NullCacheStore(), CacheBackend)


def test_context_name_used_for_stats(tmp_path, clock):
    store = MemoryCacheStore(CacheContext("reports", tmp_path), clock=clock)
    assert store.stats().context_id == "reports"


def test_log_records_carry_store_context(tmp_path, clock, caplog):
    store = MemoryCacheStore(CacheContext("reports_eu", tmp_path), clock=clock)
    with caplog.at_level(logging.INFO, logger="src.cache.memory_store"):
        store.sweep_expired()
    (record,) = [r for r in caplog.records if r.name == "src.cache.memory_store"]
    assert record.cache_context == "reports_eu"


def test_is_expired_boundary():
    assert not is_expired(None, 10.0)
    assert not is_expired(11.0, 10.0)
    assert is_expired(10.0, 10.0)


# ── Metadata ────────────────────────────────────────────

def test_metadata_hit_before_ttl(memory_store, clock):
    memory_store.cache_metadata("123", "metadata", {"dimensions": []}, ttl_hours=1)
    clock.advance(seconds=3599)
    payload, found = memory_store.get_cached_metadata("123", "metadata")
    assert found
    assert payload == {"dimensions": []}


def test_metadata_miss_and_removed_after_ttl(memory_store, clock):
    memory_store.cache_metadata("123", "metadata", {"dimensions": []}, ttl_hours=1)
    clock.advance(hours=1)
    assert memory_store.get_cached_metadata("123", "metadata") == (None, False)
    stats = memory_store.stats()
    assert stats.entry_count == 0
    assert stats.misses == 1


def test_metadata_requires_ttl(memory_store):
    with pytest.raises(CacheError):
        memory_store.cache_metadata("123", "metadata", {}, ttl_hours=None)


def test_metadata_kinds_are_separate(memory_store):
    memory_store.cache_metadata("123", "metadata", {"a": 1}, ttl_hours=24)
    memory_store.cache_metadata("123", "events_30", {"b": 2}, ttl_hours=24)
    assert memory_store.get_cached_metadata("123", "metadata")[0] == {"a": 1}
    assert memory_store.get_cached_metadata("123", "events_30")[0] == {"b": 2}
    assert memory_store.delete_metadata("123", "events_30") is True
    assert memory_store.delete_metadata("123", "events_30") is False


# ── Queries ─────────────────────────────────────────────

def test_query_without_ttl_never_expires(memory_store, clock):
    _put_query(memory_store, 1, ttl_hours=None)
    clock.advance(hours=24 * 365)
    assert memory_store.get_cached_query("hash_1") == ({"rows": [1]}, True)


def test_last_write_wins(memory_store):
    memory_store.cache_query("q1", "123", "h", {}, {"v": 1}, 1, 4)
    memory_store.cache_query("q2", "123", "h", {}, {"v": 2}, 1, 4)
    assert memory_store.get_cached_query("h")[0] == {"v": 2}
    assert memory_store.stats().entry_count == 1


def test_returned_payload_is_a_copy(memory_store):
    _put_query(memory_store, 1)
    payload, _ = memory_store.get_cached_query("hash_1")
    payload["rows"].append("mutated")
    assert memory_store.get_cached_query("hash_1")[0] == {"rows": [1]}


def test_unserialisable_payload_rejected(memory_store):
    with pytest.raises(CacheError):
        memory_store.cache_query("q", "123", "h", {}, {"bad": object()}, 0)


def test_hit_and_miss_counters(memory_store):
    _put_query(memory_store, 1)
    memory_store.get_cached_query("hash_1")
    memory_store.get_cached_query("hash_1")
    memory_store.get_cached_query("missing")
    stats = memory_store.stats()
    assert (stats.hits, stats.misses) == (2, 1)
    assert stats.hit_rate == 0.667


def test_delete_query(memory_store):
    _put_query(memory_store, 1)
    assert memory_store.delete_query("hash_1") is True
    assert memory_store.get_cached_query("hash_1") == (None, False)


# ── Sweep / clear ───────────────────────────────────────

def test_sweep_removes_only_expired(memory_store, clock):
    for n in range(3):
        _put_query(memory_store, n, ttl_hours=1)
    for n in range(3, 5):
        _put_query(memory_store, n, ttl_hours=48)
    clock.advance(hours=2)

    assert memory_store.sweep_expired() == 3
    for n in range(3, 5):
        assert memory_store.get_cached_query(f"hash_{n}")[1] is True
    stats = memory_store.stats()
    assert stats.entry_count == 2
    assert stats.hits == 2
    assert stats.last_sweep_at == clock.now


def test_sweep_covers_metadata_too(memory_store, clock):
    memory_store.cache_metadata("123", "metadata", {}, ttl_hours=1)
    _put_query(memory_store, 1, ttl_hours=None)
    clock.advance(hours=5)
    assert memory_store.sweep_expired() == 1
    assert memory_store.stats().entry_count == 1


def test_clear(memory_store):
    memory_store.cache_metadata("123", "metadata", {}, ttl_hours=1)
    _put_query(memory_store, 1)
    assert memory_store.clear() == 2
    assert memory_store.stats().entry_count == 0


# ── Named references ────────────────────────────────────

def test_named_reference_round_trip(memory_store):
    _put_query(memory_store, 1)
    memory_store.create_named_reference("weekly", "123", "query_1", "weekly sessions")
    payload, found = memory_store.get_named_reference("weekly")
    assert found and payload == {"rows": [1]}
    refs = memory_store.list_named_references()
    assert [(r.name, r.query_id, r.description) for r in refs] == [("weekly", "query_1", "weekly sessions")]


def test_named_reference_needs_existing_query(memory_store):
    with pytest.raises(CacheError):
        memory_store.create_named_reference("orphan", "123", "query_missing")


def test_named_reference_to_expired_result(memory_store, clock):
    _put_query(memory_store, 1, ttl_hours=1)
    memory_store.create_named_reference("short", "123", "query_1")
    clock.advance(hours=2)
    assert memory_store.get_named_reference("short") == (None, False)
    memory_store.sweep_expired()
    assert memory_store.list_named_references() == []


def test_list_filters_by_subject(memory_store, clock):
    _put_query(memory_store, 1)
    memory_store.cache_query("query_2", "456", "hash_2", {}, {}, 0)
    memory_store.create_named_reference("a", "123", "query_1")
    clock.advance(seconds=1)
    memory_store.create_named_reference("b", "456", "query_2")
    assert [r.name for r in memory_store.list_named_references("456")] == ["b"]
    assert [r.name for r in memory_store.list_named_references()] == ["b", "a"]


def test_rewrite_repoints_references(memory_store):
    memory_store.cache_query("old", "123", "h", {}, {"v": 1}, 1)
    memory_store.create_named_reference("ref", "123", "old")
    memory_store.cache_query("new", "123", "h", {}, {"v": 2}, 1)
    assert memory_store.get_named_reference("ref") == ({"v": 2}, True)
    assert memory_store.list_named_references()[0].query_id == "new"


def test_delete_named_reference(memory_store):
    _put_query(memory_store, 1)
    memory_store.create_named_reference("ref", "123", "query_1")
    assert memory_store.delete_named_reference("ref") is True
    assert memory_store.delete_named_reference("ref") is False
    assert memory_store.get_cached_query("hash_1")[1] is True


# ── Null store ──────────────────────────────────────────

def test_null_store_never_hits():
    store = NullCacheStore()
    store.cache_query("q", "123", "h", {}, {"v": 1}, 1)
    assert store.get_cached_query("h") == (None, False)
    assert store.stats() == CacheStats(context_id="disabled", misses=1)
    with pytest.raises(CacheError):
        store.create_named_reference("ref", "123", "q")
