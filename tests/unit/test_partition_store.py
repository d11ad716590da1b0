#!/usr/bin/env python3
"""
Unit tests for the Partition Store
Staleness, overwrite, generation GC, quota sweep-and-retry, hot tier
"""

import pytest
import sqlite3
import sys
import threading
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from partitions.store import (
    CacheEntry,
    PartitionId,
    PartitionSet,
    PartitionStore,
    StoreQuotaExceeded,
)

MAX_AGES = {
    PartitionId.STATIC: 31536000,
    PartitionId.IMAGES: 2592000,
    PartitionId.API: 3600,
    PartitionId.RUNTIME: 86400,
}


class Clock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(tmp_path, clock):
    s = PartitionStore(str(tmp_path / "partitions.db"), clock=clock)
    yield s
    s.close()


@pytest.fixture
def parts():
    return PartitionSet("v2", MAX_AGES)


def entry(key, body=b"body", inserted_at=1_700_000_000.0):
    return CacheEntry(key=key, body=body, headers={"Content-Type": "text/plain"}, inserted_at=inserted_at)


class TestPartitionSet:

    def test_names_carry_generation(self, parts):
        assert parts[PartitionId.IMAGES].name == "offline-images-v2"
        assert parts.keep_set() == {
            "offline-static-v2", "offline-images-v2", "offline-api-v2", "offline-runtime-v2",
        }

    def test_max_ages(self, parts):
        assert parts[PartitionId.API].max_age_seconds == 3600


class TestReadWrite:

    def test_put_and_get(self, store, parts):
        api = parts[PartitionId.API]
        assert store.put(api, "/api/listings", entry("/api/listings", b"[1,2]"))

        result = store.get(api, "/api/listings")
        assert result.body == b"[1,2]"
        assert result.headers["Content-Type"] == "text/plain"
        assert result.partition == "offline-api-v2"

    def test_miss(self, store, parts):
        assert store.get(parts[PartitionId.API], "/nope") is None
        assert store.get_stats()["misses"] == 1

    def test_last_write_wins(self, store, parts):
        static = parts[PartitionId.STATIC]
        store.put(static, "/app.js", entry("/app.js", b"one"))
        store.put(static, "/app.js", entry("/app.js", b"two"))

        assert store.get(static, "/app.js").body == b"two"
        assert store.get_stats()["entries"] == 1

    def test_partitions_are_separate(self, store, parts):
        store.put(parts[PartitionId.API], "/x", entry("/x", b"api"))
        assert store.get(parts[PartitionId.RUNTIME], "/x") is None

    def test_delete(self, store, parts):
        api = parts[PartitionId.API]
        store.put(api, "/api/a", entry("/api/a"))
        assert store.delete(api, "/api/a") is True
        assert store.get(api, "/api/a") is None
        assert store.delete(api, "/api/a") is False

    def test_survives_reopen(self, tmp_path, parts, clock):
        path = str(tmp_path / "reopen.db")
        first = PartitionStore(path, clock=clock)
        first.put(parts[PartitionId.STATIC], "/app.css", entry("/app.css", b"css"))
        first.close()

        second = PartitionStore(path, clock=clock)
        assert second.get(parts[PartitionId.STATIC], "/app.css").body == b"css"
        second.close()


class TestStaleness:

    def test_fresh_entry_is_not_stale(self, store, parts, clock):
        api = parts[PartitionId.API]
        e = entry("/api/a", inserted_at=clock.now)
        assert store.is_stale(e, api) is False

    def test_exactly_max_age_is_not_stale(self, store, parts, clock):
        api = parts[PartitionId.API]
        e = entry("/api/a", inserted_at=clock.now - 3600)
        assert store.is_stale(e, api) is False

    def test_older_than_max_age_is_stale(self, store, parts, clock):
        api = parts[PartitionId.API]
        e = entry("/api/a", inserted_at=clock.now - 3601)
        assert store.is_stale(e, api) is True

    def test_sweep_expired_uses_partition_max_age(self, store, parts, clock):
        api, static = parts[PartitionId.API], parts[PartitionId.STATIC]
        old = clock.now - 7200
        store.put(api, "/api/old", entry("/api/old", inserted_at=old))
        store.put(static, "/old.js", entry("/old.js", inserted_at=old))

        cleared = store.sweep_expired()

        assert cleared == 1
        assert store.get(api, "/api/old") is None
        assert store.get(static, "/old.js") is not None


class TestGenerationGC:

    def test_delete_partitions_not_in(self, store, clock):
        g1 = PartitionSet("v1", MAX_AGES)
        g2 = PartitionSet("v2", MAX_AGES)
        for p in g1:
            store.put(p, "/k", entry("/k"))

        deleted = store.delete_partitions_not_in(g2.keep_set())

        assert set(deleted) == g1.keep_set()
        assert store.partition_names() == []
        assert store.get(g1[PartitionId.API], "/k") is None

    def test_kept_partitions_untouched(self, store, parts):
        store.put(parts[PartitionId.API], "/k", entry("/k", b"keep"))
        store.delete_partitions_not_in(parts.keep_set())
        assert store.get(parts[PartitionId.API], "/k").body == b"keep"

    def test_purge_all(self, store, parts):
        for p in parts:
            store.open_partition(p)
        assert store.purge_all() == 4
        assert store.partition_names() == []

    def test_delete_matching(self, store, parts):
        store.put(parts[PartitionId.API], "/api/vehicles?page=1", entry("/api/vehicles?page=1"))
        store.put(parts[PartitionId.API], "/api/users", entry("/api/users"))
        assert store.delete_matching("vehicles") == 1
        assert store.get(parts[PartitionId.API], "/api/users") is not None


class TestQuota:

    def test_sweep_then_retry_succeeds(self, tmp_path, parts, clock):
        store = PartitionStore(str(tmp_path / "q.db"), quota_bytes=10, clock=clock)
        api = parts[PartitionId.API]
        store.put(api, "/api/old", entry("/api/old", b"12345678", inserted_at=clock.now - 7200))

        assert store.put(api, "/api/new", entry("/api/new", b"abcdef")) is True
        assert store.get(api, "/api/old") is None
        assert store.get(api, "/api/new").body == b"abcdef"
        store.close()

    def test_write_dropped_when_still_full(self, tmp_path, parts, clock):
        store = PartitionStore(str(tmp_path / "q.db"), quota_bytes=10, clock=clock)
        api = parts[PartitionId.API]
        store.put(api, "/api/fresh", entry("/api/fresh", b"12345678", inserted_at=clock.now))

        assert store.put(api, "/api/new", entry("/api/new", b"abcdef")) is False
        assert store.get(api, "/api/new") is None
        assert store.get_stats()["dropped_writes"] == 1
        store.close()

    def test_overwrite_does_not_count_old_body(self, tmp_path, parts, clock):
        store = PartitionStore(str(tmp_path / "q.db"), quota_bytes=10, clock=clock)
        api = parts[PartitionId.API]
        store.put(api, "/api/a", entry("/api/a", b"12345678"))
        assert store.put(api, "/api/a", entry("/api/a", b"87654321")) is True
        store.close()

    def test_quota_error_retried_exactly_once(self, store, parts, monkeypatch):
        calls = {"n": 0}
        real_write = store._write

        def flaky(partition, key, e):
            calls["n"] += 1
            if calls["n"] == 1:
                raise StoreQuotaExceeded("database or disk is full")
            return real_write(partition, key, e)

        monkeypatch.setattr(store, "_write", flaky)
        assert store.put(parts[PartitionId.API], "/api/a", entry("/api/a")) is True
        assert calls["n"] == 2


class TestHotTier:

    def test_get_served_from_memory(self, store, parts):
        api = parts[PartitionId.API]
        store.put(api, "/api/a", entry("/api/a", b"hot"))
        store.conn.execute("DELETE FROM entries")
        store.conn.commit()

        # still in the hot tier
        assert store.get(api, "/api/a").body == b"hot"

    def test_gc_invalidates_memory(self, store, parts):
        api = parts[PartitionId.API]
        store.put(api, "/api/a", entry("/api/a"))
        store.delete_partitions_not_in(set())
        assert store.get(api, "/api/a") is None

    def test_counters_consistent_under_concurrent_reads(self, store, parts):
        api = parts[PartitionId.API]
        store.put(api, "/api/hit", entry("/api/hit"))

        def reader():
            for _ in range(200):
                store.get(api, "/api/hit")
                store.get(api, "/api/miss")

        threads = [threading.Thread(target=reader) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stats = store.get_stats()
        assert stats["hits"] == 1600
        assert stats["misses"] == 1600
        assert stats["hit_rate_percent"] == 50.0

    def test_undeclared_partition_rejected_by_foreign_key(self, store):
        with pytest.raises(sqlite3.IntegrityError):
            store.conn.execute(
                "INSERT INTO entries (partition, cache_key, body, inserted_at) VALUES ('ghost', 'k', x'00', 0)"
            )


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
