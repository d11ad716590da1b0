#!/usr/bin/env python3
"""
Partition Store: durable response cache split into named partitions

SQLite-backed key/value storage. Each partition carries its own max age;
entries are written whole and never patched in place.

Implements:
- get(partition, key) → CacheEntry | None
- put(partition, key, entry) → bool (last write wins)
- delete(partition, key)
- delete_partitions_not_in(keep_set) → generation GC
- is_stale(entry, partition)
- sweep_expired() / delete_matching(pattern) / purge_all()

Quota policy: a rejected write triggers one sweep of expired entries and a
single retry. If that fails too the write is dropped and the caller is not
told.
"""

import json
import logging
import os
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from .memory import HotEntryCache

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = os.path.expanduser("~/.offline-proxy/cache/partitions.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS partitions (
    name TEXT PRIMARY KEY,
    max_age_seconds INTEGER NOT NULL,
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS entries (
    partition TEXT NOT NULL REFERENCES partitions(name) ON DELETE CASCADE,
    cache_key TEXT NOT NULL,
    body BLOB NOT NULL,
    headers TEXT NOT NULL DEFAULT '{}',
    inserted_at REAL NOT NULL,
    PRIMARY KEY (partition, cache_key)
);

CREATE INDEX IF NOT EXISTS idx_entries_inserted ON entries(inserted_at);
"""


class StoreQuotaExceeded(Exception):
    """The durable medium refused a write because it is full."""


class PartitionId(Enum):
    """Resource classes that own a partition."""
    STATIC = "static"
    IMAGES = "images"
    API = "api"
    RUNTIME = "runtime"


@dataclass(frozen=True)
class Partition:
    id: PartitionId
    max_age_seconds: int
    name: str


@dataclass(frozen=True)
class CacheEntry:
    """A stored response. Replaced wholesale on every write."""
    key: str
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)
    inserted_at: float = field(default_factory=time.time)
    partition: str = ""

    def age(self, now: float) -> float:
        return now - self.inserted_at


class PartitionSet:
    """
    The partitions declared for one generation.

    Durable names follow ``<prefix>-<kind>-<generation>`` so that a new
    deployment never reads entries written by an older one.
    """

    def __init__(self, generation: str, max_ages: Dict[PartitionId, int], prefix: str = "offline"):
        self.generation = generation
        self.prefix = prefix
        self._partitions = {
            pid: Partition(
                id=pid,
                max_age_seconds=int(max_ages[pid]),
                name=f"{prefix}-{pid.value}-{generation}",
            )
            for pid in PartitionId
        }

    def __getitem__(self, pid: PartitionId) -> Partition:
        return self._partitions[pid]

    def __iter__(self):
        return iter(self._partitions.values())

    def keep_set(self) -> set:
        return {p.name for p in self._partitions.values()}


class PartitionStore:
    """
    SQLite partition store with an in-memory hot tier.

    One connection, shared across listener threads and serialized by a lock.
    Network I/O never happens while the lock is held.
    """

    def __init__(
        self,
        db_path: str = None,
        quota_bytes: Optional[int] = None,
        hot_entries: int = 50,
        clock: Callable[[], float] = None,
    ):
        if db_path is None:
            db_path = DEFAULT_DB_PATH
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.quota_bytes = quota_bytes
        self._clock = clock or time.time
        self._lock = threading.RLock()
        self._hot = HotEntryCache(maxsize=hot_entries)

        self.conn = sqlite3.connect(db_path, check_same_thread=False, timeout=10.0)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self.conn.executescript(SCHEMA)
        self.conn.commit()

        self.stats = {
            "hits": 0,
            "misses": 0,
            "writes": 0,
            "dropped_writes": 0,
            "evictions": 0,
        }
        logger.info(f"PartitionStore initialized at {db_path}")

    def now(self) -> float:
        return self._clock()

    # ── Partitions ───────────────────────────────────────────────

    def open_partition(self, partition: Partition) -> None:
        """Declare a partition. Existing partitions keep their entries."""
        with self._lock:
            self.conn.execute(
                """INSERT INTO partitions (name, max_age_seconds, created_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(name) DO UPDATE SET max_age_seconds = excluded.max_age_seconds""",
                (partition.name, partition.max_age_seconds, self.now()),
            )
            self.conn.commit()

    def partition_names(self) -> List[str]:
        with self._lock:
            rows = self.conn.execute("SELECT name FROM partitions ORDER BY name").fetchall()
        return [r["name"] for r in rows]

    def delete_partitions_not_in(self, keep_set: Iterable[str]) -> List[str]:
        """Drop every partition (and its entries) whose name is not kept."""
        keep = set(keep_set)
        with self._lock:
            stale = [name for name in self.partition_names() if name not in keep]
            for name in stale:
                cursor = self.conn.execute("DELETE FROM entries WHERE partition = ?", (name,))
                self.stats["evictions"] += cursor.rowcount
                self.conn.execute("DELETE FROM partitions WHERE name = ?", (name,))
                self._hot.drop_partition(name)
                logger.info("Deleted old partition: %s", name)
            self.conn.commit()
        return stale

    def purge_all(self) -> int:
        """Delete every partition regardless of generation."""
        return len(self.delete_partitions_not_in(()))

    # ── Entries ──────────────────────────────────────────────────

    def get(self, partition: Partition, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._hot.get(partition.name, key)
            if entry is not None:
                self.stats["hits"] += 1
                return entry

            row = self.conn.execute(
                """SELECT cache_key, body, headers, inserted_at, partition
                   FROM entries WHERE partition = ? AND cache_key = ?""",
                (partition.name, key),
            ).fetchone()

            if row is None:
                self.stats["misses"] += 1
                logger.debug("Cache MISS: %s %s", partition.name, key)
                return None

            entry = CacheEntry(
                key=row["cache_key"],
                body=bytes(row["body"]),
                headers=json.loads(row["headers"] or "{}"),
                inserted_at=row["inserted_at"],
                partition=row["partition"],
            )
            self._hot.put(partition.name, key, entry)
            self.stats["hits"] += 1
        logger.debug("Cache HIT: %s %s", partition.name, key)
        return entry

    def put(self, partition: Partition, key: str, entry: CacheEntry) -> bool:
        """
        Write an entry, replacing any previous one for the key.

        Returns False when the write was dropped after the quota retry.
        """
        try:
            self._write(partition, key, entry)
            return True
        except StoreQuotaExceeded as e:
            logger.warning("Cache quota exceeded (%s), sweeping expired entries", e)

        self.sweep_expired()
        try:
            self._write(partition, key, entry)
            return True
        except StoreQuotaExceeded as e:
            with self._lock:
                self.stats["dropped_writes"] += 1
            logger.warning("Failed to cache %s after cleanup: %s", key, e)
            return False

    def _write(self, partition: Partition, key: str, entry: CacheEntry) -> None:
        body = bytes(entry.body)
        with self._lock:
            if self.quota_bytes is not None:
                used = self.conn.execute(
                    """SELECT COALESCE(SUM(LENGTH(body)), 0) AS used FROM entries
                       WHERE NOT (partition = ? AND cache_key = ?)""",
                    (partition.name, key),
                ).fetchone()["used"]
                if used + len(body) > self.quota_bytes:
                    raise StoreQuotaExceeded(
                        f"{used + len(body)} bytes exceeds quota of {self.quota_bytes}"
                    )
            try:
                self.conn.execute(
                    "INSERT OR IGNORE INTO partitions (name, max_age_seconds, created_at) VALUES (?, ?, ?)",
                    (partition.name, partition.max_age_seconds, self.now()),
                )
                self.conn.execute(
                    """INSERT OR REPLACE INTO entries
                       (partition, cache_key, body, headers, inserted_at)
                       VALUES (?, ?, ?, ?, ?)""",
                    (partition.name, key, body, json.dumps(dict(entry.headers)), entry.inserted_at),
                )
                self.conn.commit()
            except sqlite3.OperationalError as e:
                self.conn.rollback()
                if "full" in str(e).lower():
                    raise StoreQuotaExceeded(str(e)) from e
                raise

            self._hot.put(partition.name, key, CacheEntry(
                key=key,
                body=body,
                headers=dict(entry.headers),
                inserted_at=entry.inserted_at,
                partition=partition.name,
            ))
            self.stats["writes"] += 1
        logger.debug("Cached %s in %s (%d bytes)", key, partition.name, len(body))

    def delete(self, partition: Partition, key: str) -> bool:
        with self._lock:
            cursor = self.conn.execute(
                "DELETE FROM entries WHERE partition = ? AND cache_key = ?",
                (partition.name, key),
            )
            self.conn.commit()
            self._hot.discard(partition.name, key)
        return cursor.rowcount > 0

    def is_stale(self, entry: CacheEntry, partition: Partition) -> bool:
        return self.now() - entry.inserted_at > partition.max_age_seconds

    # ── Housekeeping ─────────────────────────────────────────────

    def sweep_expired(self) -> int:
        """Remove expired entries from every partition."""
        now = self.now()
        with self._lock:
            cursor = self.conn.execute(
                """DELETE FROM entries WHERE ? - inserted_at > (
                       SELECT max_age_seconds FROM partitions p WHERE p.name = entries.partition
                   )""",
                (now,),
            )
            cleared = cursor.rowcount
            self.conn.commit()
            if cleared > 0:
                self._hot.clear()
                self.stats["evictions"] += cleared
        if cleared > 0:
            logger.info(f"Cleared {cleared} expired cache entries")
        return cleared

    def delete_matching(self, pattern: str) -> int:
        """Remove entries whose key contains ``pattern`` in any partition."""
        with self._lock:
            cursor = self.conn.execute(
                "DELETE FROM entries WHERE instr(cache_key, ?) > 0", (pattern,)
            )
            cleared = cursor.rowcount
            self.conn.commit()
            self._hot.clear()
            self.stats["evictions"] += cleared
        return cleared

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            stats = dict(self.stats)
            entries = self.conn.execute("SELECT COUNT(*) AS count FROM entries").fetchone()["count"]
            partitions = self.conn.execute("SELECT COUNT(*) AS count FROM partitions").fetchone()["count"]
        total = stats["hits"] + stats["misses"]
        return {
            **stats,
            "hit_rate_percent": round(stats["hits"] / total * 100, 1) if total else 0.0,
            "entries": entries,
            "partitions": partitions,
            "hot": self._hot.get_stats(),
        }

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("PartitionStore closed")
