#!/usr/bin/env python3
"""
Durable Mutation Queue: writes that failed while offline

SQLite-backed FIFO that survives process restarts. A mutating request that
could not reach the origin is appended here and re-issued when the host
reports that connectivity is back.

Rules:
- Replay walks the queue in enqueue order
- A mutation is removed only after a confirmed 2xx replay
- A failed replay stays in place (keeps its position ahead of newer entries)
  and the drain moves on to the next one
- Only one drain runs at a time; enqueue never waits for a drain
- No deduplication and no expiry: a mutation stays queued until it succeeds
"""

import json
import logging
import os
import sqlite3
import threading
import time
import uuid
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Optional

from interceptor.fetcher import NetworkFailure
from interceptor.messages import ProxyRequest, ProxyResponse

logger = logging.getLogger(__name__)

DEFAULT_DB_DIR = os.path.expanduser("~/.offline-proxy")
DEFAULT_DB_PATH = os.path.join(DEFAULT_DB_DIR, "outbox.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS pending_mutations (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,  -- enqueue order
    id TEXT UNIQUE NOT NULL,
    method TEXT NOT NULL,
    url TEXT NOT NULL,
    headers TEXT DEFAULT '{}',
    body BLOB DEFAULT NULL,
    enqueued_at REAL NOT NULL,
    attempts INTEGER DEFAULT 0,
    last_error TEXT DEFAULT ''
);
"""


@dataclass
class QueuedMutation:
    """A write request waiting for replay."""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    enqueued_at: float = field(default_factory=time.time)
    attempts: int = 0
    last_error: str = ""

    def to_request(self) -> ProxyRequest:
        return ProxyRequest(
            method=self.method,
            url=self.url,
            headers=dict(self.headers),
            body=self.body,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["body"] = len(self.body) if self.body is not None else None
        return d


@dataclass
class ReplayReport:
    """Outcome of one drain."""
    replayed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    remaining: int = 0
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MutationQueue:
    """
    Persistent FIFO of failed mutations.

    ``send`` is the network call used for replay; it must raise
    NetworkFailure when the origin is unreachable.
    """

    def __init__(self, send: Callable[[ProxyRequest], ProxyResponse], db_path: str = None):
        self.db_path = db_path or os.environ.get("OFFLINE_PROXY_QUEUE_DB", DEFAULT_DB_PATH)
        self._send = send

        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA)
        self._conn.commit()

        self._db_lock = threading.Lock()
        self._drain_lock = threading.Lock()

        logger.info(f"MutationQueue initialized (db={self.db_path}, pending={self.size()})")

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    # ── Enqueue ──────────────────────────────────────────────────

    def enqueue(
        self, method: str, url: str,
        headers: Dict[str, str] = None, body: Optional[bytes] = None,
    ) -> QueuedMutation:
        """Append a mutation. Assigns its id and enqueue timestamp."""
        mutation = QueuedMutation(
            method=method.upper(),
            url=url,
            headers=dict(headers or {}),
            body=body,
        )
        with self._db_lock:
            self._conn.execute(
                """INSERT INTO pending_mutations (id, method, url, headers, body, enqueued_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (mutation.id, mutation.method, mutation.url,
                 json.dumps(mutation.headers), mutation.body, mutation.enqueued_at),
            )
            self._conn.commit()
        logger.info("Queued %s %s for replay (id=%s)", mutation.method, mutation.url, mutation.id)
        return mutation

    # ── Queries ──────────────────────────────────────────────────

    def pending(self) -> List[QueuedMutation]:
        with self._db_lock:
            rows = self._conn.execute(
                "SELECT * FROM pending_mutations ORDER BY seq ASC"
            ).fetchall()
        return [self._row_to_mutation(r) for r in rows]

    def get(self, mutation_id: str) -> Optional[QueuedMutation]:
        with self._db_lock:
            row = self._conn.execute(
                "SELECT * FROM pending_mutations WHERE id = ?", (mutation_id,)
            ).fetchone()
        return self._row_to_mutation(row) if row else None

    def size(self) -> int:
        with self._db_lock:
            return self._conn.execute("SELECT COUNT(*) FROM pending_mutations").fetchone()[0]

    def remove(self, mutation_id: str) -> bool:
        with self._db_lock:
            cursor = self._conn.execute(
                "DELETE FROM pending_mutations WHERE id = ?", (mutation_id,)
            )
            self._conn.commit()
        return cursor.rowcount > 0

    # ── Replay ───────────────────────────────────────────────────

    def drain_and_replay(self) -> ReplayReport:
        """
        Re-issue every queued mutation in FIFO order.

        Called by the host's connectivity watcher. A second call while a
        drain is in flight returns immediately with ``skipped=True``.
        """
        if not self._drain_lock.acquire(blocking=False):
            logger.debug("Replay already in progress, skipping")
            return ReplayReport(skipped=True, remaining=self.size())

        report = ReplayReport()
        try:
            # Snapshot the queue; mutations enqueued during the drain wait for the next one
            for mutation in self.pending():
                error = self._replay_one(mutation)
                if error is None:
                    self.remove(mutation.id)
                    report.replayed.append(mutation.id)
                else:
                    self._record_failure(mutation.id, error)
                    report.failed.append(mutation.id)
        finally:
            self._drain_lock.release()

        report.remaining = self.size()
        logger.info(
            "Replay finished: %d replayed, %d failed, %d remaining",
            len(report.replayed), len(report.failed), report.remaining,
        )
        return report

    def _replay_one(self, mutation: QueuedMutation) -> Optional[str]:
        try:
            response = self._send(mutation.to_request())
        except NetworkFailure as e:
            logger.warning("Replay of %s failed: %s", mutation.id, e)
            return str(e) or "network failure"

        if response.ok:
            logger.info("Replayed %s %s → %d", mutation.method, mutation.url, response.status)
            return None

        logger.warning("Replay of %s rejected with %d", mutation.id, response.status)
        return f"HTTP {response.status}"

    def _record_failure(self, mutation_id: str, error: str) -> None:
        with self._db_lock:
            self._conn.execute(
                """UPDATE pending_mutations SET attempts = attempts + 1, last_error = ?
                   WHERE id = ?""",
                (error, mutation_id),
            )
            self._conn.commit()

    @staticmethod
    def _row_to_mutation(row: sqlite3.Row) -> QueuedMutation:
        body = row["body"]
        return QueuedMutation(
            id=row["id"],
            method=row["method"],
            url=row["url"],
            headers=json.loads(row["headers"] or "{}"),
            body=bytes(body) if body is not None else None,
            enqueued_at=row["enqueued_at"],
            attempts=row["attempts"],
            last_error=row["last_error"] or "",
        )
