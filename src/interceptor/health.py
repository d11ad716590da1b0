"""Origin connectivity probes with cached snapshots."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests

logger = logging.getLogger(__name__)


@dataclass
class ConnectivitySnapshot:
    checked_at: float
    online: bool
    error: Optional[str] = None


class ConnectivityMonitor:
    """
    Watches the origin and fires ``on_restored`` on every offline → online
    transition. The first probe only establishes a baseline.
    """

    def __init__(
        self,
        probe_url: str,
        on_restored: Callable[[], object],
        cache_ttl: int = 15,
        timeout: float = 2.0,
    ) -> None:
        self._probe_url = probe_url
        self._on_restored = on_restored
        self._cache_ttl = cache_ttl
        self._timeout = timeout
        self._snapshot: Optional[ConnectivitySnapshot] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _probe(self) -> tuple[bool, Optional[str]]:
        try:
            # Any answer from the origin, even an error status, means we are online
            requests.get(self._probe_url, timeout=self._timeout)
            return True, None
        except Exception as exc:  # noqa: BLE001
            return False, str(exc)

    def refresh_snapshot(self) -> ConnectivitySnapshot:
        previous = self._snapshot
        online, error = self._probe()
        self._snapshot = ConnectivitySnapshot(checked_at=time.time(), online=online, error=error)

        if previous is not None and not previous.online and online:
            logger.info("Connectivity restored (%s)", self._probe_url)
            try:
                self._on_restored()
            except Exception as exc:  # noqa: BLE001
                logger.error("Connectivity restore handler failed: %s", exc)
        elif previous is not None and previous.online and not online:
            logger.warning("Origin unreachable: %s", error)

        return self._snapshot

    def get_snapshot(self) -> ConnectivitySnapshot:
        if self._snapshot is None:
            return self.refresh_snapshot()
        if time.time() - self._snapshot.checked_at > self._cache_ttl:
            return self.refresh_snapshot()
        return self._snapshot

    def mark_offline(self, error: str = "request failed") -> None:
        """Record an observed failure so the next good probe counts as a restore."""
        self._snapshot = ConnectivitySnapshot(checked_at=time.time(), online=False, error=error)

    # ── Background watcher ───────────────────────────────────────

    def start(self, interval: float = 30.0) -> None:
        if self._thread is not None:
            return

        def _loop() -> None:
            while not self._stop.wait(interval):
                self.refresh_snapshot()

        self.refresh_snapshot()
        self._thread = threading.Thread(target=_loop, name="connectivity-monitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
