#!/usr/bin/env python3
"""
Lifecycle Manager: install, activate, claim

    INSTALLING → INSTALLED → ACTIVATING → ACTIVE

Install pre-warms the app shell into the static partition, all or nothing.
A failed pre-warm is reported but installation still completes. An error in
the install phase itself leaves the proxy in INSTALLING; there is no retry,
the next deployed generation supersedes it.

Activate garbage-collects every partition that does not belong to the
current generation and then claims all open sessions, so pages opened before
activation are intercepted without a reload.
"""

import logging
import threading
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Tuple

from interceptor.fetcher import NetworkFailure
from interceptor.messages import ProxyRequest, ProxyResponse
from interceptor.strategies import response_to_entry
from partitions.store import PartitionId, PartitionSet, PartitionStore

logger = logging.getLogger(__name__)


class LifecycleState(Enum):
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVE = "active"


@dataclass
class InstallReport:
    """Result of a pre-warm. ``ok`` is False if any asset failed."""
    ok: bool
    cached: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class LifecycleManager:
    def __init__(
        self,
        store: PartitionStore,
        partitions: PartitionSet,
        fetch: Callable[[ProxyRequest], ProxyResponse],
        app_shell: Iterable[str] = (),
        skip_waiting: bool = True,
    ):
        self.store = store
        self.partitions = partitions
        self._fetch = fetch
        self.app_shell = tuple(app_shell)
        self.skip_waiting = skip_waiting

        self.state = LifecycleState.INSTALLING
        self.claimed = False
        self.last_install: InstallReport = None
        self._lock = threading.Lock()

    @property
    def generation(self) -> str:
        return self.partitions.generation

    @property
    def intercepting(self) -> bool:
        return self.state == LifecycleState.ACTIVE and self.claimed

    # ── Install ──────────────────────────────────────────────────

    def install(self) -> InstallReport:
        """Pre-warm the app shell. Leaves the state INSTALLED on return."""
        logger.info("Installing generation %s...", self.generation)
        self.state = LifecycleState.INSTALLING

        report = self.precache(self.app_shell)
        if not report.ok:
            logger.error("Failed to cache app shell: %s", ", ".join(report.failed))

        self.last_install = report
        self.state = LifecycleState.INSTALLED
        logger.info("Generation %s installed", self.generation)
        return report

    def precache(self, urls: Iterable[str]) -> InstallReport:
        """
        Fetch every URL, bypassing the cache, and store them in the static
        partition only if every one succeeded.
        """
        fetched: List[Tuple[str, ProxyResponse]] = []
        failed: List[str] = []

        for url in urls:
            request = ProxyRequest("GET", url, headers={"Cache-Control": "no-cache"})
            try:
                response = self._fetch(request)
            except NetworkFailure as e:
                logger.warning("Pre-cache fetch failed for %s: %s", url, e)
                failed.append(url)
                continue
            if not response.ok:
                logger.warning("Pre-cache fetch for %s returned %d", url, response.status)
                failed.append(url)
                continue
            fetched.append((request.cache_key(), response))

        if failed:
            return InstallReport(ok=False, failed=failed)

        static = self.partitions[PartitionId.STATIC]
        cached = []
        for key, response in fetched:
            entry = response_to_entry(key, response, self.store.now(), static)
            if self.store.put(static, key, entry):
                cached.append(key)
        logger.info("Pre-cached %d assets", len(cached))
        return InstallReport(ok=True, cached=cached)

    # ── Activate ─────────────────────────────────────────────────

    def activate(self, force: bool = False) -> List[str]:
        """
        Delete partitions from other generations, open the current ones and
        claim all sessions. Returns the deleted partition names.
        """
        with self._lock:
            if self.state == LifecycleState.INSTALLING:
                raise RuntimeError("cannot activate before installation completes")
            if self.state == LifecycleState.ACTIVE and not force:
                return []

            logger.info("Activating generation %s...", self.generation)
            self.state = LifecycleState.ACTIVATING
            deleted = self.store.delete_partitions_not_in(self.partitions.keep_set())
            for partition in self.partitions:
                self.store.open_partition(partition)

            self.state = LifecycleState.ACTIVE
            self.claimed = True
            logger.info(
                "Generation %s active, %d old partitions deleted, sessions claimed",
                self.generation, len(deleted),
            )
            return deleted

    def start(self) -> InstallReport:
        """Install, and activate straight away when skip_waiting is set."""
        report = self.install()
        if self.skip_waiting:
            self.activate()
        else:
            logger.info("Generation %s waiting for activate-new-version", self.generation)
        return report

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "generation": self.generation,
            "claimed": self.claimed,
            "last_install": self.last_install.to_dict() if self.last_install else None,
        }
