#!/usr/bin/env python3
"""
Offline Proxy: the one running instance

Wires every component once at process start and is passed by reference to
the listener, the control channel and the connectivity monitor:

  request   → classifier → strategy router → partition store / network
  offline   → mutating request → durable mutation queue
  restored  → queue drain + replay
  install / activate → lifecycle manager (never on the request path)
  push / click → notification bridge

handle() never throws. Callers always get a real, cached or synthetic
response.
"""

import json
import logging
import time
import uuid
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from outbox.queue import MutationQueue, ReplayReport
from partitions.store import PartitionSet, PartitionStore

from .config import ProxyConfig
from .control import ControlChannel
from .fetcher import NetworkFailure, NetworkFetcher
from .health import ConnectivityMonitor
from .messages import ProxyRequest, ProxyResponse, offline_response, unavailable_json
from .notifications import ClickDecision, Notification, NotificationBridge
from .observability import InterceptRecord
from .router import RoutedResponse, StrategyRouter
from .rules import Classification, RequestClassifier, default_rules
from lifecycle.manager import InstallReport, LifecycleManager

logger = logging.getLogger(__name__)

Fetch = Callable[[ProxyRequest], ProxyResponse]


class OfflineProxy:
    """
    Full request-to-response pipeline plus lifecycle and control.

    Every collaborator can be injected, so tests run against temporary
    SQLite files and a fake fetcher without touching the network.
    """

    def __init__(
        self,
        config: ProxyConfig,
        store: Optional[PartitionStore] = None,
        queue: Optional[MutationQueue] = None,
        fetch: Optional[Fetch] = None,
        renderer: Optional[Callable[[Notification], None]] = None,
    ):
        self.config = config
        self.fetcher = fetch or NetworkFetcher(config.origin, timeout=config.fetch_timeout_sec)

        self.monitor = ConnectivityMonitor(
            probe_url=config.origin + config.probe_path,
            on_restored=self.on_connectivity_restored,
            cache_ttl=config.probe_ttl_sec,
        )

        self.store = store or PartitionStore(
            str(config.cache_db_path),
            quota_bytes=config.quota_bytes,
            hot_entries=config.hot_entries,
        )
        self.queue = queue or MutationQueue(self._observed_fetch, db_path=str(config.queue_db_path))

        self.partitions = PartitionSet(
            config.generation, config.partitions.max_ages(), prefix=config.partition_prefix,
        )
        self.classifier = RequestClassifier(
            exclusions=config.exclusions,
            rules=default_rules(api_prefix=config.api_prefix, static_prefix=config.static_prefix),
            api_prefix=config.api_prefix,
        )
        self.router = StrategyRouter(
            self.classifier, self.partitions, self.store, self._observed_fetch, queue=self.queue,
        )
        self.lifecycle = LifecycleManager(
            self.store,
            self.partitions,
            self._observed_fetch,
            app_shell=config.app_shell,
            skip_waiting=config.skip_waiting,
        )
        self.notifications = NotificationBridge(config.notifications, renderer=renderer)
        self.control_channel = ControlChannel(self)

    def _observed_fetch(self, request: ProxyRequest) -> ProxyResponse:
        try:
            return self.fetcher(request)
        except NetworkFailure as e:
            self.monitor.mark_offline(str(e))
            raise

    # ── Lifecycle ────────────────────────────────────────────────

    def start(self) -> InstallReport:
        return self.lifecycle.start()

    # ── Request path ─────────────────────────────────────────────

    def handle(self, request: ProxyRequest) -> ProxyResponse:
        """
        Main entry point. Takes a request, returns a response.
        Never throws.
        """
        started = time.monotonic()
        request_id = uuid.uuid4().hex[:12]

        try:
            if self.lifecycle.intercepting:
                routed = self.router.dispatch(request)
            else:
                routed = self._not_intercepted(request)
        except Exception as e:  # noqa: BLE001
            logger.error("Proxy error for %s %s: %s", request.method, request.url, e)
            failed = unavailable_json() if self.classifier.is_api(request) else offline_response()
            routed = RoutedResponse(
                failed.with_source("synthetic"),
                Classification(True, "error", None, None, str(e)),
            )

        self._log_record(request_id, request, routed, started)
        return routed.response

    def _not_intercepted(self, request: ProxyRequest) -> RoutedResponse:
        """Before activation the proxy stays out of the way."""
        classification = Classification(True, "inactive", None, None, self.lifecycle.state.value)
        try:
            response = self._observed_fetch(request)
        except NetworkFailure:
            response = offline_response()
            return RoutedResponse(response.with_source("synthetic"), classification)
        return RoutedResponse(response.with_source("passthrough"), classification)

    def _log_record(self, request_id: str, request: ProxyRequest, routed: RoutedResponse, started: float) -> None:
        c = routed.classification
        partition = self.partitions[c.partition].name if c.partition is not None else None
        record = InterceptRecord(
            request_id=request_id,
            method=request.method,
            url=request.url,
            rule=c.rule,
            partition=partition,
            strategy=c.strategy.value if c.strategy is not None else None,
            source=routed.response.source or "network",
            status=routed.response.status,
            latency_ms=round((time.monotonic() - started) * 1000, 3),
            generation=self.partitions.generation,
            queued_mutation=routed.mutation_id,
        )
        try:
            logger.info("intercept %s", json.dumps(record.to_dict()))
        except ValueError as e:
            logger.warning("Invalid intercept record for %s: %s", request.url, e)

    # ── Offline queue ────────────────────────────────────────────

    def on_connectivity_restored(self) -> ReplayReport:
        """Called by the host's connectivity watcher (or the monitor)."""
        return self.queue.drain_and_replay()

    # ── Control / notifications ──────────────────────────────────

    def control(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        return self.control_channel.dispatch(message)

    def push(self, payload: Any) -> Notification:
        return self.notifications.receive(payload)

    def notification_click(
        self,
        notification: Notification,
        action: Optional[str] = None,
        open_sessions: Iterable[str] = (),
    ) -> Optional[ClickDecision]:
        logger.info("Notification clicked: %s", notification.tag)
        return self.notifications.click(notification, action=action, open_sessions=open_sessions)

    def status(self) -> Dict[str, Any]:
        return {
            "lifecycle": self.lifecycle.status(),
            "partitions": self.store.partition_names(),
            "store": self.store.get_stats(),
            "queue": {
                "pending": self.queue.size(),
                "mutations": [m.to_dict() for m in self.queue.pending()],
            },
        }

    def close(self) -> None:
        self.monitor.stop()
        self.store.close()
        self.queue.close()
        close = getattr(self.fetcher, "close", None)
        if close is not None:
            close()
