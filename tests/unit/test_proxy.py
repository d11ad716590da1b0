#!/usr/bin/env python3
"""
Integration tests for OfflineProxy
lifecycle gating, offline round trip, replay, never-throw contract, intercept log
"""

import json
import logging
import sqlite3
from dataclasses import replace

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from interceptor.messages import ProxyRequest
from interceptor.proxy import OfflineProxy
from lifecycle.manager import LifecycleState
from partitions.store import PartitionId


def serve_shell(origin):
    origin.add("/", body="<html>shell</html>", headers={"Content-Type": "text/html"})
    origin.add("/index.html", body="<html>shell</html>", headers={"Content-Type": "text/html"})


@pytest.fixture
def proxy(proxy_config, origin):
    p = OfflineProxy(proxy_config, fetch=origin)
    yield p
    p.close()


@pytest.fixture
def active_proxy(proxy, origin):
    serve_shell(origin)
    proxy.start()
    return proxy


class TestLifecycleGating:

    def test_not_intercepting_before_start(self, proxy, origin):
        origin.add("/assets/app.js", body="js")

        response = proxy.handle(ProxyRequest("GET", "/assets/app.js"))

        assert response.body == b"js"
        assert response.source == "passthrough"
        assert proxy.store.partition_names() == []

    def test_offline_before_start_is_503(self, proxy, origin):
        origin.offline = True
        response = proxy.handle(ProxyRequest("GET", "/assets/app.js"))
        assert response.status == 503

    def test_start_activates_and_prewarms(self, active_proxy):
        static = active_proxy.partitions[PartitionId.STATIC]

        assert active_proxy.lifecycle.state == LifecycleState.ACTIVE
        assert active_proxy.store.get(static, "/index.html") is not None

    def test_upgrade_replaces_old_generation(self, proxy_config, origin):
        serve_shell(origin)
        old = OfflineProxy(replace(proxy_config, generation="v1"), fetch=origin)
        old.start()
        old.close()

        new = OfflineProxy(proxy_config, fetch=origin)
        new.start()
        names = new.store.partition_names()
        new.close()

        assert set(names) == new.partitions.keep_set()


class TestOfflineRoundTrip:

    def test_api_read_served_from_cache_when_offline(self, active_proxy, origin):
        origin.add("/api/listings", body='[{"id": 1}]', headers={"Content-Type": "application/json"})
        active_proxy.handle(ProxyRequest("GET", "/api/listings"))

        origin.offline = True
        response = active_proxy.handle(ProxyRequest("GET", "/api/listings"))

        assert response.status == 200
        assert response.json() == [{"id": 1}]

    def test_navigation_falls_back_to_prewarmed_root(self, active_proxy, origin):
        origin.offline = True
        response = active_proxy.handle(ProxyRequest("GET", "/listings/42", {"Accept": "text/html"}))

        assert response.body == b"<html>shell</html>"
        assert response.source == "fallback"

    def test_offline_write_replayed_after_restore(self, active_proxy, origin):
        origin.offline = True
        queued = active_proxy.handle(
            ProxyRequest("POST", "/api/listings", {"Content-Type": "application/json"}, b'{"make": "VW"}')
        )
        assert queued.json()["queued"] is True
        assert active_proxy.queue.size() == 1

        origin.offline = False
        origin.add("/api/listings", status=201, body='{"id": 9}', method="POST")
        report = active_proxy.on_connectivity_restored()

        assert len(report.replayed) == 1
        assert active_proxy.queue.size() == 0
        replayed = origin.calls_for("/api/listings", method="POST")[-1]
        assert replayed.body == b'{"make": "VW"}'
        assert replayed.headers["Content-Type"] == "application/json"

    def test_network_failure_marks_monitor_offline(self, active_proxy, origin):
        origin.offline = True
        active_proxy.handle(ProxyRequest("GET", "/api/listings"))

        snapshot = active_proxy.monitor._snapshot
        assert snapshot is not None
        assert snapshot.online is False


class TestCacheIntegrity:

    def test_head_then_get_serves_full_body(self, active_proxy, origin):
        origin.add("/assets/app.js", method="HEAD")
        origin.add("/assets/app.js", body="console.log(1)")

        active_proxy.handle(ProxyRequest("HEAD", "/assets/app.js"))
        first = active_proxy.handle(ProxyRequest("GET", "/assets/app.js"))
        second = active_proxy.handle(ProxyRequest("GET", "/assets/app.js"))

        assert first.body == b"console.log(1)"
        assert second.source == "cache"
        assert second.body == b"console.log(1)"

    def test_locked_store_still_returns_network_response(self, active_proxy, origin, monkeypatch):
        origin.add("/api/listings", body='[{"id": 1}]')

        def locked(partition, key, entry):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(active_proxy.store, "_write", locked)
        response = active_proxy.handle(ProxyRequest("GET", "/api/listings"))

        assert response.status == 200
        assert response.json() == [{"id": 1}]


class TestNeverThrows:

    def test_internal_error_becomes_offline_response(self, active_proxy, monkeypatch):
        def boom(request):
            raise RuntimeError("store corrupted")

        monkeypatch.setattr(active_proxy.router, "dispatch", boom)

        page = active_proxy.handle(ProxyRequest("GET", "/listings"))
        api = active_proxy.handle(ProxyRequest("GET", "/api/listings"))

        assert page.status == 503
        assert page.body == b"Offline"
        assert api.status == 503
        assert api.json()["error"] == "Service unavailable"


class TestInterceptLog:

    def test_each_request_logs_a_valid_record(self, active_proxy, origin, caplog):
        origin.add("/assets/app.js", body="js")
        caplog.set_level(logging.INFO, logger="interceptor.proxy")

        active_proxy.handle(ProxyRequest("GET", "/assets/app.js"))

        lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith("intercept ")]
        assert len(lines) == 1
        record = json.loads(lines[0][len("intercept "):])
        assert record["rule"] == "static"
        assert record["partition"] == "offline-static-v2"
        assert record["strategy"] == "cache-first"
        assert record["source"] == "network"
        assert record["generation"] == "v2"


class TestStatus:

    def test_status_reports_every_component(self, active_proxy):
        active_proxy.queue.enqueue("POST", "/api/x")

        status = active_proxy.status()

        assert status["lifecycle"]["state"] == "active"
        assert len(status["partitions"]) == 4
        assert status["queue"]["pending"] == 1
        assert status["queue"]["mutations"][0]["url"] == "/api/x"
        assert "entries" in status["store"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
