import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from interceptor.config import ProxyConfig
from interceptor.fetcher import NetworkFailure
from interceptor.messages import ProxyRequest, ProxyResponse


class FakeOrigin:
    """Scripted origin. Unscripted paths answer 404; ``offline`` fails everything."""

    def __init__(self):
        self.routes = {}
        self.calls = []
        self.offline = False

    def add(self, path, status=200, body=b"", headers=None, method="GET"):
        self.routes[(method, path)] = ProxyResponse(
            status=status,
            headers=headers or {"Content-Type": "text/plain"},
            body=body if isinstance(body, bytes) else body.encode("utf-8"),
        )

    def fail(self, path, method="GET"):
        self.routes[(method, path)] = NetworkFailure(f"connection refused: {path}")

    def calls_for(self, path, method="GET"):
        return [c for c in self.calls if c.method == method and c.url == path]

    def __call__(self, request: ProxyRequest) -> ProxyResponse:
        self.calls.append(request)
        if self.offline:
            raise NetworkFailure("offline")
        result = self.routes.get((request.method, request.url))
        if isinstance(result, Exception):
            raise result
        if result is None:
            return ProxyResponse(status=404, body=b"not found")
        return ProxyResponse(result.status, dict(result.headers), result.body)


@pytest.fixture
def origin():
    return FakeOrigin()


@pytest.fixture
def proxy_config(tmp_path):
    return ProxyConfig.from_dict({
        "origin": "http://origin.test",
        "generation": "v2",
        "cache_db_path": str(tmp_path / "partitions.db"),
        "queue_db_path": str(tmp_path / "outbox.db"),
        "app_shell": ["/", "/index.html"],
        "notifications": {
            "title": "ReRide",
            "views": {"chat": "/?view=chat"},
        },
    })
