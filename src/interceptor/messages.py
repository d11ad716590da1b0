"""Request/response envelopes passed between the listener, router and fetcher."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional
from urllib.parse import urlsplit

from requests.structures import CaseInsensitiveDict

CACHE_DATE_HEADER = "X-Proxy-Cache-Date"
SOURCE_HEADER = "X-Proxy-Source"
QUEUED_HEADER = "X-Offline-Queued"

SAFE_METHODS = frozenset({"GET", "HEAD"})


@dataclass
class ProxyRequest:
    method: str
    url: str
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    body: Optional[bytes] = None

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if not isinstance(self.headers, CaseInsensitiveDict):
            self.headers = CaseInsensitiveDict(self.headers or {})

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    @property
    def scheme(self) -> str:
        return urlsplit(self.url).scheme

    @property
    def destination(self) -> str:
        """What the caller will do with the response (Fetch metadata)."""
        return self.headers.get("Sec-Fetch-Dest", "").lower()

    @property
    def accepts_html(self) -> bool:
        return "text/html" in self.headers.get("Accept", "")

    @property
    def is_safe(self) -> bool:
        return self.method in SAFE_METHODS

    def cache_key(self) -> str:
        """Entries are matched by URL without fragment, like a browser cache."""
        return self.url.split("#", 1)[0]


@dataclass
class ProxyResponse:
    status: int
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    body: bytes = b""
    reason: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.headers, CaseInsensitiveDict):
            self.headers = CaseInsensitiveDict(self.headers or {})

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def source(self) -> str:
        return self.headers.get(SOURCE_HEADER, "")

    def with_source(self, source: str) -> "ProxyResponse":
        headers = CaseInsensitiveDict(self.headers)
        headers[SOURCE_HEADER] = source
        return ProxyResponse(self.status, headers, self.body, self.reason)

    def json(self):
        return json.loads(self.body.decode("utf-8"))


def offline_response() -> ProxyResponse:
    return ProxyResponse(
        status=503,
        headers={"Content-Type": "text/plain; charset=utf-8"},
        body=b"Offline",
        reason="Service Unavailable",
    )


def unavailable_json(extra: Optional[Mapping[str, object]] = None) -> ProxyResponse:
    payload: Dict[str, object] = {
        "error": "Service unavailable",
        "message": "The service is currently unavailable. Please try again later.",
    }
    payload.update(extra or {})
    return ProxyResponse(
        status=503,
        headers={"Content-Type": "application/json"},
        body=json.dumps(payload).encode("utf-8"),
        reason="Service Unavailable",
    )
