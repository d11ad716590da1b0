"""
Network fetcher: the only place the proxy talks to the origin.

Every call carries a bounded timeout. Connection errors and timeouts are
raised as NetworkFailure so the strategies can run their fallback chain;
HTTP error statuses are NOT failures here, they come back as responses.
"""

import logging
from typing import Optional
from urllib.parse import urljoin

import requests
from requests.structures import CaseInsensitiveDict

from .messages import ProxyRequest, ProxyResponse

logger = logging.getLogger(__name__)

# Hop-by-hop headers and headers invalidated by requests' transparent decoding
REQUEST_SKIP_HEADERS = {"host", "connection", "content-length", "transfer-encoding", "keep-alive"}
RESPONSE_SKIP_HEADERS = {"content-encoding", "content-length", "transfer-encoding", "connection", "keep-alive"}


class NetworkFailure(Exception):
    """The origin could not be reached or did not answer in time."""


class NetworkFetcher:
    """requests-backed fetcher with a pooled session."""

    DEFAULT_TIMEOUT = 10.0

    def __init__(self, origin: str, timeout: float = None, session: Optional[requests.Session] = None):
        self.origin = origin.rstrip("/")
        self.timeout = timeout if timeout is not None else self.DEFAULT_TIMEOUT
        self.session = session or requests.Session()

    def resolve(self, url: str) -> str:
        """Absolute URLs pass through; paths are resolved against the origin."""
        if url.startswith(("http://", "https://")):
            return url
        return urljoin(self.origin + "/", url.lstrip("/"))

    def __call__(self, request: ProxyRequest) -> ProxyResponse:
        return self.fetch(request)

    def fetch(self, request: ProxyRequest) -> ProxyResponse:
        url = self.resolve(request.url)
        headers = {
            k: v for k, v in request.headers.items()
            if k.lower() not in REQUEST_SKIP_HEADERS
        }

        try:
            upstream = self.session.request(
                method=request.method,
                url=url,
                headers=headers,
                data=request.body,
                timeout=self.timeout,
                allow_redirects=False,
            )
        except requests.Timeout as e:
            logger.warning("Fetch timeout after %ss: %s %s", self.timeout, request.method, url)
            raise NetworkFailure(f"timeout: {url}") from e
        except requests.RequestException as e:
            logger.warning("Fetch failed: %s %s (%s)", request.method, url, e)
            raise NetworkFailure(str(e)) from e

        response_headers = CaseInsensitiveDict({
            k: v for k, v in upstream.headers.items()
            if k.lower() not in RESPONSE_SKIP_HEADERS
        })
        return ProxyResponse(
            status=upstream.status_code,
            headers=response_headers,
            body=upstream.content or b"",
            reason=upstream.reason or "",
        )

    def close(self) -> None:
        self.session.close()
