"""
Fetch strategies executed by the router.

cache-first    fresh hit wins, else network, else stale entry, else 503
network-first  network wins, else cached entry, else root document / JSON 503

Successful (2xx) GET responses are stored before they are returned. HEAD is
answered from an existing GET entry but never written.
Error responses are returned to the caller but never stored.

Two concurrent misses for one key may both fetch and both write. The later
write wins; keys are not locked individually.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Callable, Optional, Sequence

from requests.structures import CaseInsensitiveDict

from partitions.store import CacheEntry, Partition, PartitionStore

from .fetcher import NetworkFailure
from .messages import (
    CACHE_DATE_HEADER,
    ProxyRequest,
    ProxyResponse,
    offline_response,
    unavailable_json,
)

logger = logging.getLogger(__name__)

Fetch = Callable[[ProxyRequest], ProxyResponse]

ROOT_DOCUMENT = "/"


def entry_to_response(entry: CacheEntry, source: str) -> ProxyResponse:
    headers = CaseInsensitiveDict(entry.headers)
    headers.pop(CACHE_DATE_HEADER, None)
    status = int(headers.pop("X-Proxy-Status", 200))
    return ProxyResponse(status=status, headers=headers, body=entry.body).with_source(source)


def response_to_entry(key: str, response: ProxyResponse, now: float, partition: Partition) -> CacheEntry:
    headers = dict(response.headers)
    headers[CACHE_DATE_HEADER] = str(int(now * 1000))
    if response.status != 200:
        headers["X-Proxy-Status"] = str(response.status)
    return CacheEntry(
        key=key,
        body=response.body,
        headers=headers,
        inserted_at=now,
        partition=partition.name,
    )


class StrategyExecutor:
    def __init__(self, store: PartitionStore, fetch: Fetch) -> None:
        self._store = store
        self._fetch = fetch

    def store_response(self, partition: Partition, key: str, response: ProxyResponse) -> bool:
        """Write a network response. Store errors are logged, never raised."""
        entry = response_to_entry(key, response, self._store.now(), partition)
        try:
            return self._store.put(partition, key, entry)
        except sqlite3.Error as e:
            logger.warning("Failed to cache %s in %s: %s", key, partition.name, e)
            return False

    @staticmethod
    def _storable(request: ProxyRequest, response: ProxyResponse) -> bool:
        return response.ok and request.method == "GET"

    def cache_first(self, request: ProxyRequest, partition: Partition) -> ProxyResponse:
        key = request.cache_key()
        cached = self._store.get(partition, key)
        if cached is not None and not self._store.is_stale(cached, partition):
            return entry_to_response(cached, "cache")

        try:
            response = self._fetch(request)
        except NetworkFailure as e:
            logger.warning("Cache-first network failure for %s: %s", key, e)
            if cached is not None:
                return entry_to_response(cached, "stale-cache")
            return offline_response().with_source("synthetic")

        if self._storable(request, response):
            self.store_response(partition, key, response)
        return response.with_source("network")

    def network_first(
        self,
        request: ProxyRequest,
        partition: Partition,
        document: bool = False,
        api: bool = False,
        root_partitions: Sequence[Partition] = (),
    ) -> ProxyResponse:
        key = request.cache_key()
        try:
            response = self._fetch(request)
        except NetworkFailure as e:
            logger.info("Network failed for %s, trying cache: %s", key, e)
            return self._offline_fallback(request, partition, document, api, root_partitions)

        if response.ok:
            if self._storable(request, response):
                self.store_response(partition, key, response)
            return response.with_source("network")

        cached = self._store.get(partition, key)
        if cached is not None:
            logger.info("Origin answered %d for %s, serving cached copy", response.status, key)
            return entry_to_response(cached, "cache")
        return response.with_source("network")

    def _offline_fallback(
        self,
        request: ProxyRequest,
        partition: Partition,
        document: bool,
        api: bool,
        root_partitions: Sequence[Partition],
    ) -> ProxyResponse:
        cached = self._store.get(partition, request.cache_key())
        if cached is not None:
            return entry_to_response(cached, "cache")

        if document:
            root = self._find_root(request, [*root_partitions, partition])
            if root is not None:
                return entry_to_response(root, "fallback")

        if api:
            return unavailable_json().with_source("synthetic")

        return offline_response().with_source("synthetic")

    def _find_root(self, request: ProxyRequest, partitions: Sequence[Partition]) -> Optional[CacheEntry]:
        keys = [ROOT_DOCUMENT]
        if request.url.startswith(("http://", "https://")):
            scheme, rest = request.url.split("://", 1)
            keys.insert(0, f"{scheme}://{rest.split('/', 1)[0]}/")
        for part in partitions:
            for key in keys:
                entry = self._store.get(part, key)
                if entry is not None:
                    return entry
        return None
