"""Strategy routing: classification → partition → fetch strategy."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from outbox.queue import MutationQueue
from partitions.store import PartitionId, PartitionSet, PartitionStore

from .fetcher import NetworkFailure
from .messages import (
    QUEUED_HEADER,
    ProxyRequest,
    ProxyResponse,
    offline_response,
    unavailable_json,
)
from .rules import Classification, RequestClassifier, Strategy
from .strategies import StrategyExecutor

logger = logging.getLogger(__name__)


@dataclass
class RoutedResponse:
    response: ProxyResponse
    classification: Classification
    mutation_id: Optional[str] = None


class StrategyRouter:
    def __init__(
        self,
        classifier: RequestClassifier,
        partitions: PartitionSet,
        store: PartitionStore,
        fetch: Callable[[ProxyRequest], ProxyResponse],
        queue: Optional[MutationQueue] = None,
    ) -> None:
        self._classifier = classifier
        self._partitions = partitions
        self._fetch = fetch
        self._queue = queue
        self._executor = StrategyExecutor(store, fetch)

    @property
    def partitions(self) -> PartitionSet:
        return self._partitions

    def route(self, request: ProxyRequest) -> ProxyResponse:
        return self.dispatch(request).response

    def dispatch(self, request: ProxyRequest) -> RoutedResponse:
        classification = self._classifier.classify(request)

        if classification.bypass:
            return self._pass_through(request, classification)

        partition = self._partitions[classification.partition]
        if classification.strategy == Strategy.CACHE_FIRST:
            response = self._executor.cache_first(request, partition)
        else:
            response = self._executor.network_first(
                request,
                partition,
                document=classification.rule == "document" or request.accepts_html,
                api=self._classifier.is_api(request),
                root_partitions=(self._partitions[PartitionId.STATIC],),
            )
        return RoutedResponse(response, classification)

    def _pass_through(self, request: ProxyRequest, classification: Classification) -> RoutedResponse:
        try:
            return RoutedResponse(self._fetch(request).with_source("passthrough"), classification)
        except NetworkFailure as e:
            error = str(e)

        if request.is_safe or self._classifier.is_excluded(request):
            return RoutedResponse(offline_response().with_source("synthetic"), classification)
        if self._queue is None:
            logger.warning("Offline and no queue configured, dropping %s %s", request.method, request.url)
            return RoutedResponse(offline_response().with_source("synthetic"), classification)

        mutation = self._queue.enqueue(
            request.method, request.url, dict(request.headers), request.body,
        )
        logger.info("Offline: %s %s queued (%s): %s", request.method, request.url, mutation.id, error)
        response = unavailable_json({"queued": True, "mutation_id": mutation.id})
        response.headers[QUEUED_HEADER] = mutation.id
        return RoutedResponse(response.with_source("synthetic"), classification, mutation.id)
