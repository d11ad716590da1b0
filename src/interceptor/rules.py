#!/usr/bin/env python3
"""
Classification Rules: request shape → resource class

Cascade:
1. Bypass - unsafe methods, non-http schemes, excluded server-only paths
2. Ordered rules, first match wins:
     image     → images partition, cache-first
     static    → static partition, cache-first
     api       → api partition, network-first
     document  → runtime partition, network-first
3. Default - runtime partition, network-first

Pure and synchronous. No I/O.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence

from partitions.store import PartitionId

from .messages import ProxyRequest

logger = logging.getLogger(__name__)


class Strategy(Enum):
    CACHE_FIRST = "cache-first"
    NETWORK_FIRST = "network-first"


IMAGE_PATTERN = re.compile(r"\.(jpg|jpeg|png|gif|webp|svg)$", re.IGNORECASE)
STATIC_PATTERN = re.compile(r"\.(js|css|woff|woff2|ttf|eot)$", re.IGNORECASE)


@dataclass(frozen=True)
class ClassificationRule:
    """One row of the classification table."""
    name: str
    matcher: Callable[[ProxyRequest], bool]
    partition: PartitionId
    strategy: Strategy

    def matches(self, request: ProxyRequest) -> bool:
        return self.matcher(request)


@dataclass(frozen=True)
class Classification:
    """Result of classifying one request."""
    bypass: bool
    rule: str
    partition: Optional[PartitionId]
    strategy: Optional[Strategy]
    reason: str


def path_pattern(pattern: "re.Pattern") -> Callable[[ProxyRequest], bool]:
    return lambda request: bool(pattern.search(request.path))


def path_prefix(prefix: str) -> Callable[[ProxyRequest], bool]:
    return lambda request: request.path.startswith(prefix)


def content_kind(destination: str, accept_html: bool = False) -> Callable[[ProxyRequest], bool]:
    def _match(request: ProxyRequest) -> bool:
        if request.destination == destination:
            return True
        return accept_html and request.accepts_html
    return _match


def any_of(*matchers: Callable[[ProxyRequest], bool]) -> Callable[[ProxyRequest], bool]:
    return lambda request: any(m(request) for m in matchers)


DEFAULT_RULE = ClassificationRule(
    name="default",
    matcher=lambda request: True,
    partition=PartitionId.RUNTIME,
    strategy=Strategy.NETWORK_FIRST,
)


def default_rules(api_prefix: str = "/api/", static_prefix: str = "/assets/") -> List[ClassificationRule]:
    return [
        ClassificationRule(
            name="image",
            matcher=any_of(path_pattern(IMAGE_PATTERN), content_kind("image")),
            partition=PartitionId.IMAGES,
            strategy=Strategy.CACHE_FIRST,
        ),
        ClassificationRule(
            name="static",
            matcher=any_of(path_pattern(STATIC_PATTERN), path_prefix(static_prefix)),
            partition=PartitionId.STATIC,
            strategy=Strategy.CACHE_FIRST,
        ),
        ClassificationRule(
            name="api",
            matcher=path_prefix(api_prefix),
            partition=PartitionId.API,
            strategy=Strategy.NETWORK_FIRST,
        ),
        ClassificationRule(
            name="document",
            matcher=content_kind("document", accept_html=True),
            partition=PartitionId.RUNTIME,
            strategy=Strategy.NETWORK_FIRST,
        ),
    ]


class RequestClassifier:
    """Checks the exclusion list, then walks the ordered rules."""

    def __init__(
        self,
        exclusions: Iterable[str] = (),
        rules: Sequence[ClassificationRule] = None,
        api_prefix: str = "/api/",
    ):
        self.exclusions = tuple(exclusions)
        self.rules = list(rules) if rules is not None else default_rules(api_prefix=api_prefix)
        self.api_prefix = api_prefix

    def is_excluded(self, request: ProxyRequest) -> bool:
        path = request.path
        return any(marker in path for marker in self.exclusions)

    def is_api(self, request: ProxyRequest) -> bool:
        return request.path.startswith(self.api_prefix)

    def classify(self, request: ProxyRequest) -> Classification:
        if not request.is_safe:
            return Classification(True, "bypass", None, None, f"{request.method} is not a safe method")

        if request.scheme and not request.scheme.startswith("http"):
            return Classification(True, "bypass", None, None, f"unsupported scheme {request.scheme}")

        if self.is_excluded(request):
            return Classification(True, "excluded", None, None, "server-only path")

        for rule in self.rules:
            if rule.matches(request):
                return Classification(
                    bypass=False,
                    rule=rule.name,
                    partition=rule.partition,
                    strategy=rule.strategy,
                    reason=f"matched rule: {rule.name}",
                )

        logger.debug("No rule matched %s, using default", request.path)
        return Classification(
            bypass=False,
            rule=DEFAULT_RULE.name,
            partition=DEFAULT_RULE.partition,
            strategy=DEFAULT_RULE.strategy,
            reason="no rule matched",
        )
