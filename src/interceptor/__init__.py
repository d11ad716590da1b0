"""
Interceptor
Request classification, fetch strategies, control channel and the local
listener. Import ``interceptor.proxy.OfflineProxy`` for the wired instance.
"""

from .fetcher import NetworkFailure, NetworkFetcher
from .messages import ProxyRequest, ProxyResponse
from .rules import Classification, RequestClassifier, Strategy

__all__ = [
    'NetworkFailure', 'NetworkFetcher',
    'ProxyRequest', 'ProxyResponse',
    'Classification', 'RequestClassifier', 'Strategy',
]
