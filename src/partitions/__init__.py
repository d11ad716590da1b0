"""
Partition Store
Durable, partitioned response cache with per-partition max age,
generation GC and an in-memory hot tier.
"""

from .memory import HotEntryCache
from .store import (
    CacheEntry,
    Partition,
    PartitionId,
    PartitionSet,
    PartitionStore,
    StoreQuotaExceeded,
)

__all__ = [
    'CacheEntry', 'Partition', 'PartitionId', 'PartitionSet',
    'PartitionStore', 'StoreQuotaExceeded', 'HotEntryCache',
]
