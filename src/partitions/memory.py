"""In-memory LRU tier kept in front of the durable partition store."""

import logging
import threading
from collections import OrderedDict
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)


class HotEntryCache:
    """LRU of recently read or written entries, keyed by (partition, key)."""

    def __init__(self, maxsize: int = 50):
        """
        Args:
            maxsize: Maximum number of entries held in memory. 0 disables the tier.
        """
        self.cache: "OrderedDict[Tuple[str, str], Any]" = OrderedDict()
        self.maxsize = maxsize
        self.hits = 0
        self.misses = 0
        self._lock = threading.Lock()
        logger.debug(f"HotEntryCache initialized: maxsize={maxsize}")

    def get(self, partition: str, key: str) -> Optional[Any]:
        with self._lock:
            slot = (partition, key)
            if slot in self.cache:
                self.hits += 1
                self.cache.move_to_end(slot)
                return self.cache[slot]
            self.misses += 1
            return None

    def put(self, partition: str, key: str, value: Any) -> None:
        if self.maxsize <= 0:
            return
        with self._lock:
            slot = (partition, key)
            if slot in self.cache:
                self.cache.move_to_end(slot)
            self.cache[slot] = value

            if len(self.cache) > self.maxsize:
                evicted = self.cache.popitem(last=False)[0]
                logger.debug("Hot tier EVICT: %s %s", *evicted)

    def discard(self, partition: str, key: str) -> None:
        with self._lock:
            self.cache.pop((partition, key), None)

    def drop_partition(self, partition: str) -> None:
        with self._lock:
            for slot in [s for s in self.cache if s[0] == partition]:
                del self.cache[slot]

    def clear(self) -> None:
        with self._lock:
            self.cache.clear()

    def get_stats(self) -> dict:
        total = self.hits + self.misses
        hit_rate = (self.hits / total * 100) if total > 0 else 0
        return {
            "size": len(self.cache),
            "maxsize": self.maxsize,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": f"{hit_rate:.1f}%",
        }

    def __len__(self) -> int:
        return len(self.cache)

    def __contains__(self, slot: Tuple[str, str]) -> bool:
        return slot in self.cache
