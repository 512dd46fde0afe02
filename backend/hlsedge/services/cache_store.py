"""
HLS Edge Proxy — Edge Cache Store Interface
=============================================

What:  Abstract key-value store behind the edge cache, plus the default
       in-process implementation.
How:   Implementations offer atomic per-key get/put. Entry lifetime is taken
       from the max-age of the Cache-Control stored with the entry; anything
       beyond that (size bounds, eviction order) is the store's own business.

Implementations:
    - InMemoryCacheStore: per-process OrderedDict with lazy expiry and an
      entry-count bound (oldest evicted first). Default.
    - (Future) a shared store, e.g. Redis SET with EX=<max-age>, so several
      workers share hits.
"""

import logging
import re
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable, Optional, Tuple

from hlsedge.schemas.proxy import CacheEntry

logger = logging.getLogger(__name__)

_MAX_AGE_RE = re.compile(r"(?:^|,)\s*max-age\s*=\s*(\d+)", re.IGNORECASE)


def entry_ttl(entry: CacheEntry) -> int:
    """
    TTL in seconds from the entry's stored Cache-Control.

    Returns 0 (do not store) for missing max-age or for no-store / private.
    """
    cache_control = entry.headers.get("cache-control", "")
    lowered = cache_control.lower()
    if "no-store" in lowered or "private" in lowered:
        return 0
    match = _MAX_AGE_RE.search(cache_control)
    return int(match.group(1)) if match else 0


class CacheStore(ABC):
    """
    Contract for edge cache backends.

    Both methods may raise CacheStoreError (or anything else); the gateway
    treats every store failure as a miss / a skipped write.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for `key`, or None when absent or expired."""
        ...

    @abstractmethod
    async def put(self, key: str, entry: CacheEntry) -> None:
        """Store `entry` under `key` for entry_ttl(entry) seconds."""
        ...


class InMemoryCacheStore(CacheStore):
    """
    In-process TTL store.

    Concurrency:
        get/put never await, so each runs atomically on the event loop.
        Two concurrent misses on one key both write; the later write wins.
    """

    def __init__(self, max_entries: int = 512, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, CacheEntry]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[CacheEntry]:
        item = self._entries.get(key)
        if item is None:
            return None
        expires_at, entry = item
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return entry

    async def put(self, key: str, entry: CacheEntry) -> None:
        ttl = entry_ttl(entry)
        if ttl <= 0:
            return
        self._entries[key] = (self._clock() + ttl, entry)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted edge cache entry %s", evicted)
