"""
In-Memory Cache

Process-local TTL store used for development and tests, and as the
default backend when no Redis is configured. Expired entries are dropped
lazily on read and swept periodically by a background task.
"""

import asyncio
import copy
import fnmatch
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from velumx.cache.store import CacheStore


logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class InMemoryCache(CacheStore):
    """
    Dict-backed cache store.

    The clock is injectable so expiry can be tested without sleeping.
    Values are deep-copied on the way in and out so callers never share
    mutable state through the cache.
    """

    def __init__(
        self,
        namespace: str = "",
        clock: Callable[[], float] = time.monotonic,
        cleanup_interval: int = 60,
    ):
        self.namespace = namespace
        self._clock = clock
        self._cleanup_interval = cleanup_interval
        self._entries: Dict[str, CacheEntry] = {}
        self._cleanup_task: Optional[asyncio.Task] = None
        self.hits = 0
        self.misses = 0

    async def get(self, key: str) -> Optional[Any]:
        full_key = self._make_key(key)
        entry = self._entries.get(full_key)
        if entry is None:
            self.misses += 1
            return None
        if entry.is_expired(self._clock()):
            del self._entries[full_key]
            self.misses += 1
            return None
        self.hits += 1
        return copy.deepcopy(entry.value)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries[self._make_key(key)] = CacheEntry(
            value=copy.deepcopy(value),
            expires_at=self._clock() + ttl_seconds,
        )

    async def delete(self, key: str) -> bool:
        return self._entries.pop(self._make_key(key), None) is not None

    async def delete_pattern(self, pattern: str) -> int:
        full_pattern = self._make_key(pattern)
        matched = [k for k in self._entries if fnmatch.fnmatchcase(k, full_pattern)]
        for k in matched:
            del self._entries[k]
        if matched:
            logger.info(f"Deleted {len(matched)} keys matching {pattern}")
        return len(matched)

    async def clear(self) -> int:
        return await self.delete_pattern("*")

    def purge_expired(self) -> int:
        """Remove expired entries. Returns count removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug(f"Purged {len(expired)} expired cache entries")
        return len(expired)

    async def _cleanup_loop(self):
        while True:
            await asyncio.sleep(self._cleanup_interval)
            self.purge_expired()

    async def initialize(self) -> None:
        if self._cleanup_task is None and self._cleanup_interval > 0:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def close(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "backend": "memory",
            "keys": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
        }

    async def health_check(self) -> Dict[str, Any]:
        return {"healthy": True, "status": "memory", "stats": self.get_stats()}
