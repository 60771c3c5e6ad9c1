"""
Read-Through Cache

with_cache() is the one entry point services use for cached computations:

    analytics = await cache.with_cache(
        key=policy.key(pool_id=pool_id),
        producer=lambda: self._calculate(pool_id),
        ttl=policy.ttl_seconds,
        model=PoolAnalytics,
    )

Flow:
1. Look the key up in the store. A hit is returned as-is.
2. A miss, or any store failure, falls through to the producer. The cache
   is fail-open: an unreachable store costs latency, never correctness.
3. Concurrent misses for the same key share one producer run.
4. The produced value is written back; a failed write is logged and the
   value is still returned. A key invalidated while its value was being
   computed or written is left empty.
5. Producer errors propagate to every waiting caller and are never cached.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar

from pydantic import TypeAdapter

from velumx.cache.singleflight import SingleFlight
from velumx.cache.store import CacheStore, CacheWriteFailed


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ReadThroughStats:
    """Counters for the read-through layer."""
    hits: int = 0
    misses: int = 0
    productions: int = 0
    producer_errors: int = 0
    store_read_errors: int = 0
    store_write_errors: int = 0
    invalidations: int = 0
    stale_writes_skipped: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class ReadThroughCache:
    """
    Memoizes async producers in a CacheStore with per-key single-flight.

    When `enabled` is False the store is never touched but concurrent
    calls are still coalesced.
    """

    def __init__(
        self,
        store: CacheStore,
        enabled: bool = True,
        flight: Optional[SingleFlight] = None,
    ):
        self.store = store
        self.enabled = enabled
        self.flight = flight or SingleFlight()
        self._stats = ReadThroughStats()
        self._adapters: Dict[Any, TypeAdapter] = {}

    def _adapter(self, model: Any) -> TypeAdapter:
        adapter = self._adapters.get(model)
        if adapter is None:
            adapter = TypeAdapter(model)
            self._adapters[model] = adapter
        return adapter

    def _encode(self, value: Any, model: Optional[Type]) -> Any:
        if model is None:
            return value
        return self._adapter(model).dump_python(value, mode="json")

    def _decode(self, raw: Any, model: Optional[Type]) -> Any:
        if model is None:
            return raw
        return self._adapter(model).validate_python(raw)

    # =========================================================================
    # Core Operations
    # =========================================================================

    async def with_cache(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl: int,
        model: Optional[Type[T]] = None,
    ) -> T:
        """
        Return the cached value for key, computing it with producer on a miss.

        Args:
            key: Fully built cache key (see CachePolicy.key)
            producer: Zero-arg coroutine function computing the value
            ttl: Freshness window in seconds
            model: Type of the value; used to convert to and from the
                JSON form held by the store. Omit for plain JSON values.
        """
        if self.enabled:
            cached = await self._read(key, model)
            if cached is not None:
                return cached

        return await self.flight.do(
            key, lambda: self._produce_and_store(key, producer, ttl, model)
        )

    async def _read(self, key: str, model: Optional[Type]) -> Optional[Any]:
        try:
            raw = await self.store.get(key)
        except Exception as e:
            self._stats.store_read_errors += 1
            self._stats.misses += 1
            logger.warning(f"Cache read failed for {key}, treating as miss: {e}")
            return None

        if raw is None:
            self._stats.misses += 1
            logger.debug(f"Cache miss: {key}")
            return None

        try:
            value = self._decode(raw, model)
        except ValueError as e:
            # pydantic ValidationError; e.g. entry written by an older model
            self._stats.store_read_errors += 1
            self._stats.misses += 1
            logger.warning(f"Discarding undecodable cache entry {key}: {e}")
            return None

        self._stats.hits += 1
        logger.debug(f"Cache hit: {key}")
        return value

    async def _produce_and_store(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl: int,
        model: Optional[Type],
    ) -> T:
        start = time.monotonic()
        self._stats.productions += 1
        try:
            value = await producer()
        except Exception:
            self._stats.producer_errors += 1
            raise

        logger.info(
            f"Computed {key} in {(time.monotonic() - start) * 1000:.1f}ms"
        )

        if not self.enabled:
            return value

        if not self.flight.is_current(key, asyncio.current_task()):
            # Invalidated while computing; the value may predate the change
            self._stats.stale_writes_skipped += 1
            logger.info(f"Skipping cache write for invalidated key {key}")
            return value

        try:
            await self.store.set(key, self._encode(value, model), ttl)
        except Exception as e:
            self._stats.store_write_errors += 1
            failure = CacheWriteFailed(f"{key}: {e}")
            logger.warning(f"Cache write failed, returning uncached value: {failure}")
            return value

        if not self.flight.is_current(key, asyncio.current_task()):
            # Invalidated during the write; its delete may have reached the store first
            self._stats.stale_writes_skipped += 1
            logger.info(f"Removing cache write overtaken by invalidation of {key}")
            try:
                await self.store.delete(key)
            except Exception as e:
                self._stats.store_write_errors += 1
                logger.warning(f"Could not remove stale entry {key}, it expires on TTL: {e}")

        return value

    # =========================================================================
    # Invalidation
    # =========================================================================

    async def invalidate(self, key: str) -> bool:
        """
        Remove key from the cache and detach any computation running for it.

        Returns False if the store could not be reached; the entry then
        expires on its TTL.
        """
        self._stats.invalidations += 1
        self.flight.forget(key)
        try:
            await self.store.delete(key)
        except Exception as e:
            self._stats.store_write_errors += 1
            logger.warning(f"Cache invalidation failed for {key}: {e}")
            return False
        logger.debug(f"Invalidated {key}")
        return True

    async def invalidate_pattern(self, pattern: str) -> int:
        """Remove every key matching a glob. Returns count, -1 if the store failed."""
        self._stats.invalidations += 1
        self.flight.forget_pattern(pattern)
        try:
            return await self.store.delete_pattern(pattern)
        except Exception as e:
            self._stats.store_write_errors += 1
            logger.warning(f"Cache pattern invalidation failed for {pattern}: {e}")
            return -1

    async def clear(self) -> int:
        self._stats.invalidations += 1
        self.flight.forget_all()
        try:
            return await self.store.clear()
        except Exception as e:
            self._stats.store_write_errors += 1
            logger.warning(f"Cache clear failed: {e}")
            return -1

    # =========================================================================
    # Statistics and Health
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "hit_rate_percent": round(self._stats.hit_rate * 100, 2),
            "productions": self._stats.productions,
            "producer_errors": self._stats.producer_errors,
            "store_read_errors": self._stats.store_read_errors,
            "store_write_errors": self._stats.store_write_errors,
            "invalidations": self._stats.invalidations,
            "stale_writes_skipped": self._stats.stale_writes_skipped,
            "single_flight": self.flight.get_stats(),
            "store": self.store.get_stats(),
        }

    async def health_check(self) -> Dict[str, Any]:
        try:
            result = await self.store.health_check()
        except Exception as e:
            result = {"healthy": False, "status": "error", "error": str(e)}
        result["enabled"] = self.enabled
        return result
