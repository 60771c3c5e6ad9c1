"""
Redis Cache Store

Shared cache backend for multi-process deployments. Values are JSON,
compressed past a size threshold, and live under the configured
namespace so several environments can share one Redis.

A circuit breaker sits in front of every call: once Redis has failed
`threshold` times in a row, calls are refused locally until the cool-down
has passed, then a single trial call decides whether to close it again.

Every transport failure surfaces as CacheUnavailableError; callers never
see redis exceptions.
"""

import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, Callable, Dict, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from velumx.cache.compression import (
    CacheCompressor,
    deserialize_value,
    serialize_value,
)
from velumx.cache.config import CacheConfig, get_cache_config
from velumx.cache.store import CacheError, CacheStore, CacheUnavailableError


logger = logging.getLogger(__name__)

SCAN_COUNT = 100
DELETE_BATCH = 500
LATENCY_WINDOW = 100


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Consecutive-failure breaker.

    CLOSED counts failures; at `threshold` it goes OPEN and refuses calls
    for `timeout` seconds. After that one trial call is let through (HALF_OPEN):
    success closes the breaker, failure reopens it for another timeout.
    """

    def __init__(self, threshold: int = 5, timeout: int = 30, clock: Callable[[], float] = time.monotonic):
        self.threshold = threshold
        self.timeout = timeout
        self.state = BreakerState.CLOSED
        self.failures = 0
        self.opened_at = 0.0
        self._clock = clock
        self._trial_running = False

    @property
    def is_open(self) -> bool:
        return self.state == BreakerState.OPEN

    def allow(self) -> bool:
        if self.state == BreakerState.CLOSED:
            return True
        if self.state == BreakerState.OPEN:
            if self._clock() - self.opened_at < self.timeout:
                return False
            self.state = BreakerState.HALF_OPEN
            logger.info("Circuit breaker half-open, trying Redis again")
        # Half-open: only the first caller gets through
        if self._trial_running:
            return False
        self._trial_running = True
        return True

    def succeeded(self):
        if self.state != BreakerState.CLOSED:
            logger.info("Circuit breaker closed, Redis reachable again")
        self.state = BreakerState.CLOSED
        self.failures = 0
        self._trial_running = False

    def abandon(self):
        """Give up a trial call that ended without a verdict (e.g. cancellation)."""
        self._trial_running = False

    def failed(self):
        self.failures += 1
        self._trial_running = False
        if self.state == BreakerState.HALF_OPEN or self.failures >= self.threshold:
            if self.state != BreakerState.OPEN:
                logger.warning(
                    f"Circuit breaker opened after {self.failures} failures, "
                    f"retrying in {self.timeout}s"
                )
            self.state = BreakerState.OPEN
            self.opened_at = self._clock()


class RedisCache(CacheStore):
    """
    Redis-backed cache store.

    Pass `redis` to reuse an existing client (tests pass a mock); otherwise
    a connection pool is created from the config on first use.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        redis: Optional[Redis] = None,
    ):
        self.config = config or get_cache_config()
        self.namespace = self.config.namespace
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = redis
        self._compressor = CacheCompressor(
            enabled=self.config.compression_enabled,
            threshold=self.config.compression_threshold,
        )
        self._breaker: Optional[CircuitBreaker] = None
        if self.config.circuit_breaker_enabled:
            self._breaker = CircuitBreaker(
                threshold=self.config.circuit_breaker_threshold,
                timeout=self.config.circuit_breaker_timeout,
            )

        self.hits = 0
        self.misses = 0
        self.errors = 0
        self.bytes_saved = 0
        self._latencies = deque(maxlen=LATENCY_WINDOW)

    async def initialize(self):
        if self._redis is not None:
            return

        self._pool = ConnectionPool.from_url(
            self.config.redis_url,
            max_connections=self.config.redis_max_connections,
            socket_timeout=self.config.redis_socket_timeout,
            socket_connect_timeout=self.config.redis_connect_timeout,
        )
        self._redis = Redis(connection_pool=self._pool)
        try:
            await self._redis.ping()
            logger.info(f"Redis cache connected: {self.config.redis_url}")
        except RedisError as e:
            # Calls fail open until Redis comes back
            logger.warning(f"Redis not reachable at startup: {e}")

    async def close(self):
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None
        logger.info("Redis cache closed")

    @asynccontextmanager
    async def _call(self):
        """Guard one Redis round trip with the breaker and error translation."""
        if self._redis is None:
            await self.initialize()
        if self._breaker is not None and not self._breaker.allow():
            raise CacheUnavailableError("Circuit breaker is open")

        started = time.monotonic()
        try:
            yield self._redis
        except RedisError as e:
            self.errors += 1
            if self._breaker is not None:
                self._breaker.failed()
            raise CacheUnavailableError(f"Redis error: {e}") from e
        except BaseException:
            if self._breaker is not None:
                self._breaker.abandon()
            raise

        self._latencies.append(time.monotonic() - started)
        if self._breaker is not None:
            self._breaker.succeeded()

    # =========================================================================
    # Store operations
    # =========================================================================

    async def get(self, key: str) -> Optional[Any]:
        async with self._call() as redis:
            raw = await redis.get(self._make_key(key))

        if raw is None:
            self.misses += 1
            return None
        self.hits += 1

        try:
            return deserialize_value(self._compressor.decompress(raw))
        except ValueError as e:
            self.errors += 1
            raise CacheError(f"Undecodable entry at {key}: {e}") from e

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        payload, compression = self._compressor.compress(serialize_value(value))
        if compression is not None:
            self.bytes_saved += compression.original_size - compression.compressed_size

        async with self._call() as redis:
            await redis.set(self._make_key(key), payload, ex=ttl_seconds)

    async def delete(self, key: str) -> bool:
        async with self._call() as redis:
            removed = await redis.delete(self._make_key(key))
        return removed > 0

    async def delete_pattern(self, pattern: str) -> int:
        match = self._make_key(pattern)
        deleted = 0
        async with self._call() as redis:
            batch = []
            async for found in redis.scan_iter(match=match, count=SCAN_COUNT):
                batch.append(found)
                if len(batch) == DELETE_BATCH:
                    deleted += await redis.delete(*batch)
                    batch.clear()
            if batch:
                deleted += await redis.delete(*batch)

        if deleted:
            logger.info(f"Deleted {deleted} Redis keys matching {match}")
        return deleted

    async def clear(self) -> int:
        return await self.delete_pattern("*")

    # =========================================================================
    # Stats and health
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        avg_latency = sum(self._latencies) / len(self._latencies) if self._latencies else 0.0
        return {
            "backend": "redis",
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "hit_rate_percent": round(self.hits / lookups * 100, 2) if lookups else 0.0,
            "avg_latency_ms": round(avg_latency * 1000, 2),
            "bytes_saved_compression": self.bytes_saved,
            "circuit_breaker_open": self._breaker.is_open if self._breaker else False,
        }

    async def health_check(self) -> Dict[str, Any]:
        started = time.monotonic()
        try:
            async with self._call() as redis:
                await redis.ping()
        except CacheError as e:
            return {"healthy": False, "status": "error", "error": str(e), "stats": self.get_stats()}

        return {
            "healthy": True,
            "status": "connected",
            "latency_ms": round((time.monotonic() - started) * 1000, 2),
            "stats": self.get_stats(),
        }
