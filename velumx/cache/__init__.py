"""
VelumX Caching Layer

Read-through caching for every expensive, upstream-derived computation:

- CacheStore: backend contract (RedisCache in production, InMemoryCache
  for development and tests)
- ReadThroughCache: with_cache() memoizes a producer under a policy key,
  fail-open when the store is down
- SingleFlight: concurrent misses for one key share a single producer run
- CacheInvalidator: event-driven, narrowly scoped invalidation
- CacheMonitor: health checks and metrics
- CacheWarmer: keeps pool views hot

Usage:
    policy = config.policy(CacheKey.POOL_ANALYTICS)
    analytics = await cache.with_cache(
        policy.key(pool_id=pool_id), produce, policy.ttl_seconds, PoolAnalytics,
    )

    # Invalidate on changes
    await invalidator.handle_event(LiquidityEvent.SWAP_EXECUTED, pool_id=pool_id)
"""

from velumx.cache.config import (
    CacheConfig,
    CacheKey,
    CachePolicy,
    CacheTTL,
    get_cache_config,
    load_cache_config,
)
from velumx.cache.store import (
    CacheError,
    CacheStore,
    CacheUnavailableError,
    CacheWriteFailed,
)
from velumx.cache.memory_cache import InMemoryCache
from velumx.cache.redis_cache import CircuitBreaker, RedisCache
from velumx.cache.compression import CacheCompressor
from velumx.cache.singleflight import SingleFlight
from velumx.cache.read_through import ReadThroughCache
from velumx.cache.invalidation import (
    CacheInvalidator,
    InvalidationResult,
    LiquidityEvent,
)
from velumx.cache.monitoring import CacheMetrics, CacheMonitor, HealthStatus
from velumx.cache.warming import CacheWarmer

__all__ = [
    # Config
    "CacheConfig",
    "CacheKey",
    "CachePolicy",
    "CacheTTL",
    "get_cache_config",
    "load_cache_config",
    # Stores
    "CacheError",
    "CacheStore",
    "CacheUnavailableError",
    "CacheWriteFailed",
    "InMemoryCache",
    "RedisCache",
    "CircuitBreaker",
    "CacheCompressor",
    # Read-through
    "SingleFlight",
    "ReadThroughCache",
    # Invalidation
    "CacheInvalidator",
    "InvalidationResult",
    "LiquidityEvent",
    # Monitoring
    "CacheMonitor",
    "CacheMetrics",
    "HealthStatus",
    # Warming
    "CacheWarmer",
]
