"""
Cache Management API

Provides endpoints for cache monitoring and manual operations.

Endpoints:
- Health check for monitoring/alerting
- Statistics for dashboard insights
- Manual invalidation for debugging
- Warming trigger
"""

import logging
from datetime import datetime
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.dependencies import get_services
from velumx.cache.invalidation import InvalidationResult
from velumx.services.container import ServiceContainer


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/cache", tags=["Cache Management"])


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class CacheHealthResponse(BaseModel):
    """Cache health check response."""
    status: str = Field(..., description="healthy, degraded or unhealthy")
    backend: str = Field(..., description="Cache backend type")
    enabled: bool
    latency_ms: float
    checks: Dict[str, bool]
    issues: List[Dict[str, Any]] = []
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class CacheStatsResponse(BaseModel):
    """Cache statistics response."""
    enabled: bool
    hits: int
    misses: int
    hit_rate_percent: float
    productions: int
    producer_errors: int
    store_read_errors: int
    store_write_errors: int
    invalidations: int
    stale_writes_skipped: int
    single_flight: Dict[str, int]
    store: Dict[str, Any]


class InvalidationResponse(BaseModel):
    """Cache invalidation response."""
    success: bool
    keys_invalidated: int
    duration_ms: float
    errors: List[str] = []


def _invalidation_response(result: InvalidationResult) -> InvalidationResponse:
    return InvalidationResponse(
        success=result.success,
        keys_invalidated=result.keys_invalidated,
        duration_ms=result.duration_ms,
        errors=result.errors,
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/health", response_model=CacheHealthResponse)
async def cache_health_check(services: ServiceContainer = Depends(get_services)):
    """
    Check cache infrastructure health.

    An unreachable store is reported as degraded: requests still succeed,
    they just bypass the cache.
    """
    health = await services.monitor.health_check()
    return CacheHealthResponse(
        status=health.status.value,
        backend=services.cache_config.backend,
        enabled=services.cache.enabled,
        latency_ms=health.latency_ms,
        checks=health.checks,
        issues=health.issues,
        timestamp=health.timestamp,
    )


@router.get("/stats", response_model=CacheStatsResponse)
async def get_cache_stats(services: ServiceContainer = Depends(get_services)):
    """
    Get current cache statistics.

    Note: Stats are reset on application restart.
    """
    return CacheStatsResponse(**services.cache.get_stats())


@router.get("/summary")
async def get_cache_summary(services: ServiceContainer = Depends(get_services)):
    return await services.monitor.get_summary()


@router.post("/invalidate/pool/{pool_id}", response_model=InvalidationResponse)
async def invalidate_pool_cache(pool_id: str, services: ServiceContainer = Depends(get_services)):
    """Invalidate reserves, analytics, metadata and history of one pool."""
    result = await services.invalidator.invalidate_pool(pool_id)
    return _invalidation_response(result)


@router.post("/invalidate/user/{address}", response_model=InvalidationResponse)
async def invalidate_user_cache(address: str, services: ServiceContainer = Depends(get_services)):
    """Invalidate positions, portfolio, balances and fees of one user."""
    result = await services.invalidator.invalidate_user(address)
    return _invalidation_response(result)


@router.post("/invalidate/all", response_model=InvalidationResponse)
async def invalidate_all_cache(services: ServiceContainer = Depends(get_services)):
    """
    Clear the whole cache namespace.

    WARNING: Every dashboard view recomputes from upstream afterwards.
    """
    logger.warning("Full cache invalidation requested")
    result = await services.invalidator.invalidate_all()
    return _invalidation_response(result)


@router.post("/warm")
async def warm_cache(services: ServiceContainer = Depends(get_services)):
    """Warm pool list, metadata and analytics now."""
    results = await services.warmer.warm_pools()
    return {
        "pools": len(results),
        "warmed": sum(1 for r in results.values() if all(r.values())),
        "results": results,
    }
