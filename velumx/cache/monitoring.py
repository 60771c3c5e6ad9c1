"""
Cache Monitoring

Health checks and metrics for the read-through layer and its store.
The cache is fail-open, so an unreachable store makes the service slower,
not wrong: it is reported as DEGRADED rather than UNHEALTHY.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from velumx.cache.read_through import ReadThroughCache


logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    """Health check status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class CacheMetrics:
    """Point-in-time sample of cache counters."""
    timestamp: datetime
    hits: int
    misses: int
    hit_rate: float
    productions: int
    producer_errors: int
    store_errors: int
    in_flight: int
    requests_coalesced: int
    circuit_breaker_open: bool


@dataclass
class HealthCheckResult:
    """Result of a health check."""
    status: HealthStatus
    latency_ms: float
    checks: Dict[str, bool]
    issues: List[Dict[str, Any]]
    metrics: Optional[CacheMetrics] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)


class CacheMonitor:
    """
    Monitors cache health and performance.

    Checks store connectivity, store latency, hit rate and the Redis
    circuit breaker, and keeps a bounded history of metric samples for
    trend reporting.
    """

    def __init__(
        self,
        cache: ReadThroughCache,
        min_hit_rate: float = 0.5,
        max_latency_ms: float = 50.0,
        max_history: int = 1000,
    ):
        self._cache = cache
        self.min_hit_rate = min_hit_rate
        self.max_latency_ms = max_latency_ms
        self._max_history = max_history
        self._metrics_history: List[CacheMetrics] = []

    async def health_check(self) -> HealthCheckResult:
        start_time = time.monotonic()
        checks: Dict[str, bool] = {}
        issues: List[Dict[str, Any]] = []

        store_health = await self._cache.health_check()
        latency_ms = (time.monotonic() - start_time) * 1000

        # Check 1: Connectivity
        checks["connectivity"] = bool(store_health.get("healthy"))
        if not checks["connectivity"]:
            issues.append({
                "type": "connectivity",
                "severity": "warning",
                "message": f"Cache store unreachable: {store_health.get('error', 'unknown')}",
                "action": "Requests bypass the cache; check the Redis server",
            })

        # Check 2: Latency
        checks["latency"] = latency_ms < self.max_latency_ms
        if checks["connectivity"] and not checks["latency"]:
            issues.append({
                "type": "latency",
                "severity": "warning",
                "message": f"High cache latency: {latency_ms:.2f}ms",
                "threshold": self.max_latency_ms,
                "action": "Check Redis server load and network conditions",
            })

        # Check 3: Hit rate, once there is enough traffic to judge
        stats = self._cache.get_stats()
        hit_rate = stats["hit_rate_percent"] / 100
        lookups = stats["hits"] + stats["misses"]
        checks["hit_rate"] = lookups <= 100 or hit_rate >= self.min_hit_rate
        if not checks["hit_rate"]:
            issues.append({
                "type": "hit_rate",
                "severity": "warning",
                "message": f"Low cache hit rate: {hit_rate * 100:.1f}%",
                "threshold": self.min_hit_rate * 100,
                "action": "Review cache TTLs and warming coverage",
            })

        # Check 4: Circuit breaker
        breaker_open = bool(stats["store"].get("circuit_breaker_open", False))
        checks["circuit_breaker"] = not breaker_open
        if breaker_open:
            issues.append({
                "type": "circuit_breaker",
                "severity": "warning",
                "message": "Circuit breaker is open (cache bypassed)",
                "action": "Investigate Redis connectivity issues",
            })

        if not self._cache.enabled:
            status = HealthStatus.DEGRADED
        elif all(checks.values()):
            status = HealthStatus.HEALTHY
        else:
            status = HealthStatus.DEGRADED

        return HealthCheckResult(
            status=status,
            latency_ms=latency_ms,
            checks=checks,
            issues=issues,
            metrics=self.collect_metrics(),
        )

    def collect_metrics(self) -> CacheMetrics:
        stats = self._cache.get_stats()
        flight = stats["single_flight"]
        metrics = CacheMetrics(
            timestamp=datetime.utcnow(),
            hits=stats["hits"],
            misses=stats["misses"],
            hit_rate=stats["hit_rate_percent"] / 100,
            productions=stats["productions"],
            producer_errors=stats["producer_errors"],
            store_errors=stats["store_read_errors"] + stats["store_write_errors"],
            in_flight=flight["in_flight"],
            requests_coalesced=flight["requests_coalesced"],
            circuit_breaker_open=bool(stats["store"].get("circuit_breaker_open", False)),
        )

        self._metrics_history.append(metrics)
        if len(self._metrics_history) > self._max_history:
            self._metrics_history = self._metrics_history[-self._max_history:]
        return metrics

    def get_metrics_history(
        self,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[CacheMetrics]:
        history = self._metrics_history
        if since:
            history = [m for m in history if m.timestamp >= since]
        return history[-limit:]

    def _hit_rate_trend(self) -> str:
        recent = self.get_metrics_history(
            since=datetime.utcnow() - timedelta(hours=1),
            limit=60,
        )
        if len(recent) < 10:
            return "stable"

        first_half = recent[:len(recent) // 2]
        second_half = recent[len(recent) // 2:]
        first = sum(m.hit_rate for m in first_half) / len(first_half)
        second = sum(m.hit_rate for m in second_half) / len(second_half)
        if second > first + 0.05:
            return "improving"
        if second < first - 0.05:
            return "degrading"
        return "stable"

    async def get_summary(self) -> Dict[str, Any]:
        health = await self.health_check()
        stats = self._cache.get_stats()

        return {
            "health": {
                "status": health.status.value,
                "issues_count": len(health.issues),
                "issues": health.issues,
            },
            "performance": {
                "hit_rate_percent": stats["hit_rate_percent"],
                "hit_rate_trend": self._hit_rate_trend(),
                "productions": stats["productions"],
                "requests_coalesced": stats["single_flight"]["requests_coalesced"],
            },
            "reliability": {
                "producer_errors": stats["producer_errors"],
                "store_read_errors": stats["store_read_errors"],
                "store_write_errors": stats["store_write_errors"],
                "stale_writes_skipped": stats["stale_writes_skipped"],
            },
            "store": stats["store"],
            "timestamp": datetime.utcnow().isoformat(),
        }
