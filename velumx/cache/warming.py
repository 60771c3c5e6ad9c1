"""
Cache Warming Service

Keeps the pool views hot so the first dashboard load after a TTL expiry
does not pay for a full recomputation.

Strategies:
1. Pool list warming: rediscover pools before the list expires
2. Per-pool warming: metadata and analytics, featured pools first
"""

import asyncio
import logging
from typing import Dict, List, Optional

from velumx.exceptions import LiquidityError


logger = logging.getLogger(__name__)


class CacheWarmer:
    """
    Proactive cache warming for the pool views.

    `discovery` and `analytics` are the pool discovery and pool analytics
    services; warming goes through their cached entry points so the
    regular key and TTL policies apply.
    """

    def __init__(self, discovery, analytics, interval_seconds: int = 240, max_pools: int = 20):
        self.discovery = discovery
        self.analytics = analytics
        self.interval_seconds = interval_seconds
        self.max_pools = max_pools
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.last_results: Dict[str, Dict[str, bool]] = {}

    async def warm_pool(self, pool_id: str) -> Dict[str, bool]:
        """
        Warm metadata and analytics for one pool.

        Returns:
            Dict of component -> success status
        """
        results = {}
        for component, warm in (
            ("metadata", self.discovery.get_pool_metadata),
            ("analytics", self.analytics.load_pool_analytics),
        ):
            try:
                await warm(pool_id)
                results[component] = True
            except LiquidityError as e:
                logger.error(f"Failed to warm {component} for {pool_id}: {e.message}")
                results[component] = False
        return results

    async def _pools_to_warm(self) -> List[str]:
        pools = await self.discovery.get_all_pools()
        featured = [p.id for p in pools if self.discovery.is_featured(p)]
        popular = sorted(pools, key=lambda p: p.total_supply, reverse=True)
        ordered = featured + [p.id for p in popular if p.id not in featured]
        return ordered[:self.max_pools]

    async def warm_pools(self) -> Dict[str, Dict[str, bool]]:
        """Warm the pool list and the views of the most relevant pools."""
        try:
            pool_ids = await self._pools_to_warm()
        except LiquidityError as e:
            logger.error(f"Cache warming skipped, pool list unavailable: {e.message}")
            return {}

        results = {}
        for pool_id in pool_ids:
            results[pool_id] = await self.warm_pool(pool_id)

        warmed = sum(1 for r in results.values() if all(r.values()))
        logger.info(f"Cache warming complete: {warmed}/{len(results)} pools")
        self.last_results = results
        return results

    async def start_background_warmer(self):
        """Start the periodic warming task."""
        if self._running:
            logger.warning("Background warmer already running")
            return

        self._running = True

        async def warming_loop():
            while self._running:
                logger.info("Running background cache warming...")
                await self.warm_pools()
                await asyncio.sleep(self.interval_seconds)

        self._task = asyncio.create_task(warming_loop())
        logger.info(f"Background cache warmer started (interval: {self.interval_seconds}s)")

    async def stop_background_warmer(self):
        """Stop background warming task."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Background cache warmer stopped")

    @property
    def running(self) -> bool:
        return self._running
