"""
Pool Analytics Service

TVL, volume, APR, fee and depth analytics per pool, plus history built
from stored pool snapshots. Analytics are cached per pool; when an
upstream is down a zeroed PoolAnalytics is served instead and not cached.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from velumx.cache.config import CacheConfig, CacheKey
from velumx.cache.read_through import ReadThroughCache
from velumx.database.repository import LiquidityRepository
from velumx.exceptions import PoolNotFoundError, UpstreamError
from velumx.models.liquidity import (
    HistoricalDataPoint,
    Pool,
    PoolAnalytics,
    PoolComparison,
    PoolComparisonEntry,
    PoolSnapshot,
    Timeframe,
)
from velumx.services.metrics import (
    WEEKLY_VOLUME_MULTIPLIER,
    calculate_apr,
    estimate_volume_24h,
    fees_for_volume,
    liquidity_depth,
    pool_tvl,
    price_change_percent,
    risk_level,
)
from velumx.services.pool_discovery import PoolDiscoveryService
from velumx.services.pricing import PriceService
from velumx.utils.config import Settings


logger = logging.getLogger(__name__)

HISTORY_DAYS = 30
METRICS = ("tvl", "volume_24h", "volume_7d", "apr", "fee_earnings_24h")


def _to_data_point(snapshot: PoolSnapshot) -> HistoricalDataPoint:
    return HistoricalDataPoint(
        timestamp=snapshot.timestamp,
        reserve_a=snapshot.reserve_a,
        reserve_b=snapshot.reserve_b,
        total_supply=snapshot.total_supply,
        tvl_usd=snapshot.tvl_usd,
        volume_24h=snapshot.volume_24h,
        price_a=snapshot.price_a,
        price_b=snapshot.price_b,
    )


def _price_before(snapshots: Sequence[PoolSnapshot], cutoff: datetime) -> Optional[float]:
    """Token A price of the latest snapshot taken at or before cutoff."""
    previous = None
    for snapshot in snapshots:
        if snapshot.timestamp > cutoff:
            break
        previous = snapshot.price_a
    return previous


class PoolAnalyticsService:
    def __init__(
        self,
        cache: ReadThroughCache,
        cache_config: CacheConfig,
        settings: Settings,
        discovery: PoolDiscoveryService,
        prices: PriceService,
        repository: LiquidityRepository,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.cache = cache
        self.cache_config = cache_config
        self.settings = settings
        self.discovery = discovery
        self.prices = prices
        self.repository = repository
        self.clock = clock
        self._update_task: Optional[asyncio.Task] = None

    # =========================================================================
    # Analytics
    # =========================================================================

    async def get_pool_analytics(self, pool_id: str) -> PoolAnalytics:
        """
        Cached analytics for a pool.

        Raises:
            PoolNotFoundError: Pool does not exist

        Upstream failures yield PoolAnalytics.empty(pool_id).
        """
        try:
            return await self.load_pool_analytics(pool_id)
        except UpstreamError as e:
            logger.warning(f"Serving empty analytics for {pool_id}: {e.message}")
            return PoolAnalytics.empty(pool_id)

    async def load_pool_analytics(self, pool_id: str) -> PoolAnalytics:
        """Cached analytics; raises UpstreamError instead of defaulting."""
        policy = self.cache_config.policy(CacheKey.POOL_ANALYTICS)
        return await self.cache.with_cache(
            policy.key(pool_id=pool_id),
            lambda: self._calculate_analytics(pool_id),
            policy.ttl_seconds,
            PoolAnalytics,
        )

    async def _calculate_analytics(self, pool_id: str) -> PoolAnalytics:
        pool = await self.discovery.get_pool_by_id(pool_id)
        price_a, price_b = await self._prices_for(pool)
        now = self.clock()

        tvl = pool_tvl(pool, price_a, price_b)
        volume_24h = estimate_volume_24h(pool, tvl)
        snapshots = await self.repository.get_pool_snapshots(
            pool_id, since=now - timedelta(days=HISTORY_DAYS),
        )
        previous_price = _price_before(snapshots, now - timedelta(hours=24))

        return PoolAnalytics(
            pool_id=pool_id,
            tvl=tvl,
            volume_24h=volume_24h,
            volume_7d=volume_24h * WEEKLY_VOLUME_MULTIPLIER,
            apr=calculate_apr(tvl, volume_24h),
            fee_earnings_24h=fees_for_volume(volume_24h),
            price_change_24h=price_change_percent(price_a, previous_price),
            liquidity_depth=liquidity_depth(pool),
            historical_data=[_to_data_point(s) for s in snapshots],
        )

    async def _prices_for(self, pool: Pool):
        return await asyncio.gather(
            self.prices.load_token_price(pool.token_a),
            self.prices.load_token_price(pool.token_b),
        )

    async def get_pool_history(self, pool_id: str, timeframe: Timeframe) -> List[HistoricalDataPoint]:
        policy = self.cache_config.policy(CacheKey.POOL_HISTORY)

        async def produce():
            since = self.clock() - timeframe.window
            snapshots = await self.repository.get_pool_snapshots(pool_id, since=since)
            return [_to_data_point(s) for s in snapshots]

        return await self.cache.with_cache(
            policy.key(pool_id=pool_id, timeframe=timeframe.value),
            produce,
            policy.ttl_seconds,
            List[HistoricalDataPoint],
        )

    async def get_multiple_pool_analytics(self, pool_ids: Sequence[str]) -> Dict[str, PoolAnalytics]:
        """Analytics for several pools; unknown pools are left out."""
        results = await asyncio.gather(
            *(self.get_pool_analytics(pid) for pid in pool_ids),
            return_exceptions=True,
        )
        analytics: Dict[str, PoolAnalytics] = {}
        for pool_id, result in zip(pool_ids, results):
            if isinstance(result, PoolNotFoundError):
                logger.debug(f"Skipping unknown pool {pool_id}")
                continue
            if isinstance(result, BaseException):
                raise result
            analytics[pool_id] = result
        return analytics

    async def get_top_pools_by_metric(self, metric: str = "tvl", limit: int = 10) -> List[PoolAnalytics]:
        if metric not in METRICS:
            raise ValueError(f"Unknown metric {metric!r}, expected one of {METRICS}")
        pools = await self.discovery.get_all_pools()
        analytics = await self.get_multiple_pool_analytics([p.id for p in pools])
        ranked = sorted(analytics.values(), key=lambda a: getattr(a, metric), reverse=True)
        return ranked[:limit]

    async def get_analytics_summary(self) -> Dict:
        pools = await self.discovery.get_all_pools()
        analytics = list((await self.get_multiple_pool_analytics([p.id for p in pools])).values())
        total_tvl = sum(a.tvl for a in analytics)
        return {
            "total_pools": len(analytics),
            "total_tvl": total_tvl,
            "total_volume_24h": sum(a.volume_24h for a in analytics),
            "total_fees_24h": sum(a.fee_earnings_24h for a in analytics),
            # TVL-weighted
            "average_apr": (
                sum(a.apr * a.tvl for a in analytics) / total_tvl if total_tvl > 0 else 0.0
            ),
        }

    async def compare_pool_performance(self, pool_ids: Sequence[str]) -> PoolComparison:
        analytics = await self.get_multiple_pool_analytics(pool_ids)
        if not analytics:
            return PoolComparison()

        entries = []
        for pool_id, a in analytics.items():
            pool = await self.discovery.get_pool_by_id(pool_id)
            verified = pool.token_a.verified and pool.token_b.verified
            entries.append(PoolComparisonEntry(
                pool_id=pool_id,
                tvl=a.tvl,
                apr=a.apr,
                volume_24h=a.volume_24h,
                fee_earnings_24h=a.fee_earnings_24h,
                risk=risk_level(a.tvl, verified),
            ))

        return PoolComparison(
            pools=entries,
            best_by_tvl=max(entries, key=lambda e: e.tvl).pool_id,
            best_by_apr=max(entries, key=lambda e: e.apr).pool_id,
            best_by_volume=max(entries, key=lambda e: e.volume_24h).pool_id,
        )

    # =========================================================================
    # Refresh
    # =========================================================================

    async def clear_analytics_cache(self, pool_id: Optional[str] = None) -> int:
        """Drop cached analytics and history for one pool, or all pools."""
        analytics = self.cache_config.policy(CacheKey.POOL_ANALYTICS)
        history = self.cache_config.policy(CacheKey.POOL_HISTORY)
        if pool_id:
            cleared = int(await self.cache.invalidate(analytics.key(pool_id=pool_id)))
            return cleared + max(0, await self.cache.invalidate_pattern(history.pattern(pool_id=pool_id)))
        cleared = max(0, await self.cache.invalidate_pattern(analytics.pattern()))
        return cleared + max(0, await self.cache.invalidate_pattern(history.pattern()))

    async def _record_snapshot(self, pool: Pool):
        price_a, price_b = await self._prices_for(pool)
        tvl = pool_tvl(pool, price_a, price_b)
        await self.repository.add_pool_snapshot(PoolSnapshot(
            pool_id=pool.id,
            reserve_a=pool.reserve_a,
            reserve_b=pool.reserve_b,
            total_supply=pool.total_supply,
            tvl_usd=tvl,
            volume_24h=estimate_volume_24h(pool, tvl),
            price_a=price_a,
            price_b=price_b,
            timestamp=self.clock(),
        ))

    async def update_all_pool_analytics(self) -> int:
        """
        Snapshot every pool and recompute its analytics, in batches.

        Returns the number of pools updated.
        """
        pools = await self.discovery.get_all_pools()
        batch_size = self.settings.ANALYTICS_BATCH_SIZE
        updated = 0

        for i in range(0, len(pools), batch_size):
            batch = pools[i:i + batch_size]
            results = await asyncio.gather(
                *(self._record_snapshot(pool) for pool in batch),
                return_exceptions=True,
            )
            for pool, result in zip(batch, results):
                if isinstance(result, UpstreamError):
                    logger.error(f"Snapshot failed for {pool.id}: {result.message}")
                    continue
                if isinstance(result, BaseException):
                    raise result
                await self.clear_analytics_cache(pool.id)
                await self.get_pool_analytics(pool.id)
                updated += 1

        logger.info(f"Updated analytics for {updated}/{len(pools)} pools")
        return updated

    async def _update_loop(self):
        while True:
            try:
                await self.update_all_pool_analytics()
            except UpstreamError as e:
                logger.error(f"Scheduled analytics update failed: {e.message}")
            await asyncio.sleep(self.settings.ANALYTICS_UPDATE_INTERVAL)

    def start_analytics_updates(self):
        if self._update_task is None:
            self._update_task = asyncio.create_task(self._update_loop())
            logger.info(
                f"Analytics updates started (interval {self.settings.ANALYTICS_UPDATE_INTERVAL}s)"
            )

    async def stop_analytics_updates(self):
        if self._update_task is not None:
            self._update_task.cancel()
            try:
                await self._update_task
            except asyncio.CancelledError:
                pass
            self._update_task = None
            logger.info("Analytics updates stopped")
