"""
Fee Calculator Service

Swap-fee earnings of liquidity providers: accumulated totals, projections
for a prospective deposit, per-year tax reports and pool-wide statistics.
Recorded payouts come from the repository; recent earnings are estimated
from the pool's 24h volume and the provider's current share.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from velumx.cache.config import CacheConfig, CacheKey
from velumx.cache.invalidation import CacheInvalidator, LiquidityEvent
from velumx.cache.read_through import ReadThroughCache
from velumx.database.repository import LiquidityRepository
from velumx.exceptions import UpstreamError
from velumx.models.liquidity import (
    FeeEarnings,
    FeeHistory,
    FeeProjection,
    TaxReport,
    TaxReportPosition,
    Timeframe,
)
from velumx.services.liquidity import LiquidityService
from velumx.services.metrics import fees_for_volume, project_fees, to_decimal
from velumx.services.pool_analytics import PoolAnalyticsService
from velumx.services.pool_discovery import PoolDiscoveryService
from velumx.services.pricing import PriceService


logger = logging.getLogger(__name__)

# Days of unrecorded earnings estimated on top of stored payouts
RECENT_FEE_DAYS = 7
TOP_POOLS = 5


class FeeCalculatorService:
    def __init__(
        self,
        cache: ReadThroughCache,
        cache_config: CacheConfig,
        discovery: PoolDiscoveryService,
        analytics: PoolAnalyticsService,
        liquidity: LiquidityService,
        prices: PriceService,
        repository: LiquidityRepository,
        invalidator: CacheInvalidator,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.cache = cache
        self.cache_config = cache_config
        self.discovery = discovery
        self.analytics = analytics
        self.liquidity = liquidity
        self.prices = prices
        self.repository = repository
        self.invalidator = invalidator
        self.clock = clock

    # =========================================================================
    # Earnings
    # =========================================================================

    async def calculate_accumulated_fees(self, user_address: str, pool_id: str) -> FeeEarnings:
        """
        Fee earnings of one provider in one pool.

        Raises:
            PoolNotFoundError: Pool does not exist

        Upstream failures yield FeeEarnings.empty(), not cached.
        """
        policy = self.cache_config.policy(CacheKey.FEE_EARNINGS)
        try:
            return await self.cache.with_cache(
                policy.key(address=user_address, pool_id=pool_id),
                lambda: self._compute_fees(user_address, pool_id),
                policy.ttl_seconds,
                FeeEarnings,
            )
        except UpstreamError as e:
            logger.warning(f"Serving empty fee earnings for {user_address} in {pool_id}: {e.message}")
            return FeeEarnings.empty(user_address, pool_id)

    async def _compute_fees(self, user_address: str, pool_id: str) -> FeeEarnings:
        pool = await self.discovery.get_pool_by_id(pool_id)
        balance = await self.liquidity.get_lp_balance(user_address, pool.token_a, pool.token_b)
        if balance <= 0:
            return FeeEarnings.empty(user_address, pool_id)

        share, analytics, stored_fees, position, price_a, price_b = await asyncio.gather(
            self.liquidity.get_pool_share(user_address, pool.token_a, pool.token_b),
            self.analytics.load_pool_analytics(pool_id),
            self.repository.get_total_fees(user_address, pool_id),
            self.repository.get_position(user_address, pool_id),
            self.prices.load_token_price(pool.token_a),
            self.prices.load_token_price(pool.token_b),
        )

        daily = fees_for_volume(analytics.volume_24h) * share.percentage / 100
        total = stored_fees + daily * RECENT_FEE_DAYS

        position_value = (
            to_decimal(share.share_a, pool.token_a.decimals) * price_a
            + to_decimal(share.share_b, pool.token_b.decimals) * price_b
        )
        age_days = 0
        if position is not None:
            age_days = max(1, (self.clock() - position.created_at).days)

        annualized = 0.0
        if position_value > 0 and age_days > 0:
            annualized = total * 365 / age_days / position_value * 100

        logger.debug(
            f"Fees for {user_address} in {pool_id}: stored={stored_fees:.4f} "
            f"daily={daily:.4f} age={age_days}d"
        )
        return FeeEarnings(
            user_address=user_address,
            pool_id=pool_id,
            total_earnings=total,
            daily_earnings=daily,
            weekly_earnings=daily * 7,
            monthly_earnings=daily * 30,
            annualized_return=annualized,
        )

    async def get_fee_history(
        self,
        user_address: str,
        timeframe: Timeframe = Timeframe.DAY_30,
        pool_id: Optional[str] = None,
    ) -> List[FeeHistory]:
        """Recorded payouts within the timeframe, newest first."""
        since = self.clock() - timeframe.window
        return await self.repository.get_fee_history(user_address, pool_id, since=since)

    async def store_fee_earnings(
        self,
        user_address: str,
        pool_id: str,
        amount_usd: float,
        transaction_hash: Optional[str] = None,
        block_height: Optional[int] = None,
    ) -> FeeHistory:
        """Persist a fee payout; cached earnings are invalidated before returning."""
        if amount_usd < 0:
            raise ValueError("Fee amount cannot be negative")

        fee = FeeHistory(
            id=str(uuid.uuid4()),
            user_address=user_address,
            pool_id=pool_id,
            amount_usd=amount_usd,
            transaction_hash=transaction_hash,
            block_height=block_height,
            timestamp=self.clock(),
        )
        await self.repository.add_fee_earning(fee)
        await self.invalidator.handle_event(
            LiquidityEvent.FEES_RECORDED, pool_id=pool_id, user_address=user_address,
        )
        logger.info(f"Stored fee earning of ${amount_usd:.4f} for {user_address} in {pool_id}")
        return fee

    # =========================================================================
    # Projections and reports
    # =========================================================================

    async def project_fee_earnings(self, pool_id: str, amount_usd: float) -> FeeProjection:
        """Expected fees for depositing amount_usd into the pool at current volume."""
        analytics = await self.analytics.get_pool_analytics(pool_id)
        return project_fees(analytics, amount_usd)

    async def generate_fee_report(self, user_address: str, year: int) -> TaxReport:
        start = datetime(year, 1, 1)
        end = datetime(year + 1, 1, 1)
        history = [
            fee for fee in await self.repository.get_fee_history(user_address, since=start, until=end)
            if fee.timestamp < end
        ]
        history.sort(key=lambda f: f.timestamp)

        by_pool: Dict[str, List[FeeHistory]] = defaultdict(list)
        for fee in history:
            by_pool[fee.pool_id].append(fee)

        positions = [
            TaxReportPosition(
                pool_id=pool_id,
                earnings=sum(f.amount_usd for f in fees),
                transactions=fees,
            )
            for pool_id, fees in by_pool.items()
        ]
        total = sum(p.earnings for p in positions)

        logger.info(
            f"Tax report for {user_address} ({year}): ${total:.2f} "
            f"over {len(history)} payouts in {len(positions)} pools"
        )
        return TaxReport(
            user_address=user_address,
            year=year,
            total_fee_earnings=total,
            total_transactions=len(history),
            positions=positions,
            generated_at=self.clock(),
        )

    async def calculate_fee_apr(self, pool_id: str) -> float:
        return (await self.analytics.get_pool_analytics(pool_id)).apr

    async def get_fee_statistics(self) -> Dict:
        pools = await self.discovery.get_all_pools()
        analytics = await self.analytics.get_multiple_pool_analytics([p.id for p in pools])
        earning = [a for a in analytics.values() if a.fee_earnings_24h > 0]

        paid_24h, active_users = await self.repository.get_fee_totals_since(
            self.clock() - timedelta(hours=24)
        )
        top = sorted(earning, key=lambda a: a.fee_earnings_24h, reverse=True)[:TOP_POOLS]

        return {
            "total_fees_24h": sum(a.fee_earnings_24h for a in earning),
            "total_fees_7d": sum(fees_for_volume(a.volume_7d) for a in earning),
            "average_fee_apr": sum(a.apr for a in earning) / len(earning) if earning else 0.0,
            "top_earning_pools": [
                {"pool_id": a.pool_id, "fees_24h": a.fee_earnings_24h} for a in top
            ],
            "total_active_users": active_users,
            "average_user_earnings": paid_24h / active_users if active_users else 0.0,
        }

    async def clear_fee_cache(self, user_address: Optional[str] = None, pool_id: Optional[str] = None) -> int:
        policy = self.cache_config.policy(CacheKey.FEE_EARNINGS)
        if user_address and pool_id:
            return int(await self.cache.invalidate(policy.key(address=user_address, pool_id=pool_id)))

        params = {}
        if user_address:
            params["address"] = user_address
        if pool_id:
            params["pool_id"] = pool_id
        return max(0, await self.cache.invalidate_pattern(policy.pattern(**params)))
