"""
Position Tracking Service

LP positions of a user across all discovered pools, valued in USD, with
impermanent loss measured against the position's stored entry prices.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from velumx.cache.config import CacheConfig, CacheKey
from velumx.cache.invalidation import CacheInvalidator, LiquidityEvent
from velumx.cache.read_through import ReadThroughCache
from velumx.database.repository import LiquidityRepository, StoredPosition
from velumx.exceptions import PoolNotFoundError, PositionNotFoundError, UpstreamError
from velumx.models.liquidity import (
    ImpermanentLoss,
    LiquidityPosition,
    Pool,
    PortfolioSummary,
    PositionAction,
    PositionHistory,
    PositionValue,
    Returns,
    Timeframe,
)
from velumx.services.liquidity import LiquidityService
from velumx.services.metrics import held_value, to_decimal
from velumx.services.pool_discovery import PoolDiscoveryService
from velumx.services.pricing import PriceService


logger = logging.getLogger(__name__)

BATCH_SIZE = 10


class PositionTrackingService:
    def __init__(
        self,
        cache: ReadThroughCache,
        cache_config: CacheConfig,
        discovery: PoolDiscoveryService,
        liquidity: LiquidityService,
        prices: PriceService,
        repository: LiquidityRepository,
        invalidator: CacheInvalidator,
    ):
        self.cache = cache
        self.cache_config = cache_config
        self.discovery = discovery
        self.liquidity = liquidity
        self.prices = prices
        self.repository = repository
        self.invalidator = invalidator

    # =========================================================================
    # Positions
    # =========================================================================

    async def get_user_positions(self, user_address: str) -> List[LiquidityPosition]:
        """All non-empty positions of a user; [] (uncached) if upstream is down."""
        try:
            return await self.load_user_positions(user_address)
        except UpstreamError as e:
            logger.warning(f"Serving no positions for {user_address}: {e.message}")
            return []

    async def load_user_positions(self, user_address: str) -> List[LiquidityPosition]:
        policy = self.cache_config.policy(CacheKey.USER_POSITIONS)
        return await self.cache.with_cache(
            policy.key(address=user_address),
            lambda: self._load_positions(user_address),
            policy.ttl_seconds,
            List[LiquidityPosition],
        )

    async def _load_positions(self, user_address: str) -> List[LiquidityPosition]:
        pools = await self.discovery.get_all_pools()
        positions: List[LiquidityPosition] = []

        for i in range(0, len(pools), BATCH_SIZE):
            batch = pools[i:i + BATCH_SIZE]
            results = await asyncio.gather(
                *(self._build_position(user_address, pool) for pool in batch),
                return_exceptions=True,
            )
            for pool, result in zip(batch, results):
                if isinstance(result, PoolNotFoundError):
                    # Pool vanished since the list was cached
                    logger.debug(f"Skipping removed pool {pool.id}")
                    continue
                if isinstance(result, BaseException):
                    raise result
                if result is not None:
                    positions.append(result)

        logger.info(f"Loaded {len(positions)} positions for {user_address}")
        return positions

    async def _build_position(self, user_address: str, pool: Pool) -> Optional[LiquidityPosition]:
        balance = await self.liquidity.get_lp_balance(user_address, pool.token_a, pool.token_b)
        if balance <= 0:
            return None

        share, price_a, price_b, stored, fees = await asyncio.gather(
            self.liquidity.get_pool_share(user_address, pool.token_a, pool.token_b),
            self.prices.load_token_price(pool.token_a),
            self.prices.load_token_price(pool.token_b),
            self.repository.get_position(user_address, pool.id),
            self.repository.get_total_fees(user_address, pool.id),
        )

        current_value = (
            to_decimal(share.share_a, pool.token_a.decimals) * price_a
            + to_decimal(share.share_b, pool.token_b.decimals) * price_b
        )
        if stored is not None:
            initial_value = stored.initial_value_usd
            would_have = held_value(
                current_value, stored.initial_price_a, stored.initial_price_b, price_a, price_b,
            )
        else:
            # Untracked deposit: no cost basis, no measurable loss
            initial_value = current_value
            would_have = current_value

        return LiquidityPosition(
            pool_id=pool.id,
            user_address=user_address,
            lp_token_balance=balance,
            share_percentage=share.percentage,
            token_a_amount=share.share_a,
            token_b_amount=share.share_b,
            current_value=current_value,
            initial_value=initial_value,
            impermanent_loss=max(0.0, would_have - current_value),
            fee_earnings=fees,
            created_at=stored.created_at if stored else None,
        )

    async def get_position(self, user_address: str, pool_id: str) -> LiquidityPosition:
        """
        Raises:
            PoolNotFoundError: Pool does not exist
            PositionNotFoundError: User holds no LP tokens of the pool
            UpstreamError: Chain, prices or database unreachable
        """
        pool = await self.discovery.get_pool_by_id(pool_id)
        position = await self._build_position(user_address, pool)
        if position is None:
            raise PositionNotFoundError(user_address, pool_id)
        return position

    async def get_position_value(self, user_address: str, pool_id: str) -> PositionValue:
        position = await self.get_position(user_address, pool_id)
        unrealized = position.current_value - position.initial_value
        # Fees are paid out, so they count as realized
        realized = position.fee_earnings
        total = unrealized + realized - position.impermanent_loss
        return PositionValue(
            current_value=position.current_value,
            initial_value=position.initial_value,
            unrealized_pnl=unrealized,
            realized_pnl=realized,
            total_return=total,
            total_return_percentage=(
                total / position.initial_value * 100 if position.initial_value > 0 else 0.0
            ),
        )

    async def calculate_impermanent_loss(self, user_address: str, pool_id: str) -> ImpermanentLoss:
        position = await self.get_position(user_address, pool_id)
        loss = position.impermanent_loss
        would_have = position.current_value + loss
        return ImpermanentLoss(
            current_loss=loss,
            current_loss_percentage=loss / would_have * 100 if would_have > 0 else 0.0,
            would_have_value=would_have,
            actual_value=position.current_value,
            break_even_fees=max(0.0, loss - position.fee_earnings),
        )

    # =========================================================================
    # Portfolio
    # =========================================================================

    async def get_portfolio_summary(self, user_address: str) -> PortfolioSummary:
        policy = self.cache_config.policy(CacheKey.USER_PORTFOLIO)
        try:
            return await self.cache.with_cache(
                policy.key(address=user_address),
                lambda: self._build_portfolio(user_address),
                policy.ttl_seconds,
                PortfolioSummary,
            )
        except UpstreamError as e:
            logger.warning(f"Serving empty portfolio for {user_address}: {e.message}")
            return PortfolioSummary.empty(user_address)

    async def _build_portfolio(self, user_address: str) -> PortfolioSummary:
        # An outage must not become an empty cached portfolio
        positions = await self.load_user_positions(user_address)

        total_value = sum(p.current_value for p in positions)
        total_fees = sum(p.fee_earnings for p in positions)
        total_il = sum(p.impermanent_loss for p in positions)
        total_initial = sum(p.initial_value for p in positions)

        return PortfolioSummary(
            user_address=user_address,
            total_value=total_value,
            total_fee_earnings=total_fees,
            total_impermanent_loss=total_il,
            total_returns=total_value - total_initial + total_fees - total_il,
            position_count=len(positions),
            positions=positions,
        )

    async def get_position_history(
        self,
        user_address: str,
        pool_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[PositionHistory]:
        return await self.repository.get_position_history(user_address, pool_id, limit)

    async def calculate_returns(self, user_address: str, timeframe: Timeframe = Timeframe.DAY_30) -> Returns:
        """Portfolio return spread evenly over the timeframe, then annualized."""
        portfolio = await self.get_portfolio_summary(user_address)
        if portfolio.total_value == 0:
            return Returns()

        total = portfolio.total_returns
        annual = total * 365 / timeframe.days
        daily = annual / 365
        return Returns(
            daily=daily,
            weekly=daily * 7,
            monthly=daily * 30,
            annual=annual,
            total_return=total,
            total_return_percentage=total / portfolio.total_value * 100,
        )

    async def get_multiple_user_positions(
        self, user_addresses: Sequence[str],
    ) -> Dict[str, List[LiquidityPosition]]:
        results: Dict[str, List[LiquidityPosition]] = {}
        for i in range(0, len(user_addresses), BATCH_SIZE):
            batch = user_addresses[i:i + BATCH_SIZE]
            positions = await asyncio.gather(*(self.get_user_positions(u) for u in batch))
            results.update(zip(batch, positions))
        return results

    # =========================================================================
    # Writes
    # =========================================================================

    async def record_position_change(self, entry: PositionHistory) -> Optional[StoredPosition]:
        """
        Persist an add/remove and invalidate everything derived from it.

        Returns after invalidation has completed, so the caller may
        acknowledge the change knowing the next read recomputes.
        """
        pool = await self.discovery.get_pool_by_id(entry.pool_id)
        price_a, price_b = await asyncio.gather(
            self.prices.load_token_price(pool.token_a),
            self.prices.load_token_price(pool.token_b),
        )
        updated = await self.repository.record_position_change(entry, price_a, price_b)

        event = (
            LiquidityEvent.LIQUIDITY_ADDED
            if entry.action == PositionAction.ADD
            else LiquidityEvent.LIQUIDITY_REMOVED
        )
        await self.invalidator.handle_event(
            event, pool_id=entry.pool_id, user_address=entry.user_address,
        )
        logger.info(
            f"Recorded {entry.action.value} of {entry.lp_token_amount} LP for "
            f"{entry.user_address} in {entry.pool_id}"
        )
        return updated

    async def clear_position_cache(self, user_address: Optional[str] = None) -> int:
        if user_address:
            result = await self.invalidator.invalidate_user(user_address)
            return result.keys_invalidated

        cleared = 0
        for name in (CacheKey.USER_POSITIONS, CacheKey.USER_PORTFOLIO):
            cleared += max(0, await self.cache.invalidate_pattern(
                self.cache_config.policy(name).pattern()
            ))
        return cleared
