"""
Liquidity Service

Cached read access to pool reserves and LP balances, plus the
constant-product arithmetic built on them (pool share, deposit quotes,
withdrawal amounts). Transaction construction lives elsewhere.
"""

import asyncio
import logging
import math
from typing import Optional

from velumx.cache.config import CacheConfig, CacheKey
from velumx.cache.read_through import ReadThroughCache
from velumx.chain.source import LiquiditySource
from velumx.models.liquidity import OptimalAmounts, PoolReserves, PoolShare, Token
from velumx.utils.config import BASIS_POINTS


logger = logging.getLogger(__name__)


def pool_id_for(token_a: Token, token_b: Token) -> str:
    return f"{token_a.symbol}-{token_b.symbol}"


def compute_pool_share(lp_balance: int, reserves: PoolReserves) -> PoolShare:
    """Token amounts redeemable for lp_balance and its share in percent."""
    if reserves.total_supply <= 0 or lp_balance <= 0:
        return PoolShare(share_a=0, share_b=0, percentage=0.0)

    return PoolShare(
        share_a=lp_balance * reserves.reserve_a // reserves.total_supply,
        share_b=lp_balance * reserves.reserve_b // reserves.total_supply,
        percentage=(lp_balance * BASIS_POINTS // reserves.total_supply) / 100,
    )


def compute_lp_tokens_to_mint(amount_a: int, amount_b: int, reserves: PoolReserves) -> int:
    if reserves.reserve_a == 0 or reserves.reserve_b == 0:
        # First deposit mints sqrt(a * b)
        return math.isqrt(amount_a * amount_b)
    return min(
        amount_a * reserves.total_supply // reserves.reserve_a,
        amount_b * reserves.total_supply // reserves.reserve_b,
    )


class LiquidityService:
    def __init__(
        self,
        cache: ReadThroughCache,
        cache_config: CacheConfig,
        source: LiquiditySource,
    ):
        self.cache = cache
        self.cache_config = cache_config
        self.source = source

    async def get_pool_reserves(self, token_a: Token, token_b: Token) -> PoolReserves:
        """
        Reserves of the token_a/token_b pool.

        Raises:
            PoolNotFoundError: No pool for the pair
            UpstreamError: Chain unreachable
        """
        pool_id = pool_id_for(token_a, token_b)
        policy = self.cache_config.policy(CacheKey.POOL_RESERVES)

        async def produce():
            logger.debug(f"Fetching reserves for {pool_id}")
            return await self.source.get_pool_reserves(token_a.address, token_b.address)

        return await self.cache.with_cache(
            policy.key(pool_id=pool_id), produce, policy.ttl_seconds, PoolReserves,
        )

    async def get_lp_balance(self, user_address: str, token_a: Token, token_b: Token) -> int:
        pool_id = pool_id_for(token_a, token_b)
        policy = self.cache_config.policy(CacheKey.USER_LP_BALANCE)

        async def produce():
            return await self.source.get_lp_balance(user_address, token_a.address, token_b.address)

        return await self.cache.with_cache(
            policy.key(address=user_address, pool_id=pool_id), produce, policy.ttl_seconds, int,
        )

    async def get_pool_share(self, user_address: str, token_a: Token, token_b: Token) -> PoolShare:
        pool_id = pool_id_for(token_a, token_b)
        policy = self.cache_config.policy(CacheKey.USER_POOL_SHARE)

        async def produce():
            reserves, balance = await asyncio.gather(
                self.get_pool_reserves(token_a, token_b),
                self.get_lp_balance(user_address, token_a, token_b),
            )
            return compute_pool_share(balance, reserves)

        return await self.cache.with_cache(
            policy.key(address=user_address, pool_id=pool_id), produce, policy.ttl_seconds, PoolShare,
        )

    async def calculate_optimal_amounts(
        self,
        token_a: Token,
        token_b: Token,
        amount_a: Optional[int] = None,
        amount_b: Optional[int] = None,
    ) -> OptimalAmounts:
        """
        Deposit amounts matching the pool's current ratio.

        With one amount given the other is derived; with both, the pair
        requiring less of each token wins.
        """
        if not amount_a and not amount_b:
            raise ValueError("Either amount_a or amount_b must be provided")

        reserves = await self.get_pool_reserves(token_a, token_b)
        if not reserves.is_active:
            return OptimalAmounts(
                amount_a=amount_a or 0, amount_b=amount_b or 0, ratio=1.0, price_impact=0.0,
            )

        if amount_a and not amount_b:
            optimal_a = amount_a
            optimal_b = amount_a * reserves.reserve_b // reserves.reserve_a
        elif amount_b and not amount_a:
            optimal_b = amount_b
            optimal_a = amount_b * reserves.reserve_a // reserves.reserve_b
        else:
            matching_b = amount_a * reserves.reserve_b // reserves.reserve_a
            if matching_b <= amount_b:
                optimal_a, optimal_b = amount_a, matching_b
            else:
                optimal_a = amount_b * reserves.reserve_a // reserves.reserve_b
                optimal_b = amount_b

        return OptimalAmounts(
            amount_a=optimal_a,
            amount_b=optimal_b,
            ratio=reserves.reserve_a / reserves.reserve_b,
            price_impact=self._price_impact(reserves, optimal_a, optimal_b),
        )

    @staticmethod
    def _price_impact(reserves: PoolReserves, amount_a: int, amount_b: int) -> float:
        """Percent change of the B/A price if the amounts were added."""
        current = reserves.reserve_b / reserves.reserve_a
        new = (reserves.reserve_b + amount_b) / (reserves.reserve_a + amount_a)
        return abs((new - current) / current) * 100

    async def calculate_remove_amounts(
        self,
        token_a: Token,
        token_b: Token,
        lp_token_amount: int,
    ) -> PoolShare:
        """Tokens returned for burning lp_token_amount."""
        reserves = await self.get_pool_reserves(token_a, token_b)
        if reserves.total_supply <= 0:
            raise ValueError("Pool has no liquidity")
        return compute_pool_share(lp_token_amount, reserves)

    async def calculate_lp_tokens_to_mint(self, token_a: Token, token_b: Token,
                                          amount_a: int, amount_b: int) -> int:
        reserves = await self.get_pool_reserves(token_a, token_b)
        return compute_lp_tokens_to_mint(amount_a, amount_b, reserves)
