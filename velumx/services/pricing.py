"""
Price Service

Cached USD token prices. `load_token_price` raises UpstreamError when the
oracle cannot answer; cached producers use it so a degraded price never
ends up inside a cached value. `get_token_price` serves a fixed fallback
price instead, uncached, for top-level reads only.
"""

import logging

from velumx.cache.config import CacheConfig, CacheKey
from velumx.cache.read_through import ReadThroughCache
from velumx.chain.prices import PriceOracle, fallback_price
from velumx.exceptions import UpstreamError
from velumx.models.liquidity import Token


logger = logging.getLogger(__name__)


class PriceService:
    def __init__(self, cache: ReadThroughCache, cache_config: CacheConfig, oracle: PriceOracle):
        self.cache = cache
        self.cache_config = cache_config
        self.oracle = oracle

    async def load_token_price(self, token: Token) -> float:
        policy = self.cache_config.policy(CacheKey.TOKEN_PRICE)
        return await self.cache.with_cache(
            policy.key(token=token.address),
            lambda: self.oracle.get_price(token),
            policy.ttl_seconds,
            float,
        )

    async def get_token_price(self, token: Token) -> float:
        try:
            return await self.load_token_price(token)
        except UpstreamError as e:
            price = fallback_price(token)
            logger.warning(f"Using fallback price {price} for {token.symbol}: {e}")
            return price
