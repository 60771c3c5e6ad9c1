"""
Pool Discovery Service

Finds active pools by checking every pair of known tokens, and serves the
cached pool list plus lookups, search and per-pool metadata on top of it.
A background loop can refresh the list periodically.
"""

import asyncio
import logging
from itertools import combinations
from typing import Dict, List, Optional, Sequence

from velumx.cache.config import CacheConfig, CacheKey
from velumx.cache.invalidation import CacheInvalidator, LiquidityEvent
from velumx.cache.read_through import ReadThroughCache
from velumx.exceptions import PoolNotFoundError, UpstreamError
from velumx.models.liquidity import Pool, PoolMetadata, Token
from velumx.services.liquidity import LiquidityService, pool_id_for
from velumx.services.metrics import pool_tvl, risk_level
from velumx.services.pricing import PriceService
from velumx.utils.config import DEFAULT_TOKENS, Settings


logger = logging.getLogger(__name__)


class PoolDiscoveryService:
    def __init__(
        self,
        cache: ReadThroughCache,
        cache_config: CacheConfig,
        settings: Settings,
        liquidity: LiquidityService,
        prices: PriceService,
        invalidator: CacheInvalidator,
        tokens: Sequence[Token] = DEFAULT_TOKENS,
    ):
        self.cache = cache
        self.cache_config = cache_config
        self.settings = settings
        self.liquidity = liquidity
        self.prices = prices
        self.invalidator = invalidator
        self.tokens = list(tokens)
        self._tokens_by_symbol: Dict[str, Token] = {t.symbol: t for t in self.tokens}
        self._tokens_by_address: Dict[str, Token] = {t.address: t for t in self.tokens}
        self._discovery_task: Optional[asyncio.Task] = None
        self.last_discovery_error: Optional[str] = None

    # =========================================================================
    # Discovery
    # =========================================================================

    async def discover_pools(self) -> List[Pool]:
        """
        Check every token pair for a pool with non-zero reserves.

        Pairs without a pool are skipped. If any pair cannot be read the
        whole scan fails with UpstreamError, so a partial list never gets
        cached as the full one.
        """
        pairs = list(combinations(self.tokens, 2))[: self.settings.MAX_POOLS_PER_SCAN]
        logger.info(f"Starting pool discovery over {len(pairs)} pairs")

        results = await asyncio.gather(
            *(self.liquidity.get_pool_reserves(a, b) for a, b in pairs),
            return_exceptions=True,
        )

        pools: List[Pool] = []
        failures: List[str] = []
        for (token_a, token_b), result in zip(pairs, results):
            pool_id = pool_id_for(token_a, token_b)
            if isinstance(result, PoolNotFoundError):
                logger.debug(f"No pool for {pool_id}")
                continue
            if isinstance(result, BaseException):
                failures.append(f"{pool_id}: {result}")
                continue
            if not result.is_active:
                continue
            pools.append(Pool(
                id=pool_id,
                token_a=token_a,
                token_b=token_b,
                reserve_a=result.reserve_a,
                reserve_b=result.reserve_b,
                total_supply=result.total_supply,
            ))

        if failures:
            raise UpstreamError(
                f"Pool discovery incomplete: {'; '.join(failures)}", source="discovery",
            )

        logger.info(f"Pool discovery completed: {len(pools)} pools")
        return pools

    async def get_all_pools(self) -> List[Pool]:
        policy = self.cache_config.policy(CacheKey.POOL_LIST)
        return await self.cache.with_cache(
            policy.key(), self.discover_pools, policy.ttl_seconds, List[Pool],
        )

    # =========================================================================
    # Lookups
    # =========================================================================

    async def get_pool_by_id(self, pool_id: str) -> Pool:
        """
        Raises:
            PoolNotFoundError: No active pool with this id
            UpstreamError: Pool list unavailable
        """
        for pool in await self.get_all_pools():
            if pool.id == pool_id:
                return pool
        raise PoolNotFoundError(pool_id)

    async def get_pool_by_tokens(self, token_a: str, token_b: str) -> Optional[Pool]:
        """Pool for two token addresses, in either order."""
        wanted = {token_a, token_b}
        for pool in await self.get_all_pools():
            if {pool.token_a.address, pool.token_b.address} == wanted:
                return pool
        return None

    async def get_pools_by_token(self, token_address: str) -> List[Pool]:
        return [p for p in await self.get_all_pools() if p.has_token(token_address)]

    async def search_pools(self, query: str) -> List[Pool]:
        term = query.lower().strip()
        if not term:
            return await self.get_all_pools()
        return [
            pool for pool in await self.get_all_pools()
            if term in pool.id.lower()
            or term in pool.token_a.symbol.lower()
            or term in pool.token_a.name.lower()
            or term in pool.token_b.symbol.lower()
            or term in pool.token_b.name.lower()
        ]

    async def get_popular_pools(self, limit: int = 10) -> List[Pool]:
        """Pools ranked by LP token supply."""
        pools = sorted(await self.get_all_pools(), key=lambda p: p.total_supply, reverse=True)
        return pools[:limit]

    def is_featured(self, pool: Pool) -> bool:
        symbols = {pool.token_a.symbol, pool.token_b.symbol}
        return any(
            set(featured.split("-")) == symbols
            for featured in self.settings.featured_pool_ids
        )

    async def get_featured_pools(self) -> List[Pool]:
        return [p for p in await self.get_all_pools() if self.is_featured(p)]

    async def validate_pool_exists(self, token_a: Token, token_b: Token) -> bool:
        try:
            reserves = await self.liquidity.get_pool_reserves(token_a, token_b)
        except PoolNotFoundError:
            return False
        return reserves.is_active

    def get_token(self, identifier: str) -> Optional[Token]:
        """Known token by symbol or contract address."""
        return self._tokens_by_symbol.get(identifier) or self._tokens_by_address.get(identifier)

    # =========================================================================
    # Metadata
    # =========================================================================

    async def get_pool_metadata(self, pool_id: str) -> PoolMetadata:
        """
        Cached metadata for a pool.

        While prices are unavailable the metadata is built from fallback
        prices and served uncached.
        """
        policy = self.cache_config.policy(CacheKey.POOL_METADATA)
        try:
            return await self.cache.with_cache(
                policy.key(pool_id=pool_id),
                lambda: self._build_metadata(pool_id, self.prices.load_token_price),
                policy.ttl_seconds,
                PoolMetadata,
            )
        except UpstreamError as e:
            logger.warning(f"Serving uncached metadata for {pool_id}: {e.message}")
            return await self._build_metadata(pool_id, self.prices.get_token_price)

    async def _build_metadata(self, pool_id: str, price_of) -> PoolMetadata:
        pool = await self.get_pool_by_id(pool_id)
        price_a, price_b = await asyncio.gather(price_of(pool.token_a), price_of(pool.token_b))
        verified = pool.token_a.verified and pool.token_b.verified
        symbol_a, symbol_b = pool.token_a.symbol, pool.token_b.symbol

        return PoolMetadata(
            pool_id=pool_id,
            name=f"{symbol_a}/{symbol_b}",
            description=f"Liquidity pool for {symbol_a} and {symbol_b}",
            tags=[symbol_a.lower(), symbol_b.lower(), "amm", "liquidity"],
            verified=verified,
            featured=self.is_featured(pool),
            risk_level=risk_level(pool_tvl(pool, price_a, price_b), verified),
            category="defi",
        )

    async def get_pool_stats_summary(self) -> Dict[str, int]:
        """Cached pool counts; dropped together with the pool list on refresh."""
        policy = self.cache_config.policy(CacheKey.SYSTEM_STATS)
        return await self.cache.with_cache(
            policy.key(), self._build_stats_summary, policy.ttl_seconds, Dict[str, int],
        )

    async def _build_stats_summary(self) -> Dict[str, int]:
        pools = await self.get_all_pools()
        return {
            "total_pools": len(pools),
            "total_lp_supply": sum(p.total_supply for p in pools),
            "featured_pools": sum(1 for p in pools if self.is_featured(p)),
            "tokens": len(self.tokens),
        }

    # =========================================================================
    # Refresh
    # =========================================================================

    async def refresh_pool_data(self, pool_id: Optional[str] = None) -> List[Pool]:
        """Invalidate pool data and rediscover."""
        logger.info(f"Refreshing pool data ({pool_id or 'all pools'})")
        await self.invalidator.handle_event(LiquidityEvent.POOL_REFRESHED, pool_id=pool_id)
        return await self.get_all_pools()

    async def _discovery_loop(self):
        while True:
            try:
                await self.refresh_pool_data()
                self.last_discovery_error = None
            except UpstreamError as e:
                self.last_discovery_error = e.message
                logger.error(f"Scheduled pool discovery failed: {e.message}")
            await asyncio.sleep(self.settings.POOL_DISCOVERY_INTERVAL)

    def start_discovery(self):
        if not self.settings.POOL_DISCOVERY_ENABLED:
            logger.info("Pool discovery disabled")
            return
        if self._discovery_task is None:
            self._discovery_task = asyncio.create_task(self._discovery_loop())
            logger.info(
                f"Pool discovery started (interval {self.settings.POOL_DISCOVERY_INTERVAL}s)"
            )

    async def stop_discovery(self):
        if self._discovery_task is not None:
            self._discovery_task.cancel()
            try:
                await self._discovery_task
            except asyncio.CancelledError:
                pass
            self._discovery_task = None
            logger.info("Pool discovery stopped")

    def get_discovery_status(self) -> Dict:
        return {
            "enabled": self.settings.POOL_DISCOVERY_ENABLED,
            "running": self._discovery_task is not None and not self._discovery_task.done(),
            "interval_seconds": self.settings.POOL_DISCOVERY_INTERVAL,
            "token_count": len(self.tokens),
            "last_error": self.last_discovery_error,
        }
