"""
Service wiring.

Builds the cache, data sources and domain services from configuration and
owns their lifecycle (background loops, connections). Every collaborator
can be passed in, which is how the tests substitute fakes.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from velumx.cache.config import CacheConfig, get_cache_config
from velumx.cache.invalidation import CacheInvalidator
from velumx.cache.memory_cache import InMemoryCache
from velumx.cache.monitoring import CacheMonitor
from velumx.cache.read_through import ReadThroughCache
from velumx.cache.redis_cache import RedisCache
from velumx.cache.store import CacheStore
from velumx.cache.warming import CacheWarmer
from velumx.chain.prices import PriceOracle
from velumx.chain.source import InMemoryLiquiditySource, LiquiditySource
from velumx.chain.stacks import StacksLiquiditySource
from velumx.database.repository import (
    InMemoryLiquidityRepository,
    LiquidityRepository,
    SqlLiquidityRepository,
)
from velumx.database.session import Database
from velumx.services.fee_calculator import FeeCalculatorService
from velumx.services.liquidity import LiquidityService
from velumx.services.pool_analytics import PoolAnalyticsService
from velumx.services.pool_discovery import PoolDiscoveryService
from velumx.services.position_tracking import PositionTrackingService
from velumx.services.pricing import PriceService
from velumx.services.suggestions import LiquiditySuggestionsService
from velumx.utils.config import Settings, get_settings


logger = logging.getLogger(__name__)


def create_store(config: CacheConfig) -> CacheStore:
    if config.backend == "redis":
        return RedisCache(config)
    return InMemoryCache(namespace=config.namespace, cleanup_interval=config.memory_cleanup_interval)


def create_source(settings: Settings) -> LiquiditySource:
    if settings.LIQUIDITY_SOURCE == "memory":
        logger.warning("LIQUIDITY_SOURCE=memory, pools exist only once seeded in process")
        return InMemoryLiquiditySource()
    return StacksLiquiditySource(settings)


def create_repository(settings: Settings) -> LiquidityRepository:
    if settings.DATABASE_URL:
        database = Database(settings.DATABASE_URL)
        database.init_db()
        return SqlLiquidityRepository(database)
    logger.warning("DATABASE_URL not set, positions and fees are kept in memory")
    return InMemoryLiquidityRepository()


class ServiceContainer:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        cache_config: Optional[CacheConfig] = None,
        store: Optional[CacheStore] = None,
        source: Optional[LiquiditySource] = None,
        repository: Optional[LiquidityRepository] = None,
        oracle: Optional[PriceOracle] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.settings = settings or get_settings()
        self.cache_config = cache_config or get_cache_config()

        self.store = store or create_store(self.cache_config)
        self.cache = ReadThroughCache(self.store, enabled=self.cache_config.enabled)
        self.invalidator = CacheInvalidator(self.cache, self.cache_config)
        self.monitor = CacheMonitor(self.cache)

        self.source = source or create_source(self.settings)
        self.repository = repository or create_repository(self.settings)
        self.oracle = oracle or PriceOracle(self.settings)

        self.liquidity = LiquidityService(self.cache, self.cache_config, self.source)
        self.prices = PriceService(self.cache, self.cache_config, self.oracle)
        self.discovery = PoolDiscoveryService(
            self.cache, self.cache_config, self.settings,
            self.liquidity, self.prices, self.invalidator,
        )
        self.analytics = PoolAnalyticsService(
            self.cache, self.cache_config, self.settings,
            self.discovery, self.prices, self.repository, clock=clock,
        )
        self.positions = PositionTrackingService(
            self.cache, self.cache_config, self.discovery, self.liquidity,
            self.prices, self.repository, self.invalidator,
        )
        self.fees = FeeCalculatorService(
            self.cache, self.cache_config, self.discovery, self.analytics,
            self.liquidity, self.prices, self.repository, self.invalidator, clock=clock,
        )
        self.suggestions = LiquiditySuggestionsService(
            self.cache, self.cache_config, self.discovery, self.analytics, self.positions,
        )
        self.warmer = CacheWarmer(
            self.discovery, self.analytics,
            interval_seconds=self.settings.CACHE_WARMING_INTERVAL,
        )

    async def start(self):
        await self.store.initialize()

        if not self.settings.BACKGROUND_PROCESSING_ENABLED:
            logger.info("Background processing disabled")
            return

        self.discovery.start_discovery()
        self.analytics.start_analytics_updates()
        if self.settings.CACHE_WARMING_ENABLED:
            await self.warmer.start_background_warmer()

    async def stop(self):
        await self.warmer.stop_background_warmer()
        await self.analytics.stop_analytics_updates()
        await self.discovery.stop_discovery()
        await self.oracle.close()
        await self.source.close()
        await self.repository.close()
        await self.store.close()
        logger.info("Services stopped")
