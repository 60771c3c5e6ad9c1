"""Domain services. Each cached computation goes through ReadThroughCache.with_cache."""

from velumx.services.container import ServiceContainer
from velumx.services.fee_calculator import FeeCalculatorService
from velumx.services.liquidity import LiquidityService
from velumx.services.pool_analytics import PoolAnalyticsService
from velumx.services.pool_discovery import PoolDiscoveryService
from velumx.services.position_tracking import PositionTrackingService
from velumx.services.pricing import PriceService
from velumx.services.suggestions import LiquiditySuggestionsService

__all__ = [
    "ServiceContainer",
    "FeeCalculatorService",
    "LiquidityService",
    "PoolAnalyticsService",
    "PoolDiscoveryService",
    "PositionTrackingService",
    "PriceService",
    "LiquiditySuggestionsService",
]
