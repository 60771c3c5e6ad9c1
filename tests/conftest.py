"""
Pytest Configuration and Shared Fixtures

Provides a fully wired ServiceContainer over in-memory collaborators:
- InMemoryCache with a controllable clock
- InMemoryLiquiditySource seeded with two pools
- InMemoryLiquidityRepository
- PriceOracle talking to an httpx.MockTransport
"""

from datetime import datetime
from typing import Dict

import httpx
import pytest

from velumx.cache.config import CacheConfig
from velumx.cache.memory_cache import InMemoryCache
from velumx.chain.prices import PriceOracle
from velumx.chain.source import InMemoryLiquiditySource
from velumx.database.repository import InMemoryLiquidityRepository
from velumx.models.liquidity import PoolReserves
from velumx.services.container import ServiceContainer
from velumx.utils.config import DEFAULT_TOKENS, Settings


NOW = datetime(2026, 6, 1, 12, 0, 0)
USER = "SP2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKNRV9EJ7"

STX, USDCX, VEX = DEFAULT_TOKENS


# ============================================================================
# Clocks
# ============================================================================

class FakeClock:
    """Monotonic clock for the cache store, advanced by hand."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Collaborators
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        BACKGROUND_PROCESSING_ENABLED=False,
        CACHE_WARMING_ENABLED=False,
        COINGECKO_API_URL="http://coingecko.test/api/v3",
        PRICE_ORACLE_ENABLED=True,
        PRICE_ORACLE_URL="http://oracle.test",
        DATABASE_URL=None,
    )


@pytest.fixture
def cache_config() -> CacheConfig:
    return CacheConfig(namespace="test", enabled=True, backend="memory")


@pytest.fixture
def prices() -> Dict[str, float]:
    """USD prices served by the mocked price APIs, keyed by symbol."""
    return {"STX": 2.5, "VEX": 0.5}


def price_transport(prices: Dict[str, float]) -> httpx.MockTransport:
    symbols_by_address = {t.address: t.symbol for t in DEFAULT_TOKENS}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "coingecko.test":
            coingecko_id = request.url.params["ids"]
            return httpx.Response(200, json={coingecko_id: {"usd": prices["STX"]}})
        symbol = symbols_by_address.get(request.url.path.rsplit("/", 1)[-1])
        if symbol not in prices:
            return httpx.Response(404, json={"error": "unknown token"})
        return httpx.Response(200, json={"price": prices[symbol]})

    return httpx.MockTransport(handler)


@pytest.fixture
def oracle(settings, prices) -> PriceOracle:
    return PriceOracle(settings, client=httpx.AsyncClient(transport=price_transport(prices)))


@pytest.fixture
def source() -> InMemoryLiquiditySource:
    """
    Two live pools:
    - STX-USDCx: 1M STX / 2.5M USDCx, 1.5M LP
    - STX-VEX: 200k STX / 1M VEX, 400k LP
    USDCx-VEX has no pool.
    """
    source = InMemoryLiquiditySource()
    source.set_pool(STX.address, USDCX.address, PoolReserves(
        reserve_a=1_000_000_000_000,
        reserve_b=2_500_000_000_000,
        total_supply=1_500_000_000_000,
    ))
    source.set_pool(STX.address, VEX.address, PoolReserves(
        reserve_a=200_000_000_000,
        reserve_b=1_000_000_000_000,
        total_supply=400_000_000_000,
    ))
    return source


@pytest.fixture
def repository() -> InMemoryLiquidityRepository:
    return InMemoryLiquidityRepository()


@pytest.fixture
def store(cache_config, clock) -> InMemoryCache:
    return InMemoryCache(namespace=cache_config.namespace, clock=clock, cleanup_interval=0)


@pytest.fixture
def services(settings, cache_config, store, source, repository, oracle) -> ServiceContainer:
    return ServiceContainer(
        settings=settings,
        cache_config=cache_config,
        store=store,
        source=source,
        repository=repository,
        oracle=oracle,
        clock=lambda: NOW,
    )
