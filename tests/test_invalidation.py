"""
Tests for event-driven cache invalidation.

Each event must remove exactly the entries derived from the changed
state, and report store failures instead of raising.
"""

import pytest

from test_read_through import FailingStore
from velumx.cache.config import CacheConfig, CacheKey
from velumx.cache.invalidation import CacheInvalidator, InvalidationResult, LiquidityEvent
from velumx.cache.memory_cache import InMemoryCache
from velumx.cache.read_through import ReadThroughCache


POOL = "STX-USDCx"
OTHER_POOL = "STX-VEX"
USER = "SP1"
OTHER_USER = "SP2"


@pytest.fixture
def config() -> CacheConfig:
    return CacheConfig(namespace="test")


@pytest.fixture
def store(config) -> InMemoryCache:
    return InMemoryCache(namespace=config.namespace)


@pytest.fixture
def invalidator(store, config) -> CacheInvalidator:
    return CacheInvalidator(ReadThroughCache(store), config)


async def seed(store: InMemoryCache, config: CacheConfig) -> dict:
    """Populate one entry per key family for two pools and two users."""
    keys = {
        "reserves": config.policy(CacheKey.POOL_RESERVES).key(pool_id=POOL),
        "analytics": config.policy(CacheKey.POOL_ANALYTICS).key(pool_id=POOL),
        "metadata": config.policy(CacheKey.POOL_METADATA).key(pool_id=POOL),
        "history_1d": config.policy(CacheKey.POOL_HISTORY).key(pool_id=POOL, timeframe="1d"),
        "history_7d": config.policy(CacheKey.POOL_HISTORY).key(pool_id=POOL, timeframe="7d"),
        "pool_list": config.policy(CacheKey.POOL_LIST).key(),
        "stats": config.policy(CacheKey.SYSTEM_STATS).key(),
        "other_analytics": config.policy(CacheKey.POOL_ANALYTICS).key(pool_id=OTHER_POOL),
        "other_history": config.policy(CacheKey.POOL_HISTORY).key(pool_id=OTHER_POOL, timeframe="1d"),
        "positions": config.policy(CacheKey.USER_POSITIONS).key(address=USER),
        "portfolio": config.policy(CacheKey.USER_PORTFOLIO).key(address=USER),
        "balance": config.policy(CacheKey.USER_LP_BALANCE).key(address=USER, pool_id=POOL),
        "share": config.policy(CacheKey.USER_POOL_SHARE).key(address=USER, pool_id=POOL),
        "fees": config.policy(CacheKey.FEE_EARNINGS).key(address=USER, pool_id=POOL),
        "fees_other_pool": config.policy(CacheKey.FEE_EARNINGS).key(address=USER, pool_id=OTHER_POOL),
        "other_positions": config.policy(CacheKey.USER_POSITIONS).key(address=OTHER_USER),
        "other_share": config.policy(CacheKey.USER_POOL_SHARE).key(address=OTHER_USER, pool_id=POOL),
        "other_share_other_pool": config.policy(CacheKey.USER_POOL_SHARE).key(
            address=OTHER_USER, pool_id=OTHER_POOL,
        ),
        "other_fees": config.policy(CacheKey.FEE_EARNINGS).key(address=OTHER_USER, pool_id=POOL),
        "price": config.policy(CacheKey.TOKEN_PRICE).key(token="STX"),
    }
    for key in keys.values():
        await store.set(key, 1, 300)
    return keys


async def remaining(store: InMemoryCache, keys: dict) -> set:
    return {name for name, key in keys.items() if await store.get(key) is not None}


# =============================================================================
# EVENT SCOPES
# =============================================================================

class TestEventScopes:
    """Test which entries each event removes."""

    @pytest.mark.asyncio
    async def test_liquidity_added(self, invalidator, store, config):
        """Pool state and the provider's data go; other pools and users stay."""
        keys = await seed(store, config)

        result = await invalidator.handle_event(
            LiquidityEvent.LIQUIDITY_ADDED, pool_id=POOL, user_address=USER,
        )

        assert result.success
        assert await remaining(store, keys) == {
            "other_analytics", "other_history", "other_positions",
            "other_share", "other_share_other_pool", "other_fees", "price",
        }

    @pytest.mark.asyncio
    async def test_liquidity_removed_matches_added(self, invalidator, store, config):
        """Removes have the same scope as adds."""
        keys = await seed(store, config)

        await invalidator.handle_event(
            LiquidityEvent.LIQUIDITY_REMOVED, pool_id=POOL, user_address=USER,
        )

        assert "positions" not in await remaining(store, keys)
        assert "fees_other_pool" not in await remaining(store, keys)
        assert "other_positions" in await remaining(store, keys)

    @pytest.mark.asyncio
    async def test_swap_executed(self, invalidator, store, config):
        """A swap moves shares and fees in that pool and every cached position value."""
        keys = await seed(store, config)

        await invalidator.handle_event(LiquidityEvent.SWAP_EXECUTED, pool_id=POOL)

        left = await remaining(store, keys)
        assert {"reserves", "analytics", "metadata", "history_1d", "history_7d",
                "pool_list", "stats", "share", "other_share", "fees", "other_fees",
                "positions", "portfolio", "other_positions"}.isdisjoint(left)
        assert {"balance", "fees_other_pool", "other_share_other_pool",
                "other_analytics", "price"} <= left

    @pytest.mark.asyncio
    async def test_fees_recorded_for_one_pool(self, invalidator, store, config):
        """Recording a payout drops that fee entry plus positions and portfolio."""
        keys = await seed(store, config)

        await invalidator.handle_event(
            LiquidityEvent.FEES_RECORDED, pool_id=POOL, user_address=USER,
        )

        left = await remaining(store, keys)
        assert {"fees", "positions", "portfolio"}.isdisjoint(left)
        assert {"fees_other_pool", "analytics", "other_fees", "balance"} <= left

    @pytest.mark.asyncio
    async def test_fees_recorded_without_pool(self, invalidator, store, config):
        """Without a pool every fee entry of the user goes."""
        keys = await seed(store, config)

        await invalidator.handle_event(LiquidityEvent.FEES_RECORDED, user_address=USER)

        left = await remaining(store, keys)
        assert {"fees", "fees_other_pool"}.isdisjoint(left)
        assert "other_fees" in left

    @pytest.mark.asyncio
    async def test_pool_refreshed_without_pool(self, invalidator, store, config):
        """A full refresh drops the pool list and stats only."""
        keys = await seed(store, config)

        result = await invalidator.handle_event(LiquidityEvent.POOL_REFRESHED)

        assert result.keys_invalidated == 2
        assert {"pool_list", "stats"}.isdisjoint(await remaining(store, keys))

    @pytest.mark.asyncio
    async def test_invalidate_user(self, invalidator, store, config):
        """Manual user invalidation covers positions, balances, shares and fees."""
        keys = await seed(store, config)

        await invalidator.invalidate_user(USER)

        left = await remaining(store, keys)
        assert {"positions", "portfolio", "balance", "share", "fees", "fees_other_pool"}.isdisjoint(left)
        assert "analytics" in left

    @pytest.mark.asyncio
    async def test_invalidate_all(self, invalidator, store, config):
        """The nuclear option empties the namespace."""
        keys = await seed(store, config)

        result = await invalidator.invalidate_all()

        assert result.keys_invalidated == len(keys)
        assert len(store) == 0


# =============================================================================
# LISTENERS AND FAILURES
# =============================================================================

class TestListenersAndFailures:
    """Test notification ordering and failure reporting."""

    @pytest.mark.asyncio
    async def test_listener_runs_after_deletes(self, invalidator, store, config):
        """Listeners observe the cache already invalidated."""
        keys = await seed(store, config)
        seen = []

        async def listener(result: InvalidationResult):
            seen.append((result.event, await store.get(keys["analytics"])))

        invalidator.add_listener(listener)
        await invalidator.invalidate_pool(POOL)

        assert seen == [(LiquidityEvent.MANUAL_INVALIDATE_POOL, None)]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_propagate(self, invalidator, store, config):
        """A broken listener cannot fail the write path."""
        await seed(store, config)

        async def broken(result):
            raise RuntimeError("publisher down")

        invalidator.add_listener(broken)
        result = await invalidator.invalidate_pool(POOL)

        assert result.success

    @pytest.mark.asyncio
    async def test_removed_listener_not_called(self, invalidator):
        calls = []

        async def listener(result):
            calls.append(result)

        invalidator.add_listener(listener)
        invalidator.remove_listener(listener)
        await invalidator.invalidate_all()

        assert calls == []

    @pytest.mark.asyncio
    async def test_store_failure_reported_not_raised(self, config):
        """An unreachable store yields an unsuccessful result with errors."""
        invalidator = CacheInvalidator(ReadThroughCache(FailingStore()), config)

        result = await invalidator.handle_event(
            LiquidityEvent.LIQUIDITY_ADDED, pool_id=POOL, user_address=USER,
        )

        assert result.success is False
        assert result.keys_invalidated == 0
        assert any("pool:analytics:STX-USDCx" in e for e in result.errors)
