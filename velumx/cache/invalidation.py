"""
Cache Invalidation Service

Event-driven cache invalidation with minimal scope.
Principle: Invalidate as narrowly as possible.

Events trigger targeted cache invalidation:
- LIQUIDITY_ADDED / LIQUIDITY_REMOVED: pool state plus the provider's data
- SWAP_EXECUTED: pool state, every provider's share and fees in that pool,
  and all cached positions and portfolios
- FEES_RECORDED: one provider's fee earnings and portfolio
- POOL_REFRESHED: pool state, or the pool list when no pool is given

handle_event() returns only after the store deletes have completed, so a
write path can acknowledge its caller knowing later reads recompute.
Listeners (e.g. a real-time publisher) run after invalidation.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from velumx.cache.config import CacheConfig, CacheKey
from velumx.cache.read_through import ReadThroughCache


logger = logging.getLogger(__name__)


class LiquidityEvent(Enum):
    """Events that trigger cache invalidation."""

    # On-chain state changes
    LIQUIDITY_ADDED = "liquidity_added"
    LIQUIDITY_REMOVED = "liquidity_removed"
    SWAP_EXECUTED = "swap_executed"

    # Off-chain records
    FEES_RECORDED = "fees_recorded"
    POOL_REFRESHED = "pool_refreshed"

    # Manual invalidation
    MANUAL_INVALIDATE_POOL = "manual_invalidate_pool"
    MANUAL_INVALIDATE_USER = "manual_invalidate_user"
    MANUAL_INVALIDATE_ALL = "manual_invalidate_all"


@dataclass
class InvalidationResult:
    """Result of a cache invalidation operation."""
    event: LiquidityEvent
    success: bool
    keys_invalidated: int
    duration_ms: float
    pool_id: Optional[str] = None
    user_address: Optional[str] = None
    errors: List[str] = field(default_factory=list)


InvalidationListener = Callable[[InvalidationResult], Awaitable[None]]


class CacheInvalidator:
    """
    Handles cache invalidation based on events.

    Each event type has a specific invalidation scope. Exact keys are
    deleted directly; entity classes (all history windows of a pool, all
    pools of a user) are deleted by pattern.
    """

    def __init__(self, cache: ReadThroughCache, config: CacheConfig):
        self._cache = cache
        self._config = config
        self._listeners: List[InvalidationListener] = []

    def add_listener(self, listener: InvalidationListener):
        self._listeners.append(listener)

    def remove_listener(self, listener: InvalidationListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    # =========================================================================
    # Scopes
    # =========================================================================

    def pool_keys(self, pool_id: str) -> List[str]:
        config = self._config
        return [
            config.policy(CacheKey.POOL_RESERVES).key(pool_id=pool_id),
            config.policy(CacheKey.POOL_ANALYTICS).key(pool_id=pool_id),
            config.policy(CacheKey.POOL_METADATA).key(pool_id=pool_id),
            config.policy(CacheKey.POOL_RISK).key(pool_id=pool_id),
            config.policy(CacheKey.POOL_LIST).key(),
            config.policy(CacheKey.SYSTEM_STATS).key(),
        ]

    def pool_patterns(self, pool_id: str) -> List[str]:
        return [self._config.policy(CacheKey.POOL_HISTORY).pattern(pool_id=pool_id)]

    def user_keys(self, user_address: str) -> List[str]:
        config = self._config
        return [
            config.policy(CacheKey.USER_POSITIONS).key(address=user_address),
            config.policy(CacheKey.USER_PORTFOLIO).key(address=user_address),
        ]

    def user_patterns(self, user_address: str) -> List[str]:
        config = self._config
        return [
            # Covers both LP balances and pool shares
            config.policy(CacheKey.USER_LP_BALANCE).pattern(address=user_address),
            config.policy(CacheKey.FEE_EARNINGS).pattern(address=user_address),
        ]

    def swap_patterns(self, pool_id: str) -> List[str]:
        """
        Per-provider values that move with the pool's reserves.

        Positions and portfolios are keyed per user, not per pool, so every
        user's entry goes.
        """
        config = self._config
        return [
            config.policy(CacheKey.USER_POOL_SHARE).pattern(pool_id=pool_id),
            config.policy(CacheKey.FEE_EARNINGS).pattern(pool_id=pool_id),
            config.policy(CacheKey.USER_POSITIONS).pattern(),
            config.policy(CacheKey.USER_PORTFOLIO).pattern(),
        ]

    async def _delete_keys(self, keys: List[str], errors: List[str]) -> int:
        count = 0
        for key in keys:
            if await self._cache.invalidate(key):
                count += 1
            else:
                errors.append(f"delete failed: {key}")
        return count

    async def _delete_patterns(self, patterns: List[str], errors: List[str]) -> int:
        count = 0
        for pattern in patterns:
            deleted = await self._cache.invalidate_pattern(pattern)
            if deleted < 0:
                errors.append(f"pattern delete failed: {pattern}")
            else:
                count += deleted
        return count

    # =========================================================================
    # Events
    # =========================================================================

    async def handle_event(
        self,
        event: LiquidityEvent,
        pool_id: Optional[str] = None,
        user_address: Optional[str] = None,
    ) -> InvalidationResult:
        """
        Handle cache invalidation for an event.

        Store failures are collected into the result rather than raised;
        affected entries then age out on their TTL.
        """
        start = time.monotonic()
        errors: List[str] = []
        keys: List[str] = []
        patterns: List[str] = []

        logger.info(
            f"Cache invalidation event: {event.value}, "
            f"pool={pool_id}, user={user_address}"
        )

        if event in (LiquidityEvent.LIQUIDITY_ADDED, LiquidityEvent.LIQUIDITY_REMOVED):
            if pool_id:
                keys += self.pool_keys(pool_id)
                patterns += self.pool_patterns(pool_id)
            if user_address:
                keys += self.user_keys(user_address)
                patterns += self.user_patterns(user_address)

        elif event == LiquidityEvent.SWAP_EXECUTED:
            if pool_id:
                keys += self.pool_keys(pool_id)
                patterns += self.pool_patterns(pool_id)
                patterns += self.swap_patterns(pool_id)

        elif event == LiquidityEvent.FEES_RECORDED:
            if user_address:
                keys += self.user_keys(user_address)
                if pool_id:
                    keys.append(self._config.policy(CacheKey.FEE_EARNINGS).key(
                        address=user_address, pool_id=pool_id,
                    ))
                else:
                    patterns.append(self._config.policy(CacheKey.FEE_EARNINGS).pattern(
                        address=user_address,
                    ))

        elif event in (LiquidityEvent.POOL_REFRESHED, LiquidityEvent.MANUAL_INVALIDATE_POOL):
            if pool_id:
                keys += self.pool_keys(pool_id)
                patterns += self.pool_patterns(pool_id)
            else:
                keys.append(self._config.policy(CacheKey.POOL_LIST).key())
                keys.append(self._config.policy(CacheKey.SYSTEM_STATS).key())

        elif event == LiquidityEvent.MANUAL_INVALIDATE_USER:
            if user_address:
                keys += self.user_keys(user_address)
                patterns += self.user_patterns(user_address)

        keys_invalidated = 0
        if event == LiquidityEvent.MANUAL_INVALIDATE_ALL:
            # Nuclear option - use sparingly
            cleared = await self._cache.clear()
            if cleared < 0:
                errors.append("clear failed")
            else:
                keys_invalidated = cleared
        else:
            keys_invalidated += await self._delete_keys(keys, errors)
            keys_invalidated += await self._delete_patterns(patterns, errors)

        duration = (time.monotonic() - start) * 1000
        result = InvalidationResult(
            event=event,
            success=not errors,
            keys_invalidated=keys_invalidated,
            duration_ms=duration,
            pool_id=pool_id,
            user_address=user_address,
            errors=errors,
        )

        if errors:
            logger.warning(f"Invalidation for {event.value} incomplete: {errors}")
        logger.info(
            f"Invalidation complete: {keys_invalidated} keys, duration: {duration:.2f}ms"
        )

        await self._notify(result)
        return result

    async def _notify(self, result: InvalidationResult):
        for listener in list(self._listeners):
            try:
                await listener(result)
            except Exception as e:
                logger.error(f"Invalidation listener failed for {result.event.value}: {e}")

    # =========================================================================
    # Convenience
    # =========================================================================

    async def invalidate_pool(self, pool_id: str) -> InvalidationResult:
        return await self.handle_event(LiquidityEvent.MANUAL_INVALIDATE_POOL, pool_id=pool_id)

    async def invalidate_user(self, user_address: str) -> InvalidationResult:
        return await self.handle_event(LiquidityEvent.MANUAL_INVALIDATE_USER, user_address=user_address)

    async def invalidate_all(self) -> InvalidationResult:
        return await self.handle_event(LiquidityEvent.MANUAL_INVALIDATE_ALL)
