"""
Liquidity Data Sources

LiquiditySource is the read side of the swap contract: pool reserves and
LP token balances. Implementations raise PoolNotFoundError when no pool
exists for a pair and UpstreamError when the node cannot be reached.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, Optional, Tuple

from velumx.models.liquidity import PoolReserves
from velumx.exceptions import PoolNotFoundError, UpstreamError


logger = logging.getLogger(__name__)


def pair_key(token_a: str, token_b: str) -> FrozenSet[str]:
    return frozenset((token_a, token_b))


class LiquiditySource(ABC):
    """Read access to on-chain pool state."""

    name: str = "source"

    @abstractmethod
    async def get_pool_reserves(self, token_a: str, token_b: str) -> PoolReserves:
        """
        Reserves of the pool for a token pair, oriented as (token_a, token_b).

        Raises:
            PoolNotFoundError: No pool exists for the pair
            UpstreamError: The chain could not be queried
        """

    @abstractmethod
    async def get_lp_balance(self, user_address: str, token_a: str, token_b: str) -> int:
        """LP token balance of a user in a pair's pool (0 if none)."""

    async def close(self) -> None:
        return None


class InMemoryLiquiditySource(LiquiditySource):
    """
    Pool state held in process memory.

    Serves local development and tests. Reserves are stored per unordered
    pair together with the token order they were recorded in.
    """

    name = "memory"

    def __init__(self):
        self._pools: Dict[FrozenSet[str], Tuple[str, PoolReserves]] = {}
        self._balances: Dict[Tuple[str, FrozenSet[str]], int] = {}
        self.available = True
        self.reserve_calls = 0
        self.balance_calls = 0

    def set_pool(self, token_a: str, token_b: str, reserves: PoolReserves):
        self._pools[pair_key(token_a, token_b)] = (token_a, reserves)

    def remove_pool(self, token_a: str, token_b: str):
        self._pools.pop(pair_key(token_a, token_b), None)

    def set_lp_balance(self, user_address: str, token_a: str, token_b: str, balance: int):
        self._balances[(user_address, pair_key(token_a, token_b))] = balance

    def _check_available(self):
        if not self.available:
            raise UpstreamError("Liquidity source unavailable", source=self.name)

    async def get_pool_reserves(self, token_a: str, token_b: str) -> PoolReserves:
        self.reserve_calls += 1
        self._check_available()

        entry: Optional[Tuple[str, PoolReserves]] = self._pools.get(pair_key(token_a, token_b))
        if entry is None:
            raise PoolNotFoundError(f"{token_a}/{token_b}")

        first, reserves = entry
        if first == token_a:
            return reserves
        return PoolReserves(
            reserve_a=reserves.reserve_b,
            reserve_b=reserves.reserve_a,
            total_supply=reserves.total_supply,
        )

    async def get_lp_balance(self, user_address: str, token_a: str, token_b: str) -> int:
        self.balance_calls += 1
        self._check_available()
        return self._balances.get((user_address, pair_key(token_a, token_b)), 0)
