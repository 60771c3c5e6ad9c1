"""
Stacks Liquidity Source

Reads pool state from the swap contract through a Stacks node's
read-only call endpoint:

    POST {STACKS_RPC_URL}/v2/contracts/call-read/{address}/{name}/{function}
    {"sender": ..., "arguments": ["0x<clarity hex>", ...]}

The contract stores each pool under its token pair in sorted principal
order; reserves read for a reversed pair are swapped back so callers
always get them oriented as (token_a, token_b). LP balances are looked up
under the same sorted pair.
"""

import logging
from typing import Any, List, Optional, Tuple

import httpx

from velumx.chain import clarity
from velumx.chain.source import LiquiditySource
from velumx.exceptions import PoolNotFoundError, UpstreamError
from velumx.models.liquidity import PoolReserves
from velumx.utils.config import Settings


logger = logging.getLogger(__name__)


def contract_identifier(settings: Settings) -> Tuple[str, str]:
    """(deployer address, contract name) of the swap contract."""
    address, _, name = settings.STACKS_SWAP_CONTRACT_ADDRESS.partition(".")
    return address, name or settings.STACKS_SWAP_CONTRACT_NAME


class StacksLiquiditySource(LiquiditySource):
    """
    Swap contract reader over the node RPC.

    Usage:
        source = StacksLiquiditySource(settings)
        reserves = await source.get_pool_reserves(token_a, token_b)
        await source.close()
    """

    name = "stacks"

    def __init__(
        self,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
        max_connections: int = 10,
    ):
        self.settings = settings
        self.contract_address, self.contract_name = contract_identifier(settings)
        self._client = client or httpx.AsyncClient(
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_connections // 2,
            ),
            timeout=httpx.Timeout(settings.STACKS_REQUEST_TIMEOUT),
        )
        self.requests = 0

    async def close(self):
        await self._client.aclose()

    async def call_read_only(self, function: str, principals: List[str]) -> Any:
        """
        Call a read-only function with principal arguments; returns the decoded result.

        Raises:
            UpstreamError: Node unreachable or the call was rejected
        """
        url = (
            f"{self.settings.STACKS_RPC_URL.rstrip('/')}/v2/contracts/call-read/"
            f"{self.contract_address}/{self.contract_name}/{function}"
        )
        body = {
            "sender": self.contract_address,
            "arguments": [clarity.to_hex(clarity.serialize_principal(p)) for p in principals],
        }

        self.requests += 1
        logger.debug(f"POST {url}")
        try:
            response = await self._client.post(url, json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise UpstreamError(f"Read-only call {function} failed: {e}", source=self.name) from e
        except ValueError as e:
            raise UpstreamError(f"Invalid response to {function}", source=self.name) from e

        if not isinstance(data, dict) or not data.get("okay"):
            raise UpstreamError(
                f"Read-only call {function} rejected: {data}",
                source=self.name,
            )
        try:
            return clarity.deserialize(clarity.from_hex(data["result"]))
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(f"Undecodable result from {function}: {e}", source=self.name) from e

    async def get_pool_reserves(self, token_a: str, token_b: str) -> PoolReserves:
        first, second = sorted((token_a, token_b))
        result = await self.call_read_only("get-pool-reserves", [first, second])

        if isinstance(result, clarity.ClarityResponse):
            if not result.ok:
                raise PoolNotFoundError(f"{token_a}/{token_b}")
            result = result.value
        if not isinstance(result, dict):
            # none: the pair has no pool
            raise PoolNotFoundError(f"{token_a}/{token_b}")

        try:
            reserve_first = int(result["reserve-a"])
            reserve_second = int(result["reserve-b"])
            total_supply = int(result["total-supply"])
        except (KeyError, TypeError) as e:
            raise UpstreamError(f"Unexpected pool tuple: {result}", source=self.name) from e

        if first != token_a:
            reserve_first, reserve_second = reserve_second, reserve_first
        return PoolReserves(reserve_a=reserve_first, reserve_b=reserve_second, total_supply=total_supply)

    async def get_lp_balance(self, user_address: str, token_a: str, token_b: str) -> int:
        first, second = sorted((token_a, token_b))
        result = await self.call_read_only("get-lp-balance", [first, second, user_address])

        if isinstance(result, clarity.ClarityResponse):
            result = result.value if result.ok else None
        if result is None:
            return 0
        if not isinstance(result, int) or isinstance(result, bool):
            raise UpstreamError(f"Unexpected LP balance value: {result!r}", source=self.name)
        return result
