"""
Token Price Oracle

Async client for USD token prices:
- USDCx is pegged and priced at 1.0 without a request
- STX comes from CoinGecko's simple price endpoint
- Anything else goes to the configured price oracle, when enabled

Failures raise UpstreamError; PriceService decides what to serve instead.
"""

import logging
from typing import Dict, Optional

import httpx

from velumx.exceptions import UpstreamError
from velumx.models.liquidity import Token
from velumx.utils.config import Settings


logger = logging.getLogger(__name__)


STABLE_SYMBOLS = frozenset({"USDCx", "USDC", "USDT"})

COINGECKO_IDS: Dict[str, str] = {
    "STX": "stacks",
}

# Served when every price source fails
FALLBACK_PRICES: Dict[str, float] = {
    "STX": 2.5,
    "USDCx": 1.0,
}
DEFAULT_FALLBACK_PRICE = 1.0


def fallback_price(token: Token) -> float:
    return FALLBACK_PRICES.get(token.symbol, DEFAULT_FALLBACK_PRICE)


class PriceOracle:
    """
    Fetches live USD prices.

    Usage:
        oracle = PriceOracle(settings)
        price = await oracle.get_price(token)
        await oracle.close()
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
        max_connections: int = 10,
    ):
        self.settings = settings
        self._client = client or httpx.AsyncClient(
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_connections // 2,
            ),
            timeout=httpx.Timeout(settings.PRICE_REQUEST_TIMEOUT),
        )
        self.requests = 0

    async def close(self):
        await self._client.aclose()

    async def get_price(self, token: Token) -> float:
        """
        Current USD price of a token.

        Raises:
            UpstreamError: No source could provide a price
        """
        if token.symbol in STABLE_SYMBOLS:
            return 1.0

        coingecko_id = COINGECKO_IDS.get(token.symbol)
        if coingecko_id is not None:
            return await self._coingecko_price(coingecko_id)

        if self.settings.PRICE_ORACLE_ENABLED and self.settings.PRICE_ORACLE_URL:
            return await self._oracle_price(token)

        raise UpstreamError(f"No price source for {token.symbol}", source="prices")

    async def _get_json(self, url: str, params: Optional[Dict] = None,
                        headers: Optional[Dict] = None) -> Dict:
        self.requests += 1
        logger.debug(f"GET {url}")
        try:
            response = await self._client.get(url, params=params, headers=headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise UpstreamError(f"Price request failed: {e}", source="prices") from e
        except ValueError as e:
            raise UpstreamError(f"Invalid price response from {url}", source="prices") from e

    async def _coingecko_price(self, coingecko_id: str) -> float:
        data = await self._get_json(
            f"{self.settings.COINGECKO_API_URL}/simple/price",
            params={"ids": coingecko_id, "vs_currencies": "usd"},
        )
        price = data.get(coingecko_id, {}).get("usd")
        if not isinstance(price, (int, float)) or price <= 0:
            raise UpstreamError(f"CoinGecko returned no price for {coingecko_id}", source="coingecko")
        return float(price)

    async def _oracle_price(self, token: Token) -> float:
        headers = {}
        if self.settings.PRICE_ORACLE_API_KEY:
            headers["X-API-Key"] = self.settings.PRICE_ORACLE_API_KEY

        data = await self._get_json(
            f"{self.settings.PRICE_ORACLE_URL.rstrip('/')}/price/{token.address}",
            headers=headers,
        )
        price = data.get("price")
        if not isinstance(price, (int, float)) or price <= 0:
            raise UpstreamError(f"Oracle returned no price for {token.symbol}", source="oracle")
        return float(price)
