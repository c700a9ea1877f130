"""ERG fiat price from CoinGecko."""

import logging
from decimal import Decimal
from typing import Optional

import httpx

from ergovault.errors import NetworkError
from ergovault.explorer.base import PriceOracle

logger = logging.getLogger(__name__)


class CoinGeckoPriceOracle(PriceOracle):
    """Price oracle using the CoinGecko simple price endpoint."""

    COIN_ID = "ergo"

    def __init__(
        self,
        base_url: str = "https://api.coingecko.com/api/v3",
        currency: str = "usd",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.currency = currency.lower()
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def get_base_price(self) -> Decimal:
        client = await self._get_client()
        try:
            response = await client.get(
                f"{self.base_url}/simple/price",
                params={"ids": self.COIN_ID, "vs_currencies": self.currency},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch ERG price: {e}")
            raise NetworkError(f"Price request failed: {e}") from e

        try:
            return Decimal(str(data[self.COIN_ID][self.currency]))
        except (KeyError, TypeError) as e:
            raise NetworkError("Malformed price response") from e

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
