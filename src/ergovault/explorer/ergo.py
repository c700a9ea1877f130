"""Ergo Explorer API client.

Docs: https://api.ergoplatform.com/api/v1/docs/

Failures are raised as NetworkError and never retried here; the caller
decides whether to try again.
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from ergovault.chains import CHUNK_DERIVE_LENGTH, ERG_TOKEN_ID
from ergovault.errors import NetworkError
from ergovault.explorer.base import ChainExplorer
from ergovault.explorer.contracts import (
    AddressBalance,
    BlockHeader,
    Box,
    Page,
    SubmitResponse,
    TokenRate,
)

logger = logging.getLogger(__name__)

UNSPENT_PAGE_LIMIT = 500


class ErgoExplorer(ChainExplorer):
    """Chain explorer backed by the public Ergo Explorer REST API."""

    MAINNET_URL = "https://api.ergoplatform.com"
    TESTNET_URL = "https://api-testnet.ergoplatform.com"

    def __init__(
        self,
        base_url: str = MAINNET_URL,
        market_rates_url: Optional[str] = None,
        timeout: float = 15.0,
        concurrency: int = 5,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize explorer client.

        Args:
            base_url: Explorer API base URL
            market_rates_url: DEX markets endpoint for token rates
            timeout: HTTP timeout in seconds
            concurrency: Maximum parallel requests per batch
            client: Pre-built HTTP client (tests inject a mock transport)
        """
        self.base_url = base_url.rstrip("/")
        self.market_rates_url = market_rates_url
        self.timeout = timeout
        self._semaphore = asyncio.Semaphore(max(1, concurrency))
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        client = await self._get_client()
        async with self._semaphore:
            try:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                logger.error(f"Explorer returned {e.response.status_code} for {url}")
                raise NetworkError(
                    f"Explorer request failed: {e.response.status_code} {e.response.text}",
                    status_code=e.response.status_code,
                ) from e
            except httpx.HTTPError as e:
                logger.error(f"Explorer request to {url} failed: {e}")
                raise NetworkError(f"Explorer request failed: {e}") from e
            except ValueError as e:
                raise NetworkError(f"Explorer returned invalid JSON for {url}") from e

    async def _is_used(self, address: str) -> bool:
        data = await self._request(
            "GET",
            f"{self.base_url}/api/v1/addresses/{address}/transactions",
            params={"limit": 1},
        )
        try:
            return Page.model_validate(data).total > 0
        except ValidationError as e:
            raise NetworkError(f"Malformed transactions response for {address}") from e

    async def get_used_addresses(
        self, scripts: list[str], batch_size: Optional[int] = None
    ) -> list[str]:
        batch_size = batch_size or CHUNK_DERIVE_LENGTH
        used: list[str] = []

        for start in range(0, len(scripts), batch_size):
            chunk = scripts[start:start + batch_size]
            flags = await asyncio.gather(*(self._is_used(a) for a in chunk))
            used.extend(address for address, flag in zip(chunk, flags) if flag)

        return used

    async def _get_balance(self, address: str) -> AddressBalance:
        data = await self._request(
            "GET", f"{self.base_url}/api/v1/addresses/{address}/balance/total"
        )
        try:
            return AddressBalance.model_validate({**data, "address": address})
        except ValidationError as e:
            raise NetworkError(f"Malformed balance response for {address}") from e

    async def get_addresses_balance(self, scripts: list[str]) -> list[AddressBalance]:
        return list(await asyncio.gather(*(self._get_balance(a) for a in scripts)))

    async def _get_unspent(self, address: str) -> list[Box]:
        boxes: list[Box] = []
        offset = 0

        while True:
            data = await self._request(
                "GET",
                f"{self.base_url}/api/v1/boxes/unspent/byAddress/{address}",
                params={"offset": offset, "limit": UNSPENT_PAGE_LIMIT},
            )
            try:
                page = Page.model_validate(data)
                boxes.extend(Box.model_validate(item) for item in page.items)
            except ValidationError as e:
                raise NetworkError(f"Malformed box response for {address}") from e

            offset += len(page.items)
            if not page.items or offset >= page.total:
                return boxes

    async def get_unspent_boxes(self, scripts: list[str]) -> list[Box]:
        results = await asyncio.gather(*(self._get_unspent(a) for a in scripts))
        return [box for boxes in results for box in boxes]

    async def get_recent_block_headers(self, count: int) -> list[BlockHeader]:
        data = await self._request(
            "GET",
            f"{self.base_url}/api/v1/blocks/headers",
            params={"offset": 0, "limit": count, "sortBy": "height", "sortDirection": "desc"},
        )
        try:
            headers = [BlockHeader.model_validate(item) for item in Page.model_validate(data).items]
        except ValidationError as e:
            raise NetworkError("Malformed block header response") from e
        return sorted(headers, key=lambda h: h.height, reverse=True)

    async def submit_transaction(self, signed_tx: dict[str, Any]) -> str:
        data = await self._request(
            "POST",
            f"{self.base_url}/api/v1/mempool/transactions/submit",
            json=signed_tx,
        )
        try:
            tx_id = SubmitResponse.model_validate(data).id
        except ValidationError as e:
            raise NetworkError("Malformed submit response") from e

        logger.info(f"Submitted transaction {tx_id}")
        return tx_id

    async def get_token_market_rates(self) -> list[TokenRate]:
        """Read ERG/token pools and convert last prices to ERG per token.

        ``lastPrice`` is quote tokens per ERG; pools are deduplicated by
        quote token, first listing wins.
        """
        if not self.market_rates_url:
            return []

        data = await self._request("GET", self.market_rates_url)
        rates: dict[str, TokenRate] = {}

        for market in data or []:
            if market.get("baseId") != ERG_TOKEN_ID:
                continue
            token_id = market.get("quoteId")
            if not token_id or token_id in rates:
                continue

            try:
                last_price = Decimal(str(market.get("lastPrice", "0")))
            except InvalidOperation:
                logger.warning(f"Skipping market with bad price for {token_id}")
                continue
            if last_price <= 0:
                continue

            rates[token_id] = TokenRate(
                token_id=token_id,
                name=market.get("quoteSymbol"),
                erg_per_token=Decimal(1) / last_price,
                timestamp=int(market.get("timestamp") or 0),
            )

        return list(rates.values())

    async def aclose(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
