"""Base interfaces for chain data collaborators.

The engine never talks HTTP directly; it depends on these two interfaces so
explorers and price sources can be swapped (or faked in tests).
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional

from ergovault.explorer.contracts import AddressBalance, BlockHeader, Box, TokenRate

logger = logging.getLogger(__name__)


class ChainExplorer(ABC):
    """Read/submit access to the Ergo blockchain."""

    @abstractmethod
    async def get_used_addresses(
        self, scripts: list[str], batch_size: Optional[int] = None
    ) -> list[str]:
        """Return the subset of ``scripts`` that appear in any transaction.

        Args:
            scripts: Addresses to check
            batch_size: Maximum addresses per request batch

        Returns:
            Used addresses, in the order they were given
        """
        pass

    @abstractmethod
    async def get_addresses_balance(self, scripts: list[str]) -> list[AddressBalance]:
        """Get confirmed and unconfirmed balances for each address."""
        pass

    @abstractmethod
    async def get_unspent_boxes(self, scripts: list[str]) -> list[Box]:
        """Get unspent boxes guarded by the given addresses."""
        pass

    @abstractmethod
    async def get_recent_block_headers(self, count: int) -> list[BlockHeader]:
        """Get the ``count`` most recent headers, newest first."""
        pass

    @abstractmethod
    async def submit_transaction(self, signed_tx: dict[str, Any]) -> str:
        """Submit a signed transaction.

        Returns:
            Transaction id assigned by the network
        """
        pass

    @abstractmethod
    async def get_token_market_rates(self) -> list[TokenRate]:
        """Get current token rates in ERG."""
        pass

    async def aclose(self) -> None:
        """Release network resources."""
        pass


class PriceOracle(ABC):
    """Source of the base asset's fiat price."""

    @abstractmethod
    async def get_base_price(self) -> Decimal:
        """Get the ERG price in the configured fiat currency."""
        pass

    async def aclose(self) -> None:
        pass
