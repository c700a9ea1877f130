"""Chain explorer and price collaborators."""

from ergovault.explorer.base import ChainExplorer, PriceOracle
from ergovault.explorer.contracts import (
    AddressBalance,
    BalanceInfo,
    BlockHeader,
    Box,
    TokenAmount,
    TokenRate,
)
from ergovault.explorer.ergo import ErgoExplorer
from ergovault.explorer.prices import CoinGeckoPriceOracle

__all__ = [
    "ChainExplorer",
    "PriceOracle",
    "ErgoExplorer",
    "CoinGeckoPriceOracle",
    "AddressBalance",
    "BalanceInfo",
    "BlockHeader",
    "Box",
    "TokenAmount",
    "TokenRate",
]
