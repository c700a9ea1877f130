"""Wallet engine services."""

from ergovault.services.balance_sync import BalanceSynchronizer, MarketRateBook
from ergovault.services.commands import (
    ImportWalletCommand,
    SendTxCommand,
    SignTxFromConnectorCommand,
    UpdateChangeIndexCommand,
    UpdateWalletSettingsCommand,
)
from ergovault.services.discovery import AddressDiscoveryEngine
from ergovault.services.wallet_service import WalletService

__all__ = [
    "AddressDiscoveryEngine",
    "BalanceSynchronizer",
    "MarketRateBook",
    "WalletService",
    "ImportWalletCommand",
    "SendTxCommand",
    "SignTxFromConnectorCommand",
    "UpdateChangeIndexCommand",
    "UpdateWalletSettingsCommand",
]
