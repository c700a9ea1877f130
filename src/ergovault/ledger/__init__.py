"""Ledger module for wallets, addresses and balances."""

from ergovault.ledger.database import get_db, get_session_factory, init_db
from ergovault.ledger.models import (
    Address,
    AddressState,
    Asset,
    Connection,
    DAppConnection,
    SystemConfig,
    Wallet,
    WalletType,
)
from ergovault.ledger.repository import (
    AddressRepository,
    AssetRepository,
    ConnectionRepository,
    SettingsRepository,
    WalletRepository,
)

__all__ = [
    # Models
    "Wallet",
    "Address",
    "Asset",
    "Connection",
    "DAppConnection",
    "SystemConfig",
    # Enums
    "WalletType",
    "AddressState",
    # Database
    "get_db",
    "get_session_factory",
    "init_db",
    # Repositories
    "WalletRepository",
    "AddressRepository",
    "AssetRepository",
    "ConnectionRepository",
    "SettingsRepository",
]
