"""Utility modules for ergovault."""

from ergovault.utils.locks import (
    LockTimeoutError,
    WalletLock,
    clear_wallet_locks,
    get_wallet_lock,
    wallet_lock,
)

__all__ = [
    "LockTimeoutError",
    "WalletLock",
    "clear_wallet_locks",
    "get_wallet_lock",
    "wallet_lock",
]
