"""Concurrency control for wallet operations.

Provides per-wallet locking so discovery, balance refresh and sending never
interleave on the same wallet. Different wallets proceed in parallel.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

logger = logging.getLogger(__name__)

# Global lock registry: wallet_id -> asyncio.Lock
_wallet_locks: dict[int, asyncio.Lock] = {}


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


def get_wallet_lock(wallet_id: int) -> asyncio.Lock:
    """Get or create the lock for a wallet.

    No await happens between lookup and insert, so two tasks can never
    create separate locks for the same wallet.
    """
    lock = _wallet_locks.get(wallet_id)
    if lock is None:
        lock = asyncio.Lock()
        _wallet_locks[wallet_id] = lock
    return lock


class WalletLock:
    """Context manager for exclusive access to one wallet's derived state.

    Example:
        async with WalletLock(wallet_id, operation="discover"):
            addresses = await address_repo.get_by_wallet_id(wallet_id)
            ...
            await address_repo.bulk_put(addresses, wallet_id)
    """

    def __init__(
        self,
        wallet_id: int,
        timeout: Optional[float] = 30.0,
        operation: str = "wallet_operation",
    ):
        """Initialize the lock.

        Args:
            wallet_id: Wallet database id
            timeout: Maximum time to wait for lock (None = wait forever)
            operation: Description of the operation for logging
        """
        self.wallet_id = wallet_id
        self.timeout = timeout
        self.operation = operation
        self._lock: Optional[asyncio.Lock] = None
        self._acquired = False

    async def __aenter__(self) -> "WalletLock":
        self._lock = get_wallet_lock(self.wallet_id)

        try:
            if self.timeout:
                await asyncio.wait_for(self._lock.acquire(), timeout=self.timeout)
            else:
                await self._lock.acquire()
        except asyncio.TimeoutError:
            logger.warning(
                f"Lock timeout for wallet {self.wallet_id} after {self.timeout}s: {self.operation}"
            )
            raise LockTimeoutError(
                f"Could not acquire lock for wallet {self.wallet_id} within {self.timeout}s"
            )

        self._acquired = True
        logger.debug(f"Lock acquired for wallet {self.wallet_id}: {self.operation}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._acquired and self._lock:
            self._lock.release()
            self._acquired = False
            logger.debug(f"Lock released for wallet {self.wallet_id}: {self.operation}")
        return False


@asynccontextmanager
async def wallet_lock(
    wallet_id: int,
    timeout: Optional[float] = 30.0,
    operation: str = "wallet_operation",
):
    """Functional form of :class:`WalletLock`.

    Example:
        async with wallet_lock(wallet.id, operation="send_tx"):
            ...
    """
    async with WalletLock(wallet_id, timeout=timeout, operation=operation):
        yield


def clear_wallet_locks() -> None:
    """Clear all wallet locks (useful for testing)."""
    _wallet_locks.clear()
