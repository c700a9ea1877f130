"""Gap-limit address discovery.

A scan re-checks the addresses already stored for a wallet, then derives
fresh batches of ``gap_limit`` addresses until a whole batch comes back
unused. The stored set is then trimmed so that it ends either at the last
stored address or one address past the last used one, whichever is further.
"""

import logging
from typing import Optional

from ergovault.chains import CHUNK_DERIVE_LENGTH
from ergovault.errors import CapacityExceededError
from ergovault.explorer.base import ChainExplorer
from ergovault.hdwallet.pool import KeyDerivationPool
from ergovault.ledger.models import Address, AddressState, Wallet
from ergovault.ledger.repository import AddressRepository
from ergovault.services.balance_sync import BalanceSynchronizer
from ergovault.utils.locks import WalletLock

logger = logging.getLogger(__name__)


def last_used_position(addresses: list[Address]) -> int:
    """Position of the last Used address in the list, -1 if none."""
    for position in range(len(addresses) - 1, -1, -1):
        if addresses[position].state == AddressState.USED:
            return position
    return -1


class AddressDiscoveryEngine:
    """Finds a wallet's used addresses and keeps one unused address ready."""

    def __init__(
        self,
        pool: KeyDerivationPool,
        explorer: ChainExplorer,
        address_repo: AddressRepository,
        balance_sync: Optional[BalanceSynchronizer] = None,
        gap_limit: int = CHUNK_DERIVE_LENGTH,
        lock_timeout: Optional[float] = 30.0,
    ):
        self.pool = pool
        self.explorer = explorer
        self.address_repo = address_repo
        self.balance_sync = balance_sync
        self.gap_limit = gap_limit
        self.lock_timeout = lock_timeout

    async def discover(self, wallet: Wallet) -> list[Address]:
        """Run a full scan for ``wallet`` and persist the result.

        Returns:
            The wallet's address set after the scan, ordered by index
        """
        async with WalletLock(wallet.id, self.lock_timeout, operation="discover"):
            return await self.discover_unlocked(wallet)

    async def new_address(self, wallet: Wallet) -> Address:
        """Append one Unused address at the next index.

        Raises:
            CapacityExceededError: If ``gap_limit`` unused addresses already
                follow the last used one
        """
        async with WalletLock(wallet.id, self.lock_timeout, operation="new_address"):
            return await self.new_address_unlocked(wallet)

    async def discover_unlocked(self, wallet: Wallet) -> list[Address]:
        """Scan without taking the wallet lock; the caller must hold it."""
        node = self.pool.get(wallet.public_key)
        addresses = await self.address_repo.get_by_wallet_id(wallet.id)
        used_scripts: set[str] = set()
        last_stored_idx = addresses[-1].index if addresses else -1

        if addresses:
            used_scripts.update(
                await self.explorer.get_used_addresses(
                    [a.script for a in addresses], batch_size=self.gap_limit
                )
            )

        offset = last_stored_idx + 1
        while True:
            derived = self.pool.derive_range(node, self.gap_limit, offset)
            used = await self.explorer.get_used_addresses(
                [d.script for d in derived], batch_size=self.gap_limit
            )
            addresses.extend(
                Address(
                    wallet_id=wallet.id,
                    index=d.index,
                    script=d.script,
                    type="p2pk",
                    state=AddressState.UNUSED,
                )
                for d in derived
            )
            used_scripts.update(used)
            offset += self.gap_limit
            if not used:
                break

        # A stored Used state never flips back
        for address in addresses:
            if address.script in used_scripts:
                address.state = AddressState.USED

        last_used_idx = -1
        position = last_used_position(addresses)
        if position >= 0:
            last_used_idx = addresses[position].index

        if last_stored_idx > last_used_idx:
            keep_until = last_stored_idx
        elif last_used_idx >= 0:
            keep_until = last_used_idx + 1
        else:
            keep_until = addresses[0].index

        retained = [a for a in addresses if a.index <= keep_until]
        stored = await self.address_repo.bulk_put(retained, wallet.id)
        logger.info(
            f"Discovery for wallet {wallet.id}: {len(stored)} addresses, "
            f"last used index {last_used_idx}"
        )

        if self.balance_sync is not None:
            await self.balance_sync.refresh(wallet.id, [a.script for a in stored])

        return stored

    async def new_address_unlocked(self, wallet: Wallet) -> Address:
        """Append an address without taking the wallet lock."""
        addresses = await self.address_repo.get_by_wallet_id(wallet.id)
        if len(addresses) - last_used_position(addresses) > self.gap_limit:
            raise CapacityExceededError(self.gap_limit)

        node = self.pool.get(wallet.public_key)
        next_index = addresses[-1].index + 1 if addresses else 0
        derived = self.pool.derive_child(node, next_index)

        address = await self.address_repo.put(
            Address(
                wallet_id=wallet.id,
                index=derived.index,
                script=derived.script,
                type="p2pk",
                state=AddressState.UNUSED,
            )
        )
        logger.info(f"Added address {derived.index} to wallet {wallet.id}")
        return address
