"""Repositories for wallet, address, asset and settings persistence.

Each repository takes a session factory and runs every call in its own unit
of work, so callers never hold a session open across network round trips.
Returned ORM rows are detached snapshots (``expire_on_commit=False``).
"""

import json
import logging
from typing import Any, Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ergovault.chains import ERG_DECIMALS, ERG_NAME, ERG_TOKEN_ID
from ergovault.crypto import SecretBuffer, decrypt_mnemonic
from ergovault.errors import MnemonicNotFoundError, WalletNotFoundError
from ergovault.explorer.contracts import AddressBalance
from ergovault.ledger.database import session_scope
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

logger = logging.getLogger(__name__)


class _Repository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    def _session(self):
        return session_scope(self._session_factory)


class WalletRepository(_Repository):
    """Persistence for wallets."""

    async def get_by_id(self, wallet_id: int) -> Optional[Wallet]:
        async with self._session() as session:
            return await session.get(Wallet, wallet_id)

    async def get_by_public_key(self, public_key: str) -> Optional[Wallet]:
        async with self._session() as session:
            stmt = select(Wallet).where(Wallet.public_key == public_key)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_all(self) -> list[Wallet]:
        async with self._session() as session:
            result = await session.execute(select(Wallet).order_by(Wallet.id))
            return list(result.scalars().all())

    async def put(self, wallet: Wallet) -> int:
        """Insert or replace a wallet.

        When a wallet with the same public key already exists its id is
        preserved and its columns are overwritten.

        Returns:
            The wallet id
        """
        if wallet.type == WalletType.STANDARD and not wallet.mnemonic:
            raise ValueError("Standard wallets require an encrypted mnemonic")
        if wallet.type == WalletType.READ_ONLY and wallet.mnemonic:
            raise ValueError("Read-only wallets cannot carry a mnemonic")

        async with self._session() as session:
            stmt = select(Wallet).where(Wallet.public_key == wallet.public_key)
            existing = (await session.execute(stmt)).scalar_one_or_none()

            if existing is None:
                session.add(wallet)
                await session.flush()
                logger.info(f"Stored new wallet {wallet.id} ({WalletType(wallet.type).value})")
                return wallet.id

            existing.name = wallet.name
            existing.network = wallet.network or existing.network
            existing.type = wallet.type
            existing.chain_code = wallet.chain_code
            existing.mnemonic = wallet.mnemonic
            existing.avoid_address_reuse = bool(wallet.avoid_address_reuse)
            existing.hide_used_addresses = bool(wallet.hide_used_addresses)
            existing.default_change_index = wallet.default_change_index or 0
            await session.flush()
            logger.info(f"Replaced wallet {existing.id} with same public key")
            return existing.id

    async def update_settings(
        self,
        wallet_id: int,
        name: str,
        avoid_address_reuse: bool,
        hide_used_addresses: bool,
    ) -> Wallet:
        async with self._session() as session:
            wallet = await session.get(Wallet, wallet_id)
            if wallet is None:
                raise WalletNotFoundError(wallet_id)

            wallet.name = name
            wallet.avoid_address_reuse = avoid_address_reuse
            wallet.hide_used_addresses = hide_used_addresses
            await session.flush()
            return wallet

    async def update_change_index(self, wallet_id: int, index: int) -> Wallet:
        if index < 0:
            raise ValueError("Change index must be non-negative")

        async with self._session() as session:
            wallet = await session.get(Wallet, wallet_id)
            if wallet is None:
                raise WalletNotFoundError(wallet_id)

            wallet.default_change_index = index
            await session.flush()
            return wallet

    async def get_mnemonic(
        self, wallet_id: int, password: str, iterations: int = 100000
    ) -> SecretBuffer:
        """Decrypt the stored mnemonic of a wallet.

        Raises:
            WalletNotFoundError: If the wallet does not exist
            MnemonicNotFoundError: If the wallet has no mnemonic
            DecryptionError: If the password is wrong
        """
        wallet = await self.get_by_id(wallet_id)
        if wallet is None:
            raise WalletNotFoundError(wallet_id)
        if not wallet.mnemonic:
            raise MnemonicNotFoundError(f"Wallet {wallet_id} doesn't have a mnemonic phrase")

        return decrypt_mnemonic(wallet.mnemonic, password, iterations=iterations)


class AddressRepository(_Repository):
    """Persistence for derived addresses."""

    async def get_by_wallet_id(self, wallet_id: int) -> list[Address]:
        async with self._session() as session:
            stmt = select(Address).where(Address.wallet_id == wallet_id).order_by(Address.index)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def put(self, address: Address) -> Address:
        """Insert or update one address keyed by (wallet_id, index)."""
        async with self._session() as session:
            return await self._upsert(session, address)

    async def bulk_put(self, addresses: Iterable[Address], wallet_id: int) -> list[Address]:
        """Replace a wallet's address set with exactly ``addresses``.

        Rows are upserted by index; rows of the wallet whose index is not in
        the new set are removed. Runs in a single transaction.
        """
        addresses = list(addresses)
        indexes = [a.index for a in addresses]
        if len(set(indexes)) != len(indexes):
            raise ValueError("Duplicate address index in bulk put")

        async with self._session() as session:
            await session.execute(
                delete(Address).where(
                    Address.wallet_id == wallet_id,
                    Address.index.not_in(indexes),
                )
            )

            stored = []
            for address in addresses:
                address.wallet_id = wallet_id
                stored.append(await self._upsert(session, address))

            logger.debug(f"Stored {len(stored)} addresses for wallet {wallet_id}")
            return stored

    @staticmethod
    async def _upsert(session: AsyncSession, address: Address) -> Address:
        stmt = select(Address).where(
            Address.wallet_id == address.wallet_id,
            Address.index == address.index,
        )
        existing = (await session.execute(stmt)).scalar_one_or_none()

        if existing is None:
            row = Address(
                wallet_id=address.wallet_id,
                index=address.index,
                script=address.script,
                type=address.type or "p2pk",
                state=address.state or AddressState.UNUSED,
            )
            session.add(row)
            await session.flush()
            return row

        existing.script = address.script
        existing.state = address.state or existing.state
        await session.flush()
        return existing


class AssetRepository(_Repository):
    """Persistence for per-address token balances."""

    async def get_by_wallet_id(self, wallet_id: int) -> list[Asset]:
        async with self._session() as session:
            stmt = select(Asset).where(Asset.wallet_id == wallet_id).order_by(Asset.address)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @staticmethod
    def parse_balance_response(raw: Iterable[AddressBalance], wallet_id: int) -> list[Asset]:
        """Convert explorer balances into (unsaved) asset rows.

        An ERG row is produced when the address holds ERG or any token;
        unconfirmed amounts are kept only when the explorer reports them.
        """
        assets: list[Asset] = []

        for balance in raw:
            confirmed = balance.confirmed
            unconfirmed = balance.unconfirmed
            unconfirmed_tokens = {t.token_id: t for t in unconfirmed.tokens} if unconfirmed else {}

            has_erg = confirmed.nano_ergs > 0 or (unconfirmed is not None and unconfirmed.nano_ergs != 0)
            if has_erg or confirmed.tokens or unconfirmed_tokens:
                assets.append(
                    Asset(
                        wallet_id=wallet_id,
                        address=balance.address,
                        token_id=ERG_TOKEN_ID,
                        name=ERG_NAME,
                        decimals=ERG_DECIMALS,
                        confirmed_amount=str(confirmed.nano_ergs),
                        unconfirmed_amount=str(unconfirmed.nano_ergs) if unconfirmed else None,
                    )
                )

            seen = set()
            for token in confirmed.tokens:
                pending = unconfirmed_tokens.get(token.token_id)
                seen.add(token.token_id)
                assets.append(
                    Asset(
                        wallet_id=wallet_id,
                        address=balance.address,
                        token_id=token.token_id,
                        name=token.name,
                        decimals=token.decimals or 0,
                        confirmed_amount=str(token.amount),
                        unconfirmed_amount=str(pending.amount) if pending else None,
                    )
                )

            # Tokens that only exist in the mempool so far
            for token_id, token in unconfirmed_tokens.items():
                if token_id in seen:
                    continue
                assets.append(
                    Asset(
                        wallet_id=wallet_id,
                        address=balance.address,
                        token_id=token_id,
                        name=token.name,
                        decimals=token.decimals or 0,
                        confirmed_amount="0",
                        unconfirmed_amount=str(token.amount),
                    )
                )

        return assets

    async def sync(self, assets: Iterable[Asset], wallet_id: int) -> None:
        """Make the stored rows of a wallet match ``assets`` exactly."""
        incoming = {(a.address, a.token_id): a for a in assets}

        async with self._session() as session:
            stmt = select(Asset).where(Asset.wallet_id == wallet_id)
            current = list((await session.execute(stmt)).scalars().all())

            for row in current:
                key = (row.address, row.token_id)
                new = incoming.pop(key, None)
                if new is None:
                    await session.delete(row)
                    continue

                row.name = new.name
                row.decimals = new.decimals
                row.confirmed_amount = new.confirmed_amount
                row.unconfirmed_amount = new.unconfirmed_amount

            for new in incoming.values():
                session.add(
                    Asset(
                        wallet_id=wallet_id,
                        address=new.address,
                        token_id=new.token_id,
                        name=new.name,
                        decimals=new.decimals,
                        confirmed_amount=new.confirmed_amount,
                        unconfirmed_amount=new.unconfirmed_amount,
                    )
                )

            await session.flush()


class SettingsRepository(_Repository):
    """Key/value JSON configuration blobs."""

    async def get_config(self, key: str) -> Optional[str]:
        async with self._session() as session:
            config = await session.get(SystemConfig, key)
            return config.value if config else None

    async def set_config(self, key: str, value: str) -> None:
        async with self._session() as session:
            config = await session.get(SystemConfig, key)
            if config is None:
                session.add(SystemConfig(key=key, value=value))
            else:
                config.value = value
            await session.flush()

    async def get_json(self, key: str) -> Optional[dict[str, Any]]:
        raw = await self.get_config(key)
        return json.loads(raw) if raw else None

    async def set_json(self, key: str, data: dict[str, Any]) -> None:
        await self.set_config(key, json.dumps(data))


class ConnectionRepository(_Repository):
    """Persistence for connected dApp origins.

    Reads return frozen snapshots; callers cannot mutate stored rows through
    them.
    """

    async def list_all(self) -> tuple[DAppConnection, ...]:
        async with self._session() as session:
            result = await session.execute(select(Connection).order_by(Connection.origin))
            return tuple(DAppConnection.from_row(row) for row in result.scalars().all())

    async def get_by_origin(self, origin: str) -> Optional[DAppConnection]:
        async with self._session() as session:
            row = await session.get(Connection, origin)
            return DAppConnection.from_row(row) if row else None

    async def put(
        self, origin: str, wallet_id: int, favicon: Optional[str] = None
    ) -> DAppConnection:
        """Connect ``origin`` to a wallet, replacing any previous wallet for it."""
        async with self._session() as session:
            row = await session.get(Connection, origin)
            if row is None:
                row = Connection(origin=origin, wallet_id=wallet_id, favicon=favicon)
                session.add(row)
            else:
                row.wallet_id = wallet_id
                row.favicon = favicon
            await session.flush()
            logger.info(f"Connected {origin} to wallet {wallet_id}")
            return DAppConnection.from_row(row)

    async def delete_by_origin(self, origin: str) -> bool:
        """Remove a connection; returns False when the origin was not connected."""
        async with self._session() as session:
            result = await session.execute(delete(Connection).where(Connection.origin == origin))
            removed = result.rowcount > 0
        if removed:
            logger.info(f"Disconnected {origin}")
        return removed
