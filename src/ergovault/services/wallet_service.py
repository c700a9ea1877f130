"""Wallet service: the operations a wallet UI or connector calls.

Every operation that reads and then writes a wallet's addresses, balances or
settings holds that wallet's lock for its whole duration.
"""

import logging
from typing import Any, Optional

from ergovault.chains import SIGNING_HEADER_COUNT, get_network
from ergovault.crypto import LEGACY_CIPHER, encrypt_mnemonic
from ergovault.errors import WalletNotFoundError
from ergovault.explorer.base import ChainExplorer
from ergovault.hdwallet.ergo import ErgoHDNode
from ergovault.hdwallet.pool import KeyDerivationPool
from ergovault.ledger.models import Address, AddressState, DAppConnection, Wallet, WalletType
from ergovault.ledger.repository import (
    AddressRepository,
    AssetRepository,
    ConnectionRepository,
    SettingsRepository,
    WalletRepository,
)
from ergovault.services.balance_sync import BalanceSynchronizer, MarketRateBook
from ergovault.services.commands import (
    ImportWalletCommand,
    SendTxCommand,
    SignTxFromConnectorCommand,
    UpdateChangeIndexCommand,
    UpdateWalletSettingsCommand,
)
from ergovault.services.discovery import AddressDiscoveryEngine
from ergovault.services.state import AppSettings, WalletSettings, WalletView
from ergovault.transactions.builder import TransactionBuilder
from ergovault.utils.locks import WalletLock

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"


class WalletService:
    """Facade over the wallet engine components."""

    def __init__(
        self,
        pool: KeyDerivationPool,
        explorer: ChainExplorer,
        wallet_repo: WalletRepository,
        address_repo: AddressRepository,
        asset_repo: AssetRepository,
        settings_repo: SettingsRepository,
        connection_repo: ConnectionRepository,
        discovery: AddressDiscoveryEngine,
        balance_sync: BalanceSynchronizer,
        mnemonic_cipher: str = LEGACY_CIPHER,
        kdf_iterations: int = 100000,
        header_count: int = SIGNING_HEADER_COUNT,
        lock_timeout: Optional[float] = 30.0,
    ):
        self.pool = pool
        self.explorer = explorer
        self.wallet_repo = wallet_repo
        self.address_repo = address_repo
        self.asset_repo = asset_repo
        self.settings_repo = settings_repo
        self.connection_repo = connection_repo
        self.discovery = discovery
        self.balance_sync = balance_sync
        self.mnemonic_cipher = mnemonic_cipher
        self.kdf_iterations = kdf_iterations
        self.header_count = header_count
        self.lock_timeout = lock_timeout

    # ======================
    # Wallets
    # ======================

    async def _require_wallet(self, wallet_id: int) -> Wallet:
        wallet = await self.wallet_repo.get_by_id(wallet_id)
        if wallet is None:
            raise WalletNotFoundError(wallet_id)
        return wallet

    def _allocate(self, wallet: Wallet) -> None:
        if wallet.public_key in self.pool:
            return
        node = ErgoHDNode.from_public_key(
            wallet.public_key, wallet.chain_code, get_network(wallet.network).prefix
        )
        self.pool.allocate(node, wallet.public_key)

    async def load_wallets(self) -> list[Wallet]:
        """Allocate a derivation node for every stored wallet."""
        wallets = await self.wallet_repo.list_all()
        for wallet in wallets:
            self._allocate(wallet)
        logger.info(f"Loaded {len(wallets)} wallets")
        return wallets

    async def put_wallet(self, command: ImportWalletCommand) -> int:
        """Import a wallet, replacing any wallet with the same public key.

        The command's mnemonic and password are cleared once stored.

        Returns:
            The wallet id
        """
        prefix = get_network(command.network).prefix
        wallet_type = WalletType(command.type)

        try:
            if wallet_type == WalletType.STANDARD:
                if not command.mnemonic or not command.password:
                    raise ValueError("Standard wallets need a mnemonic and a password")
                node = ErgoHDNode.from_mnemonic(command.mnemonic, network_prefix=prefix)
                encrypted = encrypt_mnemonic(
                    command.mnemonic,
                    command.password,
                    cipher=self.mnemonic_cipher,
                    iterations=self.kdf_iterations,
                )
            else:
                if not command.extended_public_key:
                    raise ValueError("Read-only wallets need an extended public key")
                node = ErgoHDNode.from_extended_key(command.extended_public_key, prefix)
                encrypted = None
        finally:
            command.mnemonic = None
            command.password = None

        public_key = node.public_key_hex
        wallet = Wallet(
            name=command.name,
            network=command.network,
            type=wallet_type,
            public_key=public_key,
            chain_code=node.chain_code.hex(),
            mnemonic=encrypted,
            avoid_address_reuse=False,
            hide_used_addresses=False,
            default_change_index=0,
        )

        self.pool.allocate(node, public_key)
        if not node.is_public_only:
            node.forget()

        wallet_id = await self.wallet_repo.put(wallet)
        logger.info(f"Imported {wallet_type.value} wallet {wallet_id}")

        if command.refresh:
            await self.refresh_addresses(wallet_id)
        return wallet_id

    async def get_wallet(self, wallet_id: int) -> WalletView:
        """Build a view of a wallet from stored data, no network calls."""
        wallet = await self._require_wallet(wallet_id)
        addresses = await self.address_repo.get_by_wallet_id(wallet_id)
        assets = await self.asset_repo.get_by_wallet_id(wallet_id)

        return WalletView(
            id=wallet.id,
            name=wallet.name,
            type=WalletType(wallet.type),
            network=wallet.network,
            public_key=wallet.public_key,
            settings=WalletSettings(
                avoid_address_reuse=wallet.avoid_address_reuse,
                hide_used_addresses=wallet.hide_used_addresses,
                default_change_index=wallet.default_change_index,
            ),
            addresses=self.balance_sync.address_balances(addresses, assets),
            balance=self.balance_sync.aggregate(assets),
        )

    async def list_wallets(self) -> list[Wallet]:
        return await self.wallet_repo.list_all()

    async def current_wallet(self) -> Optional[Wallet]:
        """Wallet to open on start: the last opened one, else the first stored.

        Returns None when no wallet has been imported yet.
        """
        wallets = await self.wallet_repo.list_all()
        if not wallets:
            return None

        settings = await self.load_app_settings()
        for wallet in wallets:
            if wallet.id == settings.last_opened_wallet_id:
                return wallet
        return wallets[0]

    async def update_wallet_settings(self, command: UpdateWalletSettingsCommand) -> Wallet:
        async with WalletLock(command.wallet_id, self.lock_timeout, operation="update_settings"):
            return await self.wallet_repo.update_settings(
                command.wallet_id,
                name=command.name,
                avoid_address_reuse=command.avoid_address_reuse,
                hide_used_addresses=command.hide_used_addresses,
            )

    async def update_change_index(self, command: UpdateChangeIndexCommand) -> Wallet:
        async with WalletLock(command.wallet_id, self.lock_timeout, operation="update_change_index"):
            return await self.wallet_repo.update_change_index(command.wallet_id, command.index)

    # ======================
    # Addresses and balances
    # ======================

    async def refresh_addresses(self, wallet_id: int) -> list[Address]:
        wallet = await self._require_wallet(wallet_id)
        self._allocate(wallet)
        return await self.discovery.discover(wallet)

    async def new_address(self, wallet_id: int) -> Address:
        wallet = await self._require_wallet(wallet_id)
        self._allocate(wallet)
        return await self.discovery.new_address(wallet)

    async def load_balances(self, wallet_id: int) -> WalletView:
        """Balances from the last sync, without touching the network."""
        return await self.get_wallet(wallet_id)

    async def refresh_balances(self, wallet_id: int) -> WalletView:
        wallet = await self._require_wallet(wallet_id)
        async with WalletLock(wallet_id, self.lock_timeout, operation="refresh_balances"):
            addresses = await self.address_repo.get_by_wallet_id(wallet.id)
            await self.balance_sync.refresh(wallet.id, [a.script for a in addresses])
        return await self.get_wallet(wallet_id)

    async def refresh_base_price(self):
        return await self.balance_sync.refresh_base_price()

    async def load_market_rates(self) -> MarketRateBook:
        return await self.balance_sync.refresh_market_rates()

    # ======================
    # Transactions
    # ======================

    async def _resolve_change_address(
        self, wallet: Wallet, addresses: list[Address], recipient: str
    ) -> str:
        if wallet.avoid_address_reuse:
            for address in addresses:
                if address.state == AddressState.UNUSED and address.script != recipient:
                    return address.script
            created = await self.discovery.new_address_unlocked(wallet)
            addresses.append(created)
            return created.script

        for address in addresses:
            if address.index == wallet.default_change_index:
                return address.script
        node = self.pool.get(wallet.public_key)
        return node.derive_address(wallet.default_change_index).script

    async def send_tx(self, command: SendTxCommand) -> str:
        """Build, sign and submit a payment.

        Raises:
            InsufficientFundsError: If the wallet cannot cover amounts and fee
            DecryptionError: If the password is wrong
            NetworkError: If the explorer fails; nothing is retried

        Returns:
            Transaction id
        """
        try:
            wallet = await self._require_wallet(command.wallet_id)
            self._allocate(wallet)
            prefix = get_network(wallet.network).prefix

            async with WalletLock(wallet.id, self.lock_timeout, operation="send_tx"):
                addresses = await self.address_repo.get_by_wallet_id(wallet.id)
                assets = await self.asset_repo.get_by_wallet_id(wallet.id)
                funded = {a.address for a in assets}

                builder = TransactionBuilder(
                    self.explorer,
                    command.recipient,
                    command.assets,
                    command.fee,
                    network_prefix=prefix,
                    header_count=self.header_count,
                )
                change_address = await self._resolve_change_address(
                    wallet, addresses, command.recipient
                )
                funding = [
                    a.script for a in addresses
                    if a.state == AddressState.USED and a.script in funded
                ]

                await builder.select_inputs(funding)
                await builder.build(change_address)

                with await self.wallet_repo.get_mnemonic(
                    wallet.id, command.password, iterations=self.kdf_iterations
                ) as secret:
                    command.password = ""
                    node = ErgoHDNode.from_mnemonic(secret.reveal(), network_prefix=prefix)

                builder.sign(node, {a.script: a.index for a in addresses})
                tx_id = await builder.submit()
        finally:
            command.password = ""

        logger.info(f"Wallet {wallet.id} sent transaction {tx_id}")
        return tx_id

    async def sign_tx_from_connector(self, command: SignTxFromConnectorCommand) -> dict[str, Any]:
        """Sign the inputs of an external transaction owned by the wallet.

        The signed transaction is returned, not submitted.
        """
        try:
            wallet = await self._require_wallet(command.wallet_id)
            prefix = get_network(wallet.network).prefix

            async with WalletLock(wallet.id, self.lock_timeout, operation="sign_connector_tx"):
                addresses = await self.address_repo.get_by_wallet_id(wallet.id)

                with await self.wallet_repo.get_mnemonic(
                    wallet.id, command.password, iterations=self.kdf_iterations
                ) as secret:
                    command.password = ""
                    node = ErgoHDNode.from_mnemonic(secret.reveal(), network_prefix=prefix)

                return await TransactionBuilder.sign_external(
                    self.explorer,
                    command.tx,
                    node,
                    {a.script: a.index for a in addresses},
                    network_prefix=prefix,
                    header_count=self.header_count,
                )
        finally:
            command.password = ""

    # ======================
    # App settings
    # ======================

    async def load_app_settings(self) -> AppSettings:
        data = await self.settings_repo.get_json(SETTINGS_KEY)
        return AppSettings.model_validate(data or {})

    async def save_app_settings(self, **changes) -> AppSettings:
        current = await self.load_app_settings()
        updated = current.model_copy(update=changes)
        await self.settings_repo.set_json(SETTINGS_KEY, updated.model_dump(by_alias=True))
        return updated

    async def set_current_wallet(self, wallet_id: int) -> AppSettings:
        await self._require_wallet(wallet_id)
        return await self.save_app_settings(last_opened_wallet_id=wallet_id)

    # ======================
    # dApp connections
    # ======================

    async def load_connections(self) -> tuple[DAppConnection, ...]:
        return await self.connection_repo.list_all()

    async def connect(
        self, origin: str, wallet_id: int, favicon: Optional[str] = None
    ) -> DAppConnection:
        """Record that ``origin`` may use a wallet."""
        await self._require_wallet(wallet_id)
        return await self.connection_repo.put(origin, wallet_id, favicon)

    async def remove_connection(self, origin: str) -> tuple[DAppConnection, ...]:
        """Forget a connected origin and return the remaining connections."""
        await self.connection_repo.delete_by_origin(origin)
        return await self.load_connections()
