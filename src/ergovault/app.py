"""Application wiring.

Builds every engine component from settings and owns their lifetime.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ergovault.config import Settings, get_settings
from ergovault.explorer.base import ChainExplorer, PriceOracle
from ergovault.explorer.ergo import ErgoExplorer
from ergovault.explorer.prices import CoinGeckoPriceOracle
from ergovault.hdwallet.pool import KeyDerivationPool
from ergovault.ledger.database import close_db, get_session_factory, init_db
from ergovault.ledger.repository import (
    AddressRepository,
    AssetRepository,
    ConnectionRepository,
    SettingsRepository,
    WalletRepository,
)
from ergovault.services.balance_sync import BalanceSynchronizer, MarketRateBook
from ergovault.services.discovery import AddressDiscoveryEngine
from ergovault.services.wallet_service import WalletService

logger = logging.getLogger(__name__)


def configure_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    log_level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Request lines from httpx would leak addresses at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


class WalletApp:
    """Owns the pool, network clients, repositories and services."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        explorer: Optional[ChainExplorer] = None,
        oracle: Optional[PriceOracle] = None,
    ):
        self.settings = settings or get_settings()
        self._owns_database = session_factory is None
        self.session_factory = session_factory or get_session_factory()

        self.explorer = explorer or ErgoExplorer(
            base_url=self.settings.explorer_api_url,
            market_rates_url=self.settings.market_rates_url,
            timeout=self.settings.http_timeout,
            concurrency=self.settings.used_address_concurrency,
        )
        self.oracle = oracle or CoinGeckoPriceOracle(
            base_url=self.settings.price_api_url,
            currency=self.settings.price_currency,
            timeout=self.settings.http_timeout,
        )

        self.pool = KeyDerivationPool()
        self.wallet_repo = WalletRepository(self.session_factory)
        self.address_repo = AddressRepository(self.session_factory)
        self.asset_repo = AssetRepository(self.session_factory)
        self.settings_repo = SettingsRepository(self.session_factory)
        self.connection_repo = ConnectionRepository(self.session_factory)

        self.balance_sync = BalanceSynchronizer(
            self.explorer, self.asset_repo, self.oracle, MarketRateBook()
        )
        self.discovery = AddressDiscoveryEngine(
            self.pool,
            self.explorer,
            self.address_repo,
            self.balance_sync,
            gap_limit=self.settings.gap_limit,
            lock_timeout=self.settings.wallet_lock_timeout,
        )
        self.wallets = WalletService(
            pool=self.pool,
            explorer=self.explorer,
            wallet_repo=self.wallet_repo,
            address_repo=self.address_repo,
            asset_repo=self.asset_repo,
            settings_repo=self.settings_repo,
            connection_repo=self.connection_repo,
            discovery=self.discovery,
            balance_sync=self.balance_sync,
            mnemonic_cipher=self.settings.mnemonic_cipher,
            kdf_iterations=self.settings.kdf_iterations,
            header_count=self.settings.signing_header_count,
            lock_timeout=self.settings.wallet_lock_timeout,
        )

    async def start(self) -> None:
        """Create tables and allocate stored wallets in the pool."""
        logger.info(f"Starting ergovault on {self.settings.network}")
        logger.debug(f"Settings: {self.settings.get_safe_dict()}")

        if self._owns_database:
            await init_db()
            logger.info("Database initialized")

        await self.wallets.load_wallets()
        current = await self.wallets.current_wallet()
        if current is not None:
            logger.info(f"Current wallet: {current.id} ({current.name})")

    async def close(self) -> None:
        logger.info("Cleaning up...")
        await self.explorer.aclose()
        await self.oracle.aclose()
        self.pool.clear()
        if self._owns_database:
            await close_db()
        logger.info("Cleanup complete")

    async def __aenter__(self) -> "WalletApp":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False


async def sync_all() -> None:
    """Discover addresses and refresh balances for every stored wallet."""
    async with WalletApp() as app:
        await app.wallets.refresh_base_price()
        await app.wallets.load_market_rates()
        for wallet in await app.wallets.list_wallets():
            await app.wallets.refresh_addresses(wallet.id)
            view = await app.wallets.get_wallet(wallet.id)
            for asset in view.balance:
                logger.info(
                    f"{view.name}: {asset.confirmed_amount} {asset.name or asset.token_id[:8]}"
                )


def main():
    """Main entry point."""
    configure_logging()
    try:
        asyncio.run(sync_all())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")


if __name__ == "__main__":
    main()
