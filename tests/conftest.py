"""Pytest configuration and fixtures."""

import os
from decimal import Decimal
from typing import Any, AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "true"

from ergovault.errors import NetworkError
from ergovault.explorer.base import ChainExplorer, PriceOracle
from ergovault.explorer.contracts import (
    AddressBalance,
    BalanceInfo,
    BlockHeader,
    Box,
    TokenAmount,
    TokenRate,
)
from ergovault.hdwallet.ergo import ErgoHDNode
from ergovault.hdwallet.pool import KeyDerivationPool
from ergovault.ledger.models import Base
from ergovault.ledger.repository import (
    AddressRepository,
    AssetRepository,
    ConnectionRepository,
    SettingsRepository,
    WalletRepository,
)
from ergovault.utils.locks import clear_wallet_locks

TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
OTHER_MNEMONIC = "legal winner thank year wave sausage worth useful legal winner thank yellow"
TEST_PASSWORD = "correct horse battery staple"

# Low iteration count keeps fernet tests fast
TEST_KDF_ITERATIONS = 1000


def make_headers(count: int = 10, tip: int = 1_000_000) -> list[BlockHeader]:
    """Headers newest first, with hex ids derived from the height."""
    return [
        BlockHeader(
            id=f"{tip - i:064x}",
            parent_id=f"{tip - i - 1:064x}",
            height=tip - i,
            timestamp=1_700_000_000_000 - i * 120_000,
        )
        for i in range(count)
    ]


def make_box(
    box_id: str,
    address: str,
    value: int,
    tokens: Optional[dict[str, int]] = None,
) -> Box:
    return Box(
        box_id=box_id,
        value=value,
        ergo_tree="00",
        address=address,
        creation_height=999_000,
        assets=[TokenAmount(token_id=t, amount=a) for t, a in (tokens or {}).items()],
    )


class FakeExplorer(ChainExplorer):
    """In-memory chain explorer.

    ``used`` marks scripts as having transactions, ``balances`` and ``boxes``
    are keyed by script.
    """

    def __init__(self):
        self.used: set[str] = set()
        self.balances: dict[str, AddressBalance] = {}
        self.boxes: dict[str, list[Box]] = {}
        self.headers: list[BlockHeader] = make_headers()
        self.rates: list[TokenRate] = []
        self.submitted: list[dict[str, Any]] = []
        self.used_queries: list[list[str]] = []
        self.balance_queries: list[list[str]] = []
        self.fail_submit = False

    def set_balance(
        self,
        script: str,
        nano_ergs: int,
        tokens: Optional[dict[str, int]] = None,
        unconfirmed: Optional[int] = None,
    ) -> None:
        self.balances[script] = AddressBalance(
            address=script,
            confirmed=BalanceInfo(
                nano_ergs=nano_ergs,
                tokens=[
                    TokenAmount(token_id=t, amount=a, decimals=2, name=f"T{t[:4]}")
                    for t, a in (tokens or {}).items()
                ],
            ),
            unconfirmed=BalanceInfo(nano_ergs=unconfirmed) if unconfirmed is not None else None,
        )

    async def get_used_addresses(self, scripts, batch_size=None):
        self.used_queries.append(list(scripts))
        return [s for s in scripts if s in self.used]

    async def get_addresses_balance(self, scripts):
        self.balance_queries.append(list(scripts))
        return [self.balances.get(s, AddressBalance(address=s)) for s in scripts]

    async def get_unspent_boxes(self, scripts):
        return [box for s in scripts for box in self.boxes.get(s, [])]

    async def get_recent_block_headers(self, count):
        return self.headers[:count]

    async def submit_transaction(self, signed_tx):
        if self.fail_submit:
            raise NetworkError("Explorer request failed: 503", status_code=503)
        self.submitted.append(signed_tx)
        return signed_tx["id"]

    async def get_token_market_rates(self):
        return list(self.rates)


class FakeOracle(PriceOracle):
    def __init__(self, price: str = "1.50"):
        self.price = Decimal(price)

    async def get_base_price(self):
        return self.price


@pytest.fixture(autouse=True)
def reset_locks():
    """Clear the wallet lock registry between tests."""
    clear_wallet_locks()
    yield
    clear_wallet_locks()


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    yield async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def wallet_repo(session_factory) -> WalletRepository:
    return WalletRepository(session_factory)


@pytest.fixture
def address_repo(session_factory) -> AddressRepository:
    return AddressRepository(session_factory)


@pytest.fixture
def asset_repo(session_factory) -> AssetRepository:
    return AssetRepository(session_factory)


@pytest.fixture
def settings_repo(session_factory) -> SettingsRepository:
    return SettingsRepository(session_factory)


@pytest.fixture
def connection_repo(session_factory) -> ConnectionRepository:
    return ConnectionRepository(session_factory)


@pytest.fixture
def explorer() -> FakeExplorer:
    return FakeExplorer()


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def pool() -> KeyDerivationPool:
    return KeyDerivationPool()


@pytest.fixture(scope="session")
def master_node() -> ErgoHDNode:
    """Signing-capable node for the test mnemonic (do not forget() it)."""
    return ErgoHDNode.from_mnemonic(TEST_MNEMONIC)


@pytest.fixture(scope="session")
def public_node(master_node) -> ErgoHDNode:
    return master_node.neutered()


@pytest.fixture(scope="session")
def test_scripts(public_node) -> list[str]:
    """First 80 addresses of the test wallet."""
    return [a.script for a in public_node.derive_addresses(80)]


@pytest.fixture(scope="session")
def foreign_address() -> str:
    """An address that does not belong to the test wallet."""
    return ErgoHDNode.from_mnemonic(OTHER_MNEMONIC).derive_address(0).script
