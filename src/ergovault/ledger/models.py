"""SQLAlchemy models for wallet persistence."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class WalletType(str, Enum):
    """Kind of wallet."""

    STANDARD = "standard"    # Mnemonic stored encrypted, can sign
    READ_ONLY = "read_only"  # Extended public key only


class AddressState(str, Enum):
    """Lifecycle state of a derived address."""

    UNUSED = "unused"
    USED = "used"


class Wallet(Base):
    """An imported or restored HD wallet.

    The public key is the account node key and is the join key into the
    derivation pool.
    """

    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    network: Mapped[str] = mapped_column(String(20), default="mainnet")
    type: Mapped[WalletType] = mapped_column(String(20), nullable=False)
    public_key: Mapped[str] = mapped_column(String(66), unique=True, nullable=False, index=True)
    chain_code: Mapped[str] = mapped_column(String(64), nullable=False)
    mnemonic: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # encrypted

    # Settings
    avoid_address_reuse: Mapped[bool] = mapped_column(default=False)
    hide_used_addresses: Mapped[bool] = mapped_column(default=False)
    default_change_index: Mapped[int] = mapped_column(default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Address(Base):
    """A derived address tracked for a wallet."""

    __tablename__ = "addresses"
    __table_args__ = (Index("ix_addresses_wallet_index", "wallet_id", "index", unique=True),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id"), nullable=False)
    index: Mapped[int] = mapped_column(nullable=False)
    script: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(10), default="p2pk")
    state: Mapped[AddressState] = mapped_column(
        String(10), default=AddressState.UNUSED, nullable=False
    )


class Asset(Base):
    """Balance of one token held by one address.

    Amounts are raw integers in the token's smallest unit, stored as strings
    because token supplies exceed 64-bit ranges.
    """

    __tablename__ = "assets"
    __table_args__ = (
        Index("ix_assets_wallet_address_token", "wallet_id", "address", "token_id", unique=True),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id"), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    token_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    decimals: Mapped[int] = mapped_column(default=0)
    confirmed_amount: Mapped[str] = mapped_column(String(80), default="0")
    unconfirmed_amount: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class SystemConfig(Base):
    """Key/value configuration blobs (e.g. the "settings" JSON)."""

    __tablename__ = "system_config"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Connection(Base):
    """A dApp origin the user allowed to talk to one of the wallets."""

    __tablename__ = "connections"

    origin: Mapped[str] = mapped_column(String(255), primary_key=True)
    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id"), nullable=False, index=True)
    favicon: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


@dataclass(frozen=True)
class DAppConnection:
    """Read-only snapshot of a ``Connection`` row."""

    origin: str
    wallet_id: int
    favicon: Optional[str] = None

    @classmethod
    def from_row(cls, row: Connection) -> "DAppConnection":
        return cls(origin=row.origin, wallet_id=row.wallet_id, favicon=row.favicon)
