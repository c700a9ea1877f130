"""Typed commands accepted by the wallet service.

Commands that carry a password or mnemonic are mutable so the service can
clear those fields as soon as it is done with them.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from ergovault.ledger.models import WalletType
from ergovault.transactions.models import TransferAsset


@dataclass
class ImportWalletCommand:
    """Import a standard (mnemonic) or read-only (extended public key) wallet."""
    name: str
    type: WalletType = WalletType.STANDARD
    mnemonic: Optional[str] = None
    password: Optional[str] = None
    extended_public_key: Optional[str] = None
    network: str = "mainnet"
    refresh: bool = True

    def __repr__(self) -> str:
        return f"ImportWalletCommand(name={self.name!r}, type={self.type})"


@dataclass
class SendTxCommand:
    """Pay ``assets`` to ``recipient`` from a wallet."""
    wallet_id: int
    recipient: str
    assets: list[TransferAsset]
    fee: int
    password: str = ""

    def __repr__(self) -> str:
        return f"SendTxCommand(wallet_id={self.wallet_id}, recipient={self.recipient!r})"


@dataclass
class SignTxFromConnectorCommand:
    """Sign an externally built transaction (e.g. from a dApp connector)."""
    wallet_id: int
    tx: dict[str, Any] = field(default_factory=dict)
    password: str = ""

    def __repr__(self) -> str:
        return f"SignTxFromConnectorCommand(wallet_id={self.wallet_id})"


@dataclass
class UpdateWalletSettingsCommand:
    wallet_id: int
    name: str
    avoid_address_reuse: bool
    hide_used_addresses: bool


@dataclass
class UpdateChangeIndexCommand:
    wallet_id: int
    index: int
