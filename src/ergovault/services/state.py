"""In-memory views of wallet state returned to callers.

These are plain snapshots built from repository rows; mutating them never
touches the database.
"""

from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ergovault.chains import ERG_TOKEN_ID, MAX_RATE_HISTORY
from ergovault.ledger.models import AddressState, WalletType


@dataclass
class AddressAsset:
    """Balance of one token on one address, scaled to its decimals."""
    token_id: str
    name: Optional[str]
    decimals: int
    confirmed_amount: Decimal
    unconfirmed_amount: Optional[Decimal] = None
    price: Optional[Decimal] = None


@dataclass
class StateAddress:
    """A wallet address with its balance.

    ``balance`` is None when nothing is known for the address, which is
    different from an address known to hold zero.
    """
    index: int
    script: str
    state: AddressState
    balance: Optional[list[AddressAsset]] = None

    @property
    def is_used(self) -> bool:
        return self.state == AddressState.USED


@dataclass
class WalletAsset:
    """Wallet-wide total of one token."""
    token_id: str
    name: Optional[str]
    decimals: int
    confirmed_amount: Decimal
    unconfirmed_amount: Optional[Decimal] = None
    price: Optional[Decimal] = None
    latest_value_in_ergs: Optional[Decimal] = None

    @property
    def is_erg(self) -> bool:
        return self.token_id == ERG_TOKEN_ID


@dataclass
class RatePoint:
    timestamp: int
    value: Decimal


@dataclass
class TokenMarketRate:
    """Latest ERG value of a token plus a bounded history."""
    token_id: str
    latest_value_in_ergs: Decimal
    rates_over_time: deque = field(default_factory=lambda: deque(maxlen=MAX_RATE_HISTORY))


@dataclass
class WalletSettings:
    avoid_address_reuse: bool = False
    hide_used_addresses: bool = False
    default_change_index: int = 0


@dataclass
class WalletView:
    """A wallet with its addresses and aggregated balance."""
    id: int
    name: str
    type: WalletType
    network: str
    public_key: str
    settings: WalletSettings
    addresses: list[StateAddress] = field(default_factory=list)
    balance: list[WalletAsset] = field(default_factory=list)

    @property
    def visible_addresses(self) -> list[StateAddress]:
        """Addresses to display, honouring ``hide_used_addresses``."""
        if not self.settings.hide_used_addresses:
            return self.addresses
        return [a for a in self.addresses if not a.is_used]


class AppSettings(BaseModel):
    """Application settings persisted under the ``settings`` key."""

    model_config = ConfigDict(populate_by_name=True)

    last_opened_wallet_id: Optional[int] = Field(
        default=None, alias="lastOpenedWalletId", description="Wallet shown on start"
    )
    is_kya_accepted: bool = Field(
        default=False, alias="isKyaAccepted", description="Whether the user accepted the terms"
    )
