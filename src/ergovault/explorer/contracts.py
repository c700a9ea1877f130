"""Wire models for explorer and market responses.

Field names follow the explorer's camelCase JSON; Python code uses the
snake_case attribute names.
"""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _ExplorerModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class TokenAmount(_ExplorerModel):
    """Amount of a token, raw (smallest units)."""

    token_id: str = Field(..., description="Token id (hex)")
    amount: int = Field(..., description="Raw amount")
    decimals: Optional[int] = Field(None, description="Token decimals if known")
    name: Optional[str] = Field(None, description="Token name if known")


class BalanceInfo(_ExplorerModel):
    nano_ergs: int = Field(default=0, description="ERG balance in nanoErgs")
    tokens: list[TokenAmount] = Field(default_factory=list)


class AddressBalance(_ExplorerModel):
    """Confirmed and mempool balance of a single address."""

    address: str
    confirmed: BalanceInfo = Field(default_factory=BalanceInfo)
    unconfirmed: Optional[BalanceInfo] = None


class Box(_ExplorerModel):
    """An unspent output (box)."""

    box_id: str
    transaction_id: Optional[str] = None
    index: Optional[int] = None
    value: int
    ergo_tree: str
    address: str
    creation_height: int
    assets: list[TokenAmount] = Field(default_factory=list)
    additional_registers: dict[str, Any] = Field(default_factory=dict)


class BlockHeader(_ExplorerModel):
    """Block header fields needed to bind a signing context."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    parent_id: str
    height: int
    timestamp: int


class TokenRate(_ExplorerModel):
    """Market rate of a token expressed in ERG."""

    token_id: str
    name: Optional[str] = None
    decimals: Optional[int] = None
    erg_per_token: Decimal
    timestamp: int = 0


class Page(_ExplorerModel):
    """Paginated explorer response."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    total: int = 0


class SubmitResponse(_ExplorerModel):
    id: str
