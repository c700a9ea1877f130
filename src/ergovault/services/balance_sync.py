"""Balance synchronization and market rates.

Pulls per-address balances from the explorer, stores them as asset rows,
and turns rows into per-address and wallet-wide views priced in the
configured fiat currency.
"""

import logging
from collections import defaultdict, deque
from decimal import Decimal
from typing import Iterable, Optional

from ergovault.chains import (
    ERG_DECIMALS,
    ERG_NAME,
    ERG_TOKEN_ID,
    MAX_RATE_HISTORY,
    RATE_HISTORY_MIN_POINTS,
)
from ergovault.explorer.base import ChainExplorer, PriceOracle
from ergovault.explorer.contracts import TokenRate
from ergovault.ledger.models import Address, Asset
from ergovault.ledger.repository import AssetRepository
from ergovault.services.state import (
    AddressAsset,
    RatePoint,
    StateAddress,
    TokenMarketRate,
    WalletAsset,
)

logger = logging.getLogger(__name__)


def to_decimal(raw: Optional[str], decimals: int) -> Optional[Decimal]:
    """Scale a raw integer amount by ``decimals``."""
    if raw is None:
        return None
    return Decimal(int(raw)).scaleb(-decimals)


class MarketRateBook:
    """Token rates in ERG with a bounded, de-duplicated history."""

    def __init__(
        self,
        max_history: int = MAX_RATE_HISTORY,
        min_points: int = RATE_HISTORY_MIN_POINTS,
    ):
        self.max_history = max_history
        self.min_points = min_points
        self._rates: dict[str, TokenMarketRate] = {}

    def update(self, rates: Iterable[TokenRate]) -> None:
        """Record a new snapshot of rates.

        The latest value is always overwritten. A history point is appended
        while the history is shorter than ``min_points`` or when the rate
        changed since the last point; the oldest points are evicted first.
        """
        for rate in rates:
            entry = self._rates.get(rate.token_id)
            if entry is None:
                entry = TokenMarketRate(
                    token_id=rate.token_id,
                    latest_value_in_ergs=rate.erg_per_token,
                    rates_over_time=deque(maxlen=self.max_history),
                )
                self._rates[rate.token_id] = entry

            entry.latest_value_in_ergs = rate.erg_per_token
            history = entry.rates_over_time
            if len(history) < self.min_points or history[-1].value != rate.erg_per_token:
                history.append(RatePoint(timestamp=rate.timestamp, value=rate.erg_per_token))

    def get(self, token_id: str) -> Optional[TokenMarketRate]:
        return self._rates.get(token_id)

    def erg_value(self, token_id: str) -> Optional[Decimal]:
        """Value of one token unit in ERG; ERG itself is always 1."""
        if token_id == ERG_TOKEN_ID:
            return Decimal(1)
        entry = self._rates.get(token_id)
        return entry.latest_value_in_ergs if entry else None

    def __contains__(self, token_id: str) -> bool:
        return token_id in self._rates

    def __len__(self) -> int:
        return len(self._rates)


class BalanceSynchronizer:
    """Keeps stored balances current and builds priced balance views."""

    def __init__(
        self,
        explorer: ChainExplorer,
        asset_repo: AssetRepository,
        oracle: Optional[PriceOracle] = None,
        rate_book: Optional[MarketRateBook] = None,
    ):
        self.explorer = explorer
        self.asset_repo = asset_repo
        self.oracle = oracle
        self.rate_book = rate_book or MarketRateBook()
        self.base_price: Optional[Decimal] = None

    async def refresh(self, wallet_id: int, scripts: list[str]) -> list[Asset]:
        """Fetch balances for ``scripts`` and replace the wallet's asset rows."""
        raw = await self.explorer.get_addresses_balance(scripts)
        assets = AssetRepository.parse_balance_response(raw, wallet_id)
        await self.asset_repo.sync(assets, wallet_id)
        logger.info(f"Synced {len(assets)} balances for wallet {wallet_id} ({len(scripts)} addresses)")
        return assets

    async def refresh_base_price(self) -> Optional[Decimal]:
        if self.oracle is None:
            return self.base_price
        self.base_price = await self.oracle.get_base_price()
        logger.debug(f"ERG price updated: {self.base_price}")
        return self.base_price

    async def refresh_market_rates(self) -> MarketRateBook:
        rates = await self.explorer.get_token_market_rates()
        self.rate_book.update(rates)
        logger.debug(f"Market rates updated for {len(rates)} tokens")
        return self.rate_book

    def price_of(self, token_id: str) -> Optional[Decimal]:
        """Fiat price of one token unit, None when unknown."""
        if self.base_price is None:
            return None
        value = self.rate_book.erg_value(token_id)
        if value is None:
            return None
        return self.base_price * value

    def _address_asset(self, row: Asset) -> AddressAsset:
        return AddressAsset(
            token_id=row.token_id,
            name=row.name,
            decimals=row.decimals,
            confirmed_amount=to_decimal(row.confirmed_amount, row.decimals),
            unconfirmed_amount=to_decimal(row.unconfirmed_amount, row.decimals),
            price=self.price_of(row.token_id),
        )

    def address_balances(
        self, addresses: Iterable[Address], assets: Iterable[Asset]
    ) -> list[StateAddress]:
        """Attach stored assets to each address.

        Addresses without any asset row get ``balance=None``.
        """
        by_address: dict[str, list[Asset]] = defaultdict(list)
        for row in assets:
            by_address[row.address].append(row)

        result = []
        for address in addresses:
            rows = by_address.get(address.script)
            result.append(
                StateAddress(
                    index=address.index,
                    script=address.script,
                    state=address.state,
                    balance=[self._address_asset(r) for r in rows] if rows else None,
                )
            )
        return result

    def aggregate(self, assets: Iterable[Asset]) -> list[WalletAsset]:
        """Sum asset rows into one entry per token.

        Unconfirmed amounts stay None unless at least one row reports one.
        An empty wallet yields a single zero ERG entry. ERG sorts first,
        then tokens by name.
        """
        groups: dict[str, list[Asset]] = defaultdict(list)
        for row in assets:
            groups[row.token_id].append(row)

        if not groups:
            return [
                WalletAsset(
                    token_id=ERG_TOKEN_ID,
                    name=ERG_NAME,
                    decimals=ERG_DECIMALS,
                    confirmed_amount=Decimal(0),
                    price=self.price_of(ERG_TOKEN_ID),
                    latest_value_in_ergs=self.rate_book.erg_value(ERG_TOKEN_ID),
                )
            ]

        totals = []
        for token_id, rows in groups.items():
            first = rows[0]
            confirmed = sum(int(r.confirmed_amount) for r in rows)

            pending = [r.unconfirmed_amount for r in rows]
            unconfirmed = None
            if any(p is not None for p in pending):
                unconfirmed = sum(int(p) for p in pending if p is not None)

            totals.append(
                WalletAsset(
                    token_id=token_id,
                    name=first.name,
                    decimals=first.decimals,
                    confirmed_amount=to_decimal(str(confirmed), first.decimals),
                    unconfirmed_amount=to_decimal(
                        str(unconfirmed) if unconfirmed is not None else None, first.decimals
                    ),
                    price=self.price_of(token_id),
                    latest_value_in_ergs=self.rate_book.erg_value(token_id),
                )
            )

        return sorted(
            totals,
            key=lambda a: (not a.is_erg, (a.name or a.token_id).lower()),
        )
