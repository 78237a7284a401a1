from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Iterator, Literal, Mapping, Sequence

from rate_arbitrage.core.exceptions import InvalidInputError

PairKey = tuple[str, str]

ONE = Decimal(1)
HUNDRED = Decimal(100)


def to_decimal(value: object) -> Decimal:
    """Convert ints, floats and numeric strings to Decimal without binary float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value))


@dataclass(frozen=True, slots=True)
class Quote:
    asset: str
    quote_currency: str
    price: Decimal
    source: str
    fetched_at: float

    @property
    def key(self) -> PairKey:
        return (self.asset, self.quote_currency)


def _positive(quote: Quote) -> Quote:
    if not quote.price > 0:
        raise InvalidInputError(f"Non-positive price {quote.price} for {quote.asset}/{quote.quote_currency}")
    return quote


@dataclass(slots=True)
class RateTable:
    """Direct quotes keyed by ``(asset, quote_currency)``.

    Inverse and derived cross rates are computed on each ``rate()`` call from
    fresh quotes only and are never stored back into ``quotes``.
    """

    quotes: dict[PairKey, Quote] = field(default_factory=dict)
    assets: tuple[str, ...] = ()
    currencies: tuple[str, ...] = ()
    source: str | None = None
    created_at: float = field(default_factory=time.time)
    stale_after: float | None = None
    from_cache: bool = False

    def add(self, quote: Quote) -> None:
        self.quotes[quote.key] = quote

    def get(self, asset: str, currency: str) -> Quote | None:
        return self.quotes.get((asset.upper(), currency.upper()))

    def __contains__(self, key: object) -> bool:
        return key in self.quotes

    def __len__(self) -> int:
        return len(self.quotes)

    def __iter__(self) -> Iterator[Quote]:
        return iter(self.quotes.values())

    @property
    def missing(self) -> list[PairKey]:
        """Requested pairs the provider did not return."""
        return [
            (asset, currency)
            for asset in self.assets
            for currency in self.currencies
            if asset != currency and (asset, currency) not in self.quotes
        ]

    def is_fresh(self, quote: Quote, now: float | None = None) -> bool:
        if self.stale_after is None:
            return True
        current = time.time() if now is None else now
        return current - quote.fetched_at <= self.stale_after

    def rate(self, from_symbol: str, to_symbol: str, now: float | None = None) -> Decimal | None:
        """Units of ``to_symbol`` received for one unit of ``from_symbol``.

        Lookup order: direct quote, inverse of the opposite quote, then a cross
        rate through the first shared quote currency. Returns None when no
        route exists from fresh quotes.
        """
        src = from_symbol.upper()
        dst = to_symbol.upper()
        if src == dst:
            return ONE

        direct = self.quotes.get((src, dst))
        if direct is not None:
            return _positive(direct).price

        current = time.time() if now is None else now
        opposite = self.quotes.get((dst, src))
        if opposite is not None and self.is_fresh(opposite, current):
            return ONE / _positive(opposite).price

        for currency in self._quote_currencies():
            left = self.quotes.get((src, currency))
            right = self.quotes.get((dst, currency))
            if left is None or right is None:
                continue
            if self.is_fresh(left, current) and self.is_fresh(right, current):
                return _positive(left).price / _positive(right).price
        return None

    def copy(self, **changes: object) -> RateTable:
        """Copy with its own ``quotes`` dict; quotes themselves are immutable."""
        return replace(self, quotes=dict(self.quotes), **changes)

    def convert(self, amount: Decimal | float | int | str, from_symbol: str, to_symbol: str, now: float | None = None) -> Decimal:
        value = to_decimal(amount)
        if value < 0:
            raise InvalidInputError(f"Amount must be non-negative, got {amount}")
        rate = self.rate(from_symbol, to_symbol, now=now)
        if rate is None:
            raise InvalidInputError(f"No rate available for {from_symbol.upper()} -> {to_symbol.upper()}")
        return value * rate

    def _quote_currencies(self) -> list[str]:
        ordered = list(self.currencies)
        seen = set(ordered)
        for _, currency in self.quotes:
            if currency not in seen:
                seen.add(currency)
                ordered.append(currency)
        return ordered


class ProviderOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(slots=True)
class ProviderState:
    id: str
    consecutive_errors: int = 0
    last_outcome: ProviderOutcome | None = None
    last_attempt_at: float | None = None
    last_error: str | None = None

    def is_degraded(self, max_errors: int) -> bool:
        return self.consecutive_errors >= max_errors


@dataclass(frozen=True, slots=True)
class Leg:
    from_asset: str
    to_asset: str
    rate: Decimal


@dataclass(frozen=True, slots=True)
class TriangularOpportunity:
    kind: ClassVar[Literal["triangular"]] = "triangular"

    cycle: tuple[str, str, str]
    legs: tuple[Leg, Leg, Leg]
    start_amount: Decimal
    final_amount: Decimal
    profit_pct: Decimal
    timestamp: float

    @property
    def profit(self) -> Decimal:
        return self.final_amount - self.start_amount

    @property
    def route(self) -> str:
        return " → ".join([*self.cycle, self.cycle[0]])


@dataclass(frozen=True, slots=True)
class CrossExchangeOpportunity:
    kind: ClassVar[Literal["cross_exchange"]] = "cross_exchange"

    asset: str
    buy_venue: str
    sell_venue: str
    buy_price: Decimal
    sell_price: Decimal
    buy_fee: Decimal
    sell_fee: Decimal
    profit_pct: Decimal
    timestamp: float


Opportunity = TriangularOpportunity | CrossExchangeOpportunity

VenueMatrix = Mapping[str, Mapping[str, Decimal]]


@dataclass(slots=True)
class ArbitrageReport:
    triangular: list[TriangularOpportunity]
    cross_exchange: list[CrossExchangeOpportunity]
    rate_table: RateTable
    venue_prices: dict[str, dict[str, Decimal]]
    created_at: float = field(default_factory=time.time)


@dataclass(slots=True)
class SourceComparison:
    """Same pair quoted by several providers at once."""

    asset: str
    currency: str
    prices: dict[str, Decimal]
    average: Decimal
    median: Decimal
    minimum: Decimal
    maximum: Decimal
    stdev: Decimal

    @property
    def sources(self) -> Sequence[str]:
        return list(self.prices)
