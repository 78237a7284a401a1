from __future__ import annotations

import asyncio
import itertools
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Callable, Mapping, Sequence

from rate_arbitrage.config.models import Settings
from rate_arbitrage.core.exceptions import InvalidInputError
from rate_arbitrage.services.schemas import (
    HUNDRED,
    ONE,
    ArbitrageReport,
    CrossExchangeOpportunity,
    Leg,
    RateTable,
    TriangularOpportunity,
    to_decimal,
)

if TYPE_CHECKING:
    from rate_arbitrage.services.rate_aggregator import RateAggregator
    from rate_arbitrage.venues.base import VenuePriceSource

log = logging.getLogger(__name__)

Number = Decimal | float | int | str


def _as_decimal(value: Number, what: str) -> Decimal:
    try:
        result = to_decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidInputError(f"{what} is not a number: {value!r}") from exc
    if not result.is_finite():
        raise InvalidInputError(f"{what} must be finite, got {value!r}")
    return result


class ArbitrageEngine:
    """Triangular and cross-venue opportunity detection.

    Detection is pure in-memory work over a RateTable (triangular) or a
    ``venue -> price`` mapping (cross-exchange). Both modes share one mutable
    minimum-profit threshold, in percent; every call may override it.
    Results are fresh lists sorted by ``profit_pct`` descending with a stable
    sort, so equal-profit entries keep generation order.
    """

    def __init__(
        self,
        settings: Settings,
        aggregator: RateAggregator | None = None,
        venue_source: VenuePriceSource | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._aggregator = aggregator
        self._venue_source = venue_source
        self._clock = clock
        self._lock = asyncio.Lock()
        self._latest: ArbitrageReport | None = None
        self._min_profit_pct = self._validate_threshold(settings.arbitrage.min_profit_pct)
        self._start_amount = _as_decimal(settings.arbitrage.start_amount, "start_amount")

    @property
    def min_profit_pct(self) -> Decimal:
        return self._min_profit_pct

    def set_min_profit_percentage(self, value: Number) -> None:
        threshold = self._validate_threshold(value)
        log.info("Minimum profit threshold updated: %s%% -> %s%%", self._min_profit_pct, threshold)
        self._min_profit_pct = threshold

    def reload_settings(self, new_settings: Settings) -> None:
        """Swap settings without rebuilding the engine; the threshold follows the new config."""
        old = self._settings.arbitrage
        self._settings = new_settings
        self._min_profit_pct = self._validate_threshold(new_settings.arbitrage.min_profit_pct)
        self._start_amount = _as_decimal(new_settings.arbitrage.start_amount, "start_amount")
        log.info(
            "Settings reloaded. Min profit: %.3f -> %.3f%%, start amount: %.2f -> %.2f, universe: %s",
            old.min_profit_pct,
            new_settings.arbitrage.min_profit_pct,
            old.start_amount,
            new_settings.arbitrage.start_amount,
            ",".join(new_settings.arbitrage.universe),
        )

    @staticmethod
    def _validate_threshold(value: Number) -> Decimal:
        threshold = _as_decimal(value, "min_profit_pct")
        if threshold < 0:
            raise InvalidInputError(f"min_profit_pct must be non-negative, got {value}")
        return threshold

    def _threshold(self, override: Number | None) -> Decimal:
        return self._min_profit_pct if override is None else self._validate_threshold(override)

    # -- triangular ----------------------------------------------------------

    def find_triangular(
        self,
        table: RateTable,
        universe: Sequence[str] | None = None,
        min_profit_pct: Number | None = None,
        start_amount: Number | None = None,
        now: float | None = None,
    ) -> list[TriangularOpportunity]:
        """Evaluate every 3-asset cycle over ``universe``.

        Each cycle is generated once, starting from whichever of its assets
        comes first in ``universe``; both directions are evaluated. Cycles with
        a leg missing from the table are skipped.
        """
        threshold = self._threshold(min_profit_pct)
        amount = self._start_amount if start_amount is None else _as_decimal(start_amount, "start_amount")
        if amount <= 0:
            raise InvalidInputError(f"start_amount must be positive, got {start_amount}")
        pool = self._settings.arbitrage.universe if universe is None else universe
        symbols = list(dict.fromkeys(s.upper() for s in pool))
        if len(symbols) < 3:
            return []

        timestamp = self._clock() if now is None else now
        results: list[TriangularOpportunity] = []
        evaluated = 0
        skipped = 0
        for i, j, k in itertools.permutations(range(len(symbols)), 3):
            if i > j or i > k:
                continue
            cycle = (symbols[i], symbols[j], symbols[k])
            legs = self._cycle_legs(table, cycle, timestamp)
            if legs is None:
                skipped += 1
                continue
            evaluated += 1
            factor = legs[0].rate * legs[1].rate * legs[2].rate
            profit_pct = (factor - ONE) * HUNDRED
            if profit_pct < threshold:
                continue
            results.append(
                TriangularOpportunity(
                    cycle=cycle,
                    legs=legs,
                    start_amount=amount,
                    final_amount=amount * factor,
                    profit_pct=profit_pct,
                    timestamp=timestamp,
                )
            )

        results.sort(key=lambda opp: opp.profit_pct, reverse=True)
        log.debug(
            "Triangular scan: %d cycles evaluated, %d skipped for missing legs, %d above %s%%",
            evaluated,
            skipped,
            len(results),
            threshold,
        )
        return results

    @staticmethod
    def _cycle_legs(table: RateTable, cycle: tuple[str, str, str], now: float) -> tuple[Leg, Leg, Leg] | None:
        legs: list[Leg] = []
        for src, dst in ((cycle[0], cycle[1]), (cycle[1], cycle[2]), (cycle[2], cycle[0])):
            rate = table.rate(src, dst, now=now)
            if rate is None:
                return None
            if rate <= 0:
                raise InvalidInputError(f"Non-positive rate {rate} for {src} -> {dst}")
            legs.append(Leg(from_asset=src, to_asset=dst, rate=rate))
        return legs[0], legs[1], legs[2]

    # -- cross-exchange ------------------------------------------------------

    def find_cross_exchange(
        self,
        asset: str,
        venue_prices: Mapping[str, Number],
        venue_fees: Mapping[str, Number] | None = None,
        min_profit_pct: Number | None = None,
    ) -> list[CrossExchangeOpportunity]:
        """Fee-adjusted spread for every venue pair, in both directions.

        Buying at ``buy`` and selling at ``sell``::

            proceeds   = (1 - buy_fee) * sell_price * (1 - sell_fee)
            profit_pct = (proceeds / buy_price - 1) * 100

        Any non-positive price rejects the whole call.
        """
        if not asset:
            raise InvalidInputError("Asset symbol is required")
        threshold = self._threshold(min_profit_pct)
        symbol = asset.upper()

        prices: dict[str, Decimal] = {}
        for venue, raw in venue_prices.items():
            price = _as_decimal(raw, f"Price of {symbol} on {venue}")
            if price <= 0:
                raise InvalidInputError(f"Non-positive price {raw} for {symbol} on {venue}")
            prices[venue] = price
        if len(prices) < 2:
            return []

        fees = {venue: self._venue_fee(venue, venue_fees) for venue in prices}
        timestamp = self._clock()
        results: list[CrossExchangeOpportunity] = []
        for first, second in itertools.combinations(prices, 2):
            for buy_venue, sell_venue in ((first, second), (second, first)):
                buy_price = prices[buy_venue]
                sell_price = prices[sell_venue]
                proceeds = (ONE - fees[buy_venue]) * sell_price * (ONE - fees[sell_venue])
                profit_pct = (proceeds / buy_price - ONE) * HUNDRED
                if profit_pct < threshold:
                    continue
                results.append(
                    CrossExchangeOpportunity(
                        asset=symbol,
                        buy_venue=buy_venue,
                        sell_venue=sell_venue,
                        buy_price=buy_price,
                        sell_price=sell_price,
                        buy_fee=fees[buy_venue],
                        sell_fee=fees[sell_venue],
                        profit_pct=profit_pct,
                        timestamp=timestamp,
                    )
                )

        results.sort(key=lambda opp: opp.profit_pct, reverse=True)
        return results

    def find_cross_exchange_all(
        self,
        matrix: Mapping[str, Mapping[str, Number]],
        venue_fees: Mapping[str, Number] | None = None,
        min_profit_pct: Number | None = None,
    ) -> list[CrossExchangeOpportunity]:
        results: list[CrossExchangeOpportunity] = []
        for asset, venue_prices in matrix.items():
            results.extend(self.find_cross_exchange(asset, venue_prices, venue_fees, min_profit_pct))
        results.sort(key=lambda opp: opp.profit_pct, reverse=True)
        return results

    def _venue_fee(self, venue: str, overrides: Mapping[str, Number] | None) -> Decimal:
        raw: Number = overrides[venue] if overrides and venue in overrides else self._settings.taker_fee(venue)
        fee = _as_decimal(raw, f"Fee for {venue}")
        if fee < 0 or fee >= 1:
            raise InvalidInputError(f"Fee for {venue} must be in [0, 1), got {raw}")
        return fee

    # -- caller-facing flow --------------------------------------------------

    def _rate_query(self) -> tuple[list[str], list[str]]:
        config = self._settings.arbitrage
        universe = list(dict.fromkeys(config.universe))
        currencies = list(dict.fromkeys([config.reference_currency, *universe]))
        return universe, currencies

    async def _rates(self, force_refresh: bool) -> RateTable:
        if self._aggregator is None:
            raise InvalidInputError("No rate aggregator attached to the engine")
        universe, currencies = self._rate_query()
        return await self._aggregator.get_rates(universe, currencies, force_refresh=force_refresh)

    async def _venue_matrix(self, table: RateTable) -> dict[str, dict[str, Decimal]]:
        if self._venue_source is None:
            raise InvalidInputError("No venue price source attached to the engine")
        return await self._venue_source.collect(list(self._settings.arbitrage.universe), table)

    async def find_triangular_opportunities(
        self,
        min_profit_pct: Number | None = None,
        force_refresh: bool = False,
    ) -> list[TriangularOpportunity]:
        table = await self._rates(force_refresh)
        return self.find_triangular(table, min_profit_pct=min_profit_pct)

    async def find_cross_exchange_opportunities(
        self,
        min_profit_pct: Number | None = None,
        force_refresh: bool = False,
    ) -> list[CrossExchangeOpportunity]:
        table = await self._rates(force_refresh)
        matrix = await self._venue_matrix(table)
        return self.find_cross_exchange_all(matrix, min_profit_pct=min_profit_pct)

    async def evaluate(self, force_refresh: bool = False) -> ArbitrageReport:
        table = await self._rates(force_refresh)
        matrix = await self._venue_matrix(table) if self._venue_source is not None else {}

        report = ArbitrageReport(
            triangular=self.find_triangular(table),
            cross_exchange=self.find_cross_exchange_all(matrix),
            rate_table=table,
            venue_prices={asset: dict(prices) for asset, prices in matrix.items()},
            created_at=self._clock(),
        )
        async with self._lock:
            self._latest = report

        if report.triangular or report.cross_exchange:
            log.info(
                "Found %d triangular and %d cross-exchange opportunities (threshold %s%%, rates from %s%s)",
                len(report.triangular),
                len(report.cross_exchange),
                self._min_profit_pct,
                table.source,
                ", cached" if table.from_cache else "",
            )
        else:
            log.debug("No arbitrage opportunities above %s%%", self._min_profit_pct)
        return report

    async def get_latest(self) -> ArbitrageReport | None:
        async with self._lock:
            return self._latest
