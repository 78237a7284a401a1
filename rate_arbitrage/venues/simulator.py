from __future__ import annotations

import logging
import random
from decimal import Decimal
from typing import Sequence

from rate_arbitrage.core.exceptions import InvalidInputError
from rate_arbitrage.services.schemas import RateTable, to_decimal

log = logging.getLogger(__name__)


class VenuePriceSimulator:
    """Offline venue matrix: each venue quotes the aggregated reference price
    shifted by a random offset within ``spread_pct``.

    Seeded, so the same reference table and seed always give the same matrix.
    """

    def __init__(
        self,
        venues: Sequence[str],
        reference_currency: str = "USD",
        spread_pct: float = 2.0,
        seed: int | None = None,
    ) -> None:
        if spread_pct < 0:
            raise InvalidInputError("spread_pct must be non-negative")
        self._venues = list(venues)
        self._reference_currency = reference_currency.upper()
        self._half_spread = spread_pct / 200.0
        self._rng = random.Random(seed)

    @property
    def venue_names(self) -> list[str]:
        return list(self._venues)

    async def collect(self, assets: Sequence[str], reference: RateTable | None = None) -> dict[str, dict[str, Decimal]]:
        if reference is None:
            raise InvalidInputError("Simulated venue prices need a reference rate table")
        matrix: dict[str, dict[str, Decimal]] = {}
        for asset in assets:
            base_price = reference.rate(asset, self._reference_currency)
            if base_price is None or base_price <= 0:
                log.debug("No reference price for %s, skipping", asset)
                continue
            prices: dict[str, Decimal] = {}
            for venue in self._venues:
                offset = to_decimal(round(self._rng.uniform(-self._half_spread, self._half_spread), 8))
                prices[venue] = base_price * (1 + offset)
            matrix[asset.upper()] = prices
        return matrix
