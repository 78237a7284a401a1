from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from rate_arbitrage.core.exceptions import ProviderError
from rate_arbitrage.providers.base import BaseProvider
from rate_arbitrage.services.schemas import RateTable

# Binance lists no USD spot books; USD requests are served from the USDT pair.
USD_PROXIES = {"USD": "USDT"}


class BinanceProvider(BaseProvider):
    """
    Binance spot ticker.
    Endpoint: /api/v3/ticker/price
    Response: [{"symbol": "BTCUSDT", "price": "62000.10"}, ...]
    """
    name = "binance"
    api_key_header = "X-MBX-APIKEY"
    _REST_BASE = "https://api.binance.com"

    async def fetch(self, assets: Sequence[str], currencies: Sequence[str]) -> RateTable:
        data = await self._get_json("/api/v3/ticker/price")
        if isinstance(data, dict) and "code" in data:
            raise ProviderError(self.name, f"API error {data.get('code')}: {data.get('msg', '')}")
        if not isinstance(data, list):
            raise self._malformed(f"expected list, got {type(data).__name__}")

        prices: dict[str, Decimal] = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            symbol = str(item.get("symbol", "")).upper()
            price = self._to_decimal(item.get("price"))
            if symbol and price > 0:
                prices[symbol] = price
        if not prices:
            raise self._malformed("ticker list contained no prices")

        table = self._new_table(assets, currencies)
        for asset in table.assets:
            for currency in table.currencies:
                if asset == currency:
                    continue
                price = self._lookup(prices, asset, currency)
                if price is None:
                    continue
                table.add(self._quote(asset, currency, price))
        self._log.info("Fetched %d quotes from Binance (%d missing)", len(table), len(table.missing))
        return table

    @staticmethod
    def _lookup(prices: dict[str, Decimal], asset: str, currency: str) -> Decimal | None:
        direct = prices.get(f"{asset}{currency}")
        if direct is not None:
            return direct
        proxy = USD_PROXIES.get(currency)
        if proxy and proxy != asset:
            return prices.get(f"{asset}{proxy}")
        return None

    async def check_availability(self) -> bool:
        data = await self._get_json("/api/v3/ping")
        return data == {}
