from __future__ import annotations

from typing import Sequence

from rate_arbitrage.core.exceptions import ProviderError
from rate_arbitrage.providers.base import BaseProvider
from rate_arbitrage.services.schemas import RateTable


class CryptoCompareProvider(BaseProvider):
    """
    CryptoCompare min-api.
    Endpoint: /data/pricemulti?fsyms=BTC,ETH&tsyms=USD,EUR
    Response: {"BTC": {"USD": 62000.1, "EUR": 57000.3}, ...}
    Failures come back as HTTP 200 with {"Response": "Error", "Message": ...}.
    """
    name = "cryptocompare"
    api_key_header = "authorization"
    _REST_BASE = "https://min-api.cryptocompare.com"

    def _auth_headers(self) -> dict[str, str] | None:
        if not self._api_key:
            return None
        return {"authorization": f"Apikey {self._api_key}"}

    async def fetch(self, assets: Sequence[str], currencies: Sequence[str]) -> RateTable:
        symbols = [asset.upper() for asset in assets]
        targets = [currency.upper() for currency in currencies]
        data = await self._get_json(
            "/data/pricemulti",
            params={"fsyms": ",".join(symbols), "tsyms": ",".join(targets)},
        )
        if not isinstance(data, dict):
            raise self._malformed(f"expected object, got {type(data).__name__}")
        if data.get("Response") == "Error":
            raise ProviderError(self.name, f"API error: {data.get('Message', 'unknown')}")

        table = self._new_table(symbols, targets)
        for asset in symbols:
            entry = data.get(asset)
            if not isinstance(entry, dict):
                continue
            for currency in targets:
                price = self._to_decimal(entry.get(currency))
                if price <= 0:
                    continue
                table.add(self._quote(asset, currency, price))
        self._log.info("Fetched %d quotes from CryptoCompare (%d missing)", len(table), len(table.missing))
        return table

    async def check_availability(self) -> bool:
        data = await self._get_json("/data/price", params={"fsym": "BTC", "tsyms": "USD"})
        return isinstance(data, dict) and "USD" in data
