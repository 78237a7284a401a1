from __future__ import annotations

from typing import Any, Sequence

from rate_arbitrage.core.exceptions import ProviderError
from rate_arbitrage.providers.base import BaseProvider
from rate_arbitrage.services.schemas import RateTable

# Symbols whose CoinGecko id is not simply the lowercase ticker
COINGECKO_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "XRP": "ripple",
    "LTC": "litecoin",
    "BCH": "bitcoin-cash",
    "BNB": "binancecoin",
    "DOT": "polkadot",
    "LINK": "chainlink",
    "ADA": "cardano",
    "XLM": "stellar",
    "SOL": "solana",
    "DOGE": "dogecoin",
    "AVAX": "avalanche-2",
    "MATIC": "matic-network",
    "UNI": "uniswap",
    "USDT": "tether",
    "USDC": "usd-coin",
}


class CoinGeckoProvider(BaseProvider):
    """
    CoinGecko public API.
    Endpoint: /simple/price?ids=bitcoin,ethereum&vs_currencies=usd,eur
    Response: {"bitcoin": {"usd": 62000.1, "eur": 57000.3}, ...}
    A configured key switches to the pro host and is sent as x-cg-pro-api-key.
    """
    name = "coingecko"
    api_key_header = "x-cg-pro-api-key"
    _REST_BASE = "https://api.coingecko.com/api/v3"
    _PRO_BASE = "https://pro-api.coingecko.com/api/v3"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._switch_host()

    def set_api_key(self, api_key: str | None) -> None:
        super().set_api_key(api_key)
        self._switch_host()

    def _switch_host(self) -> None:
        if self.has_api_key and self._base_url == self._REST_BASE:
            self._base_url = self._PRO_BASE
        elif not self.has_api_key and self._base_url == self._PRO_BASE:
            self._base_url = self._REST_BASE

    @staticmethod
    def coin_id(symbol: str) -> str:
        return COINGECKO_IDS.get(symbol.upper(), symbol.lower())

    async def fetch(self, assets: Sequence[str], currencies: Sequence[str]) -> RateTable:
        ids = {self.coin_id(asset): asset.upper() for asset in assets}
        self._log.debug("Fetching %d assets in %d currencies from CoinGecko", len(ids), len(currencies))
        data = await self._get_json(
            "/simple/price",
            params={
                "ids": ",".join(ids),
                "vs_currencies": ",".join(c.lower() for c in currencies),
            },
        )
        if not isinstance(data, dict):
            raise self._malformed(f"expected object, got {type(data).__name__}")
        status = data.get("status")
        if isinstance(status, dict) and status.get("error_code"):
            raise ProviderError(self.name, f"API error {status.get('error_code')}: {status.get('error_message', '')}")

        table = self._new_table(assets, currencies)
        for coin_id, asset in ids.items():
            entry = data.get(coin_id)
            if not isinstance(entry, dict):
                continue
            for currency in currencies:
                price = self._to_decimal(entry.get(currency.lower()))
                if price <= 0:
                    continue
                table.add(self._quote(asset, currency, price))
        self._log.info("Fetched %d quotes from CoinGecko (%d missing)", len(table), len(table.missing))
        return table

    async def check_availability(self) -> bool:
        data = await self._get_json("/ping")
        return isinstance(data, dict) and "gecko_says" in data
