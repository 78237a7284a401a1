from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Protocol, Sequence, runtime_checkable

import aiohttp

from rate_arbitrage.core.exceptions import ProviderError
from rate_arbitrage.core.http import HttpClientFactory
from rate_arbitrage.services.schemas import Quote, RateTable, to_decimal

ZERO = Decimal(0)


@runtime_checkable
class PriceProvider(Protocol):
    name: str
    timeout: float

    async def fetch(self, assets: Sequence[str], currencies: Sequence[str]) -> RateTable:
        ...

    async def check_availability(self) -> bool:
        ...

    async def close(self) -> None:
        ...


class BaseProvider:
    name: str
    api_key_header: str | None = None
    requires_api_key: bool = False
    _REST_BASE: str = ""
    _log_namespace = "rate_arbitrage.providers"

    def __init__(
        self,
        http_factory: HttpClientFactory,
        timeout: float = 10.0,
        api_key: str | None = None,
        base_url: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._closed = asyncio.Event()
        self._http = http_factory
        self.timeout = timeout
        self._api_key = api_key or None
        self._base_url = (base_url or self._REST_BASE).rstrip("/")
        self._clock = clock
        self._log = logging.getLogger(f"{self._log_namespace}.{self.name}")

    @property
    def has_api_key(self) -> bool:
        return self._api_key is not None

    def set_api_key(self, api_key: str | None) -> None:
        self._api_key = api_key or None

    async def close(self) -> None:
        self._log.info("Closing provider")
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _auth_headers(self) -> dict[str, str] | None:
        if not self._api_key or not self.api_key_header:
            return None
        return {self.api_key_header: self._api_key}

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        if self.closed:
            raise ProviderError(self.name, "provider is closed")
        url = f"{self._base_url}{path}"
        try:
            return await self._http.get_json(
                url,
                params=params,
                extra_headers=self._auth_headers(),
                timeout=self.timeout,
            )
        except aiohttp.ClientResponseError as exc:
            raise ProviderError(self.name, f"HTTP {exc.status} from {path}") from exc
        except aiohttp.ClientError as exc:
            raise ProviderError(self.name, f"transport failure: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise ProviderError(self.name, f"timed out after {self.timeout:.1f}s") from exc
        except ValueError as exc:
            raise ProviderError(self.name, f"invalid JSON from {path}") from exc

    def _new_table(self, assets: Sequence[str], currencies: Sequence[str]) -> RateTable:
        return RateTable(
            assets=tuple(a.upper() for a in assets),
            currencies=tuple(c.upper() for c in currencies),
            source=self.name,
            created_at=self._clock(),
        )

    def _quote(self, asset: str, currency: str, price: Decimal) -> Quote:
        return Quote(
            asset=asset.upper(),
            quote_currency=currency.upper(),
            price=price,
            source=self.name,
            fetched_at=self._clock(),
        )

    def _malformed(self, detail: str) -> ProviderError:
        return ProviderError(self.name, f"malformed response: {detail}")

    @staticmethod
    def _to_decimal(value: Any) -> Decimal:
        if value is None or isinstance(value, bool):
            return ZERO
        try:
            result = to_decimal(value)
        except (InvalidOperation, TypeError, ValueError):
            return ZERO
        if not result.is_finite():
            return ZERO
        return result
