from __future__ import annotations

import asyncio
import time
from decimal import Decimal
from typing import Any, Sequence

import pytest

from rate_arbitrage.core.exceptions import ProviderError
from rate_arbitrage.services.schemas import Quote, RateTable


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class DummyProvider:
    def __init__(
        self,
        name: str,
        prices: dict[tuple[str, str], float | str] | None = None,
        error: str | None = None,
        delay: float = 0.0,
        timeout: float = 1.0,
    ) -> None:
        self.name = name
        self.timeout = timeout
        self.prices = prices or {}
        self.error = error
        self.delay = delay
        self.calls = 0

    async def fetch(self, assets: Sequence[str], currencies: Sequence[str]) -> RateTable:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise ProviderError(self.name, self.error)
        table = RateTable(assets=tuple(assets), currencies=tuple(currencies), source=self.name)
        for (asset, currency), price in self.prices.items():
            if asset in assets and currency in currencies:
                table.add(Quote(asset, currency, Decimal(str(price)), self.name, time.time()))
        return table

    async def check_availability(self) -> bool:
        if self.error:
            raise ProviderError(self.name, self.error)
        return True

    async def close(self) -> None:
        return


class FakeHttpFactory:
    """Stands in for HttpClientFactory; records requests and replays canned payloads."""

    def __init__(self, response: Any = None, error: BaseException | None = None) -> None:
        self.response = response
        self.error = error
        self.requests: list[dict[str, Any]] = []

    async def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        max_retries: int = 3,
        extra_headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        self.requests.append({"url": url, "params": params, "headers": extra_headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response

    async def close(self) -> None:
        return


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_provider():
    return DummyProvider


@pytest.fixture
def make_http():
    return FakeHttpFactory
