from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import aiohttp

log = logging.getLogger(__name__)

_DEFAULT_USER_AGENT = "rate-arbitrage/0.1 (+aiohttp)"
_MAX_BACKOFF_SEC = 10


class HttpClientFactory:
    """Owns one lazily created aiohttp session shared by every adapter."""

    def __init__(self, timeout: float = 10.0, user_agent: str | None = None) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._user_agent = user_agent or _DEFAULT_USER_AGENT
        self._session: aiohttp.ClientSession | None = None
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self._session and not self._session.closed:
            yield self._session
            return

        async with self._lock:
            if not self._session or self._session.closed:
                headers = {
                    "User-Agent": self._user_agent,
                    "Accept": "application/json, text/plain, */*",
                    "Accept-Encoding": "gzip, deflate",
                    "Cache-Control": "no-cache",
                }
                connector = aiohttp.TCPConnector(ssl=True, limit=50)
                self._session = aiohttp.ClientSession(
                    timeout=self._timeout,
                    headers=headers,
                    connector=connector,
                )
        yield self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        max_retries: int = 3,
        extra_headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        GET a public JSON endpoint.

        Rate limiting (429) is retried with exponential backoff up to
        ``max_retries`` times; any other non-success status raises
        ``aiohttp.ClientResponseError``.

        Args:
            url: URL to request
            params: Query parameters
            max_retries: Maximum attempts on 429
            extra_headers: Additional headers (API keys and the like)
            timeout: Per-request total timeout overriding the session default
        """
        log.debug("GET %s with params: %s", url, params)
        request_headers = dict(extra_headers) if extra_headers else {}
        request_kwargs: dict[str, Any] = {"params": params, "headers": request_headers}
        if timeout:
            request_kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)
        retry_count = 0
        async with self.session() as session:
            while retry_count < max_retries:
                async with session.get(url, **request_kwargs) as response:
                    if response.status == 429:
                        try:
                            retry_after = int(response.headers.get("Retry-After", "1"))
                        except (ValueError, TypeError):
                            retry_after = 1
                        wait_time = min(retry_after * (2 ** retry_count), _MAX_BACKOFF_SEC)
                        log.warning("Rate limit exceeded (429) for %s, waiting %d seconds", url, wait_time)
                        await asyncio.sleep(wait_time)
                        retry_count += 1
                        continue
                    response.raise_for_status()
                    data = await response.json(content_type=None)
                    log.debug("Response status: %d from %s", response.status, url)
                    return data
        raise aiohttp.ClientResponseError(
            request_info=None,  # type: ignore[arg-type]
            history=(),
            status=429,
            message="Rate limit exceeded after retries",
        )
