from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, TypeVar

log = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    key: str
    value: V
    expires_at: float


def make_cache_key(prefix: str, assets: Iterable[str], currencies: Iterable[str]) -> str:
    """Provider-independent signature of a rates query."""
    asset_part = ",".join(sorted({a.upper() for a in assets}))
    currency_part = ",".join(sorted({c.upper() for c in currencies}))
    return f"{prefix}:{asset_part}:{currency_part}"


class PriceCache(Generic[V]):
    """TTL store for fetched quotes and rate tables.

    Expired entries are evicted when read and reported as absent; nothing
    sweeps the store in the background. Not safe for concurrent writers to the
    same key; the aggregator serializes access per key.
    """

    def __init__(self, default_ttl: float = 300.0, clock: Callable[[], float] = time.time) -> None:
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def get(self, key: str) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            log.debug("Cache entry %s expired, evicting", key)
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: V, ttl: float | None = None) -> None:
        lifetime = self._default_ttl if ttl is None else ttl
        if lifetime <= 0:
            raise ValueError("ttl must be positive")
        self._entries[key] = CacheEntry(key=key, value=value, expires_at=self._clock() + lifetime)

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry now; returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            log.debug("Purged %d expired cache entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
