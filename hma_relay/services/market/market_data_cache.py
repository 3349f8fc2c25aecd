"""Short-lived cache for proxied market data (history and depth responses)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from hma_relay.infrastructure.utils.timeutils import utc_now

MARKET_DATA_TTL = timedelta(seconds=30)
CACHE_KINDS = ("historical", "depth")


@dataclass(frozen=True)
class _Stored:
    stored_at: datetime
    data: Any


class MarketDataCache:
    """One keyed store per kind; entries older than ttl are ignored on read."""

    def __init__(
        self,
        ttl: timedelta = MARKET_DATA_TTL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._stores: Dict[str, Dict[str, _Stored]] = {kind: {} for kind in CACHE_KINDS}

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def get(self, kind: str, key: str) -> Optional[Any]:
        stored = self._stores[kind].get(key)
        if stored is None or self._clock() - stored.stored_at >= self._ttl:
            return None
        return stored.data

    def put(self, kind: str, key: str, data: Any) -> None:
        self._stores[kind][key] = _Stored(stored_at=self._clock(), data=data)

    def clear(self, kind: str) -> bool:
        store = self._stores.get(kind)
        if store is None:
            return False
        store.clear()
        return True

    def clear_all(self) -> None:
        for store in self._stores.values():
            store.clear()

    def stats(self) -> Dict[str, int]:
        return {kind: len(store) for kind, store in self._stores.items()}
