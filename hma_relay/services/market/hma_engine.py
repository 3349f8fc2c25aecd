"""HMA engine: per-symbol result cache + fetch/normalize/compute orchestration."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from hma_relay.infrastructure.logging.logging import get_logger
from hma_relay.infrastructure.utils.timeutils import to_epoch, utc_now
from hma_relay.models.market_models import (
    CacheEntry,
    CachedCandle,
    CacheStat,
    HMAPoint,
    HMAResult,
)
from hma_relay.services.market.candle_normalizer import EXCHANGE_TZ, normalize
from hma_relay.services.market.errors import InsufficientDataError
from hma_relay.services.market.hma import PERIOD, REQUIRED_CANDLES, compute_hma

CACHE_TTL = timedelta(minutes=5)
HISTORY_RESOLUTION = "5"
HISTORY_LOOKBACK = timedelta(days=2)  # wide enough for 60 session candles across a weekend

# fetch_history(symbol, resolution, range_from, range_to, credential) -> raw rows
FetchHistory = Callable[[str, str, int, int, str], Awaitable[List[Sequence[Any]]]]
Clock = Callable[[], datetime]


class HMACache:
    """In-memory HMA results keyed by symbol.

    Entries are replaced wholesale on every recompute and only removed by evict();
    staleness is checked lazily by the reader.
    """

    def __init__(self, ttl: timedelta = CACHE_TTL, min_candles: int = REQUIRED_CANDLES) -> None:
        self._ttl = ttl
        self._min_candles = min_candles
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._entries

    def get(self, symbol: str) -> Optional[CacheEntry]:
        return self._entries.get(symbol)

    def is_fresh(self, entry: CacheEntry, now: datetime) -> bool:
        return (
            len(entry.candles) >= self._min_candles
            and (now - entry.last_update) < self._ttl
        )

    def get_fresh(self, symbol: str, now: datetime) -> Optional[CacheEntry]:
        entry = self._entries.get(symbol)
        if entry is None or not self.is_fresh(entry, now):
            return None
        return entry

    def put(self, entry: CacheEntry) -> None:
        self._entries[entry.symbol] = entry

    def evict(self, symbol: str) -> bool:
        return self._entries.pop(symbol, None) is not None

    def stats(self) -> List[CacheStat]:
        return [
            CacheStat(symbol=e.symbol, candle_count=len(e.candles), last_update=e.last_update)
            for e in self._entries.values()
        ]


def _entry_to_result(entry: CacheEntry) -> HMAResult:
    data = [HMAPoint(timestamp=c.timestamp, close=c.close, hma=c.hma) for c in entry.candles]
    return HMAResult(
        period=PERIOD,
        data=data,
        current_hma=data[-1].hma if data else None,
        last_update=entry.last_update,
        from_cache=True,
    )


class HMAEngine:
    """Serves HMA-55 per symbol, refetching history at most once per cache window.

    Concurrent misses for the same symbol share one in-flight refresh task.
    """

    def __init__(
        self,
        fetch_history: FetchHistory,
        *,
        cache: Optional[HMACache] = None,
        clock: Clock = utc_now,
        tz: timezone = EXCHANGE_TZ,
        lookback: timedelta = HISTORY_LOOKBACK,
    ) -> None:
        self._fetch_history = fetch_history
        self._cache = cache if cache is not None else HMACache()
        self._clock = clock
        self._tz = tz
        self._lookback = lookback
        self._inflight: Dict[str, asyncio.Task[HMAResult]] = {}
        self._log = get_logger("hma_engine")

    @property
    def cache(self) -> HMACache:
        return self._cache

    async def fetch_and_compute(self, symbol: str, credential: str) -> HMAResult:
        entry = self._cache.get_fresh(symbol, self._clock())
        if entry is not None:
            self._log.debug("hma_cache_hit", symbol=symbol, candles=len(entry.candles))
            return _entry_to_result(entry)

        task = self._inflight.get(symbol)
        if task is None:
            task = asyncio.ensure_future(self._refresh(symbol, credential))
            self._inflight[symbol] = task
        else:
            self._log.debug("hma_refresh_joined", symbol=symbol)

        # shield: one caller going away must not cancel the refresh for the others
        return await asyncio.shield(task)

    async def _refresh(self, symbol: str, credential: str) -> HMAResult:
        try:
            return await self._fetch_and_store(symbol, credential)
        finally:
            self._inflight.pop(symbol, None)

    async def _fetch_and_store(self, symbol: str, credential: str) -> HMAResult:
        now = self._clock()
        range_from = to_epoch(now - self._lookback)
        range_to = to_epoch(now)

        self._log.info("hma_cache_miss", symbol=symbol, range_from=range_from, range_to=range_to)
        try:
            raw = await self._fetch_history(symbol, HISTORY_RESOLUTION, range_from, range_to, credential)
        except Exception as e:
            self._log.error("history_fetch_failed", symbol=symbol, error=str(e))
            raise

        candles = normalize(raw or [], self._tz)
        self._log.info("history_normalized", symbol=symbol, raw=len(raw or []), in_session=len(candles))

        if len(candles) < REQUIRED_CANDLES:
            raise InsufficientDataError(required=REQUIRED_CANDLES, available=len(candles), symbol=symbol)

        result = compute_hma(candles, now=self._clock())

        cached = tuple(
            CachedCandle(candle=c, hma=p.hma if i >= PERIOD - 1 else None)
            for i, (c, p) in enumerate(zip(candles, result.data))
        )
        self._cache.put(CacheEntry(symbol=symbol, candles=cached, last_update=result.last_update))

        self._log.info("hma_computed", symbol=symbol, candles=len(candles), current_hma=result.current_hma)
        return result

    def evict(self, symbol: str) -> bool:
        removed = self._cache.evict(symbol)
        self._log.info("hma_cache_evicted", symbol=symbol, removed=removed)
        return removed

    def cache_stats(self) -> List[CacheStat]:
        return self._cache.stats()
