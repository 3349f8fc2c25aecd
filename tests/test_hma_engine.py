from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from hma_relay.models.market_models import Candle, CacheEntry, CachedCandle
from hma_relay.services.market.errors import FetchError, InsufficientDataError
from hma_relay.services.market.hma_engine import HMACache, HMAEngine

SYMBOL = "NSE:NIFTY50-INDEX"
TOKEN = "APPID-100:token"


@pytest.fixture
def history(fake_history_cls, make_rows, ramp_closes):
    return fake_history_cls(make_rows(ramp_closes(60)))


@pytest.fixture
def engine(history, clock):
    return HMAEngine(history, clock=clock)


def test_miss_fetches_then_hit_serves_cache(engine, history):
    first = asyncio.run(engine.fetch_and_compute(SYMBOL, TOKEN))
    second = asyncio.run(engine.fetch_and_compute(SYMBOL, TOKEN))

    assert len(history.calls) == 1
    assert first.from_cache is False
    assert second.from_cache is True
    assert second.current_hma == first.current_hma
    assert second.last_update == first.last_update
    assert len(second.data) == 60
    # the cache keeps no value before the warm-up index
    assert second.data[0].hma is None
    assert second.data[53].hma is None
    assert second.data[54].hma == first.data[54].hma


def test_fetch_arguments(engine, history, clock):
    asyncio.run(engine.fetch_and_compute(SYMBOL, TOKEN))

    symbol, resolution, range_from, range_to, credential = history.calls[0]
    assert symbol == SYMBOL
    assert resolution == "5"
    assert range_to == int(clock.now.timestamp())
    assert range_to - range_from == 2 * 24 * 3600
    assert credential == TOKEN


def test_freshness_boundary(engine, history, clock):
    asyncio.run(engine.fetch_and_compute(SYMBOL, TOKEN))

    clock.advance(minutes=4, seconds=59)
    assert asyncio.run(engine.fetch_and_compute(SYMBOL, TOKEN)).from_cache is True
    assert len(history.calls) == 1

    clock.advance(seconds=2)  # T + 5m01s
    assert asyncio.run(engine.fetch_and_compute(SYMBOL, TOKEN)).from_cache is False
    assert len(history.calls) == 2


def test_evict_forces_refetch(engine, history):
    asyncio.run(engine.fetch_and_compute(SYMBOL, TOKEN))

    assert engine.evict(SYMBOL) is True
    assert engine.evict(SYMBOL) is False

    result = asyncio.run(engine.fetch_and_compute(SYMBOL, TOKEN))
    assert result.from_cache is False
    assert len(history.calls) == 2


def test_evict_leaves_other_symbols(fake_history_cls, make_rows, ramp_closes, clock):
    history = fake_history_cls(make_rows(ramp_closes(60)))
    engine = HMAEngine(history, clock=clock)
    asyncio.run(engine.fetch_and_compute("A", TOKEN))
    asyncio.run(engine.fetch_and_compute("B", TOKEN))

    engine.evict("A")

    assert [s.symbol for s in engine.cache_stats()] == ["B"]


def test_cache_stats_snapshot(engine, clock):
    assert engine.cache_stats() == []

    asyncio.run(engine.fetch_and_compute(SYMBOL, TOKEN))
    stats = engine.cache_stats()

    assert len(stats) == 1
    assert stats[0].symbol == SYMBOL
    assert stats[0].candle_count == 60
    assert stats[0].last_update == clock.now
    assert stats[0].to_dict()["candleCount"] == 60


def test_insufficient_in_session_candles(fake_history_cls, make_rows, ramp_closes, clock):
    rows = make_rows(ramp_closes(59))
    # evening rows of the same day are dropped by the session filter
    rows += make_rows(ramp_closes(10), start=rows[-1][0] + 8 * 3600)
    engine = HMAEngine(fake_history_cls(rows), clock=clock)

    with pytest.raises(InsufficientDataError) as exc_info:
        asyncio.run(engine.fetch_and_compute(SYMBOL, TOKEN))

    assert exc_info.value.required == 60
    assert exc_info.value.available == 59
    assert SYMBOL not in engine.cache


def test_empty_history_is_insufficient(fake_history_cls, clock):
    engine = HMAEngine(fake_history_cls([]), clock=clock)

    with pytest.raises(InsufficientDataError):
        asyncio.run(engine.fetch_and_compute(SYMBOL, TOKEN))


def test_fetch_error_propagates_without_cache_write(fake_history_cls, make_rows, ramp_closes, clock):
    history = fake_history_cls(make_rows(ramp_closes(60)), error=FetchError("token expired"))
    engine = HMAEngine(history, clock=clock)

    with pytest.raises(FetchError, match="token expired"):
        asyncio.run(engine.fetch_and_compute(SYMBOL, TOKEN))
    assert len(engine.cache) == 0

    # no residual in-flight state: the next call fetches again
    history.error = None
    assert asyncio.run(engine.fetch_and_compute(SYMBOL, TOKEN)).from_cache is False
    assert len(history.calls) == 2


def test_concurrent_misses_share_one_fetch(make_rows, ramp_closes, clock):
    rows = make_rows(ramp_closes(60))
    calls = []

    async def slow_history(symbol, resolution, range_from, range_to, credential):
        calls.append(symbol)
        await asyncio.sleep(0.01)
        return rows

    engine = HMAEngine(slow_history, clock=clock)

    async def run():
        return await asyncio.gather(
            engine.fetch_and_compute(SYMBOL, TOKEN),
            engine.fetch_and_compute(SYMBOL, TOKEN),
            engine.fetch_and_compute("NSE:NIFTYBANK-INDEX", TOKEN),
        )

    a, b, c = asyncio.run(run())

    assert calls == [SYMBOL, "NSE:NIFTYBANK-INDEX"]
    assert a is b
    assert c is not a


def test_concurrent_misses_share_the_failure(clock):
    calls = []

    async def failing_history(symbol, resolution, range_from, range_to, credential):
        calls.append(symbol)
        await asyncio.sleep(0.01)
        raise FetchError("boom")

    engine = HMAEngine(failing_history, clock=clock)

    async def run():
        return await asyncio.gather(
            engine.fetch_and_compute(SYMBOL, TOKEN),
            engine.fetch_and_compute(SYMBOL, TOKEN),
            return_exceptions=True,
        )

    results = asyncio.run(run())

    assert len(calls) == 1
    assert all(isinstance(r, FetchError) for r in results)


def test_engines_do_not_share_caches(fake_history_cls, make_rows, ramp_closes, clock):
    rows = make_rows(ramp_closes(60))
    one = HMAEngine(fake_history_cls(rows), clock=clock)
    two = HMAEngine(fake_history_cls(rows), clock=clock)

    asyncio.run(one.fetch_and_compute(SYMBOL, TOKEN))

    assert len(one.cache) == 1
    assert len(two.cache) == 0


def test_entry_below_required_candles_is_never_fresh(clock):
    cache = HMACache()
    candles = tuple(
        CachedCandle(candle=Candle(timestamp=i, open=1.0, high=1.0, low=1.0, close=1.0))
        for i in range(59)
    )
    cache.put(CacheEntry(symbol=SYMBOL, candles=candles, last_update=clock.now))

    assert cache.get(SYMBOL) is not None
    assert cache.get_fresh(SYMBOL, clock.now) is None
    assert cache.get_fresh(SYMBOL, clock.now + timedelta(seconds=1)) is None
