"""Convert raw Fyers history rows into Candles and keep only trading-session minutes."""

from __future__ import annotations

from datetime import timezone
from typing import Any, Iterable, List, Sequence, Union

from hma_relay.infrastructure.utils.timeutils import exchange_tz, minute_of_day
from hma_relay.models.market_models import Candle
from hma_relay.services.market.errors import MalformedCandleError

MARKET_START_MINUTES = 555  # 09:15
MARKET_END_MINUTES = 930    # 15:30

EXCHANGE_TZ = exchange_tz()

RawRow = Sequence[Any]


def in_session(timestamp: int, tz: timezone = EXCHANGE_TZ) -> bool:
    """True if the candle's local wall-clock minute is inside [09:15, 15:30]."""
    return MARKET_START_MINUTES <= minute_of_day(timestamp, tz) <= MARKET_END_MINUTES


def _to_candle(index: int, row: RawRow) -> Candle:
    # [ts, open, high, low, close, volume]; volume is optional
    if len(row) < 5:
        raise MalformedCandleError(index, row, f"expected at least 5 fields, got {len(row)}")
    try:
        return Candle(
            timestamp=int(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=int(float(row[5])) if len(row) > 5 and row[5] is not None else 0,
        )
    except (TypeError, ValueError, OverflowError) as e:
        raise MalformedCandleError(index, row, str(e)) from e


def _row_in_session(index: int, row: object, candle: Candle, tz: timezone) -> bool:
    try:
        return in_session(candle.timestamp, tz)
    except (OverflowError, OSError, ValueError) as e:
        raise MalformedCandleError(index, row, f"timestamp out of range: {e}") from e


def normalize(
    raw_candles: Iterable[Union[RawRow, Candle]],
    tz: timezone = EXCHANGE_TZ,
) -> List[Candle]:
    """
    Build Candles from broker rows and drop everything outside the session window.

    Input order is preserved (the broker returns ascending timestamps; nothing is re-sorted
    or deduplicated). Candle instances pass through unchanged, so normalizing an already
    normalized sequence is a no-op. NaN prices are not rejected and flow into the HMA.
    """
    out: List[Candle] = []
    for i, row in enumerate(raw_candles):
        candle = row if isinstance(row, Candle) else _to_candle(i, row)
        if _row_in_session(i, row, candle, tz):
            out.append(candle)
    return out
