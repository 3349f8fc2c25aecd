"""Hull Moving Average (HMA-55) over 5m closes.

HMA(n) = WMA(2 * WMA(close, n/2) - WMA(close, n), sqrt(n))

Warm-up policy of the series (values the front-end already charts):
- index < n-1                 -> 0.0 (not computable yet)
- n-1 <= index < n+sqrt(n)-2  -> the unsmoothed raw value 2*WMA(n/2) - WMA(n)
- index >= n+sqrt(n)-2        -> sqrt(n)-point WMA of the raw values
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import List, Optional, Sequence

from hma_relay.infrastructure.utils.timeutils import utc_now
from hma_relay.models.market_models import Candle, HMAPoint, HMAResult
from hma_relay.services.market.errors import InsufficientDataError

PERIOD = 55
HALF_PERIOD = PERIOD // 2                  # 27
SQRT_PERIOD = int(math.floor(math.sqrt(PERIOD)))  # 7
REQUIRED_CANDLES = 60  # 300 market minutes = 60 x 5m candles


def wma(values: Sequence[float], idx: int, window: int) -> float:
    """Weighted moving average ending at idx; weight `window` on values[idx] down to 1."""
    if idx < window - 1:
        return 0.0

    total = 0.0
    weight_sum = 0.0
    for i in range(window):
        weight = window - i
        total += values[idx - i] * weight
        weight_sum += weight
    return total / weight_sum


def raw_hma(closes: Sequence[float], idx: int, period: int = PERIOD) -> float:
    """2 * WMA(period/2) - WMA(period) at idx."""
    return 2 * wma(closes, idx, period // 2) - wma(closes, idx, period)


def hma_series(closes: Sequence[float], period: int = PERIOD) -> List[float]:
    """HMA value for every index of closes, following the warm-up policy above."""
    sqrt_period = int(math.floor(math.sqrt(period)))
    smooth_from = period + sqrt_period - 2

    out = [0.0] * len(closes)
    raw: List[float] = [0.0] * len(closes)

    for idx in range(period - 1, len(closes)):
        raw[idx] = raw_hma(closes, idx, period)
        if idx < smooth_from:
            out[idx] = raw[idx]
            continue

        total = 0.0
        weight_sum = 0.0
        for i in range(sqrt_period):
            pos = idx - i
            if pos < period - 1:
                continue
            weight = sqrt_period - i
            total += raw[pos] * weight
            weight_sum += weight
        out[idx] = total / weight_sum

    return out


def compute_hma(candles: Sequence[Candle], now: Optional[datetime] = None) -> HMAResult:
    """Compute the HMA-55 series for candles (ascending by time).

    Raises InsufficientDataError with fewer than PERIOD candles.
    """
    if len(candles) < PERIOD:
        raise InsufficientDataError(required=PERIOD, available=len(candles))

    closes = [c.close for c in candles]
    values = hma_series(closes, PERIOD)

    data = [
        HMAPoint(timestamp=c.timestamp, close=c.close, hma=v)
        for c, v in zip(candles, values)
    ]

    return HMAResult(
        period=PERIOD,
        data=data,
        current_hma=data[-1].hma,
        last_update=now or utc_now(),
    )
