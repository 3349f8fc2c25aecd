"""Market domain models."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


def _json_float(value: Optional[float]) -> Optional[float]:
    """NaN/inf are not valid JSON; they go out as null."""
    if value is None or not math.isfinite(value):
        return None
    return value


@dataclass(frozen=True)
class Candle:
    timestamp: int      # epoch seconds, UTC
    open: float
    high: float
    low: float
    close: float
    volume: int = 0


@dataclass(frozen=True)
class CachedCandle:
    """A candle as stored in the HMA cache (hma is None before the warm-up index)."""

    candle: Candle
    hma: Optional[float] = None

    @property
    def timestamp(self) -> int:
        return self.candle.timestamp

    @property
    def close(self) -> float:
        return self.candle.close


@dataclass(frozen=True)
class HMAPoint:
    timestamp: int
    close: float
    hma: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "close": _json_float(self.close), "hma": _json_float(self.hma)}


@dataclass
class HMAResult:
    period: int
    data: List[HMAPoint]
    current_hma: Optional[float]
    last_update: datetime
    from_cache: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape consumed by the front-end."""
        return {
            "period": self.period,
            "data": [p.to_dict() for p in self.data],
            "currentHMA": _json_float(self.current_hma),
            "lastUpdate": self.last_update.isoformat(),
            "fromCache": self.from_cache,
        }


@dataclass(frozen=True)
class CacheEntry:
    symbol: str
    candles: Tuple[CachedCandle, ...]
    last_update: datetime


@dataclass(frozen=True)
class CacheStat:
    symbol: str
    candle_count: int
    last_update: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "candleCount": self.candle_count,
            "lastUpdate": self.last_update.isoformat(),
        }


@dataclass(frozen=True)
class Quote:
    symbol: str
    ltp: float = 0.0
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    close: float = 0.0      # previous session close
    volume: int = 0
    change: float = 0.0
    change_percent: float = 0.0
    timestamp: int = 0      # epoch seconds of the last trade

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "ltp": self.ltp,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "change": self.change,
            "changePercent": self.change_percent,
            "timestamp": self.timestamp,
        }
