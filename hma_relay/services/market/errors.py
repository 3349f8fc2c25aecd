"""Error taxonomy for the HMA pipeline."""

from __future__ import annotations


class HMAError(RuntimeError):
    pass


class InsufficientDataError(HMAError):
    """Fewer candles than the computation needs. Caller should widen the lookback."""

    def __init__(self, required: int, available: int, symbol: str = "") -> None:
        self.required = required
        self.available = available
        self.symbol = symbol
        where = f" for {symbol}" if symbol else ""
        super().__init__(f"Insufficient data{where}. Need {required} candles, got {available}")


class FetchError(HMAError):
    """Opaque failure from the history source. Never retried here."""


class MalformedCandleError(ValueError):
    """A raw broker row that cannot be turned into a Candle."""

    def __init__(self, index: int, row: object, reason: str) -> None:
        self.index = index
        self.row = row
        super().__init__(f"Malformed candle at row {index}: {reason} ({row!r})")
