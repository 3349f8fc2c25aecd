"""Time helpers: UTC clock and exchange-local conversions."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

# NSE/BSE run on IST (UTC+05:30) all year round, no DST.
IST_OFFSET_MINUTES = 330


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def exchange_tz(offset_minutes: int = IST_OFFSET_MINUTES) -> timezone:
    """Fixed-offset timezone for the exchange wall clock."""
    return timezone(timedelta(minutes=offset_minutes))


def minute_of_day(epoch: int, tz: timezone) -> int:
    """Minutes since local midnight for an epoch-seconds timestamp."""
    local = datetime.fromtimestamp(epoch, tz=tz)
    return local.hour * 60 + local.minute


def to_epoch(dt: datetime) -> int:
    return int(dt.timestamp())
