from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Sequence

import pytest

from hma_relay.api.state import set_state
from hma_relay.infrastructure.logging.logging import configure_logging

# 2024-07-01 09:15 IST
SESSION_OPEN_UTC = datetime(2024, 7, 1, 3, 45, tzinfo=timezone.utc)
FIVE_MIN = 300


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeHistory:
    """Stands in for FyersRestClient.fetch_history and records every call."""

    def __init__(self, rows: Sequence[Sequence[Any]] = (), error: Optional[Exception] = None) -> None:
        self.rows = list(rows)
        self.error = error
        self.calls: List[tuple] = []

    async def __call__(self, symbol, resolution, range_from, range_to, credential):
        self.calls.append((symbol, resolution, range_from, range_to, credential))
        if self.error is not None:
            raise self.error
        return list(self.rows)


@pytest.fixture
def make_rows() -> Callable[..., List[list]]:
    """Raw broker rows, 5 minutes apart, starting at 09:15 IST by default."""

    def _make(closes: Sequence[float], start: int = int(SESSION_OPEN_UTC.timestamp())) -> List[list]:
        return [
            [start + i * FIVE_MIN, c - 0.5, c + 1.0, c - 1.0, c, 1000 + i]
            for i, c in enumerate(closes)
        ]

    return _make


@pytest.fixture
def ramp_closes() -> Callable[[int], List[float]]:
    def _ramp(n: int, start: float = 100.0) -> List[float]:
        return [start + i for i in range(n)]

    return _ramp


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 7, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def fake_history_cls():
    return FakeHistory


@pytest.fixture(autouse=True)
def _console_logging():
    # structlog prints to stdout until configured; the CLI tests read stdout as JSON
    configure_logging("INFO", json_logs=False)


@pytest.fixture(autouse=True)
def _reset_api_state():
    yield
    set_state(None)
