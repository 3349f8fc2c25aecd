# hma_relay/api/state.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from hma_relay.infrastructure.fyers.fyers_rest_client import FyersRestClient
from hma_relay.infrastructure.utils.config import RelayConfig
from hma_relay.infrastructure.utils.timeutils import exchange_tz
from hma_relay.services.market.hma_engine import HMAEngine
from hma_relay.services.market.market_data_cache import MarketDataCache


@dataclass
class AppState:
    config: RelayConfig
    engine: HMAEngine
    fyers: Optional[FyersRestClient] = None
    market_cache: MarketDataCache = field(default_factory=MarketDataCache)


_state: Optional[AppState] = None


def build_state(config: RelayConfig) -> AppState:
    """Wire the Fyers client into a fresh engine (and therefore a fresh cache)."""
    fyers = FyersRestClient(
        config.fyers.api_base_url,
        timeout_sec=config.fyers.request_timeout_sec,
    )
    engine = HMAEngine(
        fyers.fetch_history,
        tz=exchange_tz(config.market.exchange_utc_offset_minutes),
        lookback=timedelta(days=config.market.history_lookback_days),
    )
    return AppState(config=config, engine=engine, fyers=fyers)


def set_state(state: Optional[AppState]) -> None:
    global _state
    _state = state


def has_state() -> bool:
    return _state is not None


def get_state() -> AppState:
    if _state is None:
        raise RuntimeError("API state not initialized. Start the server through create_app().")
    return _state
