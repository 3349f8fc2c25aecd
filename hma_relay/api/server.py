# hma_relay/api/server.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from hma_relay.api.state import AppState, build_state, get_state, has_state, set_state
from hma_relay.infrastructure.fyers.fyers_rest_client import FyersRestClient, fyers_credential
from hma_relay.infrastructure.logging.logging import get_logger
from hma_relay.infrastructure.utils.config import RelayConfig, get_config
from hma_relay.infrastructure.utils.timeutils import to_epoch, utc_now
from hma_relay.services.market.errors import FetchError, InsufficientDataError, MalformedCandleError
from hma_relay.services.market.symbols import classify_symbol, is_valid_symbol

JsonDict = Dict[str, Any]


class ClearCachePayload(BaseModel):
    symbol: Optional[str] = None


class ClearMarketCachePayload(BaseModel):
    type: Optional[str] = None  # "historical" | "depth" | "all"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _market_error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _credential(state: AppState, authorization: str) -> str:
    return fyers_credential(authorization, state.config.fyers.app_id)


def _require_fyers(state: AppState) -> FyersRestClient:
    if state.fyers is None:
        raise FetchError("Market data client not configured")
    return state.fyers


def create_app(config: Optional[RelayConfig] = None) -> FastAPI:
    config = config or get_config()
    log = get_logger("api")

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        owned = not has_state()
        if owned:
            set_state(build_state(config))
        try:
            yield
        finally:
            if owned:
                state = get_state()
                if state.fyers is not None:
                    await state.fyers.aclose()
                set_state(None)

    app = FastAPI(title="HMA Relay API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    def health() -> JsonDict:
        return {"status": "ok"}

    # --------- HMA ---------
    @app.get("/api/hma-calc")
    async def hma_calc(
        symbol: Optional[str] = Query(default=None),
        authorization: Optional[str] = Header(default=None),
    ) -> Any:
        if not authorization:
            return _error(401, "Authentication token is required")
        if not symbol:
            return _error(400, "Symbol parameter is required")

        state = get_state()
        try:
            result = await state.engine.fetch_and_compute(symbol, _credential(state, authorization))
        except InsufficientDataError as e:
            log.warning("hma_insufficient_data", symbol=symbol, required=e.required, available=e.available)
            return _error(422, str(e))
        except (FetchError, MalformedCandleError) as e:
            log.error("hma_upstream_error", symbol=symbol, error=str(e))
            return _error(502, str(e))
        return result.to_dict()

    @app.get("/api/hma-cache-stats")
    def hma_cache_stats() -> List[JsonDict]:
        return [s.to_dict() for s in get_state().engine.cache_stats()]

    @app.post("/api/hma-cache/clear")
    def hma_cache_clear(
        payload: ClearCachePayload,
        authorization: Optional[str] = Header(default=None),
    ) -> Any:
        if not authorization:
            return _error(401, "Authentication token is required")
        if not payload.symbol:
            return _error(400, "Symbol parameter is required")
        return {"success": get_state().engine.evict(payload.symbol)}

    # --------- Market data proxy ---------
    @app.get("/api/market-data/historical")
    async def historical(
        symbol: Optional[str] = Query(default=None),
        resolution: Optional[str] = Query(default=None),
        range_from: Optional[int] = Query(default=None, alias="from"),
        range_to: Optional[int] = Query(default=None, alias="to"),
        authorization: Optional[str] = Header(default=None),
    ) -> Any:
        if not authorization:
            return _error(401, "Authentication token is required")
        if not symbol or not resolution:
            return _error(400, "Symbol and resolution are required")

        state = get_state()
        key = f"{symbol}:{resolution}:{range_from or ''}:{range_to or ''}"
        cached = state.market_cache.get("historical", key)
        if cached is not None:
            log.debug("historical_cache_hit", symbol=symbol, resolution=resolution)
            return {**cached, "cached": True}

        now = utc_now()
        if range_to is None:
            range_to = to_epoch(now)
        if range_from is None:
            range_from = range_to - state.config.market.history_lookback_days * 86400

        try:
            candles = await _require_fyers(state).fetch_history(
                symbol, resolution, range_from, range_to, _credential(state, authorization)
            )
        except FetchError as e:
            log.error("historical_error", symbol=symbol, error=str(e))
            return _market_error(502, str(e))

        data = {"success": True, "candles": candles}
        state.market_cache.put("historical", key, data)
        return data

    @app.get("/api/market-data/quotes")
    async def quotes(
        symbols: Optional[str] = Query(default=None),
        authorization: Optional[str] = Header(default=None),
    ) -> Any:
        if not authorization:
            return _error(401, "Authentication token is required")
        if not symbols:
            return _error(400, "Symbols parameter is required")

        wanted = [s.strip() for s in symbols.split(",") if s.strip()]
        invalid = [s for s in wanted if not is_valid_symbol(s)]
        if invalid:
            return _market_error(400, f"Invalid symbol format for: {', '.join(invalid)}")

        state = get_state()
        try:
            result = await _require_fyers(state).fetch_quotes(wanted, _credential(state, authorization))
        except FetchError as e:
            log.error("quotes_error", symbols=wanted, error=str(e))
            return _market_error(502, str(e))

        if len(result) == 1:
            return {"success": True, "data": result[0].to_dict()}
        return {"success": True, "data": [q.to_dict() for q in result]}

    @app.get("/api/market-data/depth")
    async def depth(
        symbol: Optional[str] = Query(default=None),
        authorization: Optional[str] = Header(default=None),
    ) -> Any:
        if not authorization:
            return _error(401, "Authentication token is required")
        if not symbol:
            return _error(400, "Symbol parameter is required")
        if not is_valid_symbol(symbol):
            return _market_error(400, f"Invalid symbol format: {symbol}")

        state = get_state()
        cached = state.market_cache.get("depth", symbol)
        if cached is not None:
            return {**cached, "cached": True}

        try:
            data = await _require_fyers(state).fetch_depth(symbol, _credential(state, authorization))
        except FetchError as e:
            log.error("depth_error", symbol=symbol, error=str(e))
            return _market_error(502, str(e))

        state.market_cache.put("depth", symbol, data)
        return data

    @app.get("/api/cache/stats")
    def market_cache_stats() -> JsonDict:
        cache = get_state().market_cache
        return {
            "success": True,
            "stats": cache.stats(),
            "ttl": int(cache.ttl.total_seconds()),
        }

    @app.post("/api/cache/clear")
    def market_cache_clear(
        payload: ClearMarketCachePayload,
        authorization: Optional[str] = Header(default=None),
    ) -> Any:
        if not authorization:
            return _error(401, "Authentication token is required")
        cache = get_state().market_cache
        if payload.type and payload.type != "all":
            if not cache.clear(payload.type):
                return _error(400, f"Invalid cache type: {payload.type}")
        else:
            cache.clear_all()
        return {"success": True}

    # --------- Symbols ---------
    @app.get("/api/symbols/validate")
    def validate_symbol(symbol: Optional[str] = Query(default=None)) -> Any:
        if not symbol:
            return _market_error(400, "Symbol parameter is required")
        pattern = classify_symbol(symbol)
        return {
            "success": True,
            "symbol": symbol,
            "isValid": pattern != "INVALID",
            "validationPattern": pattern,
        }

    return app
