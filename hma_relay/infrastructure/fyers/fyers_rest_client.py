"""Fyers API v3 REST client (history, quotes, depth) using httpx.

- One shared AsyncClient per relay process (connection reuse, single timeout policy)
- Access token travels per call in the Authorization header ("appId:accessToken")
- Every failure surfaces as FetchError; no retries here
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Sequence

import httpx

from hma_relay.infrastructure.logging.logging import get_logger
from hma_relay.models.market_models import Quote
from hma_relay.services.market.errors import FetchError

JsonDict = Dict[str, Any]

HISTORY_PATH = "/data/history"
QUOTES_PATH = "/data/quotes"
DEPTH_PATH = "/data/depth"


def fyers_credential(token: str, app_id: str = "") -> str:
    """Fyers wants "appId:accessToken"; bare tokens get the configured app id prefixed."""
    if not token or ":" in token or not app_id:
        return token
    return f"{app_id}:{token}"


def _quote_from_payload(symbol: str, v: JsonDict) -> Quote:
    return Quote(
        symbol=symbol,
        ltp=float(v.get("lp") or 0),
        open=float(v.get("open_price") or 0),
        high=float(v.get("high_price") or 0),
        low=float(v.get("low_price") or 0),
        close=float(v.get("prev_close_price") or 0),
        volume=int(v.get("volume") or 0),
        change=float(v.get("ch") or 0),
        change_percent=float(v.get("chp") or 0),
        timestamp=int(v.get("tt") or time.time()),
    )


class FyersRestClient:
    def __init__(
        self,
        base_url: str = "https://api-t1.fyers.in",
        *,
        timeout_sec: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._logger = get_logger("fyers_rest")
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout_sec,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "FyersRestClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def _get(self, path: str, params: JsonDict, credential: str) -> JsonDict:
        try:
            resp = await self._client.get(path, params=params, headers={"Authorization": credential})
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise FetchError(f"Fyers HTTP {e.response.status_code} on {path}") from e
        except httpx.RequestError as e:
            raise FetchError(f"Fyers request failed on {path}: {e}") from e
        except ValueError as e:
            raise FetchError(f"Fyers returned invalid JSON on {path}") from e

        if not isinstance(data, dict):
            raise FetchError(f"Unexpected Fyers payload on {path}")
        return data

    async def fetch_history(
        self,
        symbol: str,
        resolution: str,
        range_from: int,
        range_to: int,
        credential: str,
    ) -> List[Sequence[Any]]:
        """
        Raw OHLCV rows [epoch, open, high, low, close, volume] for symbol.
        "no_data" from Fyers is an empty list, not an error.
        """
        if not credential:
            raise FetchError("No valid authentication token found")

        params = {
            "symbol": symbol,
            "resolution": resolution,
            "date_format": "0",  # range_from/range_to as epoch seconds
            "range_from": str(int(range_from)),
            "range_to": str(int(range_to)),
            "cont_flag": "1",
        }

        self._logger.info("history_request", symbol=symbol, resolution=resolution)
        data = await self._get(HISTORY_PATH, params, credential)

        status = data.get("s")
        if status == "ok":
            candles = data.get("candles") or []
            self._logger.info("history_loaded", symbol=symbol, candles=len(candles))
            return candles
        if status == "no_data":
            self._logger.info("history_no_data", symbol=symbol)
            return []

        msg = data.get("message") or "Failed to fetch historical data"
        self._logger.error("history_error", symbol=symbol, status=status, error=msg)
        raise FetchError(msg)

    async def fetch_quotes(self, symbols: Sequence[str], credential: str) -> List[Quote]:
        """
        Quotes in the order requested. A symbol Fyers has nothing for comes back
        as an all-zero Quote instead of failing the whole batch.
        """
        if not credential:
            raise FetchError("No valid authentication token found")

        self._logger.info("quotes_request", symbols=len(symbols))
        data = await self._get(QUOTES_PATH, {"symbols": ",".join(symbols)}, credential)

        if data.get("s") != "ok" or not isinstance(data.get("d"), list):
            msg = data.get("message") or "Failed to fetch market data"
            self._logger.error("quotes_error", error=msg)
            raise FetchError(msg)

        by_name: Dict[str, JsonDict] = {}
        for item in data["d"]:
            if isinstance(item, dict) and isinstance(item.get("v"), dict):
                by_name[item.get("n", "")] = item["v"]

        quotes: List[Quote] = []
        for symbol in symbols:
            v = by_name.get(symbol)
            if v is None:
                self._logger.warning("quote_missing", symbol=symbol)
                quotes.append(Quote(symbol=symbol, timestamp=int(time.time())))
                continue
            try:
                quotes.append(_quote_from_payload(symbol, v))
            except (TypeError, ValueError) as e:
                raise FetchError(f"Malformed quote for {symbol}: {e}") from e
        return quotes

    async def fetch_depth(self, symbol: str, credential: str) -> JsonDict:
        """Market depth (bids/asks and OHLC fields) for one symbol, as Fyers returns it."""
        if not credential:
            raise FetchError("No valid authentication token found")

        self._logger.info("depth_request", symbol=symbol)
        data = await self._get(DEPTH_PATH, {"symbol": symbol, "ota_flag": "0"}, credential)

        if data.get("s") != "ok" or not data.get("d"):
            msg = data.get("message") or "Unknown error"
            self._logger.error("depth_error", symbol=symbol, error=msg)
            raise FetchError(f"Market depth API error: {msg}")
        return data["d"]
