"""Entrypoint.

Usage:
  python -m hma_relay.app.main api                      # run FastAPI server
  python -m hma_relay.app.main hma NSE:NIFTY50-INDEX    # compute HMA-55 once, print JSON
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Optional, Sequence

import uvicorn

from hma_relay.api.state import build_state
from hma_relay.infrastructure.fyers.fyers_rest_client import fyers_credential
from hma_relay.infrastructure.logging.logging import configure_logging, get_logger
from hma_relay.infrastructure.utils.config import RelayConfig, load_config
from hma_relay.services.market.errors import HMAError, MalformedCandleError


async def run_hma_once(config: RelayConfig, symbol: str, token: str) -> int:
    log = get_logger("cli")
    state = build_state(config)
    try:
        result = await state.engine.fetch_and_compute(symbol, fyers_credential(token, config.fyers.app_id))
    except (HMAError, MalformedCandleError) as e:
        log.error("hma_failed", symbol=symbol, error=str(e))
        return 1
    finally:
        if state.fyers is not None:
            await state.fyers.aclose()

    print(json.dumps(result.to_dict(), indent=2))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser("hma-relay")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("api", help="Run the FastAPI server")

    hma = sub.add_parser("hma", help="Compute HMA-55 for one symbol and print it")
    hma.add_argument("symbol")
    hma.add_argument("--token", default=None, help="access token or appId:accessToken (default: $FYERS__ACCESS_TOKEN)")

    args = parser.parse_args(argv)

    config = load_config()
    configure_logging(config.log_level, json_logs=config.json_logs)

    if args.command == "api":
        uvicorn.run(
            "hma_relay.api.server:create_app",
            factory=True,
            host=config.api.host,
            port=config.api.port,
            reload=False,
        )
        return 0

    if args.command == "hma":
        token = args.token or os.getenv("FYERS__ACCESS_TOKEN", "")
        return asyncio.run(run_hma_once(config, args.symbol, token))

    return 2


if __name__ == "__main__":
    sys.exit(main())
