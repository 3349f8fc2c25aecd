from __future__ import annotations

import asyncio
import json

from hma_relay.api.state import AppState
from hma_relay.app import main as cli
from hma_relay.infrastructure.utils.config import RelayConfig
from hma_relay.services.market.errors import FetchError
from hma_relay.services.market.hma_engine import HMAEngine


def _patch_state(monkeypatch, history, clock):
    def fake_build_state(config):
        return AppState(config=config, engine=HMAEngine(history, clock=clock))

    monkeypatch.setattr(cli, "build_state", fake_build_state)


def test_hma_once_prints_json(monkeypatch, capsys, fake_history_cls, make_rows, ramp_closes, clock):
    history = fake_history_cls(make_rows(ramp_closes(60)))
    _patch_state(monkeypatch, history, clock)

    code = asyncio.run(cli.run_hma_once(RelayConfig(), "NSE:NIFTY50-INDEX", "APPID-100:token"))

    assert code == 0
    body = json.loads(capsys.readouterr().out)
    assert body["period"] == 55
    assert len(body["data"]) == 60
    assert history.calls[0][4] == "APPID-100:token"


def test_hma_once_reports_failure(monkeypatch, capsys, fake_history_cls, clock):
    _patch_state(monkeypatch, fake_history_cls(error=FetchError("down")), clock)

    code = asyncio.run(cli.run_hma_once(RelayConfig(), "NSE:NIFTY50-INDEX", "APPID-100:token"))

    assert code == 1
    assert "\"period\"" not in capsys.readouterr().out


def test_hma_once_prefixes_bare_token_with_app_id(
    monkeypatch, capsys, fake_history_cls, make_rows, ramp_closes, clock
):
    history = fake_history_cls(make_rows(ramp_closes(60)))
    _patch_state(monkeypatch, history, clock)
    config = RelayConfig()
    config.fyers.app_id = "APPID-100"

    code = asyncio.run(cli.run_hma_once(config, "NSE:NIFTY50-INDEX", "token"))

    assert code == 0
    assert history.calls[0][4] == "APPID-100:token"
    json.loads(capsys.readouterr().out)
