import importlib.util
import os
from pathlib import Path

import pytest

from bitget_trade_bot.config import load_config
from bitget_trade_bot.errors import FatalConfigError

ENV_KEYS = (
    "API_KEY", "API_SECRET", "API_PASSPHRASE", "BITGET_DEMO", "PORT",
    "WEBHOOK_SECRET", "FORWARD_URL", "FORWARD_SECRET", "SYMBOLS",
)

BASE = """
exchange:
  api_key: "k"
  api_secret: "s"
  api_passphrase: "p"
trading:
  symbols: ["btcusdt", " ethusdt "]
  timeframes: ["5m", "15m"]
risk:
  stop_loss_pct: 0.02
"""


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    # private copy so values loaded from .env files do not leak between tests
    monkeypatch.setattr(os, "environ", {k: v for k, v in os.environ.items() if k not in ENV_KEYS})


def _write(tmp_path, text, name="config.yaml"):
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    return str(p)


def _load(tmp_path, text):
    return load_config(_write(tmp_path, text), dotenv_path=str(tmp_path / "missing.env"))


def test_load_with_defaults(tmp_path):
    cfg = _load(tmp_path, BASE)
    assert cfg.trading.symbols == ["BTCUSDT", "ETHUSDT"]
    assert cfg.trading.timeframes == ["5m", "15m"]
    assert cfg.risk.stop_loss_pct == 0.02
    assert cfg.risk.take_profit_pct == 0.05
    assert cfg.risk.price_decimals == 1
    assert cfg.server.port == 3000
    assert cfg.exchange.product_type == "USDT-FUTURES"
    assert cfg.monitor.account_topics == ["account", "positions", "orders"]
    assert cfg.forward.headers == {}


def test_env_overrides(tmp_path):
    os.environ.update({
        "API_KEY": "env-key",
        "BITGET_DEMO": "true",
        "PORT": "8080",
        "SYMBOLS": "solusdt, xrpusdt",
        "WEBHOOK_SECRET": "hush",
    })
    cfg = _load(tmp_path, BASE)
    assert cfg.exchange.api_key == "env-key"
    assert cfg.exchange.demo is True
    assert cfg.server.port == 8080
    assert cfg.server.secret == "hush"
    assert cfg.trading.symbols == ["SOLUSDT", "XRPUSDT"]


def test_credentials_from_dotenv(tmp_path):
    env_file = _write(tmp_path, "API_KEY=dk\nAPI_SECRET=ds\nAPI_PASSPHRASE=dp\n", name=".env")
    cfg = load_config(_write(tmp_path, "trading:\n  symbols: [BTCUSDT]\n"), dotenv_path=env_file)
    assert (cfg.exchange.api_key, cfg.exchange.api_secret, cfg.exchange.api_passphrase) == ("dk", "ds", "dp")


def test_missing_credentials_is_fatal(tmp_path):
    with pytest.raises(FatalConfigError, match="credentials"):
        _load(tmp_path, "trading:\n  symbols: [BTCUSDT]\n")


def test_forward_only_mode_needs_no_credentials(tmp_path):
    cfg = _load(tmp_path, """
server:
  enabled: false
forward:
  enabled: true
  url: http://127.0.0.1:3000/webhook
""")
    assert not cfg.exchange.has_credentials()


def test_forward_without_url_is_fatal(tmp_path):
    with pytest.raises(FatalConfigError, match="forward.url"):
        _load(tmp_path, BASE + "forward:\n  enabled: true\n")


def test_unknown_key_is_fatal(tmp_path):
    with pytest.raises(FatalConfigError, match="trading"):
        _load(tmp_path, BASE.replace("timeframes:", "timeframe:"))


def test_bad_values_are_fatal(tmp_path):
    with pytest.raises(FatalConfigError, match="leverage"):
        _load(tmp_path, BASE.replace("trading:\n", "trading:\n  leverage: 0\n"))
    with pytest.raises(FatalConfigError, match="poll_interval_s"):
        _load(tmp_path, BASE.replace("trading:\n", "trading:\n  poll_interval_s: -5\n"))


def test_unreadable_or_non_mapping(tmp_path):
    with pytest.raises(FatalConfigError):
        load_config(str(tmp_path / "nope.yaml"), dotenv_path=str(tmp_path / "missing.env"))
    with pytest.raises(FatalConfigError):
        _load(tmp_path, "- a\n- b\n")


def test_cli_exits_2_on_config_error(tmp_path):
    from bitget_trade_bot.main import main

    assert main(["--config", str(tmp_path / "nope.yaml"), "--env-file", str(tmp_path / "missing.env")]) == 2


def test_bad_timeframe_or_strategy_is_fatal(tmp_path):
    with pytest.raises(FatalConfigError, match="15x"):
        _load(tmp_path, BASE.replace('["5m", "15m"]', '["5m", "15x"]'))
    with pytest.raises(FatalConfigError, match="macd"):
        _load(tmp_path, BASE.replace("trading:\n", "trading:\n  strategy: macd\n"))


def test_webhook_symbols_default_to_trading_symbols(tmp_path):
    assert _load(tmp_path, BASE).server.symbols == ["BTCUSDT", "ETHUSDT"]
    cfg = _load(tmp_path, BASE + "server:\n  symbols: [solusdt]\n")
    assert cfg.server.symbols == ["SOLUSDT"]


def test_eval_once_reports_config_errors(tmp_path, capsys):
    path = Path(__file__).resolve().parents[1] / "scripts" / "eval_once.py"
    spec = importlib.util.spec_from_file_location("eval_once", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    cfg = _write(tmp_path, "trading:\n  symbols: [BTCUSDT]\n")
    assert module.main(["--config", cfg]) == 2
    assert "credentials" in capsys.readouterr().err
