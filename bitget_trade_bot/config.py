from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import os

import yaml
from dotenv import load_dotenv

from .errors import FatalConfigError
from .providers.bitget import normalize_granularity
from .strategy import EVALUATORS


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


def _env_list(env_key: str) -> Optional[List[str]]:
    raw = os.getenv(env_key)
    if not raw:
        return None
    return [x.strip() for x in raw.split(",") if x.strip()]


@dataclass
class AppConfig:
    name: str = "Bitget Signal Trader"
    log_level: str = "INFO"


@dataclass
class ExchangeConfig:
    api_key: str = ""
    api_secret: str = ""
    api_passphrase: str = ""
    base_url: str = "https://api.bitget.com"
    ws_private_url: str = "wss://ws.bitget.com/v2/ws/private"
    product_type: str = "USDT-FUTURES"  # SUSDT-FUTURES on the demo account
    margin_coin: str = "USDT"
    demo: bool = False
    rest_timeout_s: int = 20

    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret and self.api_passphrase)


@dataclass
class TradingConfig:
    enabled: bool = True
    symbols: List[str] = None
    timeframes: List[str] = None
    strategy: str = "ema_vwap"  # ema_vwap | market_cipher
    candle_limit: int = 100
    poll_interval_s: int = 60
    size: float = 0.001
    leverage: int = 10
    order_type: str = "limit"
    force: str = "gtc"
    margin_mode: str = "isolated"


@dataclass
class RiskConfig:
    stop_loss_pct: float = 0.01
    take_profit_pct: float = 0.05
    price_decimals: int = 1


@dataclass
class ServerConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 3000
    secret: str = ""
    symbols: List[str] = None  # webhook allow-list, defaults to trading.symbols


@dataclass
class ForwardConfig:
    enabled: bool = False
    url: str = ""
    secret: str = ""
    timeout_s: int = 10
    headers: Dict[str, str] = None


@dataclass
class MonitorConfig:
    startup_check: bool = True
    pnl_interval_s: int = 300
    pnl_currency: str = "USD"
    conversion_rates: Dict[str, float] = None
    account_stream: bool = False
    account_topics: List[str] = None


@dataclass
class Config:
    app: AppConfig = field(default_factory=AppConfig)
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    trading: TradingConfig = field(default_factory=TradingConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    forward: ForwardConfig = field(default_factory=ForwardConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)


def _section(cls, raw: Dict[str, Any], name: str):
    data = raw.get(name) or {}
    if not isinstance(data, dict):
        raise FatalConfigError(f"config section '{name}' must be a mapping")
    try:
        return cls(**data)
    except TypeError as e:
        raise FatalConfigError(f"config section '{name}': {e}") from e


def apply_defaults(cfg: Config) -> Config:
    """Fill list/dict fields left as None and normalise symbols."""
    cfg.trading.symbols = [str(s).strip().upper() for s in (cfg.trading.symbols or []) if str(s).strip()]
    if not cfg.trading.timeframes:
        cfg.trading.timeframes = ["15m"]
    if cfg.server.symbols is None:
        cfg.server.symbols = list(cfg.trading.symbols)
    else:
        cfg.server.symbols = [str(s).strip().upper() for s in cfg.server.symbols if str(s).strip()]
    if cfg.forward.headers is None:
        cfg.forward.headers = {}
    if cfg.monitor.conversion_rates is None:
        cfg.monitor.conversion_rates = {"USD": 1.0}
    if cfg.monitor.account_topics is None:
        cfg.monitor.account_topics = ["account", "positions", "orders"]
    return cfg


def validate_config(cfg: Config) -> None:
    needs_keys = cfg.server.enabled or (cfg.trading.enabled and not cfg.forward.enabled) or cfg.monitor.account_stream
    if needs_keys and not cfg.exchange.has_credentials():
        raise FatalConfigError(
            "Missing API credentials. Set API_KEY, API_SECRET and API_PASSPHRASE (env or .env)."
        )
    if cfg.forward.enabled and not cfg.forward.url:
        raise FatalConfigError("forward.enabled requires forward.url")
    if cfg.risk.stop_loss_pct < 0 or cfg.risk.take_profit_pct < 0:
        raise FatalConfigError("risk percentages must be >= 0")
    if int(cfg.trading.poll_interval_s) <= 0:
        raise FatalConfigError("trading.poll_interval_s must be > 0")
    if int(cfg.trading.leverage) <= 0 or float(cfg.trading.size) <= 0:
        raise FatalConfigError("trading.size and trading.leverage must be > 0")
    if (cfg.trading.strategy or "").strip().lower() not in EVALUATORS:
        raise FatalConfigError(
            f"unknown trading.strategy {cfg.trading.strategy!r}; choose one of {sorted(EVALUATORS)}"
        )
    for tf in cfg.trading.timeframes:
        try:
            normalize_granularity(tf)
        except ValueError as e:
            raise FatalConfigError(f"trading.timeframes: {e}") from e


def load_config(path: str, *, dotenv_path: Optional[str] = None) -> Config:
    load_dotenv(dotenv_path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise FatalConfigError(f"cannot read config {path}: {e}") from e
    if not isinstance(raw, dict):
        raise FatalConfigError(f"config {path} must be a mapping at top level")

    cfg = Config(
        app=_section(AppConfig, raw, "app"),
        exchange=_section(ExchangeConfig, raw, "exchange"),
        trading=_section(TradingConfig, raw, "trading"),
        risk=_section(RiskConfig, raw, "risk"),
        server=_section(ServerConfig, raw, "server"),
        forward=_section(ForwardConfig, raw, "forward"),
        monitor=_section(MonitorConfig, raw, "monitor"),
    )

    # env overrides (secrets never need to live in the YAML)
    cfg.exchange.api_key = _env_override(cfg.exchange.api_key, "API_KEY")
    cfg.exchange.api_secret = _env_override(cfg.exchange.api_secret, "API_SECRET")
    cfg.exchange.api_passphrase = _env_override(cfg.exchange.api_passphrase, "API_PASSPHRASE")
    cfg.exchange.demo = _env_override(cfg.exchange.demo, "BITGET_DEMO")
    cfg.server.port = _env_override(cfg.server.port, "PORT")
    cfg.server.secret = _env_override(cfg.server.secret, "WEBHOOK_SECRET")
    cfg.forward.url = _env_override(cfg.forward.url, "FORWARD_URL")
    cfg.forward.secret = _env_override(cfg.forward.secret, "FORWARD_SECRET")

    # Allow SYMBOLS="BTCUSDT,ETHUSDT"
    symbols_env = _env_list("SYMBOLS")
    if symbols_env:
        cfg.trading.symbols = symbols_env

    apply_defaults(cfg)
    validate_config(cfg)
    return cfg
