from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

SIDES = ("buy", "sell")
HOLD_SIDES = ("long", "short")


def normalize_side(side: str) -> str:
    s = (side or "").strip().lower()
    if s not in SIDES:
        raise ValueError(f"Invalid trade side {side!r}, must be 'buy' or 'sell'")
    return s


def hold_side_for(side: str) -> str:
    """Position direction opened by an order on ``side``."""
    return "long" if normalize_side(side) == "buy" else "short"


def opposite_side(side: str) -> str:
    return "sell" if normalize_side(side) == "buy" else "buy"


def opposite_hold_side(side: str) -> str:
    return "short" if normalize_side(side) == "buy" else "long"


@dataclass(frozen=True)
class Candle:
    timestamp_ms: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class Evaluation:
    buy_signal: bool
    sell_signal: bool
    reference_price: float
    timeframe: Optional[str] = None
    stop_distance: Optional[float] = None
    take_profit_distance: Optional[float] = None

    @property
    def side(self) -> Optional[str]:
        if self.buy_signal:
            return "buy"
        if self.sell_signal:
            return "sell"
        return None


@dataclass(frozen=True)
class Signal:
    symbol: str
    side: str  # buy or sell
    reference_price: float
    generated_at_ms: int
    source: str = "timer"  # timer | webhook
    # caller overrides (webhook)
    size: Optional[float] = None
    leverage: Optional[int] = None
    order_type: Optional[str] = None
    margin_coin: Optional[str] = None
    margin_mode: Optional[str] = None
    take_profit_price: Optional[float] = None
    stop_loss_price: Optional[float] = None


@dataclass(frozen=True)
class Position:
    symbol: str
    hold_side: str  # long or short
    size: float
    entry_price: float
    unrealized_pnl: float
    margin_size: Optional[float] = None
    mark_price: Optional[float] = None
    break_even_price: Optional[float] = None


@dataclass(frozen=True)
class PendingOrder:
    symbol: str
    side: str
    order_id: str
    price: Optional[float]
    size: float
    trade_side: Optional[str] = None


@dataclass(frozen=True)
class OrderRequest:
    symbol: str
    side: str
    size: float
    price: float
    leverage: int
    take_profit_price: Optional[float]
    stop_loss_price: Optional[float]
    order_type: str = "limit"
    force: str = "gtc"
    margin_mode: str = "isolated"
    margin_coin: str = "USDT"

    @property
    def hold_side(self) -> str:
        return hold_side_for(self.side)


@dataclass(frozen=True)
class OrderResult:
    order_id: Optional[str]
    client_oid: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict)
