from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from .models import PendingOrder, Position, Signal


def format_price(x: float) -> str:
    """Decimal string without exponent or trailing zeros (what the exchange expects)."""
    s = f"{float(x):.8f}"
    s = s.rstrip("0").rstrip(".")
    return s or "0"


def _fmt_ms(ts_ms: int) -> str:
    dt = datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


def _fmt_opt(val: Optional[float]) -> str:
    if val is None:
        return "-"
    return f"{val:g}"


def format_signal(sig: Signal) -> str:
    parts = [
        f"{sig.side.upper()} {sig.symbol}",
        f"ref={_fmt_opt(sig.reference_price)}",
        f"source={sig.source}",
        f"at={_fmt_ms(sig.generated_at_ms)}",
    ]
    if sig.take_profit_price is not None or sig.stop_loss_price is not None:
        parts.append(f"tp={_fmt_opt(sig.take_profit_price)} sl={_fmt_opt(sig.stop_loss_price)}")
    return " | ".join(parts)


def format_position(p: Position, *, currency: str = "USD", rate: float = 1.0) -> str:
    pnl = p.unrealized_pnl * rate
    return (
        f"{p.symbol} {p.hold_side} size={_fmt_opt(p.size)} entry={_fmt_opt(p.entry_price)} "
        f"mark={_fmt_opt(p.mark_price)} break_even={_fmt_opt(p.break_even_price)} pnl={pnl:.2f} {currency}"
    )


def format_order(o: PendingOrder) -> str:
    return f"{o.symbol} {o.side} id={o.order_id} price={_fmt_opt(o.price)} size={_fmt_opt(o.size)}"


def format_snapshot(positions: Iterable[Position], orders: Iterable[PendingOrder]) -> str:
    pos = [format_position(p) for p in positions]
    ords = [format_order(o) for o in orders]
    return "positions=[%s] orders=[%s]" % ("; ".join(pos) or "none", "; ".join(ords) or "none")
