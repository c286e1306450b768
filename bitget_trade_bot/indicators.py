from __future__ import annotations
from typing import List, Optional, Sequence

from .models import Candle


def ema_series(values: Sequence[float], length: int) -> List[float]:
    """EMA seeded with the SMA of the first ``length`` values.

    The result has ``len(values) - length + 1`` entries; empty if too short.
    """
    if length <= 0 or len(values) < length:
        return []
    alpha = 2.0 / (length + 1.0)
    out = [sum(values[:length]) / float(length)]
    for x in values[length:]:
        out.append((x - out[-1]) * alpha + out[-1])
    return out


def vwap_series(candles: Sequence[Candle]) -> List[Optional[float]]:
    """Cumulative VWAP over the window using the typical price (h+l+c)/3."""
    cum_vol = 0.0
    cum_pv = 0.0
    out: List[Optional[float]] = []
    for c in candles:
        typical = (c.high + c.low + c.close) / 3.0
        cum_vol += c.volume
        cum_pv += typical * c.volume
        out.append(cum_pv / cum_vol if cum_vol > 0 else None)
    return out


def true_range(high: float, low: float, prev_close: float) -> float:
    return max(high - low, abs(high - prev_close), abs(low - prev_close))


def atr_series(candles: Sequence[Candle], length: int = 14) -> List[Optional[float]]:
    """Simple moving average of true range, aligned with ``candles``."""
    trs: List[float] = []
    for i, c in enumerate(candles):
        if i == 0:
            trs.append(c.high - c.low)
        else:
            trs.append(true_range(c.high, c.low, candles[i - 1].close))
    out: List[Optional[float]] = []
    for i in range(len(trs)):
        if length <= 0 or i < length - 1:
            out.append(None)
        else:
            out.append(sum(trs[i - length + 1: i + 1]) / length)
    return out


def rsi_series(closes: Sequence[float], length: int = 14) -> List[Optional[float]]:
    """Wilder RSI aligned with ``closes``; None until ``length + 1`` closes exist."""
    out: List[Optional[float]] = [None] * len(closes)
    if length <= 0 or len(closes) < length + 1:
        return out
    gains = 0.0
    losses = 0.0
    for i in range(1, length + 1):
        ch = closes[i] - closes[i - 1]
        if ch >= 0:
            gains += ch
        else:
            losses -= ch
    avg_gain = gains / length
    avg_loss = losses / length
    out[length] = _rsi(avg_gain, avg_loss)
    for i in range(length + 1, len(closes)):
        ch = closes[i] - closes[i - 1]
        avg_gain = (avg_gain * (length - 1) + max(ch, 0.0)) / length
        avg_loss = (avg_loss * (length - 1) + max(-ch, 0.0)) / length
        out[i] = _rsi(avg_gain, avg_loss)
    return out


def _rsi(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def hlc3(c: Candle) -> float:
    return (c.high + c.low + c.close) / 3.0


def money_flow_direction(candles: Sequence[Candle]) -> List[int]:
    """+1 / -1 / 0 depending on whether hlc3 rose, fell or was flat."""
    out: List[int] = []
    prev: Optional[float] = None
    for c in candles:
        cur = hlc3(c)
        if prev is None or cur == prev:
            out.append(0)
        else:
            out.append(1 if cur > prev else -1)
        prev = cur
    return out


def stoch_proxy(c: Candle) -> Optional[float]:
    """(close - open) / (high - open); None on a bar with no upper range."""
    rng = c.high - c.open
    if rng == 0:
        return None
    return (c.close - c.open) / rng
