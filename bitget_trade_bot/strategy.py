from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Sequence, Type

from .errors import FatalConfigError
from .indicators import atr_series, ema_series, money_flow_direction, rsi_series, stoch_proxy, vwap_series
from .models import Candle, Evaluation

log = logging.getLogger("strategy")


class SignalEvaluator:
    """Turns a candle series into a buy / sell / no-signal decision.

    Subclasses compute their derived series over the whole input and only
    read the last element of each. ``evaluate`` returns None when the input
    is shorter than ``lookback``; the caller skips the cycle.
    """

    name = "base"

    @property
    def lookback(self) -> int:
        raise NotImplementedError

    def evaluate(self, candles: Sequence[Candle], timeframe: Optional[str] = None) -> Optional[Evaluation]:
        if len(candles) < self.lookback:
            log.info(
                "insufficient_candles strategy=%s tf=%s have=%d need=%d",
                self.name, timeframe, len(candles), self.lookback,
            )
            return None
        return self._evaluate(candles, timeframe)

    def _evaluate(self, candles: Sequence[Candle], timeframe: Optional[str]) -> Optional[Evaluation]:
        raise NotImplementedError


class EmaVwapEvaluator(SignalEvaluator):
    """Trend-following: close above fast EMA above slow EMA, above VWAP, RSI not overbought."""

    name = "ema_vwap"

    def __init__(
        self,
        fast_len: int = 9,
        slow_len: int = 21,
        atr_len: int = 14,
        rsi_len: int = 14,
        rsi_overbought: float = 70.0,
        rsi_oversold: float = 30.0,
        atr_stop_mult: float = 1.5,
        reward_ratio: float = 2.0,
    ):
        if fast_len >= slow_len:
            raise FatalConfigError(f"fast_len ({fast_len}) must be < slow_len ({slow_len})")
        self.fast_len = fast_len
        self.slow_len = slow_len
        self.atr_len = atr_len
        self.rsi_len = rsi_len
        self.rsi_overbought = rsi_overbought
        self.rsi_oversold = rsi_oversold
        self.atr_stop_mult = atr_stop_mult
        self.reward_ratio = reward_ratio

    @property
    def lookback(self) -> int:
        return max(self.slow_len, self.atr_len, self.rsi_len + 1)

    def _evaluate(self, candles: Sequence[Candle], timeframe: Optional[str]) -> Optional[Evaluation]:
        closes = [c.close for c in candles]
        ema_fast = ema_series(closes, self.fast_len)[-1]
        ema_slow = ema_series(closes, self.slow_len)[-1]
        vwap = vwap_series(candles)[-1]
        atr = atr_series(candles, self.atr_len)[-1]
        rsi = rsi_series(closes, self.rsi_len)[-1]
        price = closes[-1]

        if vwap is None or rsi is None:
            # zero-volume window
            return Evaluation(False, False, price, timeframe)

        buy = price > ema_fast > ema_slow and rsi < self.rsi_overbought and price > vwap
        sell = price < ema_fast < ema_slow and rsi > self.rsi_oversold and price < vwap

        stop_distance = atr * self.atr_stop_mult if atr is not None else None
        tp_distance = stop_distance * self.reward_ratio if stop_distance is not None else None

        log.debug(
            "eval strategy=%s tf=%s price=%s ema_fast=%.4f ema_slow=%.4f vwap=%.4f rsi=%.2f atr=%s buy=%s sell=%s",
            self.name, timeframe, price, ema_fast, ema_slow, vwap, rsi, atr, buy, sell,
        )
        return Evaluation(
            buy_signal=buy,
            sell_signal=sell,
            reference_price=price,
            timeframe=timeframe,
            stop_distance=stop_distance,
            take_profit_distance=tp_distance,
        )


class MarketCipherEvaluator(SignalEvaluator):
    name = "market_cipher"

    def __init__(self, ema_len: int = 9, stoch_low: float = 0.2, stoch_high: float = 0.8):
        self.ema_len = ema_len
        self.stoch_low = stoch_low
        self.stoch_high = stoch_high

    @property
    def lookback(self) -> int:
        return max(self.ema_len, 2)

    def _evaluate(self, candles: Sequence[Candle], timeframe: Optional[str]) -> Optional[Evaluation]:
        last = candles[-1]
        flow = money_flow_direction(candles)[-1]
        stoch = stoch_proxy(last)
        ema = ema_series([c.close for c in candles], self.ema_len)[-1]
        price = last.close

        if stoch is None:
            return Evaluation(False, False, price, timeframe)

        buy = flow > 0 and stoch < self.stoch_low and price > ema
        sell = flow < 0 and stoch > self.stoch_high and price < ema
        log.debug(
            "eval strategy=%s tf=%s flow=%d stoch=%.3f ema=%.4f buy=%s sell=%s",
            self.name, timeframe, flow, stoch, ema, buy, sell,
        )
        return Evaluation(buy_signal=buy, sell_signal=sell, reference_price=price, timeframe=timeframe)


EVALUATORS: Dict[str, Type[SignalEvaluator]] = {
    EmaVwapEvaluator.name: EmaVwapEvaluator,
    MarketCipherEvaluator.name: MarketCipherEvaluator,
}


def build_evaluator(name: str, **params) -> SignalEvaluator:
    cls = EVALUATORS.get((name or "").strip().lower())
    if cls is None:
        raise FatalConfigError(f"Unknown strategy {name!r}; choose one of {sorted(EVALUATORS)}")
    return cls(**params)


def combine_timeframes(evaluations: Iterable[Optional[Evaluation]]) -> Optional[Evaluation]:
    """Multi-timeframe vote.

    Buy when at least one timeframe buys and none sells, sell mirrored,
    otherwise no signal. The reference price is taken from the last
    evaluated timeframe. Returns None when nothing could be evaluated.
    """
    any_buy = False
    any_sell = False
    last: Optional[Evaluation] = None
    for ev in evaluations:
        if ev is None:
            continue
        last = ev
        any_buy = any_buy or ev.buy_signal
        any_sell = any_sell or ev.sell_signal
    if last is None:
        return None
    return Evaluation(
        buy_signal=any_buy and not any_sell,
        sell_signal=any_sell and not any_buy,
        reference_price=last.reference_price,
        timeframe=last.timeframe,
        stop_distance=last.stop_distance,
        take_profit_distance=last.take_profit_distance,
    )
