from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from .formatters import format_signal
from .models import OrderResult, Signal
from .placer import OrderPlacer
from .reconciler import PositionReconciler, ReconcileReport

log = logging.getLogger("orchestrator")

IDLE = "IDLE"
RECONCILING = "RECONCILING"
PLACING = "PLACING"


@dataclass(frozen=True)
class TradeOutcome:
    status: str  # placed | skipped | noop
    symbol: Optional[str] = None
    side: Optional[str] = None
    order: Optional[OrderResult] = None
    report: Optional[ReconcileReport] = None


class TradeOrchestrator:
    """Single entry point for trade signals (poll loop and webhook).

    Cycles for the same symbol are serialised with a per-symbol lock: a
    second trigger waits, then reconciles against the state the first one
    left behind, so it sees the first order and skips.
    """

    def __init__(self, reconciler: PositionReconciler, placer: OrderPlacer, *, default_size: float, default_leverage: int):
        self.reconciler = reconciler
        self.placer = placer
        self.default_size = default_size
        self.default_leverage = default_leverage
        self._locks: Dict[str, asyncio.Lock] = {}
        self._states: Dict[str, str] = {}

    def state(self, symbol: str) -> str:
        return self._states.get(symbol.upper(), IDLE)

    def states(self) -> Dict[str, str]:
        return dict(self._states)

    def _lock(self, symbol: str) -> asyncio.Lock:
        lock = self._locks.get(symbol)
        if lock is None:
            lock = self._locks[symbol] = asyncio.Lock()
        return lock

    async def on_signal(self, signal: Optional[Signal]) -> TradeOutcome:
        if signal is None:
            return TradeOutcome(status="noop")

        symbol = signal.symbol.upper()
        lock = self._lock(symbol)
        if lock.locked():
            log.info("cycle_queued symbol=%s side=%s source=%s", symbol, signal.side, signal.source)

        async with lock:
            log.info("signal_received %s", format_signal(signal))
            # checked before reconcile touches any exposure
            req = self.placer.build_request(
                symbol,
                signal.side,
                signal.reference_price,
                signal.size if signal.size is not None else self.default_size,
                signal.leverage if signal.leverage is not None else self.default_leverage,
                take_profit_price=signal.take_profit_price,
                stop_loss_price=signal.stop_loss_price,
                order_type=signal.order_type,
                margin_mode=signal.margin_mode,
                margin_coin=signal.margin_coin,
            )
            try:
                self._states[symbol] = RECONCILING
                report = await self.reconciler.reconcile(symbol, req.side)
                if report.already_positioned:
                    log.info("trade_skipped symbol=%s side=%s reason=already_positioned", symbol, req.side)
                    return TradeOutcome(status="skipped", symbol=symbol, side=req.side, report=report)

                self._states[symbol] = PLACING
                order = await self.placer.submit(req)
                return TradeOutcome(status="placed", symbol=symbol, side=req.side, order=order, report=report)
            finally:
                self._states[symbol] = IDLE
