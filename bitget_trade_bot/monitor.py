from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .errors import TradeBotError
from .formatters import format_order, format_position

log = logging.getLogger("monitor")


class AccountMonitor:
    """Read-only account reporting: startup snapshot, PnL, private WS events."""

    def __init__(
        self,
        gateway,
        symbols: List[str],
        *,
        currency: str = "USD",
        conversion_rates: Optional[Dict[str, float]] = None,
    ):
        self.gateway = gateway
        self.symbols = list(symbols)
        self.currency = (currency or "USD").upper()
        self.conversion_rates = {k.upper(): float(v) for k, v in (conversion_rates or {}).items()}

    def conversion_rate(self) -> float:
        rate = self.conversion_rates.get(self.currency)
        if rate is None:
            log.warning("no_conversion_rate currency=%s using=1.0", self.currency)
            return 1.0
        return rate

    async def startup_check(self) -> None:
        try:
            positions = await self.gateway.get_positions()
        except TradeBotError as e:
            log.warning("startup_check_positions_failed err=%s", e)
            positions = []
        if not positions:
            log.info("startup_check no open positions")
        for p in positions:
            log.info("startup_check position %s", format_position(p))

        for sym in self.symbols:
            try:
                orders = await self.gateway.get_open_orders(sym)
            except TradeBotError as e:
                log.warning("startup_check_orders_failed symbol=%s err=%s", sym, e)
                continue
            if not orders:
                log.info("startup_check symbol=%s no pending orders", sym)
            for o in orders:
                log.info("startup_check order %s", format_order(o))
        log.info("startup_check complete")

    async def report_pnl(self) -> float:
        """Logs each open position's PnL; returns the converted total."""
        positions = await self.gateway.get_positions()
        if not positions:
            log.info("pnl no open positions")
            return 0.0
        rate = self.conversion_rate()
        total = 0.0
        for p in positions:
            total += p.unrealized_pnl * rate
            log.info("pnl %s", format_position(p, currency=self.currency, rate=rate))
        log.info("pnl_total value=%.2f currency=%s positions=%d", total, self.currency, len(positions))
        return total

    async def log_account_events(self, topics: List[str]) -> None:
        async for evt in self.gateway.stream_account_events(topics):
            log.info("ws_update channel=%s action=%s data=%s", evt.channel, evt.action, evt.data)
