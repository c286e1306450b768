from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import List, Optional

from .config import Config
from .errors import FatalConfigError, TradeBotError
from .formatters import format_signal
from .models import Evaluation, Signal
from .monitor import AccountMonitor
from .notifier.webhook import WebhookForwarder
from .orchestrator import TradeOrchestrator, TradeOutcome
from .placer import OrderPlacer
from .providers.bitget import BitgetGateway
from .reconciler import PositionReconciler
from .scheduler import Scheduler
from .server import WebhookServer
from .strategy import build_evaluator, combine_timeframes

log = logging.getLogger("runner")


class TradeRunner:
    def __init__(self, cfg: Config, gateway=None):
        self.cfg = cfg
        ex = cfg.exchange
        self.gateway = gateway or BitgetGateway(
            ex.api_key,
            ex.api_secret,
            ex.api_passphrase,
            base_url=ex.base_url,
            ws_private_url=ex.ws_private_url,
            product_type=ex.product_type,
            margin_coin=ex.margin_coin,
            demo=ex.demo,
            rest_timeout_s=ex.rest_timeout_s,
        )
        self.evaluator = build_evaluator(cfg.trading.strategy)
        self.reconciler = PositionReconciler(
            self.gateway,
            product_type=ex.product_type,
            margin_mode=cfg.trading.margin_mode,
        )
        self.placer = OrderPlacer(
            self.gateway,
            stop_loss_pct=cfg.risk.stop_loss_pct,
            take_profit_pct=cfg.risk.take_profit_pct,
            price_decimals=cfg.risk.price_decimals,
            order_type=cfg.trading.order_type,
            force=cfg.trading.force,
            margin_mode=cfg.trading.margin_mode,
            margin_coin=ex.margin_coin,
        )
        self.orchestrator = TradeOrchestrator(
            self.reconciler,
            self.placer,
            default_size=cfg.trading.size,
            default_leverage=cfg.trading.leverage,
        )
        self.forwarder = WebhookForwarder(
            enabled=cfg.forward.enabled,
            url=cfg.forward.url,
            secret=cfg.forward.secret,
            timeout_s=cfg.forward.timeout_s,
            headers=cfg.forward.headers or {},
        )
        self.monitor = AccountMonitor(
            self.gateway,
            cfg.trading.symbols or [],
            currency=cfg.monitor.pnl_currency,
            conversion_rates=cfg.monitor.conversion_rates,
        )
        self.server: Optional[WebhookServer] = None
        if cfg.server.enabled:
            self.server = WebhookServer(
                self.orchestrator,
                secret=cfg.server.secret,
                host=cfg.server.host,
                port=cfg.server.port,
                allowed_symbols=cfg.server.symbols,
            )
        self.scheduler = Scheduler()
        self._stream_task: Optional[asyncio.Task] = None
        self._metrics = {
            "cycles_total": 0,
            "signals_total": 0,
            "orders_placed_total": 0,
            "skipped_total": 0,
            "forwarded_total": 0,
            "errors_total": 0,
        }

    async def evaluate_symbol(self, symbol: str) -> Optional[Signal]:
        evaluations: List[Optional[Evaluation]] = []
        for tf in self.cfg.trading.timeframes:
            try:
                candles = await self.gateway.get_candles(symbol, tf, self.cfg.trading.candle_limit)
            except TradeBotError as e:
                log.warning("candles_fetch_failed symbol=%s tf=%s err=%s skipping", symbol, tf, e)
                continue
            ev = self.evaluator.evaluate(candles, tf)
            if ev is not None and ev.side is not None:
                log.info("signal_detected symbol=%s tf=%s side=%s price=%s", symbol, tf, ev.side, ev.reference_price)
            evaluations.append(ev)

        combined = combine_timeframes(evaluations)
        if combined is None or combined.side is None:
            log.info("no_actionable_signal symbol=%s timeframes=%s", symbol, self.cfg.trading.timeframes)
            return None
        return Signal(
            symbol=symbol,
            side=combined.side,
            reference_price=combined.reference_price,
            generated_at_ms=int(time.time() * 1000),
            source="timer",
        )

    async def run_cycle(self, symbol: str) -> Optional[TradeOutcome]:
        self._metrics["cycles_total"] += 1
        sig = await self.evaluate_symbol(symbol)
        if sig is None:
            return None
        self._metrics["signals_total"] += 1

        if not self.cfg.trading.enabled:
            log.info("signal_only %s", format_signal(sig))
            return None

        if self.forwarder.enabled:
            tp, sl = self.placer.risk_levels(sig.reference_price, sig.side)
            sent = await self.forwarder.send_signal(
                sig,
                size=self.cfg.trading.size,
                leverage=self.cfg.trading.leverage,
                order_type=self.cfg.trading.order_type,
                margin_coin=self.cfg.exchange.margin_coin,
                take_profit_price=tp,
                stop_loss_price=sl,
            )
            if sent:
                self._metrics["forwarded_total"] += 1
            return None

        try:
            outcome = await self.orchestrator.on_signal(sig)
        except TradeBotError as e:
            self._metrics["errors_total"] += 1
            log.warning("cycle_failed symbol=%s side=%s err=%s", symbol, sig.side, e)
            return None

        if outcome.status == "placed":
            self._metrics["orders_placed_total"] += 1
        elif outcome.status == "skipped":
            self._metrics["skipped_total"] += 1
        return outcome

    async def start(self) -> None:
        symbols = self.cfg.trading.symbols or []
        if not symbols:
            raise FatalConfigError("No symbols configured.")

        if self.cfg.monitor.startup_check:
            await self.monitor.startup_check()
        if self.server is not None:
            await self.server.start()

        for sym in symbols:
            self.scheduler.every(f"poll:{sym}", self.cfg.trading.poll_interval_s, functools.partial(self.run_cycle, sym))
        if int(self.cfg.monitor.pnl_interval_s) > 0:
            self.scheduler.every("pnl", self.cfg.monitor.pnl_interval_s, self.monitor.report_pnl)
        self.scheduler.start()

        if self.cfg.monitor.account_stream:
            self._stream_task = asyncio.create_task(
                self.monitor.log_account_events(self.cfg.monitor.account_topics), name="account_stream"
            )
        log.info(
            "runner_started name=%s symbols=%s timeframes=%s strategy=%s trading=%s forward=%s",
            self.cfg.app.name, symbols, self.cfg.trading.timeframes, self.evaluator.name,
            self.cfg.trading.enabled, self.forwarder.enabled,
        )

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        if self._stream_task is not None:
            self._stream_task.cancel()
            await asyncio.gather(self._stream_task, return_exceptions=True)
            self._stream_task = None
        if self.server is not None:
            await self.server.stop()
        await self.gateway.close()
        log.info("runner_stopped metrics=%s", self._metrics)

    async def run_forever(self) -> None:
        try:
            await self.start()
            await asyncio.Event().wait()
        finally:
            await self.shutdown()
