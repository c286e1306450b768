from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .errors import ReconcileError, ValidationError, error_kind
from .models import PendingOrder, Position, hold_side_for, normalize_side, opposite_hold_side, opposite_side

log = logging.getLogger("reconciler")


@dataclass(frozen=True)
class ActionResult:
    kind: str  # close | flash_close | cancel
    target: str  # hold side or order id
    ok: bool
    error_kind: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ReconcileReport:
    symbol: str
    side: str
    actions: List[ActionResult] = field(default_factory=list)
    refetched: bool = False
    already_positioned: bool = False
    remaining_positions: List[Position] = field(default_factory=list)
    remaining_orders: List[PendingOrder] = field(default_factory=list)

    @property
    def failures(self) -> List[ActionResult]:
        return [a for a in self.actions if not a.ok]

    @property
    def clear(self) -> bool:
        return not self.remaining_positions and not self.remaining_orders


class PositionReconciler:
    """Aligns live exchange exposure for a symbol with a new trade direction.

    Opposing positions are closed (graceful close, then flash close) and
    opposing pending orders are cancelled one by one. Every close/cancel is
    independent: a failure is recorded in the report and the pass moves on.
    When anything was attempted the snapshot is fetched again, so the final
    check reflects what the exchange actually holds.
    """

    def __init__(self, gateway, *, product_type: Optional[str] = None, margin_mode: str = "isolated"):
        self.gateway = gateway
        self.product_type = product_type
        self.margin_mode = margin_mode

    async def snapshot(self, symbol: str) -> Tuple[List[Position], List[PendingOrder]]:
        positions = await self.gateway.get_positions(self.product_type)
        orders = await self.gateway.get_open_orders(symbol, self.product_type)
        return (
            [p for p in positions if p.symbol == symbol and p.size > 0],
            [o for o in orders if o.symbol == symbol],
        )

    async def reconcile(self, symbol: str, side: str) -> ReconcileReport:
        symbol = symbol.upper()
        try:
            side = normalize_side(side)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        report = ReconcileReport(symbol=symbol, side=side)
        opp_hold = opposite_hold_side(side)
        opp_side = opposite_side(side)

        positions, orders = await self.snapshot(symbol)
        log.info("reconcile_start symbol=%s side=%s positions=%d orders=%d", symbol, side, len(positions), len(orders))

        attempted = False
        for p in positions:
            if p.hold_side == opp_hold:
                attempted = True
                await self._close(report, p)

        for o in orders:
            if o.side == opp_side:
                attempted = True
                await self._cancel(report, o)

        if attempted:
            positions, orders = await self.snapshot(symbol)
            report.refetched = True

        report.remaining_positions = [p for p in positions if p.hold_side == opp_hold]
        report.remaining_orders = [o for o in orders if o.side == opp_side]
        if not report.clear:
            log.warning(
                "reconcile_incomplete symbol=%s side=%s positions_left=%d orders_left=%d failures=%d",
                symbol, side, len(report.remaining_positions), len(report.remaining_orders), len(report.failures),
            )
            raise ReconcileError(f"opposing exposure still open for {symbol}", report)

        want_hold = hold_side_for(side)
        report.already_positioned = any(p.hold_side == want_hold for p in positions) or any(
            o.side == side for o in orders
        )
        if report.already_positioned:
            log.info("reconcile_same_side_exists symbol=%s side=%s no_action", symbol, side)
        log.info(
            "reconcile_done symbol=%s side=%s actions=%d failures=%d refetched=%s",
            symbol, side, len(report.actions), len(report.failures), report.refetched,
        )
        return report

    async def _close(self, report: ReconcileReport, p: Position) -> None:
        log.info("close_opposing symbol=%s hold_side=%s size=%s", p.symbol, p.hold_side, p.size)
        try:
            await self.gateway.close_position(p.symbol, p.hold_side, p.size, margin_mode=self.margin_mode)
            report.actions.append(ActionResult("close", p.hold_side, True))
            return
        except Exception as e:
            log.warning("close_failed symbol=%s hold_side=%s err=%s falling_back=flash_close", p.symbol, p.hold_side, e)
            report.actions.append(ActionResult("close", p.hold_side, False, error_kind(e), str(e)))

        try:
            await self.gateway.flash_close_position(p.symbol, p.hold_side)
            report.actions.append(ActionResult("flash_close", p.hold_side, True))
        except Exception as e:
            log.warning("flash_close_failed symbol=%s hold_side=%s err=%s", p.symbol, p.hold_side, e)
            report.actions.append(ActionResult("flash_close", p.hold_side, False, error_kind(e), str(e)))

    async def _cancel(self, report: ReconcileReport, o: PendingOrder) -> None:
        log.info("cancel_opposing symbol=%s side=%s order_id=%s", o.symbol, o.side, o.order_id)
        try:
            await self.gateway.cancel_order(o.symbol, o.order_id)
            report.actions.append(ActionResult("cancel", o.order_id, True))
        except Exception as e:
            log.warning("cancel_failed symbol=%s order_id=%s err=%s", o.symbol, o.order_id, e)
            report.actions.append(ActionResult("cancel", o.order_id, False, error_kind(e), str(e)))
