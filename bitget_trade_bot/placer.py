from __future__ import annotations

import logging
import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Tuple

from .errors import ValidationError
from .models import OrderRequest, OrderResult, normalize_side

log = logging.getLogger("placer")


def round_price(x: float, decimals: int) -> float:
    q = Decimal(1).scaleb(-int(decimals))
    return float(Decimal(str(x)).quantize(q, rounding=ROUND_HALF_UP))


def positive_number(name: str, value, cast=float):
    """Parse ``value`` as a finite number > 0; ``cast=int`` also requires a whole number."""
    try:
        v = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(v) or v <= 0:
        raise ValidationError(f"{name} must be a finite number > 0, got {value!r}")
    if cast is int:
        if not v.is_integer():
            raise ValidationError(f"{name} must be a whole number, got {value!r}")
        return int(v)
    return v


class OrderPlacer:
    def __init__(
        self,
        gateway,
        *,
        stop_loss_pct: float = 0.01,
        take_profit_pct: float = 0.05,
        price_decimals: int = 1,
        order_type: str = "limit",
        force: str = "gtc",
        margin_mode: str = "isolated",
        margin_coin: str = "USDT",
    ):
        self.gateway = gateway
        self.stop_loss_pct = stop_loss_pct
        self.take_profit_pct = take_profit_pct
        self.price_decimals = price_decimals
        self.order_type = order_type
        self.force = force
        self.margin_mode = margin_mode
        self.margin_coin = margin_coin

    def risk_levels(self, reference_price: float, side: str) -> Tuple[float, float]:
        """Returns (take_profit_price, stop_loss_price). Buy: TP above, SL below."""
        side = normalize_side(side)
        p = float(reference_price)
        if side == "buy":
            tp = p * (1 + self.take_profit_pct)
            sl = p * (1 - self.stop_loss_pct)
        else:
            tp = p * (1 - self.take_profit_pct)
            sl = p * (1 + self.stop_loss_pct)
        return round_price(tp, self.price_decimals), round_price(sl, self.price_decimals)

    def build_request(
        self,
        symbol: str,
        side: str,
        reference_price: float,
        size: float,
        leverage: int,
        *,
        take_profit_price: Optional[float] = None,
        stop_loss_price: Optional[float] = None,
        order_type: Optional[str] = None,
        margin_mode: Optional[str] = None,
        margin_coin: Optional[str] = None,
    ) -> OrderRequest:
        try:
            side = normalize_side(side)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        reference_price = positive_number("price", reference_price, float)
        size = positive_number("size", size, float)
        leverage = positive_number("leverage", leverage, int)

        tp, sl = self.risk_levels(reference_price, side)
        if take_profit_price is not None:
            tp = positive_number("take_profit_price", take_profit_price, float)
        if stop_loss_price is not None:
            sl = positive_number("stop_loss_price", stop_loss_price, float)

        return OrderRequest(
            symbol=symbol.upper(),
            side=side,
            size=size,
            price=reference_price,
            leverage=leverage,
            take_profit_price=tp,
            stop_loss_price=sl,
            order_type=order_type or self.order_type,
            force=self.force,
            margin_mode=margin_mode or self.margin_mode,
            margin_coin=margin_coin or self.margin_coin,
        )

    async def place_order(
        self,
        symbol: str,
        side: str,
        reference_price: float,
        size: float,
        leverage: int,
        **overrides,
    ) -> OrderResult:
        req = self.build_request(symbol, side, reference_price, size, leverage, **overrides)
        return await self.submit(req)

    async def submit(self, req: OrderRequest) -> OrderResult:
        """Set leverage, then submit one order with TP/SL attached.

        Any failure propagates; the caller must not assume the order exists.
        Fills are not polled.
        """
        log.info(
            "risk_levels symbol=%s side=%s entry=%s tp=%s sl=%s",
            req.symbol, req.side, req.price, req.take_profit_price, req.stop_loss_price,
        )
        await self.gateway.set_leverage(req.symbol, req.side, req.leverage)
        log.info(
            "placing_order symbol=%s side=%s type=%s price=%s size=%s leverage=%s",
            req.symbol, req.side, req.order_type, req.price, req.size, req.leverage,
        )
        result = await self.gateway.submit_order(req)
        log.info("order_placed symbol=%s side=%s order_id=%s", req.symbol, req.side, result.order_id)
        return result
