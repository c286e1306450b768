import asyncio
from typing import Dict, List, Optional

import pytest

from bitget_trade_bot.models import Candle, OrderResult, PendingOrder, Position


def candle(idx: int, o: float, h: float, l: float, c: float, v: float = 1.0) -> Candle:
    return Candle(timestamp_ms=idx * 60_000, open=o, high=h, low=l, close=c, volume=v)


def series(closes: List[float], volume: float = 1.0) -> List[Candle]:
    out = []
    prev = closes[0]
    for i, c in enumerate(closes):
        o = prev
        out.append(candle(i, o, max(o, c) + 0.5, min(o, c) - 0.5, c, volume))
        prev = c
    return out


def uptrend(n: int = 61) -> List[Candle]:
    # rising with a pullback every third bar so RSI stays below 70
    return series([100.0 + i - (6.0 if i % 3 == 2 else 0.0) for i in range(n)])


def downtrend(n: int = 61) -> List[Candle]:
    return series([200.0 - i + (6.0 if i % 3 == 2 else 0.0) for i in range(n)])


def position(symbol: str, hold_side: str, size: float = 0.001, pnl: float = 0.0) -> Position:
    return Position(symbol=symbol, hold_side=hold_side, size=size, entry_price=100.0, unrealized_pnl=pnl)


def order(symbol: str, side: str, order_id: str, price: float = 100.0) -> PendingOrder:
    return PendingOrder(symbol=symbol, side=side, order_id=order_id, price=price, size=0.001, trade_side="open")


class FakeGateway:
    """In-memory exchange. Every call yields to the loop once so concurrent cycles interleave."""

    def __init__(self):
        self.positions: List[Position] = []
        self.orders: List[PendingOrder] = []
        self.candles: Dict[tuple, List[Candle]] = {}
        self.calls: List[tuple] = []
        self.fail_on: Dict[str, Exception] = {}
        self.submitted = []
        self.closed = False
        self.events = []
        self._next_id = 1

    async def _step(self, name: str, *args):
        self.calls.append((name,) + args)
        await asyncio.sleep(0)
        exc = self.fail_on.get(name)
        if exc is not None:
            raise exc

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]

    async def get_candles(self, symbol, granularity, limit=100):
        await self._step("get_candles", symbol, granularity)
        return list(self.candles.get((symbol, granularity), []))[-limit:]

    async def get_positions(self, product_type: Optional[str] = None):
        await self._step("get_positions")
        return list(self.positions)

    async def get_open_orders(self, symbol, product_type: Optional[str] = None):
        await self._step("get_open_orders", symbol)
        return [o for o in self.orders if o.symbol == symbol]

    async def close_position(self, symbol, hold_side, size, *, margin_mode="isolated"):
        await self._step("close_position", symbol, hold_side)
        self.positions = [p for p in self.positions if not (p.symbol == symbol and p.hold_side == hold_side)]
        return {"orderId": "close"}

    async def flash_close_position(self, symbol, hold_side):
        await self._step("flash_close_position", symbol, hold_side)
        self.positions = [p for p in self.positions if not (p.symbol == symbol and p.hold_side == hold_side)]
        return {"successList": [{"symbol": symbol}], "failureList": []}

    async def cancel_order(self, symbol, order_id):
        await self._step("cancel_order", symbol, order_id)
        self.orders = [o for o in self.orders if o.order_id != order_id]
        return {"orderId": order_id}

    async def set_leverage(self, symbol, side, leverage):
        await self._step("set_leverage", symbol, side, leverage)
        return {"symbol": symbol}

    async def submit_order(self, req):
        await self._step("submit_order", req.symbol, req.side)
        order_id = f"ord-{self._next_id}"
        self._next_id += 1
        self.submitted.append(req)
        self.orders.append(PendingOrder(symbol=req.symbol, side=req.side, order_id=order_id, price=req.price, size=req.size))
        return OrderResult(order_id=order_id, client_oid=None, raw={"orderId": order_id, "clientOid": None})

    async def stream_account_events(self, topics):
        self.calls.append(("stream_account_events", tuple(topics)))
        for evt in self.events:
            await asyncio.sleep(0)
            yield evt

    async def close(self):
        self.closed = True


@pytest.fixture
def gateway():
    return FakeGateway()
