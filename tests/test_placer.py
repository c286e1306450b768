import asyncio

import pytest

from bitget_trade_bot.errors import ExchangeRejection, ValidationError
from bitget_trade_bot.placer import OrderPlacer, positive_number, round_price


def test_risk_levels_buy_and_sell(gateway):
    placer = OrderPlacer(gateway, stop_loss_pct=0.01, take_profit_pct=0.05)
    assert placer.risk_levels(100, "buy") == (105.0, 99.0)
    assert placer.risk_levels(100, "sell") == (95.0, 101.0)


def test_risk_levels_rounding_policy(gateway):
    placer = OrderPlacer(gateway, stop_loss_pct=0.01, take_profit_pct=0.05, price_decimals=0)
    tp, sl = placer.risk_levels(64123.7, "buy")
    assert tp == 67330.0
    assert sl == 63482.0
    assert round_price(2.25, 1) == 2.3
    assert round_price(2.35, 1) == 2.4


def test_place_order_sets_leverage_then_submits(gateway):
    placer = OrderPlacer(gateway)
    result = asyncio.run(placer.place_order("btcusdt", "buy", 100.0, 0.001, 10))

    assert gateway.call_names() == ["set_leverage", "submit_order"]
    assert gateway.calls[0] == ("set_leverage", "BTCUSDT", "buy", 10)
    req = gateway.submitted[0]
    assert req.take_profit_price == 105.0
    assert req.stop_loss_price == 99.0
    assert req.hold_side == "long"
    assert result.order_id == "ord-1"


def test_explicit_tp_sl_override_computed_levels(gateway):
    placer = OrderPlacer(gateway)
    asyncio.run(placer.place_order("BTCUSDT", "sell", 50000, "0.002", "5", take_profit_price="40000", stop_loss_price=51000))
    req = gateway.submitted[0]
    assert (req.take_profit_price, req.stop_loss_price) == (40000.0, 51000.0)
    assert req.size == 0.002 and req.leverage == 5


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(side="hold", reference_price=100, size=1, leverage=1),
        dict(side="buy", reference_price=0, size=1, leverage=1),
        dict(side="buy", reference_price=100, size=-1, leverage=1),
        dict(side="buy", reference_price=100, size=1, leverage="abc"),
        dict(side="buy", reference_price=float("nan"), size=1, leverage=1),
        dict(side="buy", reference_price="inf", size=1, leverage=1),
        dict(side="buy", reference_price=100, size=10 ** 400, leverage=1),
        dict(side="buy", reference_price=100, size=1, leverage="inf"),
        dict(side="buy", reference_price=100, size=1, leverage=2.7),
    ],
)
def test_invalid_inputs_fail_before_any_exchange_call(gateway, kwargs):
    placer = OrderPlacer(gateway)
    with pytest.raises(ValidationError):
        asyncio.run(placer.place_order("BTCUSDT", **kwargs))
    assert gateway.calls == []


def test_leverage_failure_aborts_placement(gateway):
    gateway.fail_on["set_leverage"] = ExchangeRejection("leverage too high", code="40797")
    with pytest.raises(ExchangeRejection):
        asyncio.run(OrderPlacer(gateway).place_order("BTCUSDT", "buy", 100, 0.001, 200))
    assert gateway.submitted == []


def test_positive_number():
    assert positive_number("leverage", "5", int) == 5
    assert positive_number("leverage", 5.0, int) == 5
    assert positive_number("size", "0.002") == 0.002
    for bad in ("nan", "-inf", "1e999", None, "", "0"):
        with pytest.raises(ValidationError):
            positive_number("size", bad)
