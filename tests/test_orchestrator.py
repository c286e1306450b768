import asyncio

import pytest

from bitget_trade_bot.errors import ExchangeRejection, ReconcileError, ValidationError
from bitget_trade_bot.models import Signal
from bitget_trade_bot.orchestrator import IDLE, TradeOrchestrator
from bitget_trade_bot.placer import OrderPlacer
from bitget_trade_bot.reconciler import PositionReconciler

from conftest import order, position


def _orchestrator(gw) -> TradeOrchestrator:
    return TradeOrchestrator(
        PositionReconciler(gw),
        OrderPlacer(gw, stop_loss_pct=0.01, take_profit_pct=0.05),
        default_size=0.001,
        default_leverage=10,
    )


def _signal(side: str = "buy", symbol: str = "BTCUSDT", **kw) -> Signal:
    return Signal(symbol=symbol, side=side, reference_price=100.0, generated_at_ms=0, **kw)


def test_no_signal_is_noop(gateway):
    out = asyncio.run(_orchestrator(gateway).on_signal(None))
    assert out.status == "noop"
    assert gateway.calls == []


def test_places_when_flat(gateway):
    orch = _orchestrator(gateway)
    out = asyncio.run(orch.on_signal(_signal("buy")))

    assert out.status == "placed"
    assert out.order.order_id == "ord-1"
    req = gateway.submitted[0]
    assert (req.size, req.leverage) == (0.001, 10)
    assert (req.take_profit_price, req.stop_loss_price) == (105.0, 99.0)
    assert orch.state("BTCUSDT") == IDLE


def test_existing_same_side_position_skips(gateway):
    gateway.positions = [position("BTCUSDT", "long")]
    out = asyncio.run(_orchestrator(gateway).on_signal(_signal("buy")))

    assert out.status == "skipped"
    assert "submit_order" not in gateway.call_names()


def test_reversal_closes_before_submitting(gateway):
    gateway.positions = [position("BTCUSDT", "short")]
    gateway.orders = [order("BTCUSDT", "sell", "s1")]
    out = asyncio.run(_orchestrator(gateway).on_signal(_signal("buy")))

    assert out.status == "placed"
    names = gateway.call_names()
    assert names.index("close_position") < names.index("submit_order")
    assert names.index("cancel_order") < names.index("submit_order")
    assert [p.hold_side for p in gateway.positions] == []


def test_webhook_overrides_reach_the_order(gateway):
    sig = _signal("sell", size=0.5, leverage=3, order_type="market", take_profit_price=90.0)
    asyncio.run(_orchestrator(gateway).on_signal(sig))
    req = gateway.submitted[0]
    assert (req.size, req.leverage, req.order_type) == (0.5, 3, "market")
    assert req.take_profit_price == 90.0
    assert req.stop_loss_price == 101.0


def test_concurrent_triggers_place_a_single_order(gateway):
    orch = _orchestrator(gateway)

    async def both():
        return await asyncio.gather(orch.on_signal(_signal("buy")), orch.on_signal(_signal("buy", source="webhook")))

    first, second = asyncio.run(both())
    assert first.status == "placed"
    assert second.status == "skipped"
    assert len(gateway.submitted) == 1


def test_symbols_do_not_block_each_other(gateway):
    orch = _orchestrator(gateway)

    async def both():
        return await asyncio.gather(orch.on_signal(_signal("buy")), orch.on_signal(_signal("buy", symbol="ETHUSDT")))

    outcomes = asyncio.run(both())
    assert [o.status for o in outcomes] == ["placed", "placed"]
    assert sorted(r.symbol for r in gateway.submitted) == ["BTCUSDT", "ETHUSDT"]


def test_unresolved_opposing_exposure_blocks_placement(gateway):
    gateway.positions = [position("BTCUSDT", "short")]
    gateway.fail_on["close_position"] = ExchangeRejection("nope")
    gateway.fail_on["flash_close_position"] = ExchangeRejection("nope")
    orch = _orchestrator(gateway)

    with pytest.raises(ReconcileError):
        asyncio.run(orch.on_signal(_signal("buy")))
    assert gateway.submitted == []
    assert orch.state("BTCUSDT") == IDLE


def test_state_returns_to_idle_after_placement_error(gateway):
    gateway.fail_on["submit_order"] = ExchangeRejection("insufficient balance", code="40762")
    orch = _orchestrator(gateway)
    with pytest.raises(ExchangeRejection):
        asyncio.run(orch.on_signal(_signal("buy")))
    assert orch.state("BTCUSDT") == IDLE
    assert orch.states() == {"BTCUSDT": IDLE}


@pytest.mark.parametrize(
    "sig",
    [
        _signal("buy", size=0.0),
        _signal("buy", leverage=0),
        _signal("hold"),
        Signal(symbol="BTCUSDT", side="buy", reference_price=float("nan"), generated_at_ms=0),
    ],
)
def test_invalid_signal_touches_nothing(gateway, sig):
    gateway.positions = [position("BTCUSDT", "short")]
    gateway.orders = [order("BTCUSDT", "sell", "s1")]
    orch = _orchestrator(gateway)

    with pytest.raises(ValidationError):
        asyncio.run(orch.on_signal(sig))
    assert gateway.calls == []
    assert orch.state("BTCUSDT") == IDLE


def test_side_case_does_not_defeat_same_side_check(gateway):
    gateway.orders = [order("BTCUSDT", "buy", "b1")]
    out = asyncio.run(_orchestrator(gateway).on_signal(_signal("BUY")))

    assert out.status == "skipped"
    assert out.side == "buy"
    assert gateway.submitted == []
