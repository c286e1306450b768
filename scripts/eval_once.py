from __future__ import annotations

import argparse
import asyncio
import logging
import time
import sys

from bitget_trade_bot.config import load_config
from bitget_trade_bot.errors import FatalConfigError
from bitget_trade_bot.formatters import format_signal
from bitget_trade_bot.models import Signal
from bitget_trade_bot.providers.bitget import BitgetGateway
from bitget_trade_bot.strategy import build_evaluator, combine_timeframes


async def _run(cfg, symbol: str) -> None:
    ex = cfg.exchange
    gw = BitgetGateway(
        ex.api_key,
        ex.api_secret,
        ex.api_passphrase,
        base_url=ex.base_url,
        product_type=ex.product_type,
        demo=ex.demo,
    )
    evaluator = build_evaluator(cfg.trading.strategy)
    try:
        evals = []
        for tf in cfg.trading.timeframes:
            candles = await gw.get_candles(symbol, tf, cfg.trading.candle_limit)
            ev = evaluator.evaluate(candles, tf)
            print(f"{tf}: candles={len(candles)} ->", ev)
            evals.append(ev)
        combined = combine_timeframes(evals)
        print("\nCOMBINED:", combined)
        if combined is not None and combined.side:
            sig = Signal(
                symbol=symbol,
                side=combined.side,
                reference_price=combined.reference_price,
                generated_at_ms=int(time.time() * 1000),
                source="eval_once",
            )
            print(format_signal(sig))
    finally:
        await gw.close()


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Evaluate the configured strategy once, without trading")
    p.add_argument("--config", required=True, help="Path to YAML config")
    p.add_argument("--symbol", default=None, help="Symbol (defaults to the first configured one)")
    args = p.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    try:
        cfg = load_config(args.config)
    except FatalConfigError as e:
        print(f"config error: {e}", file=sys.stderr)
        print("hint: set trading.enabled: false and server.enabled: false to evaluate without credentials", file=sys.stderr)
        return 2
    symbol = (args.symbol or (cfg.trading.symbols or ["BTCUSDT"])[0]).upper()
    asyncio.run(_run(cfg, symbol))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
