from __future__ import annotations

import argparse
import asyncio

from bitget_trade_bot.config import load_config
from bitget_trade_bot.formatters import format_order, format_position
from bitget_trade_bot.providers.bitget import BitgetGateway


async def _run(cfg) -> None:
    ex = cfg.exchange
    gw = BitgetGateway(
        ex.api_key,
        ex.api_secret,
        ex.api_passphrase,
        base_url=ex.base_url,
        product_type=ex.product_type,
        margin_coin=ex.margin_coin,
        demo=ex.demo,
        rest_timeout_s=ex.rest_timeout_s,
    )
    try:
        positions = await gw.get_positions()
        print(f"POSITIONS ({ex.product_type}, {ex.margin_coin}):")
        for p in positions:
            print("  " + format_position(p))
        if not positions:
            print("  none")

        for sym in cfg.trading.symbols:
            orders = await gw.get_open_orders(sym)
            print(f"\nPENDING ORDERS {sym}:")
            for o in orders:
                print("  " + format_order(o))
            if not orders:
                print("  none")
    finally:
        await gw.close()


def main():
    p = argparse.ArgumentParser(description="Print open positions and pending orders for the configured account")
    p.add_argument("--config", required=True, help="Path to YAML config")
    args = p.parse_args()

    cfg = load_config(args.config)
    asyncio.run(_run(cfg))


if __name__ == "__main__":
    main()
