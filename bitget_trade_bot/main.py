from __future__ import annotations

import argparse
import asyncio
import logging

from .config import load_config
from .errors import FatalConfigError
from .runner import TradeRunner


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Bitget Signal Trader - candle signals and webhook orders")
    p.add_argument("--config", required=True, help="Path to YAML config")
    p.add_argument("--env-file", default=None, help="Optional .env file with API credentials")
    args = p.parse_args(argv)

    try:
        cfg = load_config(args.config, dotenv_path=args.env_file)
    except FatalConfigError as e:
        _setup_logging("INFO")
        logging.getLogger("main").error("config_error %s", e)
        return 2
    _setup_logging(cfg.app.log_level)

    try:
        runner = TradeRunner(cfg)
    except FatalConfigError as e:
        logging.getLogger("main").error("config_error %s", e)
        return 2

    try:
        asyncio.run(runner.run_forever())
        return 0
    except KeyboardInterrupt:
        return 0
    except FatalConfigError as e:
        logging.getLogger("main").error("config_error %s", e)
        return 2
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
