from __future__ import annotations

import argparse
import asyncio
import logging

from .config import load_config
from .runner import SignalRunner


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Scalp Signal Bot - multi-timeframe BUY/SELL alerts")
    p.add_argument("--config", default=None, help="Path to YAML config (defaults + env when omitted)")
    p.add_argument("--symbol", default=None, help="Override market.symbol")
    args = p.parse_args(argv)

    cfg = load_config(args.config)
    if args.symbol:
        cfg.market.symbol = args.symbol.upper()
    _setup_logging(cfg.app.log_level)

    runner = SignalRunner(cfg)

    async def _run() -> None:
        try:
            await runner.run_forever()
        finally:
            # Close shared REST session cleanly.
            await runner.provider.close()

    try:
        asyncio.run(_run())
        return 0
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
