# grid_main.py
"""Run the geometric grid engine from the command line.

The strategy comes from ``GRID_*`` environment variables (or a ``.env``
file); missing values are asked for interactively.  ``GRID_EXCHANGE``
selects the venue (``extended`` or ``hyperliquid``).  The bot logs a status
line every ``GRID_STATUS_INTERVAL_SEC`` seconds and stops cleanly, cancelling
its resting orders, on SIGINT/SIGTERM or when a guardrail halts the run.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import sys

from config import config_from_env
from engine import GridEngine
from errors import GridError
from utils import logger, setup_logging

STATUS_INTERVAL_SEC = float(os.getenv("GRID_STATUS_INTERVAL_SEC", "30"))
EXCHANGES = ("extended", "hyperliquid")


def build_gateway(name: str):
    """Create the gateway for ``name``; SDK imports stay local to the venue used."""
    name = (name or "").strip().lower()
    if name == "extended":
        from account import TradingAccount
        from services.extended_gateway import ExtendedGateway

        return ExtendedGateway(TradingAccount())
    if name == "hyperliquid":
        from account import HyperliquidAccount
        from services.hyperliquid_gateway import HyperliquidGateway

        return HyperliquidGateway(HyperliquidAccount())
    raise GridError(f"Unknown exchange '{name}' (expected one of: {', '.join(EXCHANGES)})")


def format_status(status) -> str:
    data = status.to_dict()
    summary = {
        "running": data["running"],
        "orders": len(data["orders"]),
        "positions": [(p["symbol"], p["size"]) for p in data["positions"]],
        "pnl": data["pnl"],
        "error": data["error"],
    }
    return json.dumps(summary, default=str)


async def run(engine: GridEngine, config, closing: asyncio.Event) -> int:
    """Drive one run until ``closing`` is set or the engine halts itself.

    Returns 0 on a requested shutdown, 1 when the start failed and 2 when a
    guardrail stopped the run.
    """
    try:
        try:
            await engine.start(config)
        except GridError as e:
            logger.error("[grid] start failed: %s", e)
            return 1

        while not closing.is_set() and engine.running:
            waiters = [
                asyncio.ensure_future(closing.wait()),
                asyncio.ensure_future(engine.wait_stopped()),
            ]
            try:
                await asyncio.wait(
                    waiters, timeout=STATUS_INTERVAL_SEC, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                for waiter in waiters:
                    waiter.cancel()
            if closing.is_set() or not engine.running:
                break
            status = await engine.full_status()
            logger.info("[grid] status %s", format_status(status))
        if closing.is_set():
            return 0
        logger.error("[grid] engine halted: %s", engine.status().error)
        return 2
    finally:
        await engine.close()


async def main() -> int:
    setup_logging(logging.INFO)
    exchange = os.getenv("GRID_EXCHANGE") or input(f"Exchange ({'/'.join(EXCHANGES)}) ? ")
    try:
        config = config_from_env()
        engine = GridEngine(build_gateway(exchange))
    except GridError as e:
        logger.error("[grid] invalid setup: %s", e)
        return 1

    closing = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, closing.set)
        except NotImplementedError:
            # Platforms without loop signal handlers (e.g. Windows)
            signal.signal(sig, lambda s, f, lp=loop: lp.call_soon_threadsafe(closing.set))

    logger.info("[grid] starting %s on %s", config.symbol, exchange)
    code = await run(engine, config, closing)
    logger.info("[grid] stopped.")
    return code


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
