#!/usr/bin/env python3
"""Limit order execution engine for the Solana trading bot.

Polls the order table, prices every token with pending orders once per tick
against SOL, and swaps through Jupiter when a trigger price is crossed.
Orders left mid-execution by a previous run are reconciled on startup.

USAGE:
    python scripts/run_limit_engine.py                 # run the engine
    python scripts/run_limit_engine.py --init-db       # create tables and exit
    python scripts/run_limit_engine.py --once          # single tick, then exit
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import structlog

from config.settings import settings
from limit_engine.utils.logging import configure_logging

configure_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)

from config.validators import validate_engine_limits, validate_swap_endpoints
from limit_engine.db.order_store import OrderStore
from limit_engine.engine import EngineConfig, EngineContext, LimitOrderEngine
from limit_engine.exceptions import ConfigError
from limit_engine.execution.jupiter_swap import JupiterSwapService
from limit_engine.execution.wallets import UserWalletDirectory
from limit_engine.feeds.jupiter import JupiterPriceFeed
from limit_engine.notifications.base import LogNotifier
from limit_engine.notifications.telegram import TelegramNotifier

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Run the limit order execution engine")
    p.add_argument("--db-url", type=str, default=settings.DATABASE_URL)
    p.add_argument("--init-db", action="store_true", default=False,
                   help="Create the tables and exit")
    p.add_argument("--once", action="store_true", default=False,
                   help="Reconcile, run a single tick, wait for executions and exit")
    p.add_argument("--poll-interval", type=float, default=settings.LIMIT_POLL_INTERVAL_SECONDS)
    p.add_argument("--workers", type=int, default=settings.LIMIT_MAX_CONCURRENT_EXECUTIONS,
                   help="Max concurrent executions")
    p.add_argument("--slippage-bps", type=int, default=settings.DEFAULT_SLIPPAGE_BPS)
    return p


async def main() -> None:
    args = build_parser().parse_args()
    store = OrderStore(args.db_url)

    if args.init_db:
        await store.bootstrap()
        print(f"Tables created at {args.db_url}")
        return

    try:
        validate_swap_endpoints()
        validate_engine_limits()
    except ConfigError as exc:
        logger.error("config_invalid", error=str(exc))
        raise SystemExit(1) from exc

    config = EngineConfig.from_settings(settings)
    config.poll_interval = args.poll_interval
    config.max_concurrent_executions = args.workers
    config.slippage_bps = args.slippage_bps

    price_feed = JupiterPriceFeed(settings.JUPITER_PRICE_API_URL, timeout=config.price_timeout)
    swap_service = JupiterSwapService(
        keypair_resolver=UserWalletDirectory(args.db_url),
        rpc_url=settings.SOLANA_RPC_URL,
        quote_api_url=settings.JUPITER_QUOTE_API_URL,
        sol_decimals=settings.SOL_DECIMALS,
        timeout=config.swap_timeout,
    )
    if settings.TELEGRAM_BOT_TOKEN:
        notifier = TelegramNotifier(settings.TELEGRAM_BOT_TOKEN,
                                    explorer_url=settings.EXPLORER_TX_URL)
    else:
        logger.warning("telegram_disabled", reason="TELEGRAM_BOT_TOKEN not set")
        notifier = LogNotifier()

    ctx = EngineContext(config=config, store=store, price_feed=price_feed,
                        swap_service=swap_service, notifier=notifier)
    engine = LimitOrderEngine(ctx)

    print("=== Limit Order Engine ===")
    print("  Wallets:      per user, from the users table")
    print(f"  Database:     {args.db_url}")
    print(f"  Poll:         {config.poll_interval:.0f}s, {config.max_concurrent_executions} workers")
    print(f"  Retries:      {config.max_retries} (backoff {config.retry_backoff_seconds:.0f}s)")
    print(f"  Slippage:     {config.slippage_bps} bps")
    print()

    try:
        if args.once:
            await engine.run_once()
        else:
            await engine.run()
    finally:
        await price_feed.close()
        await swap_service.close()
        if isinstance(notifier, TelegramNotifier):
            await notifier.close()


if __name__ == "__main__":
    asyncio.run(main())
