#!/usr/bin/env python3
"""
LiquidityGuard -- Uniswap V3 Range Monitor
===========================================

Watches Uniswap V3 liquidity positions and alerts their owners on Telegram
when a position leaves or re-enters its range, or when uncollected fees or
impermanent loss cross a threshold.

Usage:
  python run.py check   <positionId> --chain base       Value a position now
  python run.py add     <positionId> --chain base --user alice --chat-id 123
  python run.py list                                     Monitored positions
  python run.py sweep                                    One monitoring cycle
  python run.py sweep   --pool <id>                      Manual check of one pool
  python run.py monitor [--interval 5]                   Run the scheduler
  python run.py remove  <id> [--hard]                    Stop monitoring
  python run.py info                                     System overview

Configuration comes from environment variables (see
liquidity_guard/central_config.py): <CHAIN>_RPC_URL, TELEGRAM_BOT_TOKEN,
DATABASE_PATH, CHECK_INTERVAL_MINUTES, RPC_TIMEOUT_SECONDS, APP_URL,
LOG_LEVEL.

Sources:
  Uniswap V3 Whitepaper : https://uniswap.org/whitepaper-v3.pdf
  Uniswap V3 Docs       : https://docs.uniswap.org/
  Telegram Bot API      : https://core.telegram.org/bots/api
"""

import argparse
import asyncio
import logging
import sys

from liquidity_guard.central_config import PROJECT_VERSION, load_settings
from liquidity_guard.chain_registry import supported_chains
from liquidity_guard.commands import (
    cmd_add,
    cmd_check,
    cmd_info,
    cmd_list,
    cmd_monitor,
    cmd_remove,
    cmd_sweep,
)
from liquidity_guard.errors import ConfigurationError


# ── CLI Parser ────────────────────────────────────────────────────────────


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="liquidity-guard",
        description=f"LiquidityGuard v{PROJECT_VERSION} — Uniswap V3 range monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py check 1234567 --chain base          Print a live valuation
  python run.py add 1234567 --chain base --user alice --chat-id 987654321
  python run.py add 1234567 --chain ethereum --user alice --fees 50 --il 10
  python run.py sweep                               Check every active position once
  python run.py monitor --interval 5                Check every 5 minutes

How to find your Position ID:
  1. Go to https://app.uniswap.org → Pool → click your position
  2. The URL contains: app.uniswap.org/positions/v3/<network>/<nft_id>
     → Position ID = the number at the end

Pool addresses are resolved automatically (Factory.getPool → CREATE2 →
PoolCreated events).
""",
    )
    parser.add_argument(
        "--version", action="version", version=f"LiquidityGuard v{PROJECT_VERSION}"
    )
    parser.add_argument(
        "--log-level", type=str, default=None,
        help="Logging level (default: LOG_LEVEL env or INFO)",
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    check_p = sub.add_parser("check", help="Value a position directly from the chain")
    check_p.add_argument("position", type=int, help="V3 position NFT tokenId")
    check_p.add_argument("--chain", choices=supported_chains(), default="base", help="Network (default: base)")

    add_p = sub.add_parser("add", help="Monitor a position")
    add_p.add_argument("position", type=int, help="V3 position NFT tokenId")
    add_p.add_argument("--chain", choices=supported_chains(), default="base", help="Network (default: base)")
    add_p.add_argument("--user", type=str, required=True, help="Owner name")
    add_p.add_argument("--chat-id", type=str, default=None, help="Telegram chat id for alerts")
    add_p.add_argument(
        "--no-range-alerts", action="store_true", help="Disable out-of-range alerts"
    )
    add_p.add_argument(
        "--fees", type=float, default=0.0, help="Fee alert threshold in USD (0 = off)"
    )
    add_p.add_argument(
        "--il", type=float, default=5.0, help="Impermanent loss alert threshold in %% (default: 5)"
    )

    sub.add_parser("list", help="List monitored positions")

    sweep_p = sub.add_parser("sweep", help="Run one monitoring cycle")
    sweep_p.add_argument("--pool", type=int, default=None, help="Check only this monitored pool id")

    monitor_p = sub.add_parser("monitor", help="Run the periodic monitor")
    monitor_p.add_argument(
        "--interval", type=float, default=None,
        help="Minutes between cycles (default: CHECK_INTERVAL_MINUTES or 5)",
    )

    remove_p = sub.add_parser("remove", help="Stop monitoring a position")
    remove_p.add_argument("pool_id", type=int, help="Monitored pool id (see 'list')")
    remove_p.add_argument("--hard", action="store_true", help="Delete instead of deactivate")

    sub.add_parser("info", help="System info")

    return parser


# ── Main ──────────────────────────────────────────────────────────────────


def main(argv=None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings()
    except ConfigurationError as e:
        print(f"❌ {e}")
        return 2

    logging.basicConfig(
        level=(args.log_level or settings.log_level).upper(),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "info":
        cmd_info()
        return 0
    if args.command == "check":
        ok = asyncio.run(cmd_check(args.position, args.chain, settings))
        return 0 if ok else 1
    if args.command == "add":
        try:
            cmd_add(
                settings,
                position_id=args.position,
                chain=args.chain,
                user=args.user,
                chat_id=args.chat_id,
                alert_out_of_range=not args.no_range_alerts,
                fees_threshold=args.fees,
                il_threshold=args.il,
            )
        except ConfigurationError as e:
            print(f"❌ {e}")
            return 2
        return 0
    if args.command == "list":
        cmd_list(settings)
        return 0
    if args.command == "sweep":
        ok = asyncio.run(cmd_sweep(settings, pool_id=args.pool))
        return 0 if ok else 1
    if args.command == "monitor":
        asyncio.run(cmd_monitor(settings, interval=args.interval))
        return 0
    if args.command == "remove":
        return 0 if cmd_remove(settings, args.pool_id, hard=args.hard) else 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n❌ Cancelled.")
        sys.exit(130)
