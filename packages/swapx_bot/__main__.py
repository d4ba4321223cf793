"""
SwapX Bot - command line

    python -m swapx_bot price
    python -m swapx_bot bots
    python -m swapx_bot create --kind dca --name "DCA 10" --set amount=10 --set total_budget=100
    python -m swapx_bot run --id bot-1234abcd --duration 3600
    python -m swapx_bot trades --limit 20
    python -m swapx_bot export --output trades.json
"""

import argparse
import asyncio
import json
import logging
import sys

from .bot_manager import BotManager
from .chain import ChainClient
from .config import load_config
from .log_sink import install_log_sink
from .runner import get_runner
from .storage import Storage


logger = logging.getLogger("swapx_bot.system.cli")


def _parse_settings(pairs):
    settings = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep:
            raise SystemExit(f"Invalid --set value (expected key=value): {pair}")
        settings[key.strip()] = value.strip()
    return settings


async def _price(client: ChainClient, base: str, quote: str):
    price = await client.get_price(base, quote)
    print(f"1 {base} = {price} {quote}")


async def _run(manager: BotManager, bot_ids, duration, resume):
    bot_ids = bot_ids or [b.id for b in manager.list_bots()]
    if not bot_ids:
        print("No bots configured")
        return

    for bot_id in bot_ids:
        manager.start_bot(bot_id, resume=resume)

    try:
        if duration:
            await asyncio.sleep(duration)
        else:
            while any(manager.is_running(b) for b in bot_ids):
                await asyncio.sleep(1)
    finally:
        for bot_id in bot_ids:
            manager.stop_bot(bot_id, reason="cli exit")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="swapx-bot", description="SwapX trading bot")
    parser.add_argument("action", choices=["price", "bots", "create", "delete", "run", "trades", "export", "logs"])
    parser.add_argument("--config", type=str, default=None, help="JSON config file")
    parser.add_argument("--id", action="append", dest="ids", help="Bot id (repeatable)")
    parser.add_argument("--kind", choices=["threshold", "dca", "grid"], help="Strategy kind (create)")
    parser.add_argument("--name", type=str, help="Bot name (create)")
    parser.add_argument("--set", action="append", dest="settings", help="Config key=value (create)")
    parser.add_argument("--base", type=str, default=None, help="Base token")
    parser.add_argument("--quote", type=str, default=None, help="Quote token")
    parser.add_argument("--duration", type=float, default=None, help="Seconds to run (run)")
    parser.add_argument("--resume", action="store_true", help="Restore DCA counters (run)")
    parser.add_argument("--limit", type=int, default=20, help="Rows to show (trades, logs)")
    parser.add_argument("--output", type=str, default="trades.json", help="Export file (export)")
    args = parser.parse_args(argv)

    config = load_config(args.config) if args.config else load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    storage = Storage(config.db_path)
    sink = install_log_sink(
        config.max_log_entries,
        storage=storage,
        level=getattr(logging, config.log_level, logging.INFO),
    )
    client = ChainClient(config)
    if config.private_key:
        client.set_account(config.private_key)

    base = args.base or config.trading.base_token
    quote = args.quote or config.trading.quote_token

    if args.action == "price":
        asyncio.run(_price(client, base, quote))
        return 0

    manager = BotManager(storage, client, get_runner())

    if args.action == "bots":
        for bot in manager.list_bots():
            s = bot.stats
            print(
                f"{bot.id}  {bot.name:<24} {bot.strategy_kind.value:<10} "
                f"trades={s.get('total_trades', 0)} ok={s.get('success_trades', 0)} "
                f"failed={s.get('failed_trades', 0)} volume={s.get('total_volume', '0')}"
            )
    elif args.action == "create":
        if not args.kind or not args.name:
            parser.error("create requires --kind and --name")
        bot = manager.create_bot(args.name, args.kind, _parse_settings(args.settings))
        print(f"Created {bot.id}")
        print(json.dumps(bot.config, indent=2))
    elif args.action == "delete":
        for bot_id in args.ids or []:
            manager.delete_bot(bot_id)
            print(f"Deleted {bot_id}")
    elif args.action == "run":
        if not client.is_ready:
            print("SWAPX_PRIVATE_KEY is not set", file=sys.stderr)
            return 1
        try:
            asyncio.run(_run(manager, args.ids, args.duration, args.resume))
        except KeyboardInterrupt:
            logger.info("Interrupted")
    elif args.action == "trades":
        for trade in manager.trade_history(limit=args.limit):
            print(
                f"{trade.timestamp:%Y-%m-%d %H:%M:%S} {trade.type.value:<4} {trade.source.value:<6} "
                f"{trade.amount_in} {trade.token_from} -> {trade.amount_out} {trade.token_to} "
                f"@ {trade.price} [{trade.status.value}]"
            )
        stats = storage.trade_stats()
        print(f"\n{stats['total_trades']} trades, success rate {stats['success_rate']:.1f}%, net {stats['net_profit']}")
    elif args.action == "export":
        count = storage.export_trades(args.output)
        print(f"Exported {count} trades to {args.output}")
    elif args.action == "logs":
        for entry in sink.get_logs("all")[-args.limit:]:
            print(f"[{entry['timestamp']}] [{entry['channel']}] [{entry['level'].upper()}] {entry['message']}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
