"""
Solana Copy Trader: Main Entry Point
====================================
Running this file:
1. Loads configuration from .env
2. Validates it (live mode without a signer key stops here)
3. Connects to the database and the RPC endpoints
4. Runs the requested command, or the full service

Usage:
    python main.py                               # Wallet monitor + position monitor
    python main.py --once                        # One poll of each loop, then exit
    python main.py --scan <wallet>               # Scan a wallet and print its performance
    python main.py --user alice --follow <wallet> --name "whale"
    python main.py --user alice --copy on --max-sol 0.2 --slippage 10
    python main.py --user alice --buy <mint> --amount 0.1
    python main.py --user alice --sell <mint> --percent 50
    python main.py --stuck                       # Copy trades stuck in "executing"
    python main.py --mode live                   # Override TRADING_MODE
"""

import asyncio
import argparse

from config.settings import Settings, settings
from analyzer import pnl_aggregator
from analyzer.token_enricher import TokenEnricher
from database.db import Database
from monitor.wallet_monitor import WalletMonitor
from monitor.wallet_scanner import WalletScanner
from telegram_bot.notifier import TelegramNotifier
from trader.copy_trade_dispatcher import CopyTradeDispatcher
from trader.position_ledger import PositionLedger
from trader.position_monitor import PositionMonitor
from trader.trade_executor import TradeExecutor
from utils.errors import ConfigurationError, CopyTradeError
from utils.logger import setup_logging, get_logger, short
from utils.solana_client import SolanaClient

logger = get_logger(__name__)


def check_config(config: Settings) -> None:
    """
    Log every configuration problem. Raises ConfigurationError when the
    service can't run as configured: live mode without a signer key, or
    settings that are invalid in any mode.
    """
    problems = config.validate()
    for problem in problems:
        logger.warning("config_issue", issue=problem)

    if config.trading_mode not in ("live", "simulated"):
        raise ConfigurationError(f"Unknown trading mode: {config.trading_mode}")
    if config.multi_leg_policy not in ("reject", "first"):
        raise ConfigurationError(f"Unknown multi-leg policy: {config.multi_leg_policy}")
    if not config.rpc_endpoints:
        raise ConfigurationError("No RPC endpoints configured")
    if config.is_live and not config.copy_trade_private_key:
        raise ConfigurationError("COPY_TRADE_PRIVATE_KEY is required in live mode")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Solana Copy Trader")
    parser.add_argument("--mode", choices=["live", "simulated"], help="Override trading mode")
    parser.add_argument("--user", default="default", help="User the command acts for")
    parser.add_argument("--once", action="store_true", help="Run one wallet poll and one position check")
    parser.add_argument("--scan", metavar="WALLET", help="Scan a wallet and report its performance")
    parser.add_argument("--follow", metavar="WALLET", help="Follow a wallet for copy trading")
    parser.add_argument("--name", default="", help="Label for --follow")
    parser.add_argument("--copy", choices=["on", "off"], help="Enable or disable copy trading")
    parser.add_argument("--max-sol", type=float, help="Copy trade size cap in SOL")
    parser.add_argument("--slippage", type=float, help="Slippage percent")
    parser.add_argument("--buy", metavar="MINT", help="Buy a token")
    parser.add_argument("--amount", type=float, help="SOL to spend on --buy")
    parser.add_argument("--stop-loss", type=float, help="Stop-loss percent for --buy")
    parser.add_argument("--take-profit", type=float, help="Take-profit percent for --buy")
    parser.add_argument("--sell", metavar="MINT", help="Sell a token")
    parser.add_argument("--percent", type=float, default=100.0, help="Share of holdings for --sell")
    parser.add_argument("--stuck", action="store_true", help="List copy trades stuck in executing")
    return parser


async def run_scan(scanner: WalletScanner, wallet: str) -> None:
    result = await scanner.scan(wallet)
    swaps = result.swaps
    summary = result.summary

    logger.info("scan_summary", wallet=short(wallet), stale=result.stale, **summary.to_dict())
    logger.info(
        "scan_activity",
        trades_today=pnl_aggregator.trades_today(swaps),
        trades_this_week=len(pnl_aggregator.trades_this_week(swaps)),
    )
    for token in pnl_aggregator.top_tokens(swaps):
        logger.info("top_token", symbol=token["symbol"], mint=short(token["mint"]), pnl_sol=round(token["pnl"], 4))
    for venue in pnl_aggregator.platform_distribution(swaps):
        logger.info("platform_share", platform=venue["name"], share=f"{venue['value']}%", trades=venue["count"])
    for day in pnl_aggregator.daily_pnl(swaps):
        logger.info("daily_pnl", date=day["date"], pnl_sol=round(day["pnl"], 4))


async def main() -> None:
    """Main async entry point."""
    args = build_parser().parse_args()
    if args.mode:
        settings.trading_mode = args.mode

    setup_logging(log_level=settings.log_level, log_dir="logs", json_logs=settings.log_json)
    check_config(settings)

    logger.info("copytrader_starting", mode=settings.trading_mode, rpc_endpoints=len(settings.rpc_endpoints))

    db = Database(settings.db_path)
    await db.initialize()

    solana = SolanaClient(settings.rpc_endpoints, timeout_seconds=settings.http_timeout_seconds)
    await solana.initialize()

    enricher = TokenEnricher(settings)
    await enricher.initialize()

    notifier = TelegramNotifier(settings)
    await notifier.initialize()

    ledger = PositionLedger(db)
    executor = TradeExecutor(settings, db, ledger, enricher, solana, notifier)

    try:
        await executor.initialize()

        scanner = WalletScanner(settings, solana, enricher)
        dispatcher = CopyTradeDispatcher(settings, db, executor, notifier)
        wallet_monitor = WalletMonitor(settings, db, scanner, dispatcher)
        position_monitor = PositionMonitor(settings, db, enricher, executor, notifier)

        if args.scan:
            await run_scan(scanner, args.scan)

        elif args.follow:
            wallet_id = await db.add_wallet(args.user, args.follow, args.name)
            logger.info("wallet_followed", user=args.user, wallet=short(args.follow), wallet_id=wallet_id)

        elif args.copy or args.max_sol is not None or (args.slippage is not None and not (args.buy or args.sell)):
            values = {}
            if args.copy:
                values["is_enabled"] = 1 if args.copy == "on" else 0
            if args.max_sol is not None:
                values["max_position_sol"] = args.max_sol
            if args.slippage is not None:
                values["slippage_percent"] = args.slippage
            row = await db.upsert_copy_trade_settings(args.user, **values)
            logger.info("copy_settings_saved", **row)

        elif args.buy:
            outcome = await executor.buy(
                args.user,
                args.buy,
                amount_sol=args.amount,
                slippage_percent=args.slippage,
                stop_loss_percent=args.stop_loss,
                take_profit_percent=args.take_profit,
            )
            logger.info("buy_result", status=outcome.status, reason=outcome.reason, signature=outcome.signature)

        elif args.sell:
            outcome = await executor.sell(
                args.user, args.sell, sell_percent=args.percent, slippage_percent=args.slippage
            )
            logger.info(
                "sell_result",
                status=outcome.status,
                reason=outcome.reason,
                closed=outcome.position_closed,
                realized_pnl=outcome.realized_pnl,
            )

        elif args.stuck:
            stuck = await db.get_stuck_copy_trades(settings.stuck_executing_seconds)
            logger.info("stuck_copy_trades", count=len(stuck))
            for record in stuck:
                logger.warning(
                    "stuck_copy_trade",
                    copy_trade_id=record["id"],
                    user=record["user_id"],
                    source_signature=short(record["source_signature"]),
                    created_at=record["created_at"],
                )

        elif args.once:
            outcomes = await wallet_monitor.poll_once()
            report = await position_monitor.run_tick()
            logger.info(
                "single_pass_done",
                dispatched=len(outcomes),
                positions=report.checked,
                exits=report.exited,
            )

        else:
            stuck = await db.get_stuck_copy_trades(settings.stuck_executing_seconds)
            if stuck:
                logger.warning("stuck_copy_trades_found", count=len(stuck), note="Run --stuck for details")

            await notifier.notify_startup()
            logger.info("copytrader_ready", note="Monitoring followed wallets and open positions")
            await asyncio.gather(wallet_monitor.start(), position_monitor.start())

    except CopyTradeError as e:
        logger.error("command_failed", error=str(e), type=type(e).__name__)
        raise
    finally:
        logger.info("shutting_down")
        await executor.close()
        await enricher.close()
        await solana.close()
        await db.close()
        logger.info("copytrader_stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
