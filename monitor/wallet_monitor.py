"""
Wallet Monitor
==============
Polls every followed wallet and hands new swaps to copy trading.

Each poll, per active followed wallet:
1. Scan it (WalletScanner: classify + enrich, with retries)
2. Record each swap in the owner's trade ledger. The ledger is keyed by
   signature, so swaps recorded by an earlier poll are skipped.
3. If the owner has copy trading enabled, dispatch every swap from after
   the follow that has no copy trade yet. Trades from before the follow,
   or from before copy trading was last switched on, are history:
   recorded, never mirrored. A dispatch that raises is logged and the
   remaining swaps still go out; the failed one is picked up again by
   the next poll.

One wallet failing (RPC down, nothing cached yet) is logged and the loop
moves on to the next wallet. The loop runs until stop() or cancellation.
"""

import asyncio
from datetime import datetime, timezone

from config.settings import Settings
from database.db import Database
from monitor.wallet_scanner import WalletScanner
from trader.copy_trade_dispatcher import CopyTradeDispatcher, DispatchOutcome
from utils.errors import UpstreamError
from utils.logger import get_logger, short

logger = get_logger(__name__)


def _unix_time(value) -> float:
    """SQLite CURRENT_TIMESTAMP text (UTC) as unix time, 0 if missing."""
    if not value:
        return 0.0
    try:
        parsed = datetime.strptime(str(value), "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return 0.0
    return parsed.replace(tzinfo=timezone.utc).timestamp()


def followed_since(wallet: dict) -> float:
    """Unix time the wallet was followed (0 if unknown)."""
    return _unix_time(wallet.get("created_at"))


class WalletMonitor:
    """
    Usage:
        monitor = WalletMonitor(settings, db, scanner, dispatcher)
        await monitor.start()  # Runs until stop()
    """

    def __init__(
        self,
        settings: Settings,
        db: Database,
        scanner: WalletScanner,
        dispatcher: CopyTradeDispatcher,
    ):
        self.settings = settings
        self.db = db
        self.scanner = scanner
        self.dispatcher = dispatcher
        self._running = False

    async def start(self) -> None:
        self._running = True
        logger.info("wallet_monitor_started", poll_interval=f"{self.settings.wallet_poll_interval}s")

        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                logger.info("wallet_monitor_stopping")
                raise
            except Exception as e:
                logger.error("wallet_monitor_error", error=str(e), type=type(e).__name__)

            if self._running:
                await asyncio.sleep(self.settings.wallet_poll_interval)

    def stop(self) -> None:
        self._running = False

    async def poll_once(self) -> list[DispatchOutcome]:
        """Check every active followed wallet once."""
        outcomes: list[DispatchOutcome] = []
        for wallet in await self.db.get_active_wallets():
            try:
                outcomes.extend(await self.process_wallet(wallet))
            except UpstreamError as e:
                logger.warning("wallet_poll_failed", wallet=short(wallet["address"]), error=str(e))
        return outcomes

    async def process_wallet(self, wallet: dict) -> list[DispatchOutcome]:
        result = await self.scanner.scan(wallet["address"])
        if result.stale:
            # Nothing new to record from a cached result
            return []

        recorded = 0
        for swap in result.swaps:
            trade_id = await self.db.record_trade({
                "user_id": wallet["user_id"],
                "wallet_id": wallet["id"],
                "tx_signature": swap.signature,
                "token_mint": swap.token_mint,
                "token_symbol": swap.token_symbol,
                "trade_type": swap.type,
                "amount_sol": swap.sol_amount,
                "amount_token": swap.token_amount,
                "price_usd": swap.price_usd,
                "platform": swap.platform,
                "source": "scan",
                "block_time": swap.block_time,
            })
            if trade_id is not None:
                recorded += 1
        if recorded:
            logger.info("new_wallet_trades", wallet=short(wallet["address"]), count=recorded)

        copy_settings = await self.db.get_copy_trade_settings(wallet["user_id"])
        if not copy_settings or not copy_settings["is_enabled"]:
            return []

        # Swaps from before the follow, or from while copy trading was off, are history
        since = max(followed_since(wallet), _unix_time(copy_settings.get("enabled_at")))
        candidates = [swap for swap in result.swaps if swap.block_time >= since]
        copied = await self.db.get_copied_signatures(
            wallet["user_id"], [swap.signature for swap in candidates]
        )

        outcomes = []
        # Oldest first, so a buy is mirrored before the sell that follows it
        for swap in sorted(candidates, key=lambda s: s.block_time):
            if swap.signature in copied:
                continue
            try:
                outcome = await self.dispatcher.dispatch(
                    wallet["user_id"],
                    wallet["id"],
                    swap.signature,
                    swap.token_mint,
                    swap.token_symbol,
                    swap.type,
                    swap.sol_amount,
                    swap.platform,
                )
            except Exception as e:
                # Swaps without a copy trade row are retried on the next poll
                logger.error(
                    "copy_dispatch_error",
                    wallet=short(wallet["address"]),
                    signature=short(swap.signature),
                    error=str(e),
                    type=type(e).__name__,
                )
                continue
            outcomes.append(outcome)
        return outcomes
