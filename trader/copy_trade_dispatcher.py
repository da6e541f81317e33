"""
Copy-Trade Dispatcher
=====================
Decides whether to mirror a followed wallet's trade, and records the attempt.

Checks, in order, stopping at the first that fails:
1. The user has copy-trade settings and they are enabled -> else "disabled"
2. No attempt exists yet for (user, source_signature)  -> else "already_copied"
   The copy_trades row is claimed with an insert that does nothing on
   conflict, so two dispatchers racing on the same signature produce one
   row and one execution.
3. Size = min(source amount, max_position_sol). Never scaled up.

The row is written as "executing" BEFORE the swap. Afterwards it always
ends "completed" (with our tx signature) or "failed" (with the error
message). A row that stays "executing" means the process died mid-swap;
Database.get_stuck_copy_trades() finds those.

Mirroring rules:
- source buy  -> buy `size` SOL of the token
- source sell -> sell 100% of the user's open position in the token;
  no open position means the attempt fails with that reason
"""

from dataclasses import dataclass

from config.settings import Settings
from database.db import Database
from trader.trade_executor import TradeExecutor
from utils.logger import get_logger, short

logger = get_logger(__name__)


class RejectedTrade(Exception):
    """The executor declined the mirrored trade (e.g. nothing to sell)."""


@dataclass
class DispatchOutcome:
    status: str  # disabled | already_copied | completed | failed
    copy_trade_id: int | None = None
    tx_signature: str | None = None
    executed_amount_sol: float = 0.0
    error: str | None = None

    @property
    def executed(self) -> bool:
        return self.status == "completed"


class CopyTradeDispatcher:
    """
    Usage:
        dispatcher = CopyTradeDispatcher(settings, db, executor, notifier)
        outcome = await dispatcher.dispatch(
            user_id, wallet_id, signature, mint, "BONK", "buy", 1.5, "jupiter"
        )
    """

    def __init__(self, settings: Settings, db: Database, executor: TradeExecutor, notifier=None):
        self.settings = settings
        self.db = db
        self.executor = executor
        self.notifier = notifier

    async def dispatch(
        self,
        user_id: str,
        source_wallet_id: int | None,
        source_signature: str,
        token_mint: str,
        token_symbol: str,
        trade_type: str,
        source_amount_sol: float,
        platform: str = "jupiter",
    ) -> DispatchOutcome:
        copy_settings = await self.db.get_copy_trade_settings(user_id)
        if not copy_settings or not copy_settings["is_enabled"]:
            logger.debug("copy_trade_disabled", user=user_id, source_signature=short(source_signature))
            return DispatchOutcome("disabled")

        executed_amount = min(source_amount_sol, copy_settings["max_position_sol"])

        record, created = await self.db.insert_copy_trade_or_get_existing({
            "user_id": user_id,
            "source_wallet_id": source_wallet_id,
            "source_signature": source_signature,
            "token_mint": token_mint,
            "token_symbol": token_symbol,
            "trade_type": trade_type,
            "source_amount_sol": source_amount_sol,
            "executed_amount_sol": executed_amount,
            "platform": platform or "jupiter",
            "mode": self.executor.mode,
        })
        if not created:
            logger.info("copy_trade_already_copied", user=user_id, source_signature=short(source_signature))
            return DispatchOutcome("already_copied", copy_trade_id=record["id"])

        logger.info(
            "copy_trade_executing",
            copy_trade_id=record["id"],
            user=user_id,
            type=trade_type,
            token=token_symbol or short(token_mint),
            source_sol=source_amount_sol,
            executed_sol=executed_amount,
        )

        source_wallet = await self._wallet_address(source_wallet_id)
        payload = {
            "action": trade_type,
            "token_mint": token_mint,
            "token_symbol": token_symbol,
            "source_amount_sol": source_amount_sol,
            "executed_amount_sol": executed_amount,
            "platform": platform or "jupiter",
            "source_wallet": source_wallet,
        }

        try:
            tx_signature = await self._execute(
                user_id, source_wallet_id, token_mint, token_symbol, trade_type,
                executed_amount, copy_settings["slippage_percent"],
            )
        except Exception as e:
            # Anything at all: the row must not stay "executing"
            message = str(e) or type(e).__name__
            await self.db.update_copy_trade(record["id"], "failed", error_message=message)
            logger.error(
                "copy_trade_failed",
                copy_trade_id=record["id"],
                error=message,
                type=type(e).__name__,
            )
            await self._notify("copy_trade_failed", {**payload, "error_message": message})
            return DispatchOutcome(
                "failed", copy_trade_id=record["id"], executed_amount_sol=executed_amount, error=message
            )

        await self.db.update_copy_trade(record["id"], "completed", tx_signature=tx_signature)
        logger.info("copy_trade_completed", copy_trade_id=record["id"], tx=short(tx_signature))
        await self._notify("copy_trade_success", {**payload, "tx_signature": tx_signature})
        return DispatchOutcome(
            "completed", copy_trade_id=record["id"], tx_signature=tx_signature, executed_amount_sol=executed_amount
        )

    async def _execute(
        self,
        user_id: str,
        source_wallet_id: int | None,
        token_mint: str,
        token_symbol: str,
        trade_type: str,
        amount_sol: float,
        slippage_percent: float,
    ) -> str:
        """Run the mirrored swap. Returns our signature or raises."""
        if trade_type == "buy":
            outcome = await self.executor.buy(
                user_id,
                token_mint,
                amount_sol=amount_sol,
                slippage_percent=slippage_percent,
                token_symbol=token_symbol,
                source="copy",
                wallet_id=source_wallet_id,
                notify=False,
            )
        elif trade_type == "sell":
            outcome = await self.executor.sell(
                user_id,
                token_mint,
                sell_percent=100,
                slippage_percent=slippage_percent,
                source="copy",
                wallet_id=source_wallet_id,
                notify=False,
            )
        else:
            raise ValueError(f"Unknown trade type: {trade_type}")

        if not outcome.executed:
            raise RejectedTrade(outcome.reason)
        return outcome.signature

    async def _wallet_address(self, wallet_id: int | None) -> str | None:
        if wallet_id is None:
            return None
        wallet = await self.db.get_wallet(wallet_id)
        return wallet["address"] if wallet else None

    async def _notify(self, event_type: str, payload: dict) -> None:
        if not self.notifier:
            return
        try:
            await self.notifier.notify(event_type, payload)
        except Exception as e:
            logger.error("notify_failed", event_type=event_type, error=str(e))
