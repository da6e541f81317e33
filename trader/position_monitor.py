"""
Position Monitor
================
Re-prices open positions and fires stop-loss / take-profit exits.

Runs as a background loop alongside the wallet monitor. Each tick:
1. Load every open position, for all users
2. Fetch prices for the distinct mints in ONE batched request
3. For each position with a price and a positive entry_price:
   pnl% = (current - entry) / entry * 100
   and persist current_price / unrealized PnL whatever happens next
4. pnl% <= -stop_loss_percent  -> stop-loss exit
   pnl% >= take_profit_percent -> take-profit exit
   (stop-loss is checked first)
5. Exits sell 100% with the wider auto-exit slippage (15% by default)
6. A failed exit is logged and the position stays open. The next tick
   evaluates it again from scratch; nothing is carried over between ticks.
7. Every exit that reached the executor is notified, success or not.
"""

import asyncio
from dataclasses import dataclass, field

from analyzer.token_enricher import TokenEnricher
from config.settings import Settings
from database.db import Database
from trader.position_ledger import mark_to_market
from trader.trade_executor import TradeExecutor
from utils.logger import get_logger, short

logger = get_logger(__name__)


def evaluate_trigger(pnl_percent: float, stop_loss_percent: float, take_profit_percent: float) -> str | None:
    """'stop_loss', 'take_profit' or None. Stop-loss wins a tie."""
    if stop_loss_percent and pnl_percent <= -stop_loss_percent:
        return "stop_loss"
    if take_profit_percent and pnl_percent >= take_profit_percent:
        return "take_profit"
    return None


@dataclass
class TickReport:
    checked: int = 0
    priced: int = 0
    triggered: list[dict] = field(default_factory=list)
    exited: int = 0
    failed: int = 0


class PositionMonitor:
    """
    Watches open positions and triggers TP/SL.

    Usage:
        monitor = PositionMonitor(settings, db, enricher, executor, notifier)
        await monitor.start()  # Runs until stop() or cancellation
    """

    def __init__(
        self,
        settings: Settings,
        db: Database,
        enricher: TokenEnricher,
        executor: TradeExecutor,
        notifier=None,
    ):
        self.settings = settings
        self.db = db
        self.enricher = enricher
        self.executor = executor
        self.notifier = notifier
        self._running = False

    async def start(self) -> None:
        """
        Check positions every settings.position_check_interval seconds.
        stop() ends the loop after the tick in flight.
        """
        self._running = True
        logger.info("position_monitor_started", interval=f"{self.settings.position_check_interval}s")

        while self._running:
            try:
                await self.run_tick()
            except asyncio.CancelledError:
                logger.info("position_monitor_stopping")
                raise
            except Exception as e:
                logger.error("position_monitor_error", error=str(e), type=type(e).__name__)

            if self._running:
                await asyncio.sleep(self.settings.position_check_interval)

    def stop(self) -> None:
        self._running = False

    async def run_tick(self) -> TickReport:
        """One full pass over every open position."""
        report = TickReport()
        positions = await self.db.get_open_positions()
        report.checked = len(positions)
        if not positions:
            return report

        mints = list(dict.fromkeys(p["token_mint"] for p in positions))
        prices = await self.enricher.get_prices(mints)

        for position in positions:
            price = prices.get(position["token_mint"])
            entry = position.get("entry_price") or 0
            if price is None or entry <= 0:
                logger.debug("position_unpriced", position_id=position["id"], token=short(position["token_mint"]))
                continue
            report.priced += 1

            try:
                await self._check_position(position, price, report)
            except Exception as e:
                logger.error(
                    "position_check_failed",
                    position_id=position["id"],
                    error=str(e),
                    type=type(e).__name__,
                )

        if report.triggered:
            logger.info(
                "position_tick_done",
                checked=report.checked,
                priced=report.priced,
                triggered=len(report.triggered),
                exited=report.exited,
                failed=report.failed,
            )
        return report

    async def _check_position(self, position: dict, price: float, report: TickReport) -> None:
        unrealized, pnl_percent = mark_to_market(position, price)
        await self.db.update_position_price(position["id"], price, unrealized, pnl_percent)

        trigger = evaluate_trigger(
            pnl_percent,
            position.get("stop_loss_percent") or 0,
            position.get("take_profit_percent") or 0,
        )
        if trigger is None:
            return

        threshold = position["stop_loss_percent"] if trigger == "stop_loss" else position["take_profit_percent"]
        logger.warning(
            "exit_triggered",
            trigger=trigger,
            position_id=position["id"],
            user=position["user_id"],
            token=position.get("token_symbol") or short(position["token_mint"]),
            pnl_percent=f"{pnl_percent:.2f}%",
            threshold=threshold,
        )
        report.triggered.append({"position_id": position["id"], "trigger": trigger, "pnl_percent": pnl_percent})

        payload = {
            "token_mint": position["token_mint"],
            "token_symbol": position.get("token_symbol"),
            "entry_price": position["entry_price"],
            "current_price": price,
            "pnl_percent": pnl_percent,
            "threshold": threshold,
            "user_id": position["user_id"],
        }

        try:
            outcome = await self.executor.sell(
                position["user_id"],
                position["token_mint"],
                sell_percent=100,
                slippage_percent=self.settings.auto_exit_slippage_percent,
                price_usd=price,
                source=trigger,
                notify=False,
            )
        except Exception as e:
            report.failed += 1
            message = str(e) or type(e).__name__
            logger.error(
                "auto_exit_failed",
                position_id=position["id"],
                trigger=trigger,
                error=message,
                type=type(e).__name__,
            )
            payload["error_message"] = message
            await self._notify(trigger, payload)
            return

        if not outcome.executed:
            # Someone else closed it between the read and the exit
            logger.info("auto_exit_skipped", position_id=position["id"], reason=outcome.reason)
            return

        report.exited += 1
        payload["realized_pnl"] = outcome.realized_pnl
        payload["tx_signature"] = outcome.signature
        await self._notify(trigger, payload)

    async def _notify(self, event_type: str, payload: dict) -> None:
        if not self.notifier:
            return
        try:
            await self.notifier.notify(event_type, payload)
        except Exception as e:
            logger.error("notify_failed", event_type=event_type, error=str(e))
