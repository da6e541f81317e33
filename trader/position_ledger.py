"""
Position Ledger
===============
Open/closed position state per (user, token).

Transitions:
- absent/closed -> open: a buy with no open position. entry_price and
  avg_buy_price are both the execution price.
- open -> open (re-entry): another buy. amount grows, avg_buy_price is the
  volume-weighted average, entry_price stays.
- open -> open (partial exit): a sell below 100% that leaves amount > 0.
  Only amount and current_price change.
- open -> closed: a 100% sell, or one that leaves amount <= 0.
  realized_pnl = proceeds - avg_buy_price * sold_amount, written once.
  Proceeds are what the sell actually brought in; when they can't be
  valued the realized PnL stays NULL rather than guessed.

A closed row is history: the next buy starts a fresh position with its
own averaging.

The buy transition is a single upsert at the storage layer. Sells are
read-modify-write, so callers hold lock(user, token) across the read,
the swap and apply_sell().
"""

import asyncio
from dataclasses import dataclass

from database.db import Database
from utils.logger import get_logger, short

logger = get_logger(__name__)


@dataclass
class SellResult:
    position: dict
    closed: bool
    sold_amount: float
    realized_pnl: float | None = None
    trade_pnl: float | None = None


def mark_to_market(position: dict, current_price: float) -> tuple[float, float]:
    """
    (unrealized_pnl, unrealized_pnl_percent) at `current_price`.
    The amount is measured against avg_buy_price, the percent against
    entry_price, the same reference the stop-loss/take-profit use.
    """
    amount = position.get("amount") or 0.0
    avg = position.get("avg_buy_price") or 0.0
    entry = position.get("entry_price") or 0.0
    unrealized = (current_price - avg) * amount
    percent = (current_price - entry) / entry * 100 if entry > 0 else 0.0
    return unrealized, percent


class PositionLedger:
    """
    Usage:
        ledger = PositionLedger(db)
        async with ledger.lock(user_id, mint):
            position = await ledger.get_open(user_id, mint)
            ...
            await ledger.apply_sell(position, sold, price, sell_percent=100, proceeds=usd)
    """

    def __init__(self, db: Database):
        self.db = db
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def lock(self, user_id: str, token_mint: str) -> asyncio.Lock:
        """The mutex guarding one (user, token) position."""
        key = (user_id, token_mint)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def get_open(self, user_id: str, token_mint: str) -> dict | None:
        return await self.db.get_open_position(user_id, token_mint)

    async def apply_buy(
        self,
        user_id: str,
        token_mint: str,
        amount: float,
        price: float,
        token_symbol: str = "",
        token_decimals: int = 6,
        stop_loss_percent: float = 10.0,
        take_profit_percent: float = 50.0,
        source: str = "manual",
        wallet_id: int | None = None,
        mode: str = "live",
    ) -> dict:
        """Open a position or add to the open one. Returns the updated row."""
        if amount <= 0:
            raise ValueError("Buy amount must be positive")
        if price <= 0:
            raise ValueError("Buy price must be positive")

        position = await self.db.upsert_open_position({
            "user_id": user_id,
            "token_mint": token_mint,
            "token_symbol": token_symbol,
            "token_decimals": token_decimals,
            "amount": amount,
            "price": price,
            "stop_loss_percent": stop_loss_percent,
            "take_profit_percent": take_profit_percent,
            "source": source,
            "wallet_id": wallet_id,
            "mode": mode,
        })

        logger.info(
            "position_bought",
            user=user_id,
            token=token_symbol or short(token_mint),
            added=amount,
            amount=position["amount"],
            avg_price=position["avg_buy_price"],
            entry_price=position["entry_price"],
        )
        return position

    async def apply_sell(
        self,
        position: dict,
        sold_amount: float,
        price: float | None,
        sell_percent: float = 100.0,
        proceeds: float | None = None,
        reason: str = "manual",
    ) -> SellResult:
        """
        Reduce or close an open position after a sell.

        Args:
            position: The open row, read under lock()
            sold_amount: Whole tokens sold
            price: Execution price (USD per token), if known
            sell_percent: Share of holdings the caller asked to sell
            proceeds: USD received for the sold tokens, None if unknown
            reason: manual | copy | stop_loss | take_profit
        """
        held = position["amount"]
        sold_amount = min(sold_amount, held)
        new_amount = held - sold_amount

        trade_pnl = None
        if proceeds is not None:
            trade_pnl = proceeds - position["avg_buy_price"] * sold_amount

        if new_amount <= 0 or sell_percent >= 100:
            closed = await self.db.close_position(position["id"], trade_pnl, price, reason)
            logger.info(
                "position_closed",
                user=position["user_id"],
                token=position.get("token_symbol") or short(position["token_mint"]),
                sold=sold_amount,
                realized_pnl=round(trade_pnl, 6) if trade_pnl is not None else None,
                reason=reason,
            )
            return SellResult(closed, True, sold_amount, trade_pnl, trade_pnl)

        reduced = await self.db.reduce_position(position["id"], new_amount, price)
        logger.info(
            "position_reduced",
            user=position["user_id"],
            token=position.get("token_symbol") or short(position["token_mint"]),
            sold=sold_amount,
            remaining=new_amount,
        )
        return SellResult(reduced, False, sold_amount, None, trade_pnl)
