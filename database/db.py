"""
Database Manager
================
Handles all database operations: creating tables, inserting data, querying.

SQLite through aiosqlite, in WAL mode, rows returned as dicts. Other
modules never write raw SQL, they call these methods instead.

Every write that has a natural key is a single conflict-aware statement:
- copy trades: INSERT ... ON CONFLICT DO NOTHING, then read back the row
  that owns the key (ours or the one that got there first)
- trades: duplicate signatures are ignored
- positions: a buy is one upsert against the "one open row per
  (user, token)" index, so two concurrent buys can never open two rows

After each commit the change is published on `self.changes`.
"""

from pathlib import Path
from typing import Any

import aiosqlite

from database.changes import ChangeEvent, ChangeFeed
from database.models import CREATE_TABLES_SQL
from utils.logger import get_logger, short

logger = get_logger(__name__)

COPY_TRADE_SETTING_FIELDS = (
    "is_enabled",
    "max_position_sol",
    "slippage_percent",
    "use_jupiter",
    "use_pumpfun",
)


class Database:
    """
    Async database manager for the copy-trading service.

    Usage:
        db = Database("path/to/database.db")
        await db.initialize()  # Creates tables if they don't exist
        await db.add_wallet("alice", "7xKX...")
        await db.close()
    """

    def __init__(self, db_path: str, changes: ChangeFeed | None = None):
        self.db_path = db_path
        self.connection: aiosqlite.Connection | None = None
        self.changes = changes or ChangeFeed()

    async def initialize(self) -> None:
        """
        Connect to the database and create tables if they don't exist.
        """
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.connection = await aiosqlite.connect(self.db_path)
        await self.connection.execute("PRAGMA journal_mode=WAL")
        self.connection.row_factory = aiosqlite.Row

        await self.connection.executescript(CREATE_TABLES_SQL)
        await self.connection.commit()

        logger.info("database_initialized", path=self.db_path)

    async def close(self) -> None:
        """Close the database connection cleanly."""
        if self.connection:
            await self.connection.close()
            self.connection = None
            logger.info("database_closed")

    async def _fetchone(self, sql: str, params: tuple = ()) -> dict | None:
        cursor = await self.connection.execute(sql, params)
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[dict]:
        cursor = await self.connection.execute(sql, params)
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def _publish(self, table: str, event: str, row: dict | None) -> None:
        if row is None:
            return
        await self.changes.publish(ChangeEvent(table, event, row.get("user_id"), row))

    # =========================================================================
    # Followed Wallets
    # =========================================================================

    async def add_wallet(self, user_id: str, address: str, name: str = "") -> int:
        """
        Follow a wallet. Following it again re-activates it and keeps the id.
        """
        await self.connection.execute(
            """
            INSERT INTO wallets (user_id, address, name, is_active) VALUES (?, ?, ?, 1)
            ON CONFLICT(user_id, address) DO UPDATE SET
                is_active = 1,
                name = COALESCE(NULLIF(excluded.name, ''), wallets.name)
            """,
            (user_id, address, name),
        )
        await self.connection.commit()

        row = await self._fetchone(
            "SELECT * FROM wallets WHERE user_id = ? AND address = ?", (user_id, address)
        )
        await self._publish("wallets", "insert", row)
        return row["id"]

    async def get_wallet(self, wallet_id: int) -> dict | None:
        return await self._fetchone("SELECT * FROM wallets WHERE id = ?", (wallet_id,))

    async def get_active_wallets(self, user_id: str | None = None) -> list[dict]:
        """Followed wallets that should be polled, optionally for one user."""
        if user_id is None:
            return await self._fetchall("SELECT * FROM wallets WHERE is_active = 1 ORDER BY id")
        return await self._fetchall(
            "SELECT * FROM wallets WHERE is_active = 1 AND user_id = ? ORDER BY id", (user_id,)
        )

    async def set_wallet_active(self, wallet_id: int, active: bool) -> None:
        await self.connection.execute(
            "UPDATE wallets SET is_active = ? WHERE id = ?", (1 if active else 0, wallet_id)
        )
        await self.connection.commit()
        await self._publish("wallets", "update", await self.get_wallet(wallet_id))

    async def remove_wallet(self, wallet_id: int) -> None:
        row = await self.get_wallet(wallet_id)
        await self.connection.execute("DELETE FROM wallets WHERE id = ?", (wallet_id,))
        await self.connection.commit()
        await self._publish("wallets", "delete", row)

    # =========================================================================
    # Copy Trade Settings
    # =========================================================================

    async def upsert_copy_trade_settings(self, user_id: str, **values: Any) -> dict:
        """
        Create or update a user's copy trading settings.
        Only the fields passed in are changed.
        """
        unknown = set(values) - set(COPY_TRADE_SETTING_FIELDS)
        if unknown:
            raise ValueError(f"Unknown copy trade setting(s): {', '.join(sorted(unknown))}")

        await self.connection.execute(
            "INSERT INTO copy_trade_settings (user_id) VALUES (?) ON CONFLICT(user_id) DO NOTHING",
            (user_id,),
        )
        if values:
            assignments = [f"{name} = ?" for name in values]
            if values.get("is_enabled"):
                # Right-hand side sees the old row, so only off -> on moves the mark
                assignments.append(
                    "enabled_at = CASE WHEN is_enabled = 1 THEN enabled_at ELSE CURRENT_TIMESTAMP END"
                )
            columns = ", ".join(assignments)
            await self.connection.execute(
                f"UPDATE copy_trade_settings SET {columns}, updated_at = CURRENT_TIMESTAMP WHERE user_id = ?",
                (*values.values(), user_id),
            )
        await self.connection.commit()

        row = await self.get_copy_trade_settings(user_id)
        await self._publish("copy_trade_settings", "update", row)
        return row

    async def get_copy_trade_settings(self, user_id: str) -> dict | None:
        return await self._fetchone(
            "SELECT * FROM copy_trade_settings WHERE user_id = ?", (user_id,)
        )

    # =========================================================================
    # Copy Trades
    # =========================================================================

    async def insert_copy_trade_or_get_existing(self, record: dict[str, Any]) -> tuple[dict, bool]:
        """
        Create a copy trade in status "executing", keyed by
        (user_id, source_signature).

        Returns (row, created). When the key already exists nothing is
        written and the existing row comes back with created=False.
        """
        cursor = await self.connection.execute(
            """
            INSERT INTO copy_trades (
                user_id, source_wallet_id, source_signature, token_mint, token_symbol,
                trade_type, source_amount_sol, executed_amount_sol, platform, status, mode
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'executing', ?)
            ON CONFLICT(user_id, source_signature) DO NOTHING
            """,
            (
                record["user_id"],
                record.get("source_wallet_id"),
                record["source_signature"],
                record["token_mint"],
                record.get("token_symbol"),
                record["trade_type"],
                record.get("source_amount_sol"),
                record.get("executed_amount_sol"),
                record.get("platform"),
                record.get("mode", "live"),
            ),
        )
        created = cursor.rowcount == 1
        await self.connection.commit()

        row = await self._fetchone(
            "SELECT * FROM copy_trades WHERE user_id = ? AND source_signature = ?",
            (record["user_id"], record["source_signature"]),
        )
        if created:
            await self._publish("copy_trades", "insert", row)
        else:
            logger.debug(
                "copy_trade_exists",
                user=record["user_id"],
                source_signature=short(record["source_signature"]),
                status=row["status"] if row else None,
            )
        return row, created

    async def update_copy_trade(
        self,
        copy_trade_id: int,
        status: str,
        tx_signature: str | None = None,
        error_message: str | None = None,
    ) -> dict | None:
        """Move a copy trade to completed/failed."""
        if status == "completed":
            sql = """
                UPDATE copy_trades
                SET status = ?, tx_signature = ?, error_message = NULL,
                    executed_at = CURRENT_TIMESTAMP
                WHERE id = ?
            """
            params = (status, tx_signature, copy_trade_id)
        else:
            sql = "UPDATE copy_trades SET status = ?, error_message = ? WHERE id = ?"
            params = (status, error_message, copy_trade_id)

        await self.connection.execute(sql, params)
        await self.connection.commit()

        row = await self.get_copy_trade(copy_trade_id)
        await self._publish("copy_trades", "update", row)
        return row

    async def get_copy_trade(self, copy_trade_id: int) -> dict | None:
        return await self._fetchone("SELECT * FROM copy_trades WHERE id = ?", (copy_trade_id,))

    async def get_copy_trades(self, user_id: str, limit: int = 100) -> list[dict]:
        return await self._fetchall(
            "SELECT * FROM copy_trades WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, limit),
        )

    async def get_copied_signatures(self, user_id: str, signatures: list[str]) -> set[str]:
        """Which of these source signatures already have a copy trade for the user."""
        if not signatures:
            return set()
        placeholders = ", ".join("?" for _ in signatures)
        rows = await self._fetchall(
            f"SELECT source_signature FROM copy_trades WHERE user_id = ? AND source_signature IN ({placeholders})",
            (user_id, *signatures),
        )
        return {row["source_signature"] for row in rows}

    async def get_stuck_copy_trades(self, older_than_seconds: int) -> list[dict]:
        """
        Copy trades still "executing" after `older_than_seconds`.
        A process that died mid-swap leaves these behind.
        """
        return await self._fetchall(
            """
            SELECT * FROM copy_trades
            WHERE status = 'executing' AND created_at < datetime('now', ?)
            ORDER BY created_at
            """,
            (f"-{int(older_than_seconds)} seconds",),
        )

    # =========================================================================
    # Trade Ledger
    # =========================================================================

    async def record_trade(self, trade: dict[str, Any]) -> int | None:
        """
        Append a trade to the ledger.
        Returns the new id, or None if (user_id, tx_signature) was already recorded.
        """
        cursor = await self.connection.execute(
            """
            INSERT INTO trades (
                user_id, wallet_id, tx_signature, token_mint, token_symbol, trade_type,
                amount_sol, amount_token, price_usd, pnl_usd, platform, source,
                status, mode, block_time
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, tx_signature) DO NOTHING
            """,
            (
                trade["user_id"],
                trade.get("wallet_id"),
                trade["tx_signature"],
                trade["token_mint"],
                trade.get("token_symbol"),
                trade["trade_type"],
                trade.get("amount_sol"),
                trade.get("amount_token"),
                trade.get("price_usd"),
                trade.get("pnl_usd"),
                trade.get("platform"),
                trade.get("source"),
                trade.get("status", "completed"),
                trade.get("mode", "live"),
                trade.get("block_time"),
            ),
        )
        await self.connection.commit()
        if cursor.rowcount != 1:
            return None

        trade_id = cursor.lastrowid
        row = await self._fetchone("SELECT * FROM trades WHERE id = ?", (trade_id,))
        await self._publish("trades", "insert", row)
        return trade_id

    async def get_trades(self, user_id: str, wallet_id: int | None = None, limit: int = 100) -> list[dict]:
        if wallet_id is None:
            return await self._fetchall(
                "SELECT * FROM trades WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                (user_id, limit),
            )
        return await self._fetchall(
            "SELECT * FROM trades WHERE user_id = ? AND wallet_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, wallet_id, limit),
        )

    # =========================================================================
    # Positions
    # =========================================================================

    async def upsert_open_position(self, position: dict[str, Any]) -> dict:
        """
        Apply a buy: open a new position, or add to the open one.

        On re-entry the average price is volume-weighted and entry_price,
        thresholds and opened_at are left alone. Done as one statement, so
        concurrent buys of the same token cannot interleave.
        """
        amount = position["amount"]
        price = position["price"]
        await self.connection.execute(
            """
            INSERT INTO positions (
                user_id, token_mint, token_symbol, token_decimals, amount,
                avg_buy_price, entry_price, current_price,
                stop_loss_percent, take_profit_percent, source, wallet_id, mode
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, token_mint) WHERE is_open = 1 DO UPDATE SET
                avg_buy_price = (positions.avg_buy_price * positions.amount
                                 + excluded.avg_buy_price * excluded.amount)
                                / (positions.amount + excluded.amount),
                amount = positions.amount + excluded.amount,
                current_price = excluded.current_price,
                updated_at = CURRENT_TIMESTAMP
            """,
            (
                position["user_id"],
                position["token_mint"],
                position.get("token_symbol"),
                position.get("token_decimals", 6),
                amount,
                price,
                price,
                price,
                position.get("stop_loss_percent", 10),
                position.get("take_profit_percent", 50),
                position.get("source"),
                position.get("wallet_id"),
                position.get("mode", "live"),
            ),
        )
        await self.connection.commit()

        row = await self.get_open_position(position["user_id"], position["token_mint"])
        await self._publish("positions", "update", row)
        return row

    async def get_open_position(self, user_id: str, token_mint: str) -> dict | None:
        return await self._fetchone(
            "SELECT * FROM positions WHERE user_id = ? AND token_mint = ? AND is_open = 1",
            (user_id, token_mint),
        )

    async def get_position(self, position_id: int) -> dict | None:
        return await self._fetchone("SELECT * FROM positions WHERE id = ?", (position_id,))

    async def get_open_positions(self, user_id: str | None = None) -> list[dict]:
        """Open positions, for every user unless one is given."""
        if user_id is None:
            return await self._fetchall("SELECT * FROM positions WHERE is_open = 1 ORDER BY id")
        return await self._fetchall(
            "SELECT * FROM positions WHERE is_open = 1 AND user_id = ? ORDER BY id", (user_id,)
        )

    async def reduce_position(self, position_id: int, new_amount: float, current_price: float | None) -> dict | None:
        """Partial exit: only amount and current_price change."""
        await self.connection.execute(
            """
            UPDATE positions
            SET amount = ?, current_price = COALESCE(?, current_price), updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND is_open = 1
            """,
            (new_amount, current_price, position_id),
        )
        await self.connection.commit()

        row = await self.get_position(position_id)
        await self._publish("positions", "update", row)
        return row

    async def close_position(
        self,
        position_id: int,
        realized_pnl: float | None,
        current_price: float | None,
        reason: str,
    ) -> dict | None:
        """Full exit. Realized PnL is written here and nowhere else."""
        await self.connection.execute(
            """
            UPDATE positions
            SET is_open = 0, amount = 0, realized_pnl = ?, close_reason = ?,
                current_price = COALESCE(?, current_price),
                unrealized_pnl = 0, unrealized_pnl_percent = 0,
                closed_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND is_open = 1
            """,
            (realized_pnl, reason, current_price, position_id),
        )
        await self.connection.commit()

        row = await self.get_position(position_id)
        await self._publish("positions", "update", row)
        return row

    async def update_position_price(
        self,
        position_id: int,
        current_price: float,
        unrealized_pnl: float,
        unrealized_pnl_percent: float,
    ) -> None:
        """Refresh mark-to-market values on an open position."""
        await self.connection.execute(
            """
            UPDATE positions
            SET current_price = ?, unrealized_pnl = ?, unrealized_pnl_percent = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND is_open = 1
            """,
            (current_price, unrealized_pnl, unrealized_pnl_percent, position_id),
        )
        await self.connection.commit()
        await self._publish("positions", "update", await self.get_position(position_id))
