"""
Database Schema
===============
Defines all the tables in our SQLite database.

- wallets: wallets a user follows (the copy-trade sources)
- copy_trade_settings: per-user switch, position cap and slippage
- copy_trades: one row per attempt to mirror a source trade
- trades: the trade ledger (scanned source swaps, mirrored, manual and
  automated exits)
- positions: open/closed holdings per (user, token) with SL/TP thresholds

Natural keys are enforced here, not in application code:
- copy_trades: one attempt per (user_id, source_signature)
- trades: one row per (user_id, tx_signature)
- positions: at most one OPEN row per (user_id, token_mint), via a
  partial unique index. Closed rows stay as history.

Timestamps use SQLite's CURRENT_TIMESTAMP (UTC, "YYYY-MM-DD HH:MM:SS").
"""

CREATE_TABLES_SQL = """

-- =============================================
-- Wallets a user follows
-- =============================================
CREATE TABLE IF NOT EXISTS wallets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,                 -- Owner of this follow entry
    address TEXT NOT NULL,                 -- Followed wallet's public key
    name TEXT,                             -- Display label
    is_active INTEGER DEFAULT 1,           -- 0 = paused, not polled
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(user_id, address)
);

-- =============================================
-- Copy trading switch and sizing per user
-- =============================================
CREATE TABLE IF NOT EXISTS copy_trade_settings (
    user_id TEXT PRIMARY KEY,
    is_enabled INTEGER DEFAULT 0,
    max_position_sol REAL DEFAULT 0.1,     -- Hard cap per mirrored trade
    slippage_percent REAL DEFAULT 12,
    use_jupiter INTEGER DEFAULT 1,
    use_pumpfun INTEGER DEFAULT 1,
    enabled_at TIMESTAMP,                  -- Last switch from off to on
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- =============================================
-- Attempts to mirror a followed wallet's trade
-- =============================================
CREATE TABLE IF NOT EXISTS copy_trades (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    source_wallet_id INTEGER,              -- wallets.id of the followed wallet
    source_signature TEXT NOT NULL,        -- The followed wallet's transaction
    token_mint TEXT NOT NULL,
    token_symbol TEXT,
    trade_type TEXT NOT NULL,              -- buy | sell
    source_amount_sol REAL,                -- What the followed wallet traded
    executed_amount_sol REAL,              -- What we mirrored (capped)
    platform TEXT,
    status TEXT NOT NULL DEFAULT 'executing',  -- executing | completed | failed
    tx_signature TEXT,                     -- Our transaction, once submitted
    error_message TEXT,
    mode TEXT DEFAULT 'live',              -- live | simulated
    executed_at TIMESTAMP,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(user_id, source_signature)
);

-- =============================================
-- Trade ledger
-- =============================================
CREATE TABLE IF NOT EXISTS trades (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    wallet_id INTEGER,                     -- Set for swaps observed on a followed wallet
    tx_signature TEXT NOT NULL,
    token_mint TEXT NOT NULL,
    token_symbol TEXT,
    trade_type TEXT NOT NULL,              -- buy | sell
    amount_sol REAL,
    amount_token REAL,
    price_usd REAL,
    pnl_usd REAL,                          -- Realized PnL, sells that reduced a position
    platform TEXT,
    source TEXT,                           -- scan | copy | manual | stop_loss | take_profit
    status TEXT DEFAULT 'completed',
    mode TEXT DEFAULT 'live',              -- live | simulated
    block_time INTEGER,                    -- Chain time for scanned swaps
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(user_id, tx_signature)
);

-- =============================================
-- Holdings with stop-loss / take-profit
-- =============================================
CREATE TABLE IF NOT EXISTS positions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    token_mint TEXT NOT NULL,
    token_symbol TEXT,
    token_decimals INTEGER DEFAULT 6,

    amount REAL NOT NULL DEFAULT 0,        -- Whole tokens currently held
    avg_buy_price REAL NOT NULL,           -- Volume-weighted, USD per token
    entry_price REAL NOT NULL,             -- First buy price, never changes

    current_price REAL,
    unrealized_pnl REAL DEFAULT 0,         -- (current - avg) * amount, USD
    unrealized_pnl_percent REAL DEFAULT 0, -- Against entry_price
    realized_pnl REAL,                     -- Set once, on close

    stop_loss_percent REAL DEFAULT 10,
    take_profit_percent REAL DEFAULT 50,

    is_open INTEGER DEFAULT 1,
    source TEXT,                           -- manual | copy
    wallet_id INTEGER,                     -- Followed wallet for copied positions
    mode TEXT DEFAULT 'live',
    close_reason TEXT,
    opened_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    closed_at TIMESTAMP
);

-- =============================================
-- Indexes
-- =============================================
CREATE UNIQUE INDEX IF NOT EXISTS idx_positions_one_open
    ON positions(user_id, token_mint) WHERE is_open = 1;
CREATE INDEX IF NOT EXISTS idx_positions_open ON positions(is_open);
CREATE INDEX IF NOT EXISTS idx_copy_trades_status ON copy_trades(status, created_at);
CREATE INDEX IF NOT EXISTS idx_trades_user ON trades(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_wallets_active ON wallets(is_active);
"""
