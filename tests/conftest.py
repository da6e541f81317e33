"""Shared fixtures: offline settings, a temp database and small fakes."""

from typing import Iterable

import pytest

from config.settings import Settings
from database.db import Database
from trader.position_ledger import PositionLedger
from trader.trade_executor import SimulatedSwapper, TradeExecutor

WALLET = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"
OTHER = "5Q544fKrFoe6tsEbD7S8EmxGTJYAKtTVhAW5Q5pge4j1"
MINT_A = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
MINT_B = "EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm"
MINT_C = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"
SOL_MINT = "So11111111111111111111111111111111111111112"
JUPITER_V6 = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"
RAYDIUM_V4 = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"
PUMPFUN = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        copy_trade_private_key="",
        helius_api_key="",
        rpc_urls=["http://127.0.0.1:1"],
        telegram_bot_token="",
        telegram_chat_id="",
        trading_mode="simulated",
        multi_leg_policy="reject",
        db_path=str(tmp_path / "copytrade.db"),
        scan_batch_delay_seconds=0.0,
        scan_retry_base_seconds=0.0,
        quote_retry_step_seconds=0.0,
    )


@pytest.fixture
async def db(settings):
    database = Database(settings.db_path)
    await database.initialize()
    yield database
    await database.close()


class FakeEnricher:
    """Stands in for TokenEnricher with fixed prices and symbols."""

    def __init__(self, prices: dict | None = None, symbols: dict | None = None):
        self.prices = dict(prices or {})
        self.symbols = dict(symbols or {})
        self.price_calls: list[list[str]] = []

    async def get_prices(self, mints: Iterable[str]) -> dict:
        mints = list(dict.fromkeys(mints))
        self.price_calls.append(mints)
        return {mint: self.prices.get(mint) for mint in mints}

    async def get_price(self, mint: str):
        return (await self.get_prices([mint]))[mint]

    async def get_symbols(self, mints: Iterable[str]) -> dict:
        return {mint: self.symbols.get(mint, mint[:4] + "...") for mint in mints}

    async def enrich(self, swaps):
        for swap in swaps:
            swap.token_symbol = self.symbols.get(swap.token_mint, swap.token_mint[:4] + "...")
            swap.price_usd = self.prices.get(swap.token_mint)
        return swaps


class FakeNotifier:
    def __init__(self, result: bool = True):
        self.result = result
        self.sent: list[tuple[str, dict]] = []

    async def notify(self, event_type: str, payload: dict) -> bool:
        self.sent.append((event_type, payload))
        return self.result

    def types(self) -> list[str]:
        return [event_type for event_type, _ in self.sent]


@pytest.fixture
def enricher() -> FakeEnricher:
    return FakeEnricher(prices={MINT_A: 0.25, MINT_B: 1.0}, symbols={MINT_A: "BONK", MINT_B: "WIF"})


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def ledger(db) -> PositionLedger:
    return PositionLedger(db)


@pytest.fixture
async def executor(settings, db, ledger, enricher, notifier) -> TradeExecutor:
    trade_executor = TradeExecutor(
        settings, db, ledger, enricher, solana=None, notifier=notifier, swapper=SimulatedSwapper(250.0)
    )
    await trade_executor.initialize()
    return trade_executor


def make_tx(
    wallet: str = WALLET,
    sol_change: float = -1.0,
    token_changes: list[tuple[str, float]] | None = None,
    programs: Iterable[str] = (JUPITER_V6,),
    signature: str = "sig_buy_1",
    block_time: int = 1_700_000_000,
    err=None,
    owner: str | None = None,
) -> dict:
    """
    A getTransaction (jsonParsed) record where `wallet` is account 0, with
    the given SOL change and per-mint token changes owned by the wallet.
    """
    token_changes = token_changes if token_changes is not None else [(MINT_A, 1000.0)]
    owner = owner or wallet
    pre_sol = 10_000_000_000
    post_sol = pre_sol + int(sol_change * 1_000_000_000)

    pre_tokens, post_tokens = [], []
    for index, (mint, change) in enumerate(token_changes):
        pre_amount = 5000.0
        pre_tokens.append({
            "accountIndex": index + 1, "mint": mint, "owner": owner,
            "uiTokenAmount": {"uiAmount": pre_amount, "decimals": 6},
        })
        post_tokens.append({
            "accountIndex": index + 1, "mint": mint, "owner": owner,
            "uiTokenAmount": {"uiAmount": pre_amount + change, "decimals": 6},
        })

    account_keys = [{"pubkey": wallet, "signer": True, "writable": True}]
    account_keys += [{"pubkey": program, "signer": False, "writable": False} for program in programs]

    return {
        "blockTime": block_time,
        "transaction": {
            "signatures": [signature],
            "message": {"accountKeys": account_keys, "instructions": []},
        },
        "meta": {
            "err": err,
            "preBalances": [pre_sol] + [0] * len(programs),
            "postBalances": [post_sol] + [0] * len(programs),
            "preTokenBalances": pre_tokens,
            "postTokenBalances": post_tokens,
        },
    }
