"""
Tests for WalletMonitor.

Covers:
- scanned swaps land in the owner's trade ledger once
- swaps that already have a copy trade are skipped; a dispatch that raises
  is retried next poll without holding back the swaps after it
- new swaps after the follow time are dispatched oldest first
- swaps from before the follow are recorded but never mirrored
- stale scans and failing wallets don't dispatch or stop the poll
"""

import time
from unittest.mock import AsyncMock

import pytest

from conftest import MINT_A, OTHER, WALLET, make_tx
from monitor.wallet_monitor import WalletMonitor, followed_since
from monitor.wallet_scanner import ScanResult
from analyzer.pnl_aggregator import summarize
from analyzer.swap_classifier import classify_swap
from trader.copy_trade_dispatcher import DispatchOutcome
from utils.errors import RpcUnavailableError


def _result(swaps, stale=False) -> ScanResult:
    return ScanResult(
        wallet_address=WALLET,
        swaps=swaps,
        summary=summarize(swaps),
        signatures_checked=len(swaps),
        scanned_at=time.time(),
        stale=stale,
    )


def _swap(signature, block_time, sol_change=-1.0, token_change=1000.0):
    tx = make_tx(signature=signature, block_time=block_time, sol_change=sol_change,
                 token_changes=[(MINT_A, token_change)])
    swap = classify_swap(tx, WALLET)
    swap.token_symbol = "BONK"
    return swap


@pytest.fixture
def scanner():
    return AsyncMock()


@pytest.fixture
def dispatcher(db):
    """Stands in for CopyTradeDispatcher: claims the copy trade row, reports success."""
    fake = AsyncMock()

    async def dispatch(user_id, wallet_id, signature, mint, symbol, trade_type, amount, platform):
        row, _ = await db.insert_copy_trade_or_get_existing({
            "user_id": user_id,
            "source_wallet_id": wallet_id,
            "source_signature": signature,
            "token_mint": mint,
            "trade_type": trade_type,
        })
        return DispatchOutcome("completed", copy_trade_id=row["id"], tx_signature="sim_x")

    fake.dispatch.side_effect = dispatch
    return fake


@pytest.fixture
def monitor(settings, db, scanner, dispatcher):
    return WalletMonitor(settings, db, scanner, dispatcher)


def test_followed_since_parses_sqlite_timestamp():
    assert followed_since({"created_at": "2024-01-01 00:00:00"}) == 1704067200.0
    assert followed_since({"created_at": None}) == 0.0
    assert followed_since({"created_at": "garbage"}) == 0.0


async def test_records_and_dispatches_new_swaps_oldest_first(monitor, db, scanner, dispatcher):
    await db.add_wallet("alice", WALLET)
    await db.upsert_copy_trade_settings("alice", is_enabled=1)
    now = int(time.time()) + 60
    scanner.scan.return_value = _result([
        _swap("sell_sig", now + 10, sol_change=0.5, token_change=-500.0),
        _swap("buy_sig", now),
    ])

    outcomes = await monitor.poll_once()

    assert len(outcomes) == 2
    dispatched = [call.args[2] for call in dispatcher.dispatch.await_args_list]
    assert dispatched == ["buy_sig", "sell_sig"]
    assert {t["tx_signature"] for t in await db.get_trades("alice")} == {"buy_sig", "sell_sig"}


async def test_copied_swaps_are_not_dispatched_again(monitor, db, scanner, dispatcher):
    await db.add_wallet("alice", WALLET)
    await db.upsert_copy_trade_settings("alice", is_enabled=1)
    scanner.scan.return_value = _result([_swap("buy_sig", int(time.time()) + 60)])

    await monitor.poll_once()
    await monitor.poll_once()

    assert dispatcher.dispatch.await_count == 1


async def test_dispatch_error_does_not_drop_later_swaps(monitor, db, scanner, dispatcher):
    await db.add_wallet("alice", WALLET)
    await db.upsert_copy_trade_settings("alice", is_enabled=1)
    now = int(time.time()) + 60
    scanner.scan.return_value = _result([
        _swap("sig_a", now),
        _swap("sig_b", now + 10, sol_change=0.5, token_change=-500.0),
    ])
    claim = dispatcher.dispatch.side_effect
    failing = {"sig_a"}

    async def flaky(*args):
        if args[2] in failing:
            failing.discard(args[2])
            raise RuntimeError("database is locked")
        return await claim(*args)

    dispatcher.dispatch.side_effect = flaky

    first = await monitor.poll_once()
    second = await monitor.poll_once()
    third = await monitor.poll_once()

    dispatched = [call.args[2] for call in dispatcher.dispatch.await_args_list]
    assert dispatched == ["sig_a", "sig_b", "sig_a"]
    assert (len(first), len(second), third) == (1, 1, [])
    copied = {row["source_signature"] for row in await db.get_copy_trades("alice")}
    assert copied == {"sig_a", "sig_b"}


async def test_history_before_follow_is_not_mirrored(monitor, db, scanner, dispatcher):
    await db.add_wallet("alice", WALLET)
    await db.upsert_copy_trade_settings("alice", is_enabled=1)
    scanner.scan.return_value = _result([_swap("old_sig", 1_600_000_000)])

    assert await monitor.poll_once() == []
    dispatcher.dispatch.assert_not_awaited()
    assert len(await db.get_trades("alice")) == 1


async def test_swaps_from_while_copy_was_off_are_not_mirrored(monitor, db, scanner, dispatcher):
    wallet_id = await db.add_wallet("alice", WALLET)
    await db.connection.execute(
        "UPDATE wallets SET created_at = '2024-01-01 00:00:00' WHERE id = ?", (wallet_id,)
    )
    await db.connection.commit()
    scanner.scan.return_value = _result([_swap("while_off", int(time.time()) - 3600)])
    await monitor.poll_once()

    await db.upsert_copy_trade_settings("alice", is_enabled=1)

    assert await monitor.poll_once() == []
    dispatcher.dispatch.assert_not_awaited()


async def test_copy_disabled_only_records(monitor, db, scanner, dispatcher):
    await db.add_wallet("alice", WALLET)
    scanner.scan.return_value = _result([_swap("buy_sig", int(time.time()) + 60)])

    assert await monitor.poll_once() == []
    dispatcher.dispatch.assert_not_awaited()
    assert len(await db.get_trades("alice")) == 1


async def test_stale_scan_records_nothing(monitor, db, scanner, dispatcher):
    await db.add_wallet("alice", WALLET)
    await db.upsert_copy_trade_settings("alice", is_enabled=1)
    scanner.scan.return_value = _result([_swap("buy_sig", int(time.time()) + 60)], stale=True)

    assert await monitor.poll_once() == []
    assert await db.get_trades("alice") == []


async def test_failing_wallet_does_not_stop_poll(monitor, db, scanner, dispatcher):
    await db.add_wallet("alice", OTHER)
    await db.add_wallet("alice", WALLET)
    await db.upsert_copy_trade_settings("alice", is_enabled=1)
    good = _result([_swap("buy_sig", int(time.time()) + 60)])

    async def scan(address):
        if address == OTHER:
            raise RpcUnavailableError("getSignaturesForAddress", 3)
        return good

    scanner.scan.side_effect = scan

    outcomes = await monitor.poll_once()
    assert len(outcomes) == 1
