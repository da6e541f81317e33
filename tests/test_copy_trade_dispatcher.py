"""
Tests for CopyTradeDispatcher.

Covers:
- disabled or missing settings
- one attempt per (user, source signature), also when dispatched concurrently
- size capped at max_position_sol, never scaled up
- failures end the row "failed" and notify
- mirrored sells exit the whole position
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import MINT_A, MINT_C, WALLET
from trader.copy_trade_dispatcher import CopyTradeDispatcher


@pytest.fixture
async def dispatcher(settings, db, executor, notifier):
    return CopyTradeDispatcher(settings, db, executor, notifier)


@pytest.fixture
async def wallet_id(db):
    return await db.add_wallet("alice", WALLET, "whale")


async def _enable(db, max_sol=0.1):
    await db.upsert_copy_trade_settings("alice", is_enabled=1, max_position_sol=max_sol)


async def _dispatch(dispatcher, wallet_id, signature="src_1", trade_type="buy", amount=1.5, mint=MINT_A):
    return await dispatcher.dispatch("alice", wallet_id, signature, mint, "BONK", trade_type, amount, "jupiter")


async def test_no_settings_means_disabled(dispatcher, wallet_id, db):
    outcome = await _dispatch(dispatcher, wallet_id)
    assert outcome.status == "disabled"
    assert await db.get_copy_trades("alice") == []


async def test_disabled_settings(dispatcher, wallet_id, db):
    await db.upsert_copy_trade_settings("alice", is_enabled=0)
    assert (await _dispatch(dispatcher, wallet_id)).status == "disabled"


async def test_buy_capped_and_completed(dispatcher, wallet_id, db, notifier):
    await _enable(db, max_sol=0.1)

    outcome = await _dispatch(dispatcher, wallet_id, amount=1.5)

    assert outcome.status == "completed"
    assert outcome.executed_amount_sol == pytest.approx(0.1)
    row = await db.get_copy_trade(outcome.copy_trade_id)
    assert row["status"] == "completed"
    assert row["tx_signature"] == outcome.tx_signature
    assert row["executed_amount_sol"] == pytest.approx(0.1)
    assert row["mode"] == "simulated"

    position = await db.get_open_position("alice", MINT_A)
    assert position["source"] == "copy"
    assert position["wallet_id"] == wallet_id

    assert notifier.types() == ["copy_trade_success"]
    assert notifier.sent[0][1]["source_wallet"] == WALLET


async def test_small_source_trade_not_scaled_up(dispatcher, wallet_id, db):
    await _enable(db, max_sol=1.0)
    outcome = await _dispatch(dispatcher, wallet_id, amount=0.05)
    assert outcome.executed_amount_sol == pytest.approx(0.05)


async def test_same_signature_dispatched_once(dispatcher, wallet_id, db, executor):
    await _enable(db)

    first = await _dispatch(dispatcher, wallet_id)
    second = await _dispatch(dispatcher, wallet_id)

    assert first.status == "completed"
    assert second.status == "already_copied"
    assert second.copy_trade_id == first.copy_trade_id
    assert len(await db.get_trades("alice")) == 1


async def test_concurrent_dispatch_of_same_signature_executes_once(dispatcher, wallet_id, db, executor, notifier):
    await _enable(db)
    executor.buy = AsyncMock(wraps=executor.buy)

    outcomes = await asyncio.gather(
        _dispatch(dispatcher, wallet_id),
        _dispatch(dispatcher, wallet_id),
    )

    assert sorted(o.status for o in outcomes) == ["already_copied", "completed"]
    assert outcomes[0].copy_trade_id == outcomes[1].copy_trade_id
    assert executor.buy.await_count == 1
    assert len(await db.get_copy_trades("alice")) == 1
    assert len(await db.get_trades("alice")) == 1
    assert notifier.types() == ["copy_trade_success"]


async def test_execution_failure_marks_failed(dispatcher, wallet_id, db, notifier):
    await _enable(db)

    outcome = await _dispatch(dispatcher, wallet_id, mint=MINT_C)

    assert outcome.status == "failed"
    row = await db.get_copy_trade(outcome.copy_trade_id)
    assert row["status"] == "failed"
    assert "No price" in row["error_message"]
    assert notifier.types() == ["copy_trade_failed"]


async def test_sell_without_position_fails(dispatcher, wallet_id, db, notifier):
    await _enable(db)

    outcome = await _dispatch(dispatcher, wallet_id, trade_type="sell")

    assert outcome.status == "failed"
    assert outcome.error == "No open position found for this token"
    assert (await db.get_copy_trade(outcome.copy_trade_id))["status"] == "failed"
    assert notifier.sent[0][1]["error_message"] == outcome.error


async def test_sell_exits_whole_position(dispatcher, wallet_id, db):
    await _enable(db)
    await _dispatch(dispatcher, wallet_id, signature="src_buy")

    outcome = await _dispatch(dispatcher, wallet_id, signature="src_sell", trade_type="sell", amount=0.01)

    assert outcome.status == "completed"
    assert await db.get_open_position("alice", MINT_A) is None


async def test_unexpected_error_never_leaves_executing(settings, db, wallet_id, notifier):
    await _enable(db)
    executor = AsyncMock()
    executor.mode = "live"
    executor.buy.side_effect = RuntimeError("boom")
    dispatcher = CopyTradeDispatcher(settings, db, executor, notifier)

    outcome = await _dispatch(dispatcher, wallet_id)

    assert outcome.status == "failed"
    assert (await db.get_copy_trade(outcome.copy_trade_id))["status"] == "failed"
    assert await db.get_stuck_copy_trades(0) == []
