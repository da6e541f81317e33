"""Tests for PnL aggregation and the derived dashboard views."""

from datetime import datetime, timedelta, timezone

import pytest

from analyzer import pnl_aggregator
from analyzer.swap_classifier import ClassifiedSwap
from conftest import MINT_A, MINT_B, MINT_C

DAY = 86_400
T0 = 1_700_000_000


def _swap(mint: str, swap_type: str, sol: float, block_time: int = T0, platform: str = "jupiter", symbol: str = ""):
    return ClassifiedSwap(
        signature=f"{mint[:4]}-{swap_type}-{block_time}-{sol}",
        block_time=block_time,
        type=swap_type,
        token_mint=mint,
        token_amount=100.0,
        sol_amount=sol,
        platform=platform,
        token_symbol=symbol,
    )


def test_summary_counts_wins_and_losses_per_token():
    swaps = [
        _swap(MINT_A, "buy", 1.0),
        _swap(MINT_A, "sell", 1.5),  # +0.5 win
        _swap(MINT_B, "buy", 2.0),
        _swap(MINT_B, "sell", 0.5),  # -1.5 loss
        _swap(MINT_C, "buy", 3.0),  # never sold, contributes nothing
    ]
    summary = pnl_aggregator.summarize(swaps)

    assert summary.total_trades == 5
    assert summary.total_buys == 3
    assert summary.total_sells == 2
    assert summary.winning_trades == 1
    assert summary.losing_trades == 1
    assert summary.win_rate == pytest.approx(50.0)
    assert summary.total_pnl_sol == pytest.approx(-1.0)


def test_total_pnl_is_sum_over_sold_tokens_only():
    swaps = [
        _swap(MINT_A, "buy", 0.3),
        _swap(MINT_A, "buy", 0.2),
        _swap(MINT_A, "sell", 0.1),
        _swap(MINT_B, "buy", 5.0),
        _swap(MINT_C, "sell", 0.7),
    ]
    groups = pnl_aggregator.token_breakdown(swaps)
    expected = sum(g.total_sells_sol - g.total_buys_sol for g in groups.values() if g.sells > 0)

    assert pnl_aggregator.summarize(swaps).total_pnl_sol == pytest.approx(expected)
    assert groups[MINT_B].pnl_sol == 0.0


def test_break_even_is_neither_win_nor_loss():
    summary = pnl_aggregator.summarize([_swap(MINT_A, "buy", 1.0), _swap(MINT_A, "sell", 1.0)])
    assert summary.winning_trades == 0
    assert summary.losing_trades == 0
    assert summary.win_rate == 0.0


def test_empty_input():
    summary = pnl_aggregator.summarize([])
    assert summary.total_trades == 0
    assert summary.win_rate == 0.0


def test_filter_to_one_token():
    swaps = [_swap(MINT_A, "buy", 1.0), _swap(MINT_A, "sell", 2.0), _swap(MINT_B, "sell", 9.0)]
    summary = pnl_aggregator.summarize(swaps, token_mint=MINT_A)
    assert summary.total_trades == 2
    assert summary.total_pnl_sol == pytest.approx(1.0)
    assert summary.win_rate == pytest.approx(100.0)


def test_trades_today_uses_local_midnight():
    now = datetime(2024, 3, 10, 15, 0, tzinfo=timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0).timestamp()
    swaps = [
        _swap(MINT_A, "buy", 1.0, block_time=int(midnight) + 60),
        _swap(MINT_A, "buy", 1.0, block_time=int(midnight) - 60),
    ]
    assert pnl_aggregator.trades_today(swaps, now=now) == 1


def test_trades_this_week():
    now = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
    recent = int((now - timedelta(days=6)).timestamp())
    old = int((now - timedelta(days=8)).timestamp())
    swaps = [_swap(MINT_A, "buy", 1.0, block_time=recent), _swap(MINT_A, "buy", 1.0, block_time=old)]
    assert [s.block_time for s in pnl_aggregator.trades_this_week(swaps, now=now)] == [recent]


def test_top_tokens_naive_pnl_sorted_descending():
    swaps = [
        _swap(MINT_A, "buy", 1.0, symbol="AAA"),
        _swap(MINT_A, "sell", 3.0, symbol="AAA"),
        _swap(MINT_B, "buy", 2.0, symbol="BBB"),
        _swap(MINT_C, "sell", 0.5, symbol="CCC"),
    ]
    top = pnl_aggregator.top_tokens(swaps)
    assert [t["symbol"] for t in top] == ["AAA", "CCC", "BBB"]
    assert top[0]["pnl"] == pytest.approx(2.0)
    assert top[-1]["pnl"] == pytest.approx(-2.0)


def test_top_tokens_limit():
    swaps = [_swap(f"{i:044d}", "sell", float(i)) for i in range(15)]
    assert len(pnl_aggregator.top_tokens(swaps, limit=10)) == 10


def test_platform_distribution_rounds_percentages():
    swaps = [
        _swap(MINT_A, "buy", 1.0, platform="jupiter"),
        _swap(MINT_A, "buy", 1.0, platform="jupiter"),
        _swap(MINT_A, "buy", 1.0, platform="raydium"),
    ]
    shares = {entry["name"]: entry["value"] for entry in pnl_aggregator.platform_distribution(swaps)}
    assert shares == {"Jupiter": 67, "Raydium": 33}
    assert pnl_aggregator.platform_distribution([]) == []


def test_daily_pnl_buckets_by_utc_date_and_keeps_last_30():
    swaps = []
    for day in range(40):
        swaps.append(_swap(MINT_A, "sell", 1.0, block_time=T0 + day * DAY))
        swaps.append(_swap(MINT_A, "buy", 0.25, block_time=T0 + day * DAY + 10))

    buckets = pnl_aggregator.daily_pnl(swaps)
    assert len(buckets) == 30
    assert buckets == sorted(buckets, key=lambda b: b["date"])
    assert all(b["pnl"] == pytest.approx(0.75) for b in buckets)
    last_day = datetime.fromtimestamp(T0 + 39 * DAY, tz=timezone.utc).strftime("%Y-%m-%d")
    assert buckets[-1]["date"] == last_day
