"""
PnL Aggregator
==============
Folds a wallet's classified swaps into performance statistics.

The PnL model is naive: per token,
    pnl = (SOL received from all sells) - (SOL spent on all buys)
and only tokens with at least one sell count. There is no lot matching
(FIFO/LIFO), because the swap list alone can't reconstruct which buy a
sell closed. A token that was bought and partly sold shows a loss until
the rest is sold. Exact lot accounting would need a lot ledger where each
buy opens a lot and each sell consumes lots in a chosen order.

Everything here is recomputed from the full list on every call: O(n),
always consistent with the swaps, never incrementally maintained.
"""

from collections import defaultdict
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Iterable

from analyzer.swap_classifier import ClassifiedSwap

PLATFORM_LABELS = {
    "jupiter": "Jupiter",
    "raydium": "Raydium",
    "pumpfun": "Pump.fun",
}


@dataclass
class TokenPnl:
    token_mint: str
    total_buys_sol: float
    total_sells_sol: float
    buys: int
    sells: int

    @property
    def has_sell(self) -> bool:
        return self.sells > 0

    @property
    def pnl_sol(self) -> float:
        """Realized PnL, 0 for tokens that were never sold."""
        if not self.has_sell:
            return 0.0
        return self.total_sells_sol - self.total_buys_sol


@dataclass
class PerformanceSummary:
    total_trades: int = 0
    total_buys: int = 0
    total_sells: int = 0
    total_pnl_sol: float = 0.0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


def _signed_sol(swap: ClassifiedSwap) -> float:
    """Naive per-trade PnL: sells credit SOL, buys debit it."""
    return swap.sol_amount if swap.type == "sell" else -swap.sol_amount


def token_breakdown(swaps: Iterable[ClassifiedSwap]) -> dict[str, TokenPnl]:
    """Group swaps by mint and total each side."""
    groups: dict[str, TokenPnl] = {}
    for swap in swaps:
        group = groups.get(swap.token_mint)
        if group is None:
            group = groups[swap.token_mint] = TokenPnl(swap.token_mint, 0.0, 0.0, 0, 0)
        if swap.type == "buy":
            group.total_buys_sol += swap.sol_amount
            group.buys += 1
        elif swap.type == "sell":
            group.total_sells_sol += swap.sol_amount
            group.sells += 1
    return groups


def summarize(swaps: Iterable[ClassifiedSwap], token_mint: str | None = None) -> PerformanceSummary:
    """
    Portfolio summary for a list of swaps, optionally for one token only.

    A token is a win if its realized pnl > 0 and a loss if < 0; exactly 0
    counts as neither. win_rate is a percentage of decided tokens.
    """
    swaps = [s for s in swaps if token_mint is None or s.token_mint == token_mint]

    summary = PerformanceSummary(
        total_trades=len(swaps),
        total_buys=sum(1 for s in swaps if s.type == "buy"),
        total_sells=sum(1 for s in swaps if s.type == "sell"),
    )

    for group in token_breakdown(swaps).values():
        if not group.has_sell:
            continue
        pnl = group.pnl_sol
        summary.total_pnl_sol += pnl
        if pnl > 0:
            summary.winning_trades += 1
        elif pnl < 0:
            summary.losing_trades += 1

    decided = summary.winning_trades + summary.losing_trades
    summary.win_rate = (summary.winning_trades / decided) * 100 if decided else 0.0
    return summary


# =============================================================================
# Derived views
# =============================================================================


def trades_today(swaps: Iterable[ClassifiedSwap], now: datetime | None = None) -> int:
    """Number of swaps since local midnight."""
    now = now or datetime.now().astimezone()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    cutoff = midnight.timestamp()
    return sum(1 for s in swaps if s.block_time >= cutoff)


def trades_this_week(swaps: Iterable[ClassifiedSwap], now: datetime | None = None) -> list[ClassifiedSwap]:
    """Swaps from the last 7 days."""
    now = now or datetime.now(timezone.utc)
    cutoff = (now - timedelta(days=7)).timestamp()
    return [s for s in swaps if s.block_time >= cutoff]


def top_tokens(swaps: Iterable[ClassifiedSwap], limit: int = 10) -> list[dict]:
    """
    Tokens ranked by naive PnL (sells positive, buys negative), best first.
    Unlike summarize(), tokens that were only bought rank with a negative total.
    """
    stats: dict[str, dict] = {}
    for swap in swaps:
        entry = stats.setdefault(
            swap.token_mint,
            {"mint": swap.token_mint, "symbol": swap.token_symbol, "pnl": 0.0, "trades": 0},
        )
        entry["pnl"] += _signed_sol(swap)
        entry["trades"] += 1
        if not entry["symbol"] and swap.token_symbol:
            entry["symbol"] = swap.token_symbol

    return sorted(stats.values(), key=lambda e: e["pnl"], reverse=True)[:limit]


def platform_distribution(swaps: Iterable[ClassifiedSwap]) -> list[dict]:
    """Share of trade count per venue, as rounded percentages."""
    swaps = list(swaps)
    if not swaps:
        return []

    counts: dict[str, int] = defaultdict(int)
    for swap in swaps:
        counts[swap.platform] += 1

    total = len(swaps)
    return [
        {
            "name": PLATFORM_LABELS.get(platform, "Other"),
            "platform": platform,
            "value": round(count / total * 100),
            "count": count,
        }
        for platform, count in counts.items()
    ]


def daily_pnl(swaps: Iterable[ClassifiedSwap], days: int = 30) -> list[dict]:
    """
    Naive PnL per UTC calendar date, oldest first, most recent `days` buckets.
    Only dates with trades get a bucket.
    """
    buckets: dict[str, float] = defaultdict(float)
    for swap in swaps:
        date_key = datetime.fromtimestamp(swap.block_time, tz=timezone.utc).strftime("%Y-%m-%d")
        buckets[date_key] += _signed_sol(swap)

    ordered = sorted(buckets.items())[-days:] if days > 0 else []
    return [{"date": date, "pnl": pnl} for date, pnl in ordered]
