"""
Swap Classifier
===============
Turns one raw transaction record into a buy/sell event, or None.

Input is the jsonParsed shape returned by getTransaction:
- transaction.message.accountKeys: touched accounts (and programs)
- meta.preBalances / meta.postBalances: lamports per account index
- meta.preTokenBalances / meta.postTokenBalances: SPL balances with owner + mint
- meta.err: non-null when the transaction failed

The rules:
1. Failed transactions are not swaps
2. A known DEX program must be touched, otherwise we return None. Swaps on
   venues we don't know stay invisible instead of being misclassified.
3. Wallet SOL delta = post - pre lamports at the wallet's account index
4. Per non-SOL mint owned by the wallet: token delta = post - pre
5. buy  = token delta > 0 and SOL delta < 0
   sell = token delta < 0 and SOL delta > 0
   anything else (same-sign legs, dust-sized token change) is not a swap

Multi-hop routes that move more than one non-SOL mint for the wallet are
governed by `multi_leg_policy`:
- "reject": not classifiable, return None
- "first": use the first changed mint in balance-list order. This depends
  on how the node orders balances and can drop legs of the route.
"""

from dataclasses import dataclass, asdict
from typing import Any

LAMPORTS_PER_SOL = 1_000_000_000

SOL_MINT = "So11111111111111111111111111111111111111112"

DEFAULT_DUST_EPSILON = 0.0001

# Known DEX program IDs, grouped by venue. Checked in this order.
DEX_PROGRAMS: dict[str, tuple[str, ...]] = {
    "jupiter": (
        "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4",  # Jupiter v6
        "JUP4Fb2cqiRUcaTHdrPC8h2gNsA2ETXiPDD33WcGuJB",  # Jupiter v4
    ),
    "raydium": (
        "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8",  # Raydium AMM v4
        "CPMMoo8L3F4NbTegBCKVNunggL7H1ZpdTHKxQB5qKP1C",  # Raydium CPMM
    ),
    "pumpfun": (
        "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P",  # Pump.fun bonding curve
    ),
}

PLATFORMS = ("jupiter", "raydium", "pumpfun", "unknown")


@dataclass
class ClassifiedSwap:
    """A single detected buy or sell by the scanned wallet."""

    signature: str
    block_time: int
    type: str  # "buy" | "sell"
    token_mint: str
    token_amount: float
    sol_amount: float
    platform: str
    price_usd: float | None = None
    token_symbol: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _account_key(entry: Any) -> str:
    """accountKeys entries are plain strings or {"pubkey": ...} dicts."""
    if isinstance(entry, dict):
        return entry.get("pubkey", "")
    return str(entry)


def _account_keys(tx: dict) -> list[str]:
    message = (tx.get("transaction") or {}).get("message") or {}
    return [_account_key(k) for k in message.get("accountKeys") or []]


def program_ids(tx: dict) -> set[str]:
    """
    Every account/program identifier the transaction touched, including
    addresses loaded from lookup tables (v0 transactions).
    """
    ids = set(_account_keys(tx))

    message = (tx.get("transaction") or {}).get("message") or {}
    for instruction in message.get("instructions") or []:
        if instruction.get("programId"):
            ids.add(instruction["programId"])

    loaded = (tx.get("meta") or {}).get("loadedAddresses") or {}
    ids.update(loaded.get("writable") or [])
    ids.update(loaded.get("readonly") or [])
    return ids


def detect_platform(tx: dict) -> str:
    """Name of the first known venue whose program the transaction touched."""
    touched = program_ids(tx)
    for platform, programs in DEX_PROGRAMS.items():
        if any(program in touched for program in programs):
            return platform
    return "unknown"


def _ui_amount(balance: dict) -> float:
    ui = balance.get("uiTokenAmount") or {}
    value = ui.get("uiAmount")
    if value is None:
        value = ui.get("uiAmountString") or 0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def token_deltas(tx: dict, wallet_address: str) -> list[tuple[str, float]]:
    """
    Net change per mint for token accounts owned by the wallet, in the
    order the mints first appear (pre balances, then post balances).
    """
    meta = tx.get("meta") or {}
    order: list[str] = []
    pre: dict[str, float] = {}
    post: dict[str, float] = {}

    for balance in meta.get("preTokenBalances") or []:
        if balance.get("owner") != wallet_address:
            continue
        mint = balance.get("mint", "")
        if mint not in pre and mint not in post:
            order.append(mint)
        pre[mint] = pre.get(mint, 0.0) + _ui_amount(balance)

    for balance in meta.get("postTokenBalances") or []:
        if balance.get("owner") != wallet_address:
            continue
        mint = balance.get("mint", "")
        if mint not in pre and mint not in post:
            order.append(mint)
        post[mint] = post.get(mint, 0.0) + _ui_amount(balance)

    return [(mint, post.get(mint, 0.0) - pre.get(mint, 0.0)) for mint in order]


def sol_delta(tx: dict, wallet_address: str) -> float | None:
    """Wallet SOL change in whole SOL, None if the wallet isn't in the account list."""
    keys = _account_keys(tx)
    try:
        index = keys.index(wallet_address)
    except ValueError:
        return None

    meta = tx.get("meta") or {}
    pre_balances = meta.get("preBalances") or []
    post_balances = meta.get("postBalances") or []
    pre_sol = (pre_balances[index] if index < len(pre_balances) else 0) / LAMPORTS_PER_SOL
    post_sol = (post_balances[index] if index < len(post_balances) else 0) / LAMPORTS_PER_SOL
    return post_sol - pre_sol


def classify_swap(
    tx: dict | None,
    wallet_address: str,
    dust_epsilon: float = DEFAULT_DUST_EPSILON,
    multi_leg_policy: str = "reject",
    signature: str = "",
) -> ClassifiedSwap | None:
    """
    Classify one transaction from the point of view of `wallet_address`.

    Never raises on odd input: anything we can't make sense of is "no swap".

    Args:
        tx: getTransaction result (jsonParsed), may be None
        wallet_address: The wallet being scanned
        dust_epsilon: Token changes with |delta| below this are ignored
        multi_leg_policy: "reject" or "first", see module docstring
        signature: Fallback signature if the record doesn't carry one
    """
    if not tx or not isinstance(tx, dict):
        return None

    meta = tx.get("meta") or {}
    if meta.get("err"):
        return None

    platform = detect_platform(tx)
    if platform == "unknown":
        return None

    sol_change = sol_delta(tx, wallet_address)
    if sol_change is None:
        return None

    changed = [
        (mint, delta)
        for mint, delta in token_deltas(tx, wallet_address)
        if mint and mint != SOL_MINT and delta != 0
    ]
    if not changed:
        return None
    if multi_leg_policy == "reject":
        # Dust-sized legs (rent refunds, rounding) don't make a route multi-leg
        changed = [(mint, delta) for mint, delta in changed if abs(delta) >= dust_epsilon]
        if len(changed) != 1:
            return None

    token_mint, token_change = changed[0]
    if abs(token_change) < dust_epsilon:
        return None

    if token_change > 0 and sol_change < 0:
        swap_type = "buy"
    elif token_change < 0 and sol_change > 0:
        swap_type = "sell"
    else:
        return None

    signatures = (tx.get("transaction") or {}).get("signatures") or []
    return ClassifiedSwap(
        signature=signatures[0] if signatures else signature,
        block_time=int(tx.get("blockTime") or 0),
        type=swap_type,
        token_mint=token_mint,
        token_amount=abs(token_change),
        sol_amount=abs(sol_change),
        platform=platform,
    )
