"""
Trade Executor
==============
Buys and sells tokens and keeps the ledger in step with what was executed.

Two swap back-ends share one interface (buy/sell -> Fill):
- LiveSwapper: Jupiter quote -> Jupiter builds the transaction -> our
  signer signs and submits it. Any failure raises an ExecutionError
  subclass (QuoteError, SwapError, SubmitError).
- SimulatedSwapper: fabricates the fill from the token's USD price and a
  reference SOL price. Its signatures start with "sim_" and every row it
  produces is stored with mode = "simulated", so simulated and live
  history never mix.

TradeExecutor is what the rest of the service calls:
1. Resolve price and decimals for the token
2. Swap through the configured back-end
3. Record the trade in the ledger table
4. Apply the buy/sell to the position (under the position's lock)
5. Optionally send a "trade" notification

A sell realizes PnL on the SOL the swap actually returned, converted at
the SOL/USD price. Without that price the PnL is stored as unknown.

Business rejections (nothing to sell, bad percentage) come back as a
TradeOutcome with status "rejected". Execution failures raise.
"""

import time
import uuid
from dataclasses import dataclass
from typing import Any

from config.settings import Settings
from database.db import Database
from analyzer.token_enricher import TokenEnricher
from trader.jupiter_client import JupiterClient, SOL_MINT
from trader.position_ledger import PositionLedger
from trader.signer import KeypairSigner
from utils.errors import PriceFeedError, QuoteError, UpstreamError
from utils.logger import get_logger, short
from utils.solana_client import LAMPORTS_PER_SOL, SolanaClient

logger = get_logger(__name__)


@dataclass
class Fill:
    """What a swap actually did."""

    signature: str
    sol_amount: float  # SOL spent on a buy, received on a sell
    token_amount: float  # Whole tokens received on a buy, sold on a sell
    mode: str  # live | simulated


@dataclass
class TradeOutcome:
    status: str  # completed | rejected
    trade_type: str
    token_mint: str
    reason: str = ""
    signature: str | None = None
    amount_sol: float = 0.0
    amount_token: float = 0.0
    price_usd: float | None = None
    mode: str = "live"
    position: dict | None = None
    position_closed: bool = False
    realized_pnl: float | None = None

    @property
    def executed(self) -> bool:
        return self.status == "completed"

    @classmethod
    def rejected(cls, trade_type: str, token_mint: str, reason: str) -> "TradeOutcome":
        return cls(status="rejected", trade_type=trade_type, token_mint=token_mint, reason=reason)


# =============================================================================
# Swap back-ends
# =============================================================================


class LiveSwapper:
    """Real swaps through Jupiter, signed with the trading wallet."""

    mode = "live"

    def __init__(self, jupiter: JupiterClient, signer: KeypairSigner):
        self.jupiter = jupiter
        self.signer = signer

    async def buy(
        self, token_mint: str, sol_amount: float, slippage_percent: float, decimals: int, price_usd: float | None
    ) -> Fill:
        lamports = int(sol_amount * LAMPORTS_PER_SOL)
        quote = await self.jupiter.get_quote(SOL_MINT, token_mint, lamports, int(slippage_percent * 100))
        tx_bytes = await self.jupiter.build_swap(quote, self.signer.public_key)
        signature = await self.signer.sign_and_submit(tx_bytes)
        return Fill(
            signature=signature,
            sol_amount=int(quote["inAmount"]) / LAMPORTS_PER_SOL,
            token_amount=int(quote["outAmount"]) / (10 ** decimals),
            mode=self.mode,
        )

    async def sell(
        self, token_mint: str, token_amount: float, slippage_percent: float, decimals: int, price_usd: float | None
    ) -> Fill:
        raw_amount = int(token_amount * (10 ** decimals))
        quote = await self.jupiter.get_quote(token_mint, SOL_MINT, raw_amount, int(slippage_percent * 100))
        tx_bytes = await self.jupiter.build_swap(quote, self.signer.public_key)
        signature = await self.signer.sign_and_submit(tx_bytes)
        return Fill(
            signature=signature,
            sol_amount=int(quote["outAmount"]) / LAMPORTS_PER_SOL,
            token_amount=raw_amount / (10 ** decimals),
            mode=self.mode,
        )


class SimulatedSwapper:
    """
    Paper trading. Converts at the token's USD price over a fixed SOL
    price, rounding token amounts down to the mint's decimals like a real
    quote would.
    """

    mode = "simulated"

    def __init__(self, sol_price_usd: float):
        self.sol_price_usd = sol_price_usd

    @staticmethod
    def make_signature() -> str:
        return f"sim_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"

    def _token_price_sol(self, token_mint: str, price_usd: float | None) -> float:
        if not price_usd or price_usd <= 0:
            raise QuoteError("Simulated quote needs a token price", output_mint=token_mint)
        return price_usd / self.sol_price_usd

    async def buy(
        self, token_mint: str, sol_amount: float, slippage_percent: float, decimals: int, price_usd: float | None
    ) -> Fill:
        price_sol = self._token_price_sol(token_mint, price_usd)
        raw_out = int(sol_amount / price_sol * (10 ** decimals))
        if raw_out <= 0:
            raise QuoteError("Simulated buy rounds to zero tokens", SOL_MINT, token_mint)
        return Fill(self.make_signature(), sol_amount, raw_out / (10 ** decimals), self.mode)

    async def sell(
        self, token_mint: str, token_amount: float, slippage_percent: float, decimals: int, price_usd: float | None
    ) -> Fill:
        price_sol = self._token_price_sol(token_mint, price_usd)
        lamports = int(token_amount * price_sol * LAMPORTS_PER_SOL)
        return Fill(self.make_signature(), lamports / LAMPORTS_PER_SOL, token_amount, self.mode)


# =============================================================================
# Executor
# =============================================================================


class TradeExecutor:
    """
    Executes buys and sells for a user and updates trades/positions.

    Usage:
        executor = TradeExecutor(settings, db, ledger, enricher, solana)
        await executor.initialize()
        outcome = await executor.buy("alice", mint, amount_sol=0.1)
        outcome = await executor.sell("alice", mint, sell_percent=50)
        await executor.close()
    """

    def __init__(
        self,
        settings: Settings,
        db: Database,
        ledger: PositionLedger,
        enricher: TokenEnricher,
        solana: SolanaClient | None = None,
        notifier: Any | None = None,
        swapper: Any | None = None,
    ):
        self.settings = settings
        self.db = db
        self.ledger = ledger
        self.enricher = enricher
        self.solana = solana
        self.notifier = notifier
        self.swapper = swapper
        self.jupiter: JupiterClient | None = None

    async def initialize(self) -> None:
        """
        Pick the swap back-end. Live mode needs the signer key and raises
        ConfigurationError without it.
        """
        if self.swapper is None:
            if self.settings.is_live:
                if self.solana is None:
                    raise ValueError("Live trading needs a SolanaClient")
                signer = KeypairSigner(self.settings.copy_trade_private_key, self.solana)
                self.jupiter = JupiterClient(self.settings)
                await self.jupiter.initialize()
                self.swapper = LiveSwapper(self.jupiter, signer)
            else:
                self.swapper = SimulatedSwapper(self.settings.simulated_sol_price_usd)
        logger.info("trade_executor_initialized", mode=self.swapper.mode)

    async def close(self) -> None:
        if self.jupiter:
            await self.jupiter.close()

    @property
    def mode(self) -> str:
        return self.swapper.mode if self.swapper else self.settings.trading_mode

    async def _token_decimals(self, token_mint: str) -> int:
        """Mint decimals from chain, or the configured default if the lookup fails."""
        if self.solana is None:
            return self.settings.default_token_decimals
        try:
            decimals = await self.solana.get_token_decimals(token_mint)
        except UpstreamError as e:
            logger.warning("token_decimals_unavailable", token=short(token_mint), error=str(e))
            decimals = None
        return decimals if decimals is not None else self.settings.default_token_decimals

    async def _sol_price_usd(self) -> float | None:
        """USD per SOL for valuing fills. None when the price feed has nothing."""
        if self.swapper.mode == "simulated":
            return self.swapper.sol_price_usd
        price = await self.enricher.get_price(SOL_MINT)
        if price is None:
            logger.warning("sol_price_unavailable")
        return price

    async def _notify_trade(self, outcome: TradeOutcome, token_symbol: str) -> None:
        if not self.notifier:
            return
        await self.notifier.notify("trade", {
            "action": outcome.trade_type,
            "token_mint": outcome.token_mint,
            "token_symbol": token_symbol,
            "amount_sol": outcome.amount_sol,
            "amount_token": outcome.amount_token,
            "price_usd": outcome.price_usd,
            "tx_signature": outcome.signature,
        })

    # =========================================================================
    # Buy
    # =========================================================================

    async def buy(
        self,
        user_id: str,
        token_mint: str,
        amount_sol: float | None = None,
        slippage_percent: float | None = None,
        stop_loss_percent: float | None = None,
        take_profit_percent: float | None = None,
        token_symbol: str = "",
        price_usd: float | None = None,
        source: str = "manual",
        wallet_id: int | None = None,
        notify: bool = True,
    ) -> TradeOutcome:
        """
        Spend `amount_sol` on a token and open/extend the position.

        Raises PriceFeedError when no USD price is known (the position
        could not be tracked against thresholds), and ExecutionError
        subclasses when the swap fails.
        """
        amount_sol = amount_sol if amount_sol is not None else self.settings.default_buy_amount_sol
        if amount_sol <= 0:
            return TradeOutcome.rejected("buy", token_mint, "Buy amount must be positive")

        slippage = slippage_percent if slippage_percent is not None else self.settings.default_slippage_percent
        stop_loss = stop_loss_percent if stop_loss_percent is not None else self.settings.default_stop_loss_percent
        take_profit = (
            take_profit_percent if take_profit_percent is not None else self.settings.default_take_profit_percent
        )

        if not price_usd:
            price_usd = await self.enricher.get_price(token_mint)
        if not price_usd:
            raise PriceFeedError(f"No price available for {short(token_mint)}")
        if not token_symbol:
            token_symbol = (await self.enricher.get_symbols([token_mint]))[token_mint]

        decimals = await self._token_decimals(token_mint)

        async with self.ledger.lock(user_id, token_mint):
            fill = await self.swapper.buy(token_mint, amount_sol, slippage, decimals, price_usd)

            await self.db.record_trade({
                "user_id": user_id,
                "wallet_id": wallet_id,
                "tx_signature": fill.signature,
                "token_mint": token_mint,
                "token_symbol": token_symbol,
                "trade_type": "buy",
                "amount_sol": fill.sol_amount,
                "amount_token": fill.token_amount,
                "price_usd": price_usd,
                "source": source,
                "mode": fill.mode,
            })

            position = await self.ledger.apply_buy(
                user_id,
                token_mint,
                amount=fill.token_amount,
                price=price_usd,
                token_symbol=token_symbol,
                token_decimals=decimals,
                stop_loss_percent=stop_loss,
                take_profit_percent=take_profit,
                source=source,
                wallet_id=wallet_id,
                mode=fill.mode,
            )

        outcome = TradeOutcome(
            status="completed",
            trade_type="buy",
            token_mint=token_mint,
            signature=fill.signature,
            amount_sol=fill.sol_amount,
            amount_token=fill.token_amount,
            price_usd=price_usd,
            mode=fill.mode,
            position=position,
        )
        logger.info(
            "buy_executed",
            user=user_id,
            token=token_symbol,
            sol=fill.sol_amount,
            tokens=fill.token_amount,
            mode=fill.mode,
            signature=short(fill.signature),
        )
        if notify:
            await self._notify_trade(outcome, token_symbol)
        return outcome

    # =========================================================================
    # Sell
    # =========================================================================

    async def sell(
        self,
        user_id: str,
        token_mint: str,
        sell_percent: float = 100.0,
        slippage_percent: float | None = None,
        price_usd: float | None = None,
        source: str = "manual",
        wallet_id: int | None = None,
        notify: bool = True,
    ) -> TradeOutcome:
        """
        Sell a share of the open position in a token.

        The position is re-read under its lock, so two exits racing for
        the same position cannot both sell it: the second one finds
        nothing open and is rejected.
        """
        if not 0 < sell_percent <= 100:
            return TradeOutcome.rejected("sell", token_mint, "sell_percent must be in (0, 100]")
        slippage = slippage_percent if slippage_percent is not None else self.settings.default_slippage_percent

        async with self.ledger.lock(user_id, token_mint):
            position = await self.ledger.get_open(user_id, token_mint)
            if not position:
                return TradeOutcome.rejected("sell", token_mint, "No open position found for this token")

            if not price_usd:
                price_usd = await self.enricher.get_price(token_mint) or position.get("current_price")

            token_amount = position["amount"] * (sell_percent / 100)
            decimals = position.get("token_decimals") or self.settings.default_token_decimals
            fill = await self.swapper.sell(token_mint, token_amount, slippage, decimals, price_usd)

            # Realized PnL comes from what the swap returned, not from the quoted price
            sol_usd = await self._sol_price_usd()
            proceeds = fill.sol_amount * sol_usd if sol_usd else None
            result = await self.ledger.apply_sell(
                position,
                sold_amount=fill.token_amount,
                price=price_usd,
                sell_percent=sell_percent,
                proceeds=proceeds,
                reason=source,
            )

            await self.db.record_trade({
                "user_id": user_id,
                "wallet_id": wallet_id if wallet_id is not None else position.get("wallet_id"),
                "tx_signature": fill.signature,
                "token_mint": token_mint,
                "token_symbol": position.get("token_symbol"),
                "trade_type": "sell",
                "amount_sol": fill.sol_amount,
                "amount_token": fill.token_amount,
                "price_usd": price_usd,
                "pnl_usd": result.trade_pnl,
                "source": source,
                "mode": fill.mode,
            })

        outcome = TradeOutcome(
            status="completed",
            trade_type="sell",
            token_mint=token_mint,
            signature=fill.signature,
            amount_sol=fill.sol_amount,
            amount_token=fill.token_amount,
            price_usd=price_usd,
            mode=fill.mode,
            position=result.position,
            position_closed=result.closed,
            realized_pnl=result.realized_pnl,
        )
        logger.info(
            "sell_executed",
            user=user_id,
            token=position.get("token_symbol") or short(token_mint),
            sol=fill.sol_amount,
            tokens=fill.token_amount,
            closed=result.closed,
            mode=fill.mode,
            signature=short(fill.signature),
        )
        if notify:
            await self._notify_trade(outcome, position.get("token_symbol") or "")
        return outcome
