"""
Jupiter Client
===============
Quote and swap-building through the Jupiter Aggregator.

Jupiter finds the best route across Solana DEXs (Raydium, Orca, Meteora,
Pump.fun curves...) and builds the transaction for it. This client covers
the two HTTP steps; signing and submission belong to trader/signer.py.

1. QUOTE: "swap 0.1 SOL for token X at most 12% slippage, what do I get?"
   Retried with linear backoff (0.5s, 1.0s...). If no attempt produces a
   usable quote, QuoteError. There is no fallback to a made-up quote here;
   simulated trading is a separate executor.
2. BUILD: Jupiter turns the quote into an unsigned versioned transaction
   for our public key. Failures raise SwapError.
"""

import asyncio
import base64

import aiohttp

from config.settings import Settings
from utils.errors import QuoteError, SwapError
from utils.logger import get_logger
from utils.retry import linear_delay, retry_async

logger = get_logger(__name__)

# SOL's special mint address on Solana
SOL_MINT = "So11111111111111111111111111111111111111112"


class JupiterClient:
    """
    Client for the Jupiter V6 Swap API.

    Usage:
        jupiter = JupiterClient(settings)
        await jupiter.initialize()
        quote = await jupiter.get_quote(SOL_MINT, token_mint, amount_lamports, 1200)
        tx_bytes = await jupiter.build_swap(quote, signer.public_key)
    """

    def __init__(self, settings: Settings, session: aiohttp.ClientSession | None = None):
        self.settings = settings
        self.base_url = settings.jupiter_base_url
        self.session = session
        self._owns_session = session is None
        self.timeout = aiohttp.ClientTimeout(total=settings.http_timeout_seconds)

    async def initialize(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self.session and self._owns_session:
            await self.session.close()

    async def _request_quote(self, params: dict) -> dict:
        url = f"{self.base_url}/quote"
        try:
            async with self.session.get(url, params=params, timeout=self.timeout) as response:
                if response.status != 200:
                    error = await response.text()
                    raise QuoteError(
                        f"Jupiter quote failed ({response.status}): {error[:200]}",
                        params["inputMint"],
                        params["outputMint"],
                        int(params["amount"]),
                    )
                quote = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise QuoteError(
                f"Jupiter quote error: {str(e) or type(e).__name__}",
                params["inputMint"],
                params["outputMint"],
                int(params["amount"]),
            ) from e

        if not isinstance(quote, dict) or not quote.get("outAmount"):
            raise QuoteError(
                "Jupiter returned no route",
                params["inputMint"],
                params["outputMint"],
                int(params["amount"]),
            )
        return quote

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
    ) -> dict:
        """
        Get a swap quote from Jupiter.

        Args:
            input_mint: Token you're selling (e.g., SOL_MINT for SOL)
            output_mint: Token you're buying
            amount: Amount to sell in smallest units (lamports for SOL)
            slippage_bps: Max slippage tolerance in basis points

        Raises QuoteError once all attempts failed.
        """
        if amount <= 0:
            raise QuoteError("Quote amount must be positive", input_mint, output_mint, amount)

        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
        }

        quote = await retry_async(
            lambda: self._request_quote(params),
            attempts=self.settings.quote_retry_attempts,
            delay=linear_delay(self.settings.quote_retry_step_seconds),
            retry_on=(QuoteError,),
            label="jupiter_quote",
        )

        route = (quote.get("routePlan") or [{}])[0].get("swapInfo", {}).get("label", "unknown")
        logger.info(
            "quote_received",
            input_amount=int(quote.get("inAmount", 0)),
            output_amount=int(quote.get("outAmount", 0)),
            price_impact=quote.get("priceImpactPct", "0"),
            route=route,
        )
        return quote

    async def build_swap(self, quote: dict, user_public_key: str) -> bytes:
        """
        Ask Jupiter to build the swap transaction for a quote.
        Returns the unsigned transaction bytes.
        """
        body = {
            "quoteResponse": quote,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "prioritizationFeeLamports": self.settings.priority_fee_lamports,
            "dynamicComputeUnitLimit": True,
        }

        try:
            async with self.session.post(f"{self.base_url}/swap", json=body, timeout=self.timeout) as response:
                if response.status != 200:
                    error = await response.text()
                    raise SwapError(f"Jupiter swap build failed ({response.status}): {error[:200]}")
                swap_data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise SwapError(f"Jupiter swap error: {str(e) or type(e).__name__}") from e

        swap_tx_b64 = (swap_data or {}).get("swapTransaction")
        if not swap_tx_b64:
            raise SwapError("Jupiter returned no swap transaction")
        return base64.b64decode(swap_tx_b64)
