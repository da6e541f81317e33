"""
Token Enricher
==============
Resolves mint addresses to display symbols and current USD prices.

Both lookups are best-effort:
- symbols come from Jupiter's token list; unknown mints get a shortened
  address like "7xKX..." instead of an error
- prices come from Jupiter's batched price API (one request for the whole
  mint list); anything Jupiter doesn't price is looked up on DexScreener,
  picking the most liquid pair. Mints nobody prices map to None.

The token list is big and changes slowly, so it is cached for
settings.api_cache_ttl seconds.
"""

import asyncio
import time
from typing import Iterable

import aiohttp

from analyzer.swap_classifier import ClassifiedSwap
from config.settings import Settings
from utils.logger import get_logger

logger = get_logger(__name__)


def fallback_symbol(mint: str) -> str:
    """Display name for a mint with no known symbol."""
    return mint[:4] + "..."


class TokenEnricher:
    """
    Symbol and price lookups for token mints.

    Usage:
        enricher = TokenEnricher(settings)
        await enricher.initialize()
        prices = await enricher.get_prices([mint_a, mint_b])
        await enricher.close()
    """

    def __init__(self, settings: Settings, session: aiohttp.ClientSession | None = None):
        self.settings = settings
        self.session = session
        self._owns_session = session is None
        self.timeout = aiohttp.ClientTimeout(total=settings.http_timeout_seconds)

        self._symbols: dict[str, str] = {}
        self._symbols_loaded_at: float = 0.0

    async def initialize(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
        logger.info("token_enricher_initialized")

    async def close(self) -> None:
        if self.session and self._owns_session:
            await self.session.close()

    # =========================================================================
    # Symbols
    # =========================================================================

    async def _load_token_list(self) -> None:
        """Refresh the cached mint -> symbol map if it has expired."""
        if self._symbols and time.monotonic() - self._symbols_loaded_at < self.settings.api_cache_ttl:
            return

        try:
            async with self.session.get(self.settings.jupiter_token_list_url, timeout=self.timeout) as response:
                if response.status != 200:
                    logger.warning("token_list_failed", status=response.status)
                    return
                tokens = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("token_list_error", error=str(e) or type(e).__name__)
            return

        symbols = {
            token["address"]: token["symbol"]
            for token in tokens or []
            if isinstance(token, dict) and token.get("address") and token.get("symbol")
        }
        if symbols:
            self._symbols = symbols
            self._symbols_loaded_at = time.monotonic()
            logger.debug("token_list_loaded", tokens=len(symbols))

    async def get_symbols(self, mints: Iterable[str]) -> dict[str, str]:
        """Symbol for every requested mint, falling back to a short address."""
        mints = list(dict.fromkeys(mints))
        if not mints:
            return {}

        await self._load_token_list()
        return {mint: self._symbols.get(mint) or fallback_symbol(mint) for mint in mints}

    # =========================================================================
    # Prices
    # =========================================================================

    async def _jupiter_prices(self, mints: list[str]) -> dict[str, float]:
        """One batched request to Jupiter's price API."""
        prices: dict[str, float] = {}
        try:
            params = {"ids": ",".join(mints)}
            async with self.session.get(
                self.settings.jupiter_price_url, params=params, timeout=self.timeout
            ) as response:
                if response.status != 200:
                    logger.warning("jupiter_price_failed", status=response.status)
                    return prices
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("jupiter_price_error", error=str(e) or type(e).__name__)
            return prices

        entries = (data or {}).get("data") or {}
        for mint in mints:
            entry = entries.get(mint) or {}
            try:
                price = float(entry.get("price") or 0)
            except (TypeError, ValueError):
                continue
            if price > 0:
                prices[mint] = price
        return prices

    async def _dexscreener_price(self, mint: str) -> float | None:
        """Price from the most liquid DexScreener pair for a mint."""
        url = f"{self.settings.dexscreener_base_url}/latest/dex/tokens/{mint}"
        try:
            async with self.session.get(url, timeout=self.timeout) as response:
                if response.status != 200:
                    return None
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.debug("dexscreener_price_error", mint=mint[:8], error=str(e) or type(e).__name__)
            return None

        pairs = (data or {}).get("pairs") or []
        if not pairs:
            return None
        best = max(pairs, key=lambda p: ((p.get("liquidity") or {}).get("usd") or 0))
        try:
            price = float(best.get("priceUsd") or 0)
        except (TypeError, ValueError):
            return None
        return price if price > 0 else None

    async def get_prices(self, mints: Iterable[str]) -> dict[str, float | None]:
        """
        Current USD price per mint. Absent prices are None, never errors.
        """
        mints = list(dict.fromkeys(mints))
        if not mints:
            return {}

        prices: dict[str, float | None] = dict.fromkeys(mints)
        prices.update(await self._jupiter_prices(mints))

        missing = [mint for mint in mints if prices[mint] is None]
        if missing:
            fallbacks = await asyncio.gather(*(self._dexscreener_price(mint) for mint in missing))
            for mint, price in zip(missing, fallbacks):
                prices[mint] = price

        logger.debug(
            "prices_fetched",
            requested=len(mints),
            priced=sum(1 for p in prices.values() if p is not None),
        )
        return prices

    async def get_price(self, mint: str) -> float | None:
        return (await self.get_prices([mint])).get(mint)

    # =========================================================================
    # Swaps
    # =========================================================================

    async def enrich(self, swaps: list[ClassifiedSwap]) -> list[ClassifiedSwap]:
        """Fill token_symbol and price_usd on classified swaps, in place."""
        mints = list(dict.fromkeys(swap.token_mint for swap in swaps))
        if not mints:
            return swaps

        symbols, prices = await asyncio.gather(self.get_symbols(mints), self.get_prices(mints))
        for swap in swaps:
            swap.token_symbol = symbols.get(swap.token_mint) or fallback_symbol(swap.token_mint)
            swap.price_usd = prices.get(swap.token_mint)
        return swaps
