"""
Wallet Scanner
==============
The read path: "what has this wallet been trading, and how well?"

One scan:
1. Recent signatures for the wallet (newest first)
2. Fetch the transactions in batches of settings.scan_batch_size, with a
   short pause between batches so public RPCs don't rate-limit us
3. Classify each one (most are not swaps and drop out)
4. Enrich the swaps: symbols and prices are looked up concurrently
5. Sort newest first and fold into a PerformanceSummary

A scan that fails on the RPC side is retried with exponential backoff
(1s, 2s, 4s). If every attempt fails, the last good result for that
wallet is returned marked stale, with the error attached, and the
tokens seen by earlier scans stay visible through the presence tracker.
Only a wallet that never scanned successfully gets the error raised.
"""

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable

from analyzer.pnl_aggregator import PerformanceSummary, summarize
from analyzer.swap_classifier import ClassifiedSwap, classify_swap
from analyzer.token_enricher import TokenEnricher
from config.settings import Settings
from monitor.token_presence import TokenPresenceTracker
from utils.errors import RpcUnavailableError, UpstreamError
from utils.logger import get_logger, short
from utils.retry import exponential_delay, retry_async
from utils.solana_client import SolanaClient

logger = get_logger(__name__)


@dataclass
class ScanResult:
    wallet_address: str
    swaps: list[ClassifiedSwap]
    summary: PerformanceSummary
    signatures_checked: int
    scanned_at: float
    stale: bool = False
    error: str | None = None
    tokens: list[Any] = field(default_factory=list)


class WalletScanner:
    """
    Usage:
        scanner = WalletScanner(settings, solana, enricher)
        result = await scanner.scan("9xQe...")
        print(result.summary.win_rate)
    """

    def __init__(
        self,
        settings: Settings,
        solana: SolanaClient,
        enricher: TokenEnricher,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.solana = solana
        self.enricher = enricher
        self._sleep = sleep

        self.last_result: dict[str, ScanResult] = {}
        self.last_error: dict[str, str] = {}
        self.presence: dict[str, TokenPresenceTracker] = {}

    async def _fetch_batch(self, signatures: list[str]) -> tuple[list[dict | None], int]:
        """Fetch one batch concurrently. Returns (records, number that failed)."""
        results = await asyncio.gather(
            *(self.solana.get_transaction(sig) for sig in signatures),
            return_exceptions=True,
        )
        records: list[dict | None] = []
        failed = 0
        for signature, result in zip(signatures, results):
            if isinstance(result, UpstreamError):
                failed += 1
                logger.debug("transaction_fetch_failed", signature=short(signature), error=str(result))
                records.append(None)
            elif isinstance(result, BaseException):
                raise result
            else:
                records.append(result)
        return records, failed

    async def fetch_swaps(self, wallet_address: str, limit: int | None = None) -> tuple[list[ClassifiedSwap], int]:
        """
        Classified swaps among the wallet's recent transactions, unenriched.
        Returns (swaps, signatures checked).
        """
        limit = limit or self.settings.scan_signature_limit
        signatures = await self.solana.get_signatures_for_address(wallet_address, limit=limit)
        if not signatures:
            return [], 0

        batch_size = max(1, self.settings.scan_batch_size)
        swaps: list[ClassifiedSwap] = []
        failed = 0

        for start in range(0, len(signatures), batch_size):
            if start:
                await self._sleep(self.settings.scan_batch_delay_seconds)
            batch = signatures[start:start + batch_size]
            records, batch_failed = await self._fetch_batch(batch)
            failed += batch_failed

            for signature, record in zip(batch, records):
                swap = classify_swap(
                    record,
                    wallet_address,
                    dust_epsilon=self.settings.dust_epsilon,
                    multi_leg_policy=self.settings.multi_leg_policy,
                    signature=signature,
                )
                if swap:
                    swaps.append(swap)

        if failed == len(signatures):
            raise RpcUnavailableError("getTransaction", len(self.solana.endpoints), "every transaction fetch failed")
        if failed:
            logger.warning("transactions_skipped", wallet=short(wallet_address), failed=failed, total=len(signatures))

        return swaps, len(signatures)

    async def _scan_once(self, wallet_address: str, limit: int | None) -> ScanResult:
        swaps, checked = await self.fetch_swaps(wallet_address, limit)
        await self.enricher.enrich(swaps)
        swaps.sort(key=lambda s: s.block_time, reverse=True)
        return ScanResult(
            wallet_address=wallet_address,
            swaps=swaps,
            summary=summarize(swaps),
            signatures_checked=checked,
            scanned_at=time.time(),
        )

    async def scan(self, wallet_address: str, limit: int | None = None) -> ScanResult:
        """
        Scan a wallet with retries. Falls back to the previous good result
        (stale=True) when every attempt failed.
        """
        try:
            result = await retry_async(
                lambda: self._scan_once(wallet_address, limit),
                attempts=self.settings.scan_retry_attempts,
                delay=exponential_delay(self.settings.scan_retry_base_seconds),
                retry_on=(UpstreamError,),
                label="wallet_scan",
                sleep=self._sleep,
            )
        except UpstreamError as e:
            self.last_error[wallet_address] = str(e)
            previous = self.last_result.get(wallet_address)
            if previous is None:
                logger.error("wallet_scan_failed", wallet=short(wallet_address), error=str(e))
                raise
            logger.warning(
                "wallet_scan_failed_keeping_previous",
                wallet=short(wallet_address),
                error=str(e),
                previous_swaps=len(previous.swaps),
            )
            tracker = self.presence.get(wallet_address, TokenPresenceTracker())
            tracker = tracker.evicted(grace_seconds=self.settings.presence_grace_seconds)
            self.presence[wallet_address] = tracker
            return replace(previous, stale=True, error=str(e), tokens=tracker.visible())

        tracker = self.presence.get(wallet_address, TokenPresenceTracker())
        newest_per_mint: dict[str, ClassifiedSwap] = {}
        for swap in result.swaps:
            newest_per_mint.setdefault(swap.token_mint, swap)
        tracker = tracker.merged(newest_per_mint, now=result.scanned_at).evicted(
            now=result.scanned_at, grace_seconds=self.settings.presence_grace_seconds
        )
        self.presence[wallet_address] = tracker
        result.tokens = tracker.visible()

        self.last_result[wallet_address] = result
        self.last_error.pop(wallet_address, None)
        logger.info(
            "wallet_scanned",
            wallet=short(wallet_address),
            signatures=result.signatures_checked,
            swaps=len(result.swaps),
            pnl_sol=round(result.summary.total_pnl_sol, 4),
            win_rate=f"{result.summary.win_rate:.0f}%",
        )
        return result
