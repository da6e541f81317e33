"""
Solana Client Helper
====================
A resilient JSON-RPC client for reading chain data.

Public RPC nodes go down, rate-limit, or answer with garbage, so every call
walks an ordered list of endpoints:
- one attempt per endpoint per call
- network failures, timeouts, non-200 answers, malformed JSON and
  top-level "error" payloads all move on to the next endpoint
- only when the whole list is exhausted does the caller see an error

Retrying a whole call (e.g. a wallet scan) is the caller's job; see
utils/retry.py.
"""

import asyncio
import json
from typing import Any

import aiohttp

from utils.errors import RpcUnavailableError
from utils.logger import get_logger

logger = get_logger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000


class SolanaClient:
    """
    Async Solana JSON-RPC client with multi-endpoint fallback.

    Usage:
        client = SolanaClient(settings.rpc_endpoints)
        await client.initialize()
        sigs = await client.get_signatures_for_address(wallet, limit=100)
        await client.close()
    """

    def __init__(
        self,
        endpoints: list[str],
        timeout_seconds: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ):
        if not endpoints:
            raise ValueError("SolanaClient needs at least one RPC endpoint")
        self.endpoints = list(endpoints)
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.session = session
        self._owns_session = session is None
        self._request_id = 0

    async def initialize(self) -> None:
        """Create the HTTP session for making RPC calls."""
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
        logger.info("solana_client_initialized", endpoints=len(self.endpoints))

    async def close(self) -> None:
        """Clean up the HTTP session."""
        if self.session and self._owns_session:
            await self.session.close()

    # =========================================================================
    # Core RPC Call
    # =========================================================================

    async def call(self, method: str, params: list | None = None) -> dict:
        """
        Make a JSON-RPC call, falling back through the endpoint list.

        Returns the full response envelope of the first endpoint that
        answers without a top-level error field. Raises RpcUnavailableError
        if none does.
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        last_error = ""
        for index, url in enumerate(self.endpoints):
            try:
                async with self.session.post(url, json=payload, timeout=self.timeout) as response:
                    if response.status != 200:
                        last_error = f"HTTP {response.status}"
                        logger.debug("rpc_endpoint_status", method=method, endpoint=index, status=response.status)
                        continue
                    data = await response.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError, ValueError) as e:
                last_error = str(e) or type(e).__name__
                logger.debug("rpc_endpoint_failed", method=method, endpoint=index, error=last_error)
                continue

            if not isinstance(data, dict):
                last_error = "malformed response"
                logger.debug("rpc_endpoint_malformed", method=method, endpoint=index)
                continue
            if data.get("error"):
                last_error = str(data["error"])
                logger.debug("rpc_endpoint_error", method=method, endpoint=index, error=data["error"])
                continue

            if index > 0:
                logger.info("rpc_fallback_used", method=method, endpoint=index)
            return data

        logger.error("rpc_all_endpoints_failed", method=method, tried=len(self.endpoints), error=last_error)
        raise RpcUnavailableError(method, len(self.endpoints), last_error)

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_signatures_for_address(self, address: str, limit: int = 100) -> list[str]:
        """
        Recent transaction signatures for a wallet, newest first.

        Args:
            address: The wallet to look up
            limit: Maximum number of signatures (RPC caps this at 1000)
        """
        data = await self.call("getSignaturesForAddress", [address, {"limit": limit}])
        return [entry["signature"] for entry in data.get("result") or [] if entry.get("signature")]

    async def get_transaction(self, signature: str) -> dict | None:
        """
        Full parsed transaction record, or None if the node doesn't have it.
        """
        params = [signature, {"encoding": "jsonParsed", "maxSupportedTransactionVersion": 0}]
        data = await self.call("getTransaction", params)
        return data.get("result")

    async def get_token_decimals(self, mint: str) -> int | None:
        """Number of decimals of an SPL mint, None if the node can't say."""
        data = await self.call("getTokenSupply", [mint])
        value = (data.get("result") or {}).get("value") or {}
        decimals = value.get("decimals")
        return int(decimals) if decimals is not None else None

    # =========================================================================
    # Writes
    # =========================================================================

    async def send_transaction(self, encoded_tx: str) -> str:
        """
        Submit a base64-encoded signed transaction. Returns the signature.
        """
        params = [
            encoded_tx,
            {
                "encoding": "base64",
                "skipPreflight": False,
                "preflightCommitment": "confirmed",
                "maxRetries": 3,
            },
        ]
        data = await self.call("sendTransaction", params)
        return data["result"]
