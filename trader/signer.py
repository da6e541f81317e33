"""
Transaction Signer
==================
The one place that holds the trading wallet's private key.

Other modules see only:
- public_key: the wallet address Jupiter builds transactions for
- sign_and_submit(tx_bytes): sign an unsigned versioned transaction and
  send it through the RPC gateway, returning the signature

The key itself is never logged, printed or returned.
"""

import base64

import base58
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from utils.errors import ConfigurationError, SubmitError, UpstreamError
from utils.logger import get_logger, short
from utils.solana_client import SolanaClient

logger = get_logger(__name__)


def load_keypair(private_key: str) -> Keypair:
    """Decode a base58 secret key. Raises ConfigurationError if it's missing or invalid."""
    if not private_key:
        raise ConfigurationError("COPY_TRADE_PRIVATE_KEY is not set")
    try:
        return Keypair.from_bytes(base58.b58decode(private_key))
    except (ValueError, TypeError):
        # Not chained: the decode error can echo key material
        raise ConfigurationError("COPY_TRADE_PRIVATE_KEY is not a valid base58 keypair") from None


class KeypairSigner:
    """
    Usage:
        signer = KeypairSigner(settings.copy_trade_private_key, solana)
        signature = await signer.sign_and_submit(unsigned_tx_bytes)
    """

    def __init__(self, private_key: str, rpc: SolanaClient):
        self._keypair = load_keypair(private_key)
        self.rpc = rpc
        logger.info("wallet_loaded", address=self.public_key)

    @property
    def public_key(self) -> str:
        return str(self._keypair.pubkey())

    async def sign_and_submit(self, tx_bytes: bytes) -> str:
        """Sign an unsigned transaction and submit it. Raises SubmitError."""
        try:
            unsigned = VersionedTransaction.from_bytes(tx_bytes)
            signed = VersionedTransaction(unsigned.message, [self._keypair])
        except (ValueError, TypeError) as e:
            raise SubmitError(f"Could not sign transaction: {e}") from e

        encoded = base64.b64encode(bytes(signed)).decode("utf-8")
        try:
            signature = await self.rpc.send_transaction(encoded)
        except UpstreamError as e:
            raise SubmitError(f"Transaction submission failed: {e}") from e

        if not signature:
            raise SubmitError("RPC returned no signature")
        logger.info("transaction_sent", signature=short(signature))
        return signature
