"""Tests for keypair loading and transaction submission."""

from unittest.mock import AsyncMock

import base58
import pytest
from solders.keypair import Keypair

from trader.signer import KeypairSigner, load_keypair
from utils.errors import ConfigurationError, RpcUnavailableError, SubmitError


@pytest.fixture
def keypair() -> Keypair:
    return Keypair()


def _secret(keypair: Keypair) -> str:
    return base58.b58encode(bytes(keypair)).decode()


def test_load_keypair(keypair):
    assert load_keypair(_secret(keypair)).pubkey() == keypair.pubkey()


@pytest.mark.parametrize("secret", ["", "0OIl", base58.b58encode(b"short").decode()])
def test_invalid_key_is_a_configuration_error(secret):
    with pytest.raises(ConfigurationError) as excinfo:
        load_keypair(secret)
    if secret:
        assert secret not in str(excinfo.value)


def test_public_key(keypair):
    signer = KeypairSigner(_secret(keypair), AsyncMock())
    assert signer.public_key == str(keypair.pubkey())


async def test_garbage_transaction_bytes(keypair):
    rpc = AsyncMock()
    signer = KeypairSigner(_secret(keypair), rpc)
    with pytest.raises(SubmitError):
        await signer.sign_and_submit(b"not a transaction")
    rpc.send_transaction.assert_not_awaited()


async def test_submit_failure_is_submit_error(keypair, monkeypatch):
    rpc = AsyncMock()
    rpc.send_transaction.side_effect = RpcUnavailableError("sendTransaction", 2)
    signer = KeypairSigner(_secret(keypair), rpc)

    class _Tx:
        def __init__(self, message, keypairs):
            self.message = message

        @classmethod
        def from_bytes(cls, data):
            return cls(object(), [])

        def __bytes__(self):
            return b"signed"

    monkeypatch.setattr("trader.signer.VersionedTransaction", _Tx)

    with pytest.raises(SubmitError, match="submission failed"):
        await signer.sign_and_submit(b"unsigned")
    assert rpc.send_transaction.await_args.args[0] == "c2lnbmVk"
