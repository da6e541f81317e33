"""
Tests for WalletScanner.

Covers:
- batching with a pause between batches
- non-swaps and unfetchable transactions drop out
- scan retries with exponential backoff
- stale fallback to the last good result, raise when there is none
- presence tracking across scans
"""

import pytest

from conftest import MINT_A, MINT_B, WALLET, make_tx
from monitor.wallet_scanner import WalletScanner
from utils.errors import RpcUnavailableError


class FakeSolana:
    """Serves make_tx records by signature; can fail per signature or entirely."""

    endpoints = ["http://rpc-1", "http://rpc-2"]

    def __init__(self, records: dict[str, dict | None]):
        self.records = records
        self.failing: set[str] = set()
        self.down = False
        self.signature_calls = 0

    async def get_signatures_for_address(self, address, limit=100):
        self.signature_calls += 1
        if self.down:
            raise RpcUnavailableError("getSignaturesForAddress", len(self.endpoints), "down")
        return list(self.records)[:limit]

    async def get_transaction(self, signature):
        if self.down or signature in self.failing:
            raise RpcUnavailableError("getTransaction", len(self.endpoints), "down")
        return self.records[signature]


class RecordingSleep:
    def __init__(self):
        self.waits: list[float] = []

    async def __call__(self, seconds):
        self.waits.append(seconds)


def _records(count: int) -> dict:
    records = {}
    for i in range(count):
        signature = f"sig_{i}"
        records[signature] = make_tx(signature=signature, block_time=1_700_000_000 + i)
    return records


@pytest.fixture
def sleep():
    return RecordingSleep()


def _scanner(settings, solana, enricher, sleep):
    settings.scan_batch_size = 10
    settings.scan_batch_delay_seconds = 0.1
    settings.scan_retry_base_seconds = 1.0
    return WalletScanner(settings, solana, enricher, sleep=sleep)


async def test_scan_batches_and_summarizes(settings, enricher, sleep):
    solana = FakeSolana(_records(25))
    scanner = _scanner(settings, solana, enricher, sleep)

    result = await scanner.scan(WALLET)

    assert result.signatures_checked == 25
    assert len(result.swaps) == 25
    assert sleep.waits == [0.1, 0.1]
    assert result.swaps[0].block_time > result.swaps[-1].block_time
    assert result.swaps[0].token_symbol == "BONK"
    assert result.summary.total_buys == 25
    assert result.stale is False


async def test_non_swaps_and_failed_fetches_drop_out(settings, enricher, sleep):
    records = _records(3)
    records["not_a_swap"] = make_tx(programs=["11111111111111111111111111111111"], signature="not_a_swap")
    records["missing"] = None
    solana = FakeSolana(records)
    solana.failing = {"sig_1"}

    result = await _scanner(settings, solana, enricher, sleep).scan(WALLET)

    assert sorted(s.signature for s in result.swaps) == ["sig_0", "sig_2"]
    assert result.signatures_checked == 5


async def test_no_signatures(settings, enricher, sleep):
    result = await _scanner(settings, FakeSolana({}), enricher, sleep).scan(WALLET)
    assert result.swaps == []
    assert result.summary.total_trades == 0


async def test_every_fetch_failing_is_an_error(settings, enricher, sleep):
    solana = FakeSolana(_records(2))
    solana.failing = {"sig_0", "sig_1"}
    with pytest.raises(RpcUnavailableError):
        await _scanner(settings, solana, enricher, sleep).scan(WALLET)


async def test_retries_then_raises_without_previous_result(settings, enricher, sleep):
    solana = FakeSolana(_records(1))
    solana.down = True
    scanner = _scanner(settings, solana, enricher, sleep)

    with pytest.raises(RpcUnavailableError):
        await scanner.scan(WALLET)

    assert solana.signature_calls == 3
    assert sleep.waits == [1.0, 2.0]
    assert WALLET in scanner.last_error


async def test_stale_previous_result_on_failure(settings, enricher, sleep):
    solana = FakeSolana(_records(2))
    scanner = _scanner(settings, solana, enricher, sleep)
    good = await scanner.scan(WALLET)

    solana.down = True
    stale = await scanner.scan(WALLET)

    assert stale.stale is True
    assert "down" in stale.error
    assert [s.signature for s in stale.swaps] == [s.signature for s in good.swaps]
    assert [s.token_mint for s in stale.tokens] == [MINT_A]
    assert scanner.last_result[WALLET].stale is False


async def test_presence_keeps_tokens_from_earlier_scans(settings, enricher, sleep):
    solana = FakeSolana({"sig_a": make_tx(signature="sig_a", token_changes=[(MINT_A, 10.0)])})
    scanner = _scanner(settings, solana, enricher, sleep)
    await scanner.scan(WALLET)

    solana.records = {"sig_b": make_tx(signature="sig_b", token_changes=[(MINT_B, 10.0)])}
    result = await scanner.scan(WALLET)

    assert {s.token_mint for s in result.tokens} == {MINT_A, MINT_B}
    assert [s.token_mint for s in result.swaps] == [MINT_B]
