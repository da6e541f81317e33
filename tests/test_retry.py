"""Tests for the retry helpers: delay policies, give-up behaviour, selective retry."""

import pytest

from utils.errors import QuoteError, RpcUnavailableError
from utils.retry import exponential_delay, linear_delay, retry_async


class FlakyOperation:
    """Fails `failures` times with `error`, then returns "ok"."""

    def __init__(self, failures: int, error: Exception):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class RecordingSleep:
    def __init__(self):
        self.waits: list[float] = []

    async def __call__(self, seconds: float):
        self.waits.append(seconds)


def test_delay_policies():
    exponential = exponential_delay(1.0)
    linear = linear_delay(0.5)
    assert [exponential(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]
    assert [linear(n) for n in (1, 2, 3)] == [0.5, 1.0, 1.5]


async def test_succeeds_after_transient_failures():
    operation = FlakyOperation(2, RpcUnavailableError("getTransaction", 3))
    sleep = RecordingSleep()

    result = await retry_async(operation, attempts=3, delay=exponential_delay(1.0), sleep=sleep)

    assert result == "ok"
    assert operation.calls == 3
    assert sleep.waits == [1.0, 2.0]


async def test_reraises_last_error_when_exhausted():
    operation = FlakyOperation(5, QuoteError("no route"))
    sleep = RecordingSleep()

    with pytest.raises(QuoteError, match="no route"):
        await retry_async(operation, attempts=2, delay=linear_delay(0.5), sleep=sleep)

    assert operation.calls == 2
    assert sleep.waits == [0.5]


async def test_errors_outside_retry_on_propagate_immediately():
    operation = FlakyOperation(1, KeyError("boom"))
    sleep = RecordingSleep()

    with pytest.raises(KeyError):
        await retry_async(
            operation, attempts=3, delay=linear_delay(0.5), retry_on=(QuoteError,), sleep=sleep
        )

    assert operation.calls == 1
    assert sleep.waits == []


async def test_at_least_one_attempt():
    operation = FlakyOperation(0, QuoteError("unused"))
    assert await retry_async(operation, attempts=0, delay=linear_delay(1.0)) == "ok"
