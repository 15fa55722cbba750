"""Retry controller backoff and error classification"""

import pytest

from common.exceptions import MalformedResponseError, NetworkError
from services.water.retry import RetryController
from tests.helpers import FakeClock, ScriptedGateway, readings


@pytest.mark.asyncio
async def test_returns_first_successful_result():
    clock = FakeClock()
    gateway = ScriptedGateway(readings())
    retry = RetryController(gateway, clock.sleep)

    result = await retry.fetch(["A", "B"])

    assert result == readings()
    assert len(gateway.calls) == 1
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_exhaustion_makes_exactly_max_attempts():
    clock = FakeClock()
    gateway = ScriptedGateway(NetworkError("timeout"))
    retry = RetryController(gateway, clock.sleep, max_attempts=5, initial_backoff_ms=1000)

    result = await retry.fetch(["A", "B"])

    assert result is None
    assert len(gateway.calls) == 5
    assert retry.last_attempts == 5
    # No sleep after the final attempt
    assert clock.sleeps == [1.0, 2.0, 4.0, 8.0]


@pytest.mark.asyncio
async def test_recovers_after_transient_failures():
    clock = FakeClock()
    gateway = ScriptedGateway(
        NetworkError("refused"),
        MalformedResponseError("Unexpected API response: not an array", {}),
        readings(level=2.0),
    )
    retry = RetryController(gateway, clock.sleep, initial_backoff_ms=500)

    result = await retry.fetch(["A", "B"])

    assert result[0].value == 2.0
    assert len(gateway.calls) == 3
    assert clock.sleeps == [0.5, 1.0]


@pytest.mark.asyncio
async def test_non_retryable_error_propagates_immediately():
    clock = FakeClock()
    gateway = ScriptedGateway(KeyError("boom"))
    retry = RetryController(gateway, clock.sleep)

    with pytest.raises(KeyError):
        await retry.fetch(["A", "B"])

    assert len(gateway.calls) == 1
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_single_attempt_never_sleeps():
    clock = FakeClock()
    gateway = ScriptedGateway(NetworkError("down"))
    retry = RetryController(gateway, clock.sleep, max_attempts=1)

    assert await retry.fetch(["A"]) is None
    assert clock.sleeps == []


def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        RetryController(ScriptedGateway([]), FakeClock().sleep, max_attempts=0)
