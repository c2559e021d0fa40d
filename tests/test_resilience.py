"""Tests for bounded retry with exponential backoff."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from offline_sync.config import RetryConfig
from offline_sync.domain.errors import ErrorKind
from offline_sync.network.resilience import NetworkResilienceLayer
from tests.fakes import RecordingSleep, server_error


class _Flaky:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_timeouts_back_off_base_2x_4x_before_surfacing(recording_sleep: RecordingSleep):
    layer = NetworkResilienceLayer(max_retries=3, base_delay=1.0, jitter=0.0, sleep=recording_sleep)
    op = _Flaky(*[httpx.ReadTimeout("slow")] * 4)

    result = await layer.execute(op, operation_name="list_all_attractions")

    assert not result.ok
    assert result.error_kind is ErrorKind.TIMEOUT
    assert op.calls == 4
    assert result.attempts == 4
    assert recording_sleep.delays == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_recovers_after_transient_failure(recording_sleep: RecordingSleep):
    layer = NetworkResilienceLayer(max_retries=3, base_delay=0.5, jitter=0.0, sleep=recording_sleep)
    op = _Flaky(server_error(503), ["row"])

    result = await layer.execute(op)

    assert result.ok
    assert result.value == ["row"]
    assert result.attempts == 2
    assert recording_sleep.delays == [0.5]


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(recording_sleep: RecordingSleep):
    layer = NetworkResilienceLayer(sleep=recording_sleep)
    op = _Flaky(server_error(404))

    result = await layer.execute(op)

    assert result.error_kind is ErrorKind.CLIENT_ERROR
    assert op.calls == 1
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_unauthorized_returned_immediately(recording_sleep: RecordingSleep):
    layer = NetworkResilienceLayer(sleep=recording_sleep)
    op = _Flaky(server_error(401))

    result = await layer.execute(op)

    assert result.error_kind is ErrorKind.UNAUTHORIZED
    assert op.calls == 1


@pytest.mark.asyncio
async def test_mutations_attempted_once_without_request_key(recording_sleep: RecordingSleep):
    layer = NetworkResilienceLayer(sleep=recording_sleep)
    op = _Flaky(server_error(503), None)

    result = await layer.execute(op, idempotent=False)

    assert result.error_kind is ErrorKind.SERVER_UNAVAILABLE
    assert op.calls == 1


@pytest.mark.asyncio
async def test_mutations_with_request_key_are_retried(recording_sleep: RecordingSleep):
    layer = NetworkResilienceLayer(jitter=0.0, sleep=recording_sleep)
    op = _Flaky(server_error(503), None)

    result = await layer.execute(op, idempotent=False, request_key="reaction:r1:like")

    assert result.ok
    assert op.calls == 2


def test_backoff_is_capped_and_jittered():
    layer = NetworkResilienceLayer(base_delay=1.0, max_delay=10.0, jitter=0.1, rng=lambda: 1.0)

    assert layer.backoff_delay(0) == pytest.approx(1.1)
    assert layer.backoff_delay(2) == pytest.approx(4.4)
    assert layer.backoff_delay(10) == pytest.approx(11.0)


def test_from_config_uses_retry_settings():
    layer = NetworkResilienceLayer.from_config(
        RetryConfig(max_retries=2, base_delay_sec=0.25, max_delay_sec=2.0, jitter=0.0)
    )

    assert layer.max_retries == 2
    assert layer.base_delay == 0.25
    assert layer.max_delay == 2.0


@pytest.mark.asyncio
async def test_cancellation_propagates(recording_sleep: RecordingSleep):
    layer = NetworkResilienceLayer(sleep=recording_sleep)

    async def cancelled():
        raise asyncio.CancelledError

    with pytest.raises(asyncio.CancelledError):
        await layer.execute(cancelled)
