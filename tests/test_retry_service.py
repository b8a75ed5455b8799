"""Tests for the backoff policy and the same-model retry loop."""

import asyncio

import pytest

from pixengine.config import BackoffSettings
from pixengine.models.errors import FailureKind
from pixengine.models.responses import AttemptFailure, AttemptSuccess
from pixengine.services.retry_service import (
    BackoffPolicy,
    HighTrafficError,
    parse_retry_after,
    parse_suggested_delay,
    retry_same_model,
)

from tests.fakes import fail, ok


def make_attempt(outcomes):
    """Return an attempt callable that replays outcomes and counts calls."""
    remaining = list(outcomes)

    async def attempt():
        attempt.calls += 1
        if len(remaining) > 1:
            return remaining.pop(0)
        return remaining[0]

    attempt.calls = 0
    return attempt


def test_parse_suggested_delay_from_message():
    assert parse_suggested_delay("Quota exceeded. Please retry in 54.5s.") == 54.5


def test_parse_suggested_delay_from_retry_delay_field():
    body = '{"error": {"details": [{"@type": "RetryInfo", "retryDelay": "54s"}]}}'

    assert parse_suggested_delay(body) == 54.0


def test_parse_suggested_delay_missing():
    assert parse_suggested_delay("Too many requests") is None
    assert parse_suggested_delay(None) is None


def test_parse_retry_after():
    assert parse_retry_after("7") == 7.0
    assert parse_retry_after("Wed, 21 Oct 2026 07:28:00 GMT") is None
    assert parse_retry_after(None) is None


def test_exponential_delays():
    policy = BackoffPolicy(BackoffSettings(initial_delay_seconds=2.0, ceiling_seconds=20.0))
    failure = fail(FailureKind.RATE_LIMITED)

    assert [policy.compute_delay(failure, i) for i in range(4)] == [2.0, 4.0, 8.0, 16.0]


def test_exponential_delay_over_ceiling_raises():
    policy = BackoffPolicy(BackoffSettings(initial_delay_seconds=2.0, ceiling_seconds=20.0))

    with pytest.raises(HighTrafficError) as exc_info:
        policy.compute_delay(fail(FailureKind.RATE_LIMITED), 4)

    assert exc_info.value.delay_seconds == 32.0


def test_suggested_delay_is_rounded_up_with_buffer():
    policy = BackoffPolicy(BackoffSettings(ceiling_seconds=20.0))

    assert policy.compute_delay(fail(FailureKind.RATE_LIMITED, delay=2.1), 0) == 3.5


def test_suggested_delay_over_ceiling_is_high_traffic():
    """A provider asking for 54s exceeds a 20s ceiling and fails fast."""
    policy = BackoffPolicy(BackoffSettings(ceiling_seconds=20.0))

    with pytest.raises(HighTrafficError) as exc_info:
        policy.compute_delay(fail(FailureKind.RATE_LIMITED, delay=54), 0)

    error = exc_info.value
    assert error.delay_seconds == 54.5
    assert error.failure.kind == FailureKind.RATE_LIMITED
    assert "High traffic" in error.failure.detail


@pytest.mark.asyncio
async def test_retry_succeeds_after_rate_limits(recording_sleep):
    policy = BackoffPolicy(BackoffSettings(initial_delay_seconds=2.0, max_retries=2))
    attempt = make_attempt([fail(FailureKind.RATE_LIMITED), fail(FailureKind.RATE_LIMITED), ok()])

    outcome = await retry_same_model(attempt, policy, sleep=recording_sleep)

    assert isinstance(outcome, AttemptSuccess)
    assert attempt.calls == 3
    assert recording_sleep.delays == [2.0, 4.0]


@pytest.mark.asyncio
async def test_retry_exhausts_budget(recording_sleep):
    policy = BackoffPolicy(BackoffSettings(initial_delay_seconds=2.0, max_retries=2))
    attempt = make_attempt([fail(FailureKind.RATE_LIMITED)])

    outcome = await retry_same_model(attempt, policy, sleep=recording_sleep)

    assert isinstance(outcome, AttemptFailure)
    assert outcome.kind == FailureKind.RATE_LIMITED
    assert attempt.calls == 3
    assert recording_sleep.delays == [2.0, 4.0]


@pytest.mark.asyncio
async def test_zero_retries_means_single_attempt(recording_sleep):
    policy = BackoffPolicy(BackoffSettings(max_retries=0))
    attempt = make_attempt([fail(FailureKind.RATE_LIMITED)])

    await retry_same_model(attempt, policy, sleep=recording_sleep)

    assert attempt.calls == 1
    assert recording_sleep.delays == []


@pytest.mark.parametrize(
    "kind",
    [
        FailureKind.QUOTA_EXHAUSTED,
        FailureKind.ACCESS_DENIED,
        FailureKind.MODEL_UNAVAILABLE,
        FailureKind.CONTENT_REJECTED,
        FailureKind.MALFORMED_RESPONSE,
        FailureKind.UNKNOWN,
    ],
)
@pytest.mark.asyncio
async def test_only_rate_limits_retry_the_same_model(kind, recording_sleep):
    policy = BackoffPolicy(BackoffSettings(max_retries=3))
    attempt = make_attempt([fail(kind)])

    outcome = await retry_same_model(attempt, policy, sleep=recording_sleep)

    assert outcome.kind == kind
    assert attempt.calls == 1
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_final_failure_is_not_retried(recording_sleep):
    policy = BackoffPolicy(BackoffSettings(max_retries=3))
    attempt = make_attempt([AttemptFailure(kind=FailureKind.RATE_LIMITED, final=True)])

    await retry_same_model(attempt, policy, sleep=recording_sleep)

    assert attempt.calls == 1


@pytest.mark.asyncio
async def test_high_traffic_returns_without_sleeping(recording_sleep):
    policy = BackoffPolicy(BackoffSettings(max_retries=5, ceiling_seconds=20.0))
    attempt = make_attempt([fail(FailureKind.RATE_LIMITED, delay=54)])

    outcome = await retry_same_model(attempt, policy, sleep=recording_sleep)

    assert outcome.kind == FailureKind.RATE_LIMITED
    assert outcome.detail.startswith("High traffic")
    assert attempt.calls == 1
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_cancellation_propagates(recording_sleep):
    policy = BackoffPolicy(BackoffSettings(max_retries=3))

    async def cancelled():
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await retry_same_model(cancelled, policy, sleep=recording_sleep)
