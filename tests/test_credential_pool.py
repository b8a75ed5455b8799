"""Tests for credential rotation and model fallback sequencing."""

import pytest
from pydantic import SecretStr

from pixengine.models.errors import FailureKind
from pixengine.models.requests import Credential
from pixengine.models.responses import AttemptFailure, AttemptSuccess
from pixengine.services.credential_pool import CredentialPool
from pixengine.services.model_chain import ModelFallbackChain

from tests.fakes import fail, ok


def make_pool(count=3, provider="google"):
    return CredentialPool(
        provider,
        [Credential(provider=provider, secret=SecretStr(f"k{i}"), label=f"{provider}#{i + 1}") for i in range(count)],
    )


def recorder(outcomes):
    calls = []

    async def operation(*args):
        calls.append(args)
        return outcomes[min(len(calls), len(outcomes)) - 1]

    return operation, calls


@pytest.mark.asyncio
async def test_pool_starts_with_primary_credential():
    pool = make_pool()
    operation, calls = recorder([ok()])

    outcome = await pool.try_each(operation)

    assert isinstance(outcome, AttemptSuccess)
    assert [index for index, _ in calls] == [0]


@pytest.mark.asyncio
async def test_pool_rotates_on_quota_and_rate_limit():
    pool = make_pool()
    operation, calls = recorder([fail(FailureKind.QUOTA_EXHAUSTED), fail(FailureKind.RATE_LIMITED), ok()])

    outcome = await pool.try_each(operation)

    assert isinstance(outcome, AttemptSuccess)
    assert [credential.label for _, credential in calls] == ["google#1", "google#2", "google#3"]


@pytest.mark.asyncio
async def test_pool_does_not_rotate_on_access_denied():
    pool = make_pool()
    operation, calls = recorder([fail(FailureKind.ACCESS_DENIED)])

    outcome = await pool.try_each(operation)

    assert outcome.kind == FailureKind.ACCESS_DENIED
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_pool_exhaustion_keeps_last_kind():
    pool = make_pool(count=2)
    operation, calls = recorder([fail(FailureKind.RATE_LIMITED), fail(FailureKind.QUOTA_EXHAUSTED, "no credits")])

    outcome = await pool.try_each(operation)

    assert outcome.kind == FailureKind.QUOTA_EXHAUSTED
    assert outcome.final is True
    assert "All 2 google credential(s) are exhausted" in outcome.detail
    assert "no credits" in outcome.detail
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_pool_stops_on_final_failure():
    pool = make_pool()
    operation, calls = recorder([AttemptFailure(kind=FailureKind.RATE_LIMITED, final=True)])

    await pool.try_each(operation)

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_empty_pool_is_access_denied():
    pool = make_pool(count=0)
    operation, calls = recorder([ok()])

    outcome = await pool.try_each(operation)

    assert outcome.kind == FailureKind.ACCESS_DENIED
    assert outcome.final is True
    assert calls == []


def test_pool_rejects_foreign_credentials():
    foreign = Credential(provider="fal", secret=SecretStr("x"), label="fal#1")

    with pytest.raises(ValueError):
        CredentialPool("google", [foreign])


@pytest.mark.asyncio
async def test_chain_falls_back_on_access_denied_and_unavailable():
    chain = ModelFallbackChain("google", ["primary", "secondary", "tertiary"])
    operation, calls = recorder(
        [fail(FailureKind.ACCESS_DENIED), fail(FailureKind.MODEL_UNAVAILABLE), ok()]
    )

    outcome = await chain.try_each(operation)

    assert isinstance(outcome, AttemptSuccess)
    assert [model for (model,) in calls] == ["primary", "secondary", "tertiary"]


@pytest.mark.parametrize(
    "kind",
    [FailureKind.RATE_LIMITED, FailureKind.QUOTA_EXHAUSTED, FailureKind.CONTENT_REJECTED],
)
@pytest.mark.asyncio
async def test_chain_does_not_fall_back_on_other_kinds(kind):
    chain = ModelFallbackChain("google", ["primary", "secondary"])
    operation, calls = recorder([fail(kind)])

    outcome = await chain.try_each(operation)

    assert outcome.kind == kind
    assert calls == [("primary",)]


@pytest.mark.asyncio
async def test_chain_exhaustion_returns_last_failure():
    chain = ModelFallbackChain("google", ["primary", "primary"])
    operation, calls = recorder([fail(FailureKind.MODEL_UNAVAILABLE, "down")])

    outcome = await chain.try_each(operation)

    assert outcome.kind == FailureKind.MODEL_UNAVAILABLE
    assert len(calls) == 2


def test_chain_requires_a_model():
    with pytest.raises(ValueError):
        ModelFallbackChain("google", [])

    assert ModelFallbackChain("google", ["a", "b"]).primary == "a"
