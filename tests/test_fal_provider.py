"""Tests for Fal image provider."""

import httpx
import pytest
from pydantic import SecretStr
from unittest.mock import AsyncMock, MagicMock

from pixengine.models.errors import FailureKind
from pixengine.models.requests import Credential
from pixengine.models.responses import AttemptFailure, AttemptSuccess
from pixengine.providers.fal_provider import FalProvider, classify_fal_error

FAL_CREDENTIAL = Credential(provider="fal", secret=SecretStr("fal-key"), label="fal#1")


def make_provider(subscribe):
    client = MagicMock()
    client.subscribe = subscribe
    factory = MagicMock(return_value=client)
    return FalProvider(timeout_seconds=60.0, client_factory=factory), factory


@pytest.mark.asyncio
async def test_fal_provider_generate_success():
    """Test successful text-to-image generation with Fal provider."""
    subscribe = AsyncMock(
        return_value={"images": [{"url": "https://v3.fal.media/files/img1.png", "width": 1024, "height": 1024}]}
    )
    provider, factory = make_provider(subscribe)

    outcome = await provider.generate("fal-ai/nano-banana", FAL_CREDENTIAL, "A red dragon", [])

    assert isinstance(outcome, AttemptSuccess)
    assert outcome.image.url == "https://v3.fal.media/files/img1.png"
    factory.assert_called_once_with(key="fal-key", default_timeout=60.0)
    args, kwargs = subscribe.call_args
    assert args[0] == "fal-ai/nano-banana"
    assert kwargs["arguments"] == {"prompt": "A red dragon", "num_images": 1, "output_format": "png"}


@pytest.mark.asyncio
async def test_fal_provider_edit_uses_edit_endpoint(png_image):
    subscribe = AsyncMock(return_value={"images": [{"url": "https://v3.fal.media/files/edit.png"}]})
    provider, _ = make_provider(subscribe)

    await provider.generate("fal-ai/nano-banana", FAL_CREDENTIAL, "make it blue", [png_image])

    args, kwargs = subscribe.call_args
    assert args[0] == "fal-ai/nano-banana/edit"
    assert kwargs["arguments"]["image_urls"][0].startswith("data:image/png;base64,")


@pytest.mark.asyncio
async def test_fal_provider_generate_timeout():
    """Test that a Fal timeout is classified as model unavailable."""
    provider, _ = make_provider(AsyncMock(side_effect=TimeoutError("Request timed out")))

    outcome = await provider.generate("fal-ai/nano-banana", FAL_CREDENTIAL, "A red dragon", [])

    assert isinstance(outcome, AttemptFailure)
    assert outcome.kind == FailureKind.MODEL_UNAVAILABLE
    assert "timed out" in outcome.detail


@pytest.mark.asyncio
async def test_fal_provider_http_status_error():
    request = httpx.Request("POST", "https://queue.fal.run/fal-ai/nano-banana")
    response = httpx.Response(429, request=request, text="Too many requests, retry in 4s")
    error = httpx.HTTPStatusError("429", request=request, response=response)
    provider, _ = make_provider(AsyncMock(side_effect=error))

    outcome = await provider.generate("fal-ai/nano-banana", FAL_CREDENTIAL, "A red dragon", [])

    assert outcome.kind == FailureKind.RATE_LIMITED
    assert outcome.suggested_delay_seconds == 4.0


@pytest.mark.asyncio
async def test_fal_provider_client_error_classified_by_message():
    provider, _ = make_provider(AsyncMock(side_effect=RuntimeError("User is locked. Reason: Exhausted balance")))

    outcome = await provider.generate("fal-ai/nano-banana", FAL_CREDENTIAL, "A red dragon", [])

    assert outcome.kind == FailureKind.QUOTA_EXHAUSTED


@pytest.mark.asyncio
async def test_fal_provider_nsfw_result_is_rejected():
    provider, _ = make_provider(AsyncMock(return_value={"images": [], "has_nsfw_concepts": [True]}))

    outcome = await provider.generate("fal-ai/nano-banana", FAL_CREDENTIAL, "A red dragon", [])

    assert outcome.kind == FailureKind.CONTENT_REJECTED


@pytest.mark.asyncio
async def test_fal_provider_empty_result_is_malformed():
    provider, _ = make_provider(AsyncMock(return_value=None))

    outcome = await provider.generate("fal-ai/nano-banana", FAL_CREDENTIAL, "A red dragon", [])

    assert outcome.kind == FailureKind.MALFORMED_RESPONSE


@pytest.mark.parametrize(
    "status_code,message,expected",
    [
        (429, "", FailureKind.RATE_LIMITED),
        (403, "Exhausted balance", FailureKind.QUOTA_EXHAUSTED),
        (401, "", FailureKind.ACCESS_DENIED),
        (404, "Application not found", FailureKind.MODEL_UNAVAILABLE),
        (422, "NSFW content detected", FailureKind.CONTENT_REJECTED),
        (500, "", FailureKind.MODEL_UNAVAILABLE),
        (None, "something odd", FailureKind.UNKNOWN),
    ],
)
def test_classify_fal_error(status_code, message, expected):
    assert classify_fal_error(status_code, message) == expected
