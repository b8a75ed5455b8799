"""Tests for OpenRouter image provider."""

import httpx
import openai
import pytest
from unittest.mock import AsyncMock, MagicMock

from pixengine.models.errors import FailureKind
from pixengine.models.responses import AttemptFailure, AttemptSuccess
from pixengine.providers.openrouter_provider import OpenRouterProvider, classify_openrouter_error

REQUEST = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")


def make_provider(create):
    client = MagicMock()
    client.chat.completions.create = create
    client.close = AsyncMock()
    factory = MagicMock(return_value=client)
    return OpenRouterProvider(client_factory=factory), factory, client


def completion(message, finish_reason="stop"):
    result = MagicMock()
    result.model_dump.return_value = {"choices": [{"message": message, "finish_reason": finish_reason}]}
    return result


def status_error(cls, status_code, message, headers=None):
    response = httpx.Response(status_code, request=REQUEST, headers=headers or {})
    return cls(message, response=response, body={"error": {"message": message}})


@pytest.mark.asyncio
async def test_openrouter_markdown_image_success(credential, png_image):
    create = AsyncMock(return_value=completion({"content": "Here it is: ![img](https://cdn.example/out.png)"}))
    provider, factory, client = make_provider(create)

    outcome = await provider.generate("google/gemini-2.5-flash-image", credential, "make it blue", [png_image])

    assert isinstance(outcome, AttemptSuccess)
    assert outcome.image.url == "https://cdn.example/out.png"

    factory_kwargs = factory.call_args.kwargs
    assert factory_kwargs["api_key"] == "test-key"
    assert factory_kwargs["max_retries"] == 0
    create_kwargs = create.call_args.kwargs
    assert create_kwargs["model"] == "google/gemini-2.5-flash-image"
    assert create_kwargs["extra_body"] == {"modalities": ["image", "text"]}
    content = create_kwargs["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": "make it blue"}
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")
    client.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_openrouter_images_field_success(credential):
    message = {"content": "", "images": [{"type": "image_url", "image_url": {"url": "https://cdn.example/a.webp"}}]}
    provider, _, _ = make_provider(AsyncMock(return_value=completion(message)))

    outcome = await provider.generate("m", credential, "p", [])

    assert outcome.image.url == "https://cdn.example/a.webp"


@pytest.mark.asyncio
async def test_openrouter_rate_limit(credential):
    error = status_error(openai.RateLimitError, 429, "Rate limit exceeded", headers={"Retry-After": "3"})
    provider, _, client = make_provider(AsyncMock(side_effect=error))

    outcome = await provider.generate("m", credential, "p", [])

    assert isinstance(outcome, AttemptFailure)
    assert outcome.kind == FailureKind.RATE_LIMITED
    assert outcome.suggested_delay_seconds == 3.0
    client.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_openrouter_insufficient_credits(credential):
    error = status_error(openai.APIStatusError, 402, "Insufficient credits")
    provider, _, _ = make_provider(AsyncMock(side_effect=error))

    outcome = await provider.generate("m", credential, "p", [])

    assert outcome.kind == FailureKind.QUOTA_EXHAUSTED
    assert "Insufficient credits" in outcome.detail


@pytest.mark.asyncio
async def test_openrouter_timeout(credential):
    provider, _, _ = make_provider(AsyncMock(side_effect=openai.APITimeoutError(request=REQUEST)))

    outcome = await provider.generate("m", credential, "p", [])

    assert outcome.kind == FailureKind.MODEL_UNAVAILABLE


@pytest.mark.asyncio
async def test_openrouter_content_filter(credential):
    provider, _, _ = make_provider(
        AsyncMock(return_value=completion({"content": "I can't help"}, finish_reason="content_filter"))
    )

    outcome = await provider.generate("m", credential, "p", [])

    assert outcome.kind == FailureKind.CONTENT_REJECTED


@pytest.mark.asyncio
async def test_openrouter_prose_only_is_malformed(credential):
    provider, _, _ = make_provider(
        AsyncMock(return_value=completion({"content": "x" * 600 + " I am a text-only assistant."}))
    )

    outcome = await provider.generate("m", credential, "p", [])

    assert outcome.kind == FailureKind.MALFORMED_RESPONSE


@pytest.mark.parametrize(
    "status_code,message,expected",
    [
        (402, "Payment required", FailureKind.QUOTA_EXHAUSTED),
        (429, "Too many requests", FailureKind.RATE_LIMITED),
        (401, "No auth credentials found", FailureKind.ACCESS_DENIED),
        (403, "Input was flagged by moderation", FailureKind.CONTENT_REJECTED),
        (404, "No endpoints found for model", FailureKind.MODEL_UNAVAILABLE),
        (400, "Request flagged for safety", FailureKind.CONTENT_REJECTED),
        (502, "Bad gateway", FailureKind.MODEL_UNAVAILABLE),
        (400, "Invalid request", FailureKind.UNKNOWN),
    ],
)
def test_classify_openrouter_error(status_code, message, expected):
    assert classify_openrouter_error(status_code, message) == expected
