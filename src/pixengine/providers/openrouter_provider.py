"""OpenRouter image provider (OpenAI-compatible chat completions)."""

import logging
from typing import Any, Callable, Sequence

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

from pixengine.codec import (
    InvalidImageError,
    decode,
    encode_data_url,
    envelope_from_chat_completion,
)
from pixengine.models.errors import FailureKind
from pixengine.models.requests import Credential, ImageRef, ProviderName
from pixengine.models.responses import AttemptFailure, AttemptOutcome, AttemptSuccess, GeneratedImage
from pixengine.prompts import PromptStyle
from pixengine.providers.base import contains_any, truncate
from pixengine.services.retry_service import parse_retry_after, parse_suggested_delay

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
SITE_URL = "https://pixai.app"
SITE_TITLE = "PixAI"


def classify_openrouter_error(status_code: int | None, message: str) -> FailureKind:
    """Map an OpenRouter error to a failure kind."""
    if status_code == 402 or contains_any(message, ("credits", "balance", "quota")):
        return FailureKind.QUOTA_EXHAUSTED
    if status_code == 429:
        return FailureKind.RATE_LIMITED
    if status_code in (401, 403):
        if contains_any(message, ("moderation", "flagged")):
            return FailureKind.CONTENT_REJECTED
        return FailureKind.ACCESS_DENIED
    if status_code == 404 or contains_any(message, ("no endpoints found",)):
        return FailureKind.MODEL_UNAVAILABLE
    if status_code in (400, 422) and contains_any(message, ("moderation", "flagged", "safety")):
        return FailureKind.CONTENT_REJECTED
    if status_code in (502, 503, 504):
        return FailureKind.MODEL_UNAVAILABLE
    return FailureKind.UNKNOWN


def _error_message(e: APIStatusError) -> str:
    body = e.body
    if isinstance(body, dict):
        err = body.get("error", body)
        if isinstance(err, dict) and err.get("message"):
            metadata = err.get("metadata") or {}
            raw = metadata.get("raw") if isinstance(metadata, dict) else None
            return f"{err['message']} {raw}" if raw else str(err["message"])
        return str(err)
    return str(e.message or e)


class OpenRouterProvider:
    """Image provider using OpenRouter through the OpenAI SDK."""

    name = ProviderName.OPENROUTER.value
    prompt_style = PromptStyle.CHAT

    def __init__(
        self,
        base_url: str | None = None,
        timeout_seconds: float = 120.0,
        client_factory: Callable[..., AsyncOpenAI] | None = None,
    ):
        """
        Initialize OpenRouter provider.

        Args:
            base_url: OpenRouter API base URL
            timeout_seconds: HTTP timeout for one call
            client_factory: Builds the SDK client for a credential (defaults to AsyncOpenAI)
        """
        self.base_url = base_url or DEFAULT_BASE_URL
        self.timeout_seconds = timeout_seconds
        self._client_factory = client_factory or AsyncOpenAI

    def build_messages(self, prompt: str, images: Sequence[ImageRef]) -> list[dict[str, Any]]:
        content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        for image in images:
            content.append({"type": "image_url", "image_url": {"url": encode_data_url(image)}})
        return [{"role": "user", "content": content}]

    async def generate(
        self,
        model: str,
        credential: Credential,
        prompt: str,
        images: Sequence[ImageRef],
    ) -> AttemptOutcome:
        try:
            messages = self.build_messages(prompt, images)
        except InvalidImageError as e:
            return AttemptFailure(kind=FailureKind.MALFORMED_RESPONSE, detail=str(e), final=True)

        client = self._client_factory(
            api_key=credential.reveal(),
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            max_retries=0,  # retries are driven by the orchestrator
            default_headers={"HTTP-Referer": SITE_URL, "X-Title": SITE_TITLE},
        )
        logger.info(f"🎨 [OpenRouter] Attempting generation with {model} ({credential.label})")

        try:
            completion = await client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=0.7,
                stream=False,
                extra_body={"modalities": ["image", "text"]},
            )
        except APITimeoutError as e:
            return AttemptFailure(
                kind=FailureKind.MODEL_UNAVAILABLE,
                detail=f"OpenRouter request timed out: {str(e)}",
            )
        except APIConnectionError as e:
            return AttemptFailure(
                kind=FailureKind.MODEL_UNAVAILABLE,
                detail=f"OpenRouter connection failed: {str(e)}",
            )
        except APIStatusError as e:
            message = _error_message(e)
            kind = classify_openrouter_error(e.status_code, message)
            suggested = None
            if kind == FailureKind.RATE_LIMITED:
                suggested = parse_suggested_delay(message)
                if suggested is None and e.response is not None:
                    suggested = parse_retry_after(e.response.headers.get("Retry-After"))
            logger.warning(f"⚠️ [OpenRouter] {model} returned {e.status_code} ({kind.value})")
            return AttemptFailure(
                kind=kind,
                detail=f"OpenRouter error ({e.status_code}): {truncate(message)}",
                suggested_delay_seconds=suggested,
            )
        finally:
            await client.close()

        payload = completion.model_dump() if hasattr(completion, "model_dump") else dict(completion)
        envelope = envelope_from_chat_completion(payload)
        if envelope.moderation_verdict:
            return AttemptFailure(
                kind=FailureKind.CONTENT_REJECTED,
                detail=f"Blocked: {envelope.moderation_verdict}",
            )

        decoded = decode(envelope)
        if isinstance(decoded, GeneratedImage):
            return AttemptSuccess(image=decoded)
        if decoded.kind == FailureKind.MALFORMED_RESPONSE:
            logger.warning(f"⚠️ [OpenRouter] Response without image: {decoded.detail}")
        return decoded
