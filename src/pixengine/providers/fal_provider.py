"""Fal.ai image generation provider."""

import logging
from typing import Any, Callable, Sequence

import fal_client
import httpx

from pixengine.codec import InvalidImageError, decode, encode_data_url, envelope_from_fal
from pixengine.models.errors import FailureKind
from pixengine.models.requests import Credential, ImageRef, ProviderName
from pixengine.models.responses import AttemptFailure, AttemptOutcome, AttemptSuccess, GeneratedImage
from pixengine.prompts import PromptStyle
from pixengine.providers.base import contains_any, truncate
from pixengine.services.retry_service import parse_suggested_delay

logger = logging.getLogger(__name__)

EDIT_SUFFIX = "/edit"


def classify_fal_error(status_code: int | None, message: str) -> FailureKind:
    """Map a fal.ai error to a failure kind."""
    if status_code == 429 or contains_any(message, ("rate limit", "too many requests")):
        return FailureKind.RATE_LIMITED
    if status_code == 402 or contains_any(message, ("exhausted balance", "insufficient", "credits", "billing")):
        return FailureKind.QUOTA_EXHAUSTED
    if status_code in (401, 403) or contains_any(message, ("unauthorized", "forbidden", "invalid key")):
        return FailureKind.ACCESS_DENIED
    if status_code == 404 or contains_any(message, ("application not found", "not found")):
        return FailureKind.MODEL_UNAVAILABLE
    if status_code == 422 and contains_any(message, ("nsfw", "safety", "content policy")):
        return FailureKind.CONTENT_REJECTED
    if status_code is not None and status_code >= 500:
        return FailureKind.MODEL_UNAVAILABLE
    return FailureKind.UNKNOWN


class FalProvider:
    """Image provider using the fal.ai queue API."""

    name = ProviderName.FAL.value
    prompt_style = PromptStyle.NATIVE

    def __init__(
        self,
        timeout_seconds: float = 120.0,
        client_factory: Callable[..., Any] | None = None,
    ):
        """
        Initialize Fal provider.

        Args:
            timeout_seconds: Default timeout the fal client applies to one call
            client_factory: Builds the fal client for a credential (defaults to fal_client.AsyncClient)
        """
        self.timeout_seconds = timeout_seconds
        self._client_factory = client_factory or fal_client.AsyncClient

    def endpoint_for(self, model: str, images: Sequence[ImageRef]) -> str:
        """Image-to-image requests go to the ``/edit`` variant of the model."""
        model = model.rstrip("/")
        if images and not model.endswith(EDIT_SUFFIX):
            return model + EDIT_SUFFIX
        return model

    def build_arguments(self, prompt: str, images: Sequence[ImageRef]) -> dict[str, Any]:
        arguments: dict[str, Any] = {
            "prompt": prompt,
            "num_images": 1,
            "output_format": "png",
        }
        if images:
            arguments["image_urls"] = [encode_data_url(image) for image in images]
        return arguments

    async def generate(
        self,
        model: str,
        credential: Credential,
        prompt: str,
        images: Sequence[ImageRef],
    ) -> AttemptOutcome:
        try:
            arguments = self.build_arguments(prompt, images)
        except InvalidImageError as e:
            return AttemptFailure(kind=FailureKind.MALFORMED_RESPONSE, detail=str(e), final=True)

        endpoint = self.endpoint_for(model, images)
        client = self._client_factory(key=credential.reveal(), default_timeout=self.timeout_seconds)
        logger.info(f"🎨 [Fal] Attempting generation with {endpoint} ({credential.label})")

        try:
            # subscribe() on the sync client blocks the event loop; always use the async client
            fal_result = await client.subscribe(endpoint, arguments=arguments)
        except (TimeoutError, httpx.TimeoutException) as e:
            return AttemptFailure(
                kind=FailureKind.MODEL_UNAVAILABLE,
                detail=f"Fal.ai request timed out: {str(e)}",
            )
        except httpx.HTTPStatusError as e:
            body = e.response.text or ""
            kind = classify_fal_error(e.response.status_code, body)
            return AttemptFailure(
                kind=kind,
                detail=f"Fal.ai returned error {e.response.status_code}: {truncate(body)}",
                suggested_delay_seconds=parse_suggested_delay(body) if kind == FailureKind.RATE_LIMITED else None,
            )
        except Exception as e:
            # fal_client raises its own error types; classify by status and message
            status_code = getattr(e, "status_code", None)
            kind = classify_fal_error(status_code, str(e))
            logger.warning(f"⚠️ [Fal] {endpoint} failed ({kind.value}): {str(e)}")
            return AttemptFailure(kind=kind, detail=f"Fal.ai generation failed: {truncate(str(e))}")

        if not isinstance(fal_result, dict):
            return AttemptFailure(kind=FailureKind.MALFORMED_RESPONSE, detail="Fal.ai returned empty result")

        envelope = envelope_from_fal(fal_result)
        if envelope.moderation_verdict:
            return AttemptFailure(
                kind=FailureKind.CONTENT_REJECTED,
                detail=f"Blocked: {envelope.moderation_verdict}",
            )

        decoded = decode(envelope)
        if isinstance(decoded, GeneratedImage):
            return AttemptSuccess(image=decoded)
        return decoded
