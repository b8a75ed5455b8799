"""Google Gemini image provider (Generative Language ``generateContent`` API)."""

import logging
from typing import Any, Sequence

import httpx

from pixengine.codec import InvalidImageError, decode, encode_inline_part, envelope_from_gemini
from pixengine.models.errors import FailureKind
from pixengine.models.requests import Credential, ImageRef, ProviderName
from pixengine.models.responses import AttemptFailure, AttemptOutcome, AttemptSuccess, GeneratedImage
from pixengine.prompts import PromptStyle
from pixengine.providers.base import contains_any, truncate
from pixengine.services.retry_service import parse_retry_after, parse_suggested_delay

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://generativelanguage.googleapis.com"


def classify_gemini_error(status_code: int, body: str) -> FailureKind:
    """Map a Gemini HTTP error to a failure kind."""
    if status_code == 429 or contains_any(body, ("RESOURCE_EXHAUSTED",)):
        return FailureKind.RATE_LIMITED
    if status_code == 503 or contains_any(body, ("overloaded", '"UNAVAILABLE"')):
        # Capacity pressure clears on its own; retry the same model
        return FailureKind.RATE_LIMITED
    if status_code == 402 or contains_any(body, ("billing account", "credits")):
        return FailureKind.QUOTA_EXHAUSTED
    if status_code in (401, 403) or contains_any(
        body, ("PERMISSION_DENIED", "API_KEY_INVALID", "API key not valid", "UNAUTHENTICATED")
    ):
        return FailureKind.ACCESS_DENIED
    if status_code == 404 or contains_any(body, ("NOT_FOUND",)):
        return FailureKind.MODEL_UNAVAILABLE
    if status_code == 400 and contains_any(body, ("SAFETY", "blocked", "prohibited")):
        return FailureKind.CONTENT_REJECTED
    if status_code in (500, 502, 504):
        return FailureKind.MODEL_UNAVAILABLE
    return FailureKind.UNKNOWN


class GeminiProvider:
    """Image provider using the Gemini ``generateContent`` REST API."""

    name = ProviderName.GOOGLE.value
    prompt_style = PromptStyle.NATIVE

    def __init__(self, endpoint: str | None = None, timeout_seconds: float = 120.0):
        """
        Initialize Gemini provider.

        Args:
            endpoint: API base URL (defaults to the public Generative Language endpoint)
            timeout_seconds: HTTP timeout for one call
        """
        self.base_url = f"{(endpoint or DEFAULT_ENDPOINT).rstrip('/')}/v1beta/models"
        self.timeout_seconds = timeout_seconds

    def build_payload(self, prompt: str, images: Sequence[ImageRef]) -> dict[str, Any]:
        """Source images first, then the instruction text."""
        parts: list[dict[str, Any]] = [encode_inline_part(image) for image in images]
        parts.append({"text": prompt})
        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"responseModalities": ["IMAGE"]},
        }

    async def generate(
        self,
        model: str,
        credential: Credential,
        prompt: str,
        images: Sequence[ImageRef],
    ) -> AttemptOutcome:
        try:
            payload = self.build_payload(prompt, images)
        except InvalidImageError as e:
            return AttemptFailure(kind=FailureKind.MALFORMED_RESPONSE, detail=str(e), final=True)

        url = f"{self.base_url}/{model}:generateContent"
        headers = {"x-goog-api-key": credential.reveal()}
        logger.info(f"🎨 [Gemini] Attempting generation with {model} ({credential.label})")

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(url, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            return AttemptFailure(
                kind=FailureKind.MODEL_UNAVAILABLE,
                detail=f"Gemini request timed out: {str(e)}",
            )
        except httpx.HTTPError as e:
            return AttemptFailure(
                kind=FailureKind.MODEL_UNAVAILABLE,
                detail=f"Gemini request failed: {str(e)}",
            )

        if response.status_code >= 400:
            body = response.text or ""
            kind = classify_gemini_error(response.status_code, body)
            suggested = None
            if kind == FailureKind.RATE_LIMITED:
                suggested = parse_suggested_delay(body)
                if suggested is None:
                    suggested = parse_retry_after(response.headers.get("Retry-After"))
            logger.warning(f"⚠️ [Gemini] {model} returned {response.status_code} ({kind.value})")
            return AttemptFailure(
                kind=kind,
                detail=f"Gemini error {response.status_code}: {truncate(body)}",
                suggested_delay_seconds=suggested,
            )

        try:
            result = response.json()
        except ValueError:
            return AttemptFailure(
                kind=FailureKind.MALFORMED_RESPONSE,
                detail=f"Gemini returned non-JSON body: {truncate(response.text or '')}",
            )

        envelope = envelope_from_gemini(result)
        if envelope.moderation_verdict:
            return AttemptFailure(
                kind=FailureKind.CONTENT_REJECTED,
                detail=f"Blocked: {envelope.moderation_verdict}",
            )

        decoded = decode(envelope)
        if isinstance(decoded, GeneratedImage):
            return AttemptSuccess(image=decoded)
        return decoded
