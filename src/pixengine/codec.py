"""Wire codec: outbound image encoding and inbound response normalization.

Providers return generated images in several incompatible shapes: inline
base64 parts, structured image fields, markdown links inside chat text and
bare URLs. Each provider client maps its raw payload into a
``ResponseEnvelope``; ``decode`` then applies one ordered decision list to
every envelope, so the rules for "the provider sent an image" versus "the
provider sent an apology" live in exactly one place.
"""

import base64
import binascii
import re
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from pixengine.models.errors import FailureKind
from pixengine.models.requests import DATA_URL_PATTERN, ImageRef
from pixengine.models.responses import AttemptFailure, GeneratedImage

MARKDOWN_IMAGE_PATTERN = re.compile(r"!\[.*?\]\((.*?)\)", re.DOTALL)
BARE_URL_PATTERN = re.compile(r"(https?://[^\s<>\"')]+)")

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp", ".gif")
STORAGE_HOST_MARKERS = ("storage.googleapis.com", "amazonaws.com", "usercontent", "fal.media")
SHORT_TEXT_THRESHOLD = 500
DIAGNOSTIC_TEXT_LIMIT = 300

# Gemini finish reasons that are moderation verdicts
MODERATION_FINISH_REASONS = frozenset({
    "SAFETY",
    "IMAGE_SAFETY",
    "PROHIBITED_CONTENT",
    "IMAGE_PROHIBITED_CONTENT",
    "BLOCKLIST",
    "SPII",
    "RECITATION",
    "IMAGE_RECITATION",
})
NORMAL_FINISH_REASONS = frozenset({"", "STOP", "MAX_TOKENS", "FINISH_REASON_UNSPECIFIED"})

DecodeResult = Union[GeneratedImage, AttemptFailure]


class InvalidImageError(ValueError):
    """Raised when a source image cannot be encoded for a provider."""


class InlineImage(BaseModel):
    mime_type: str
    data_b64: str


class ResponseEnvelope(BaseModel):
    """Provider-neutral view of a raw generation response."""

    inline_images: list[InlineImage] = Field(default_factory=list)
    image_urls: list[str] = Field(default_factory=list)
    text: str = ""
    billed_image_tokens: int = Field(0, ge=0)
    moderation_verdict: Optional[str] = Field(None, description="Explicit block/safety verdict")
    stop_reason: Optional[str] = Field(None, description="Abnormal stop reason")


# --- Encode -----------------------------------------------------------------


def _checked_b64(image: ImageRef) -> str:
    if not image.data:
        raise InvalidImageError("Source image is empty")
    if not (image.mime_type or "").startswith("image/"):
        raise InvalidImageError(f"Source image has a non-image MIME type: {image.mime_type!r}")
    return base64.b64encode(image.data).decode("ascii")


def encode_inline_part(image: ImageRef) -> dict[str, Any]:
    """Encode an image as a Gemini ``inlineData`` part."""
    return {"inlineData": {"mimeType": image.mime_type, "data": _checked_b64(image)}}


def encode_data_url(image: ImageRef) -> str:
    """Encode an image as a ``data:`` URL string."""
    return f"data:{image.mime_type};base64,{_checked_b64(image)}"


# --- Envelopes ----------------------------------------------------------------


def envelope_from_gemini(payload: dict[str, Any]) -> ResponseEnvelope:
    """Build an envelope from a Gemini ``generateContent`` response."""
    payload = payload or {}
    envelope = ResponseEnvelope()

    block_reason = (payload.get("promptFeedback") or {}).get("blockReason")
    if block_reason:
        envelope.moderation_verdict = str(block_reason)

    candidates = payload.get("candidates") or []
    if candidates:
        c0 = candidates[0] or {}
        texts: list[str] = []
        for part in (c0.get("content") or {}).get("parts") or []:
            if part.get("thought"):
                # Interim "thinking" images are not the answer
                continue
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and isinstance(inline.get("data"), str):
                envelope.inline_images.append(
                    InlineImage(
                        mime_type=inline.get("mimeType") or inline.get("mime_type") or "image/png",
                        data_b64=inline["data"],
                    )
                )
            elif isinstance(part.get("text"), str):
                texts.append(part["text"])
        envelope.text = "\n".join(texts).strip()

        finish_reason = str(c0.get("finishReason") or "").strip().upper()
        if finish_reason in MODERATION_FINISH_REASONS and not envelope.moderation_verdict:
            envelope.moderation_verdict = finish_reason
        elif finish_reason not in NORMAL_FINISH_REASONS:
            envelope.stop_reason = finish_reason

    for detail in (payload.get("usageMetadata") or {}).get("candidatesTokensDetails") or []:
        if str(detail.get("modality", "")).upper() == "IMAGE":
            envelope.billed_image_tokens += int(detail.get("tokenCount") or 0)

    return envelope


def envelope_from_chat_completion(payload: dict[str, Any]) -> ResponseEnvelope:
    """Build an envelope from an OpenAI-style chat completion (OpenRouter)."""
    payload = payload or {}
    envelope = ResponseEnvelope()

    choices = payload.get("choices") or []
    choice = (choices[0] or {}) if choices else {}
    message = choice.get("message") or {}

    for image in message.get("images") or []:
        if not isinstance(image, dict):
            continue
        nested = image.get("image_url")
        if isinstance(nested, dict) and nested.get("url"):
            envelope.image_urls.append(nested["url"])
        elif isinstance(nested, str) and nested:
            envelope.image_urls.append(nested)
        elif image.get("url"):
            envelope.image_urls.append(image["url"])

    content = message.get("content")
    if isinstance(content, str):
        envelope.text = content.strip()
    elif isinstance(content, list):
        rendered: list[str] = []
        for part in content:
            if not isinstance(part, dict):
                continue
            if part.get("text"):
                rendered.append(part["text"])
            elif isinstance(part.get("image_url"), dict) and part["image_url"].get("url"):
                rendered.append(f"![]({part['image_url']['url']})")
        envelope.text = "\n".join(rendered).strip()

    finish_reason = str(choice.get("finish_reason") or "").lower()
    native_reason = str(choice.get("native_finish_reason") or "").upper()
    if finish_reason == "content_filter" or native_reason in MODERATION_FINISH_REASONS:
        envelope.moderation_verdict = native_reason or finish_reason
    elif finish_reason == "error":
        envelope.stop_reason = native_reason or finish_reason

    usage = payload.get("usage") or {}
    details = usage.get("completion_tokens_details") or {}
    envelope.billed_image_tokens = int(
        details.get("image_tokens") or usage.get("native_tokens_completion_images") or 0
    )
    return envelope


def envelope_from_fal(payload: dict[str, Any]) -> ResponseEnvelope:
    """Build an envelope from a fal.ai queue result."""
    payload = payload or {}
    envelope = ResponseEnvelope()
    for image in payload.get("images") or []:
        if isinstance(image, dict) and image.get("url"):
            envelope.image_urls.append(image["url"])
        elif isinstance(image, str) and image:
            envelope.image_urls.append(image)
    envelope.text = str(payload.get("description") or "").strip()
    if any(payload.get("has_nsfw_concepts") or []):
        envelope.moderation_verdict = "NSFW_CONCEPTS"
    return envelope


# --- Decode -------------------------------------------------------------------


def _malformed(detail: str) -> AttemptFailure:
    return AttemptFailure(kind=FailureKind.MALFORMED_RESPONSE, detail=detail)


def _inline_image(mime_type: str, data_b64: str) -> DecodeResult:
    try:
        data = base64.b64decode(data_b64, validate=True)
    except (binascii.Error, ValueError):
        return _malformed("Inline image data is not valid base64")
    if not data:
        return _malformed("Inline image data is empty")
    return GeneratedImage(data=data, mime_type=mime_type)


def _image_from_url(url: str) -> DecodeResult:
    url = url.strip()
    if url.startswith("data:"):
        match = DATA_URL_PATTERN.match(url)
        if not match:
            return _malformed("Returned data URL is not base64 encoded")
        return _inline_image(match.group(1), match.group(2))
    return GeneratedImage(url=url)


def _looks_like_image_url(url: str, text: str) -> bool:
    lowered = url.lower()
    has_image_ext = any(ext in lowered for ext in IMAGE_EXTENSIONS)
    is_storage_url = any(marker in url for marker in STORAGE_HOST_MARKERS)
    return has_image_ext or is_storage_url or len(text) < SHORT_TEXT_THRESHOLD


def decode(envelope: ResponseEnvelope) -> DecodeResult:
    """Normalize an envelope into a ``GeneratedImage`` or a classified failure.

    The checks run in a fixed order and the first match wins:

    1. inline binary part
    2. structured image field (direct or nested URL)
    3. markdown image token in the text
    4. bare URL in the text, if it has an image extension, points at a known
       object-storage host, or the text is short
    5. image tokens billed but nothing extracted -> MALFORMED_RESPONSE
    6. no content and a block indicator -> CONTENT_REJECTED
    7. anything else -> MALFORMED_RESPONSE with the text kept for diagnostics
    """
    if envelope.inline_images:
        first = envelope.inline_images[0]
        return _inline_image(first.mime_type, first.data_b64)

    for url in envelope.image_urls:
        if url and url.strip():
            return _image_from_url(url)

    text = envelope.text or ""
    markdown_match = MARKDOWN_IMAGE_PATTERN.search(text)
    if markdown_match and markdown_match.group(1).strip():
        return _image_from_url(markdown_match.group(1))

    if text.startswith("data:image"):
        return _image_from_url(text)
    url_match = BARE_URL_PATTERN.search(text)
    if url_match and _looks_like_image_url(url_match.group(0), text):
        return GeneratedImage(url=url_match.group(0))

    if envelope.billed_image_tokens > 0:
        return _malformed(
            "The model generated an image but the response did not contain the image data"
        )

    indicator = envelope.moderation_verdict or envelope.stop_reason
    if not text and indicator:
        return AttemptFailure(kind=FailureKind.CONTENT_REJECTED, detail=f"Blocked: {indicator}")

    if text:
        return _malformed(f'No image returned. Model said: "{text[-DIAGNOSTIC_TEXT_LIMIT:]}"')
    return _malformed("Provider returned no content")


def decode_gemini(payload: dict[str, Any]) -> DecodeResult:
    return decode(envelope_from_gemini(payload))


def decode_chat_completion(payload: dict[str, Any]) -> DecodeResult:
    return decode(envelope_from_chat_completion(payload))


def decode_fal(payload: dict[str, Any]) -> DecodeResult:
    return decode(envelope_from_fal(payload))
