"""Base provider interface for image generation."""

from typing import Protocol, Sequence

from typing_extensions import runtime_checkable

from pixengine.models.requests import Credential, ImageRef
from pixengine.models.responses import AttemptOutcome
from pixengine.prompts import PromptStyle

# Longest error body excerpt kept in a failure detail
ERROR_DETAIL_LIMIT = 500


@runtime_checkable
class ProviderClient(Protocol):
    """Protocol for generation provider clients."""

    name: str
    prompt_style: PromptStyle

    async def generate(
        self,
        model: str,
        credential: Credential,
        prompt: str,
        images: Sequence[ImageRef],
    ) -> AttemptOutcome:
        """
        Run one generation call.

        Args:
            model: Model identifier for this attempt
            credential: Credential for this attempt
            prompt: Final provider-facing prompt
            images: Ordered source images (may be empty)

        Returns:
            AttemptSuccess with the normalized image, or AttemptFailure with
            the provider error already classified. Provider errors are never
            raised.
        """
        ...


def contains_any(text: str, needles: Sequence[str]) -> bool:
    lowered = text.lower()
    return any(needle.lower() in lowered for needle in needles)


def truncate(text: str, limit: int = ERROR_DETAIL_LIMIT) -> str:
    return text if len(text) <= limit else text[:limit] + "..."
