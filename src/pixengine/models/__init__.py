"""Models package for PixEngine."""

from pixengine.models.errors import FailureKind, is_retryable
from pixengine.models.metrics import FailureEvent, GenerationMetrics, UsageEvent
from pixengine.models.requests import (
    Credential,
    Feature,
    GenerationRequest,
    ImageRef,
    ProviderName,
)
from pixengine.models.responses import (
    AttemptFailure,
    AttemptOutcome,
    AttemptSuccess,
    GeneratedImage,
    GenerationResult,
    OrchestrationError,
)

__all__ = [
    "FailureKind",
    "is_retryable",
    "GenerationMetrics",
    "UsageEvent",
    "FailureEvent",
    "Credential",
    "Feature",
    "GenerationRequest",
    "ImageRef",
    "ProviderName",
    "AttemptFailure",
    "AttemptOutcome",
    "AttemptSuccess",
    "GeneratedImage",
    "GenerationResult",
    "OrchestrationError",
]
