"""PixEngine - resilient image generation and editing orchestration."""

from pixengine.codec import InvalidImageError, ResponseEnvelope, decode
from pixengine.config import BackoffSettings, OrchestratorSettings, ProviderSettings
from pixengine.interfaces import AuditSink, EventLog, ImageStore
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
from pixengine.prompts import PromptStyle, compose_prompt
from pixengine.providers.base import ProviderClient
from pixengine.providers.fal_provider import FalProvider
from pixengine.providers.gemini_provider import GeminiProvider
from pixengine.providers.openrouter_provider import OpenRouterProvider
from pixengine.services.audit_service import AuditDispatcher, StorageAuditSink
from pixengine.services.credential_pool import CredentialPool
from pixengine.services.model_chain import ModelFallbackChain
from pixengine.services.orchestrator import GenerationOrchestrator
from pixengine.services.retry_service import BackoffPolicy, HighTrafficError
from pixengine.services.upload_service import UploadError, UploadService
from pixengine.services.usage_log import UsageLog

__version__ = "0.1.0"

__all__ = [
    # Orchestration
    "GenerationOrchestrator",
    "OrchestratorSettings",
    "ProviderSettings",
    "BackoffSettings",
    # Request/response types
    "GenerationRequest",
    "Feature",
    "ImageRef",
    "ProviderName",
    "Credential",
    "GeneratedImage",
    "GenerationResult",
    "OrchestrationError",
    "GenerationMetrics",
    "UsageEvent",
    "FailureEvent",
    "AttemptOutcome",
    "AttemptSuccess",
    "AttemptFailure",
    "FailureKind",
    "is_retryable",
    # Building blocks
    "BackoffPolicy",
    "HighTrafficError",
    "CredentialPool",
    "ModelFallbackChain",
    "ResponseEnvelope",
    "decode",
    "InvalidImageError",
    "PromptStyle",
    "compose_prompt",
    # Providers
    "ProviderClient",
    "GeminiProvider",
    "OpenRouterProvider",
    "FalProvider",
    # Audit
    "AuditSink",
    "ImageStore",
    "EventLog",
    "AuditDispatcher",
    "StorageAuditSink",
    "UploadService",
    "UploadError",
    "UsageLog",
]
