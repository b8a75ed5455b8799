"""Generation orchestrator: provider selection, retries, fallbacks and audit."""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional, Sequence

from pixengine.config import OrchestratorSettings, ProviderSettings
from pixengine.interfaces import AuditSink
from pixengine.models.errors import FailureKind, is_retryable
from pixengine.models.metrics import FailureEvent, GenerationMetrics, UsageEvent
from pixengine.models.requests import Credential, GenerationRequest, ImageRef, ProviderName
from pixengine.models.responses import (
    AttemptFailure,
    AttemptOutcome,
    AttemptSuccess,
    GenerationResult,
    OrchestrationError,
)
from pixengine.prompts import check_image_count, compose_prompt
from pixengine.providers.base import ProviderClient
from pixengine.providers.fal_provider import FalProvider
from pixengine.providers.gemini_provider import GeminiProvider
from pixengine.providers.openrouter_provider import OpenRouterProvider
from pixengine.services.audit_service import AuditDispatcher
from pixengine.services.credential_pool import CredentialPool
from pixengine.services.model_chain import ModelFallbackChain
from pixengine.services.retry_service import BackoffPolicy, SleepFunc, retry_same_model

logger = logging.getLogger(__name__)

USER_MESSAGES: dict[FailureKind, str] = {
    FailureKind.RATE_LIMITED: "High traffic: the image service is busy. Please try again later.",
    FailureKind.QUOTA_EXHAUSTED: "All API credentials are exhausted. Please try again later.",
    FailureKind.ACCESS_DENIED: "The image model is not accessible with the configured credentials.",
    FailureKind.MODEL_UNAVAILABLE: "The image model is currently unavailable. Please try again later.",
    FailureKind.CONTENT_REJECTED: "Blocked by content policy.",
    FailureKind.MALFORMED_RESPONSE: "The service returned an unexpected response.",
    FailureKind.UNKNOWN: "Image generation failed.",
}

DEFAULT_CLIENT_BUILDERS: dict[str, Callable[[ProviderSettings], ProviderClient]] = {
    ProviderName.GOOGLE.value: lambda ps: GeminiProvider(endpoint=ps.endpoint, timeout_seconds=ps.timeout_seconds),
    ProviderName.OPENROUTER.value: lambda ps: OpenRouterProvider(base_url=ps.endpoint, timeout_seconds=ps.timeout_seconds),
    ProviderName.FAL.value: lambda ps: FalProvider(timeout_seconds=ps.timeout_seconds),
}


class _AttemptTrace:
    """Per-request attempt bookkeeping; never shared between requests."""

    def __init__(self, provider: str):
        self.provider = provider
        self.attempts = 0
        self.model: Optional[str] = None
        self.credential_index: Optional[int] = None
        self.models_tried: list[str] = []
        self.last_failure: Optional[AttemptFailure] = None

    def start(self, model: str, credential_index: int) -> None:
        self.attempts += 1
        self.model = model
        self.credential_index = credential_index
        if not self.models_tried or self.models_tried[-1] != model:
            self.models_tried.append(model)

    def metrics(self, start_time: float) -> GenerationMetrics:
        return GenerationMetrics(
            duration_ms=int((time.time() - start_time) * 1000),
            provider=self.provider,
            model_used=self.model,
            credential_index=self.credential_index,
            attempt_count=self.attempts,
            retry_count=max(self.attempts - 1, 0),
            timestamp=datetime.now(timezone.utc),
        )


class GenerationOrchestrator:
    """Turns a ``GenerationRequest`` into one normalized image or a typed error."""

    def __init__(
        self,
        settings: OrchestratorSettings | None = None,
        clients: Mapping[str, ProviderClient] | None = None,
        audit_sink: AuditSink | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            settings: Provider, credential, model and backoff configuration
                (defaults to ``OrchestratorSettings.from_env()``)
            clients: Provider clients by provider id (defaults to the built-in
                client for every configured provider)
            audit_sink: Optional sink that receives generation outcomes (image and
                usage event on success, a failure event otherwise)
            sleep: Async sleep used for backoff waits
        """
        self.settings = settings or OrchestratorSettings.from_env()
        self.clients: dict[str, ProviderClient] = (
            dict(clients) if clients is not None else self._build_default_clients()
        )
        self.policy = BackoffPolicy(self.settings.backoff)
        self.pools: dict[str, CredentialPool] = {}
        self.chains: dict[str, ModelFallbackChain] = {}
        for name, provider_settings in self.settings.providers.items():
            self.pools[name] = CredentialPool(name, provider_settings.credentials_for(name))
            self.chains[name] = ModelFallbackChain(name, provider_settings.models)
        self.audit = AuditDispatcher(audit_sink)
        self._sleep = sleep

    def _build_default_clients(self) -> dict[str, ProviderClient]:
        clients: dict[str, ProviderClient] = {}
        for name, provider_settings in self.settings.providers.items():
            builder = DEFAULT_CLIENT_BUILDERS.get(name)
            if builder is None:
                logger.warning(f"⚠️ [Orchestrator] No built-in client for provider {name}, skipping")
                continue
            clients[name] = builder(provider_settings)
        return clients

    @property
    def available_providers(self) -> list[str]:
        return [name for name in self.settings.providers if name in self.clients]

    async def run(self, request: GenerationRequest) -> GenerationResult:
        """
        Generate one image for the request.

        Returns:
            GenerationResult with the image, or with an OrchestrationError
            carrying the last failure kind. Provider exceptions never escape;
            only task cancellation propagates.
        """
        start_time = time.time()
        provider_name = request.provider or self.settings.default_provider
        trace = _AttemptTrace(provider_name)

        try:
            client = self.clients.get(provider_name)
            provider_settings = self.settings.providers.get(provider_name)
            if client is None or provider_settings is None:
                return self._failed(
                    request,
                    trace,
                    start_time,
                    AttemptFailure(
                        kind=FailureKind.UNKNOWN,
                        detail=f"Unsupported provider: {provider_name}. Available: {self.available_providers}",
                    ),
                )

            problem = check_image_count(request.feature, len(request.images))
            if problem:
                return self._failed(
                    request, trace, start_time, AttemptFailure(kind=FailureKind.UNKNOWN, detail=problem)
                )

            prompt = compose_prompt(request.feature, request.prompt, client.prompt_style, len(request.images))
            outcome = await self._drive(client, provider_settings, prompt, request.images, trace)
        except Exception as e:
            logger.exception(f"❌ [Orchestrator] Unexpected error in {request.feature.value}")
            return self._failed(
                request,
                trace,
                start_time,
                AttemptFailure(kind=FailureKind.UNKNOWN, detail=f"Unexpected error: {str(e)}"),
            )

        if isinstance(outcome, AttemptFailure):
            return self._failed(request, trace, start_time, outcome)

        metrics = trace.metrics(start_time)
        logger.info(
            f"✅ [Orchestrator] {request.feature.value} succeeded with {trace.model} "
            f"after {trace.attempts} attempt(s) in {metrics.duration_ms}ms"
        )
        self.audit.dispatch(
            UsageEvent(
                feature=request.feature.value,
                prompt=request.prompt,
                duration_seconds=metrics.duration_ms / 1000.0,
                provider=provider_name,
                model=trace.model,
            ),
            outcome.image,
        )
        return GenerationResult(success=True, image=outcome.image, metrics=metrics)

    async def drain_audit(self) -> None:
        """Wait for background audit tasks (graceful shutdown)."""
        await self.audit.drain()

    async def _drive(
        self,
        client: ProviderClient,
        provider_settings: ProviderSettings,
        prompt: str,
        images: Sequence[ImageRef],
        trace: _AttemptTrace,
    ) -> AttemptOutcome:
        pool = self.pools[trace.provider]
        chain = self.chains[trace.provider]

        async def with_credential(index: int, credential: Credential) -> AttemptOutcome:
            async def with_model(model: str) -> AttemptOutcome:
                return await retry_same_model(
                    lambda: self._attempt(client, provider_settings, model, index, credential, prompt, images, trace),
                    self.policy,
                    sleep=self._sleep,
                )

            return await chain.try_each(with_model)

        return await pool.try_each(with_credential)

    async def _attempt(
        self,
        client: ProviderClient,
        provider_settings: ProviderSettings,
        model: str,
        credential_index: int,
        credential: Credential,
        prompt: str,
        images: Sequence[ImageRef],
        trace: _AttemptTrace,
    ) -> AttemptOutcome:
        trace.start(model, credential_index)
        try:
            outcome = await asyncio.wait_for(
                client.generate(model, credential, prompt, images),
                timeout=provider_settings.timeout_seconds,
            )
        except (asyncio.TimeoutError, TimeoutError):
            outcome = AttemptFailure(
                kind=FailureKind.MODEL_UNAVAILABLE,
                detail=f"{client.name} call to {model} timed out after {provider_settings.timeout_seconds}s",
            )
        except Exception as e:
            logger.exception(f"❌ [Orchestrator] {client.name} client raised instead of returning a failure")
            outcome = AttemptFailure(kind=FailureKind.UNKNOWN, detail=f"{type(e).__name__}: {str(e)}")

        if isinstance(outcome, AttemptFailure):
            trace.last_failure = outcome
            logger.warning(
                f"⚠️ [Orchestrator] Attempt {trace.attempts} on {model} "
                f"({credential.label}) failed: {outcome.kind.value}"
            )
        elif not isinstance(outcome, AttemptSuccess):
            outcome = AttemptFailure(
                kind=FailureKind.UNKNOWN,
                detail=f"{client.name} client returned {type(outcome).__name__}",
                final=True,
            )
            trace.last_failure = outcome

        # Marked final before any backoff wait is computed
        budget = self.settings.max_total_attempts
        if isinstance(outcome, AttemptFailure) and budget is not None and trace.attempts >= budget:
            logger.warning(f"🛑 [Orchestrator] Attempt budget of {budget} exhausted")
            outcome = outcome.model_copy(
                update={
                    "detail": f"Attempt budget of {budget} exhausted. Last error: {outcome.detail}",
                    "final": True,
                }
            )
            trace.last_failure = outcome
        return outcome

    def _failed(
        self,
        request: GenerationRequest,
        trace: _AttemptTrace,
        start_time: float,
        failure: AttemptFailure,
    ) -> GenerationResult:
        summary = USER_MESSAGES[failure.kind]
        if failure.kind in (FailureKind.CONTENT_REJECTED, FailureKind.MALFORMED_RESPONSE, FailureKind.UNKNOWN):
            summary = f"{summary} {failure.detail}".strip()
        logger.error(f"❌ [Orchestrator] {request.feature.value} failed ({failure.kind.value}): {failure.detail}")
        metrics = trace.metrics(start_time)
        self.audit.dispatch_failure(
            FailureEvent(
                feature=request.feature.value,
                prompt=request.prompt,
                error_kind=failure.kind,
                error_message=summary,
                duration_seconds=metrics.duration_ms / 1000.0,
                provider=trace.provider,
                model=trace.model,
                attempt_count=trace.attempts,
            )
        )
        return GenerationResult(
            success=False,
            error=OrchestrationError(
                kind=failure.kind,
                message=summary,
                retryable=is_retryable(failure.kind),
                details={
                    "provider": trace.provider,
                    "attempts": trace.attempts,
                    "models_tried": list(trace.models_tried),
                    "last_detail": failure.detail,
                },
            ),
            metrics=metrics,
        )
