"""Configuration for PixEngine orchestration.

Credential lists, model lists, timeouts and backoff limits change
operationally, so they are plain settings objects injected into the
orchestrator. ``OrchestratorSettings.from_env`` builds them from environment
variables.
"""

import logging
import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from pixengine.models.requests import Credential, ProviderName

logger = logging.getLogger(__name__)

DEFAULT_MODELS: dict[str, list[str]] = {
    ProviderName.GOOGLE.value: ["gemini-3-pro-image-preview", "gemini-2.5-flash-image"],
    ProviderName.OPENROUTER.value: ["google/gemini-2.5-flash-image"],
    ProviderName.FAL.value: ["fal-ai/nano-banana"],
}

# (keys variables in priority order, models variable) per provider
PROVIDER_ENV_VARS: dict[str, tuple[tuple[str, ...], str]] = {
    ProviderName.GOOGLE.value: (("GEMINI_API_KEYS", "GEMINI_API_KEY"), "GEMINI_MODELS"),
    ProviderName.OPENROUTER.value: (("OPENROUTER_API_KEYS", "OPENROUTER_API_KEY"), "OPENROUTER_MODELS"),
    ProviderName.FAL.value: (("FAL_KEYS", "FAL_KEY"), "FAL_MODELS"),
}


class BackoffSettings(BaseModel):
    """Retry timing for rate-limited attempts."""

    initial_delay_seconds: float = Field(2.0, gt=0.0, description="First exponential backoff wait")
    max_retries: int = Field(5, ge=0, description="Same-model retries after the first attempt")
    ceiling_seconds: float = Field(20.0, gt=0.0, description="Longest wait before failing fast")
    safety_buffer_seconds: float = Field(0.5, ge=0.0, description="Added to provider-suggested waits")


class ProviderSettings(BaseModel):
    """Ordered credentials and models for one provider."""

    credentials: list[SecretStr] = Field(default_factory=list, description="Priority order, primary first")
    models: list[str] = Field(..., min_length=1, description="Primary model first, then fallbacks")
    timeout_seconds: float = Field(120.0, gt=0.0, description="Bound on a single provider call")
    endpoint: Optional[str] = Field(None, description="Override of the provider base URL")

    @field_validator("models")
    @classmethod
    def validate_models(cls, value: list[str]) -> list[str]:
        cleaned = [m.strip() for m in value if m and m.strip()]
        if not cleaned:
            raise ValueError("at least one model is required")
        return cleaned

    def credentials_for(self, provider: str) -> tuple[Credential, ...]:
        """Wrap secrets as provider-scoped credentials, keeping their order."""
        return tuple(
            Credential(provider=provider, secret=secret, label=f"{provider}#{idx + 1}")
            for idx, secret in enumerate(self.credentials)
            if secret.get_secret_value().strip()
        )


class OrchestratorSettings(BaseModel):
    """Top-level settings for ``GenerationOrchestrator``."""

    default_provider: str = Field(ProviderName.GOOGLE.value)
    providers: dict[str, ProviderSettings] = Field(default_factory=dict)
    backoff: BackoffSettings = Field(default_factory=BackoffSettings)
    max_total_attempts: Optional[int] = Field(
        24, ge=1, description="Bound on provider calls across all credentials and models"
    )

    @model_validator(mode="after")
    def validate_default_provider(self):
        if self.providers and self.default_provider not in self.providers:
            raise ValueError(f"default_provider {self.default_provider!r} is not configured")
        return self

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "OrchestratorSettings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ`` (useful in tests)

        Returns:
            Settings with every provider that has credentials configured
        """
        env = os.environ if environ is None else environ
        timeout = float(env.get("PIXENGINE_TIMEOUT_SECONDS", "120"))

        providers: dict[str, ProviderSettings] = {}
        for provider, (key_vars, models_var) in PROVIDER_ENV_VARS.items():
            keys: list[str] = []
            for var in key_vars:
                keys = _split_list(env.get(var))
                if keys:
                    break
            if not keys:
                continue
            models = _split_list(env.get(models_var)) or DEFAULT_MODELS[provider]
            providers[provider] = ProviderSettings(
                credentials=[SecretStr(k) for k in keys],
                models=models,
                timeout_seconds=timeout,
            )
            logger.info(f"⚙️ [Config] {provider}: {len(keys)} credential(s), models={models}")

        default_provider = env.get("PIXENGINE_DEFAULT_PROVIDER", "").strip()
        if not default_provider:
            default_provider = ProviderName.GOOGLE.value
            if providers and default_provider not in providers:
                default_provider = next(iter(providers))

        backoff = BackoffSettings(
            initial_delay_seconds=float(env.get("PIXENGINE_BACKOFF_INITIAL_DELAY", "2.0")),
            max_retries=int(env.get("PIXENGINE_BACKOFF_MAX_RETRIES", "5")),
            ceiling_seconds=float(env.get("PIXENGINE_BACKOFF_CEILING", "20.0")),
        )
        max_total = env.get("PIXENGINE_MAX_TOTAL_ATTEMPTS")

        return cls(
            default_provider=default_provider,
            providers=providers,
            backoff=backoff,
            max_total_attempts=int(max_total) if max_total else 24,
        )


def _split_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]
