"""Response models for PixEngine."""

import base64
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pixengine.models.errors import FailureKind
from pixengine.models.metrics import GenerationMetrics


class GeneratedImage(BaseModel):
    """Normalized generation result: inline bytes or a dereferenceable URL."""

    model_config = ConfigDict(frozen=True)

    data: Optional[bytes] = Field(None, description="Inline image bytes")
    mime_type: Optional[str] = Field(None, description="MIME type of the inline bytes")
    url: Optional[str] = Field(None, description="URL of the generated image")

    @model_validator(mode="after")
    def validate_single_form(self):
        """Ensure exactly one of the two forms is populated."""
        inline = self.data is not None
        if inline and self.url is not None:
            raise ValueError("data and url are mutually exclusive")
        if not inline and self.url is None:
            raise ValueError("either data or url must be present")
        if inline and not self.mime_type:
            raise ValueError("mime_type must be present with inline data")
        if not inline and self.mime_type is not None:
            raise ValueError("mime_type is only valid with inline data")
        return self

    @property
    def is_inline(self) -> bool:
        return self.data is not None

    def to_data_url(self) -> str:
        """Render the inline form as a data URL."""
        if self.data is None:
            raise ValueError("image is not inline")
        return f"data:{self.mime_type};base64,{base64.b64encode(self.data).decode('ascii')}"


class AttemptSuccess(BaseModel):
    """A provider call that produced an image."""

    image: GeneratedImage


class AttemptFailure(BaseModel):
    """A provider call that failed, already classified."""

    kind: FailureKind
    detail: str = Field("", description="Diagnostic text, never a raw exception object")
    suggested_delay_seconds: Optional[float] = Field(
        None, ge=0.0, description="Wait interval suggested by the provider"
    )
    final: bool = Field(False, description="Stop all retries, fallbacks and rotations")


AttemptOutcome = Union[AttemptSuccess, AttemptFailure]


class OrchestrationError(BaseModel):
    """Error details for a failed orchestrated call."""

    kind: FailureKind = Field(..., description="Last failure kind observed")
    message: str = Field(..., description="Short user-facing message")
    retryable: bool = Field(..., description="Whether trying again later may help")
    details: Optional[dict] = Field(None, description="Diagnostics: provider, attempts, last detail")


class GenerationResult(BaseModel):
    """Outcome of ``GenerationOrchestrator.run``."""

    success: bool = Field(..., description="Whether generation succeeded")
    image: Optional[GeneratedImage] = Field(None, description="Generated image (present if success=True)")
    metrics: Optional[GenerationMetrics] = Field(None, description="Attempt and timing tracking")
    error: Optional[OrchestrationError] = Field(None, description="Error details if success=False")

    @model_validator(mode="after")
    def validate_success_state(self):
        """Ensure success state is consistent."""
        if self.success is True:
            if self.image is None:
                raise ValueError("image must be present when success=True")
            if self.error is not None:
                raise ValueError("error must be None when success=True")
        else:
            if self.error is None:
                raise ValueError("error must be present when success=False")
            if self.image is not None:
                raise ValueError("image must be None when success=False")
        return self
