"""Metrics and usage event models for PixEngine."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from pixengine.models.errors import FailureKind


class GenerationMetrics(BaseModel):
    """Tracking data for one orchestrated call."""

    duration_ms: int = Field(..., ge=0, description="Total orchestration time in milliseconds")
    provider: Optional[str] = Field(None, description="Provider that served the call")
    model_used: Optional[str] = Field(None, description="Model of the last attempt")
    credential_index: Optional[int] = Field(None, ge=0, description="Position of the last credential in the pool")
    attempt_count: int = Field(0, ge=0, description="Provider calls issued")
    retry_count: int = Field(0, ge=0, description="Attempts beyond the first (0 = first attempt succeeded)")
    timestamp: Optional[datetime] = Field(None, description="When the call completed (UTC)")


class UsageEvent(BaseModel):
    """A 'generation succeeded' record delivered to the audit sink."""

    feature: str = Field(..., description="Feature that issued the request")
    prompt: str = Field(..., description="User prompt")
    image_reference: Optional[str] = Field(None, description="Stored image URL; None when the upload failed")
    duration_seconds: float = Field(..., ge=0.0, description="Foreground call duration")
    provider: Optional[str] = None
    model: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FailureEvent(BaseModel):
    """A 'generation failed' record delivered to the event log."""

    feature: str = Field(..., description="Feature that issued the request")
    prompt: str = Field(..., description="User prompt")
    error_kind: FailureKind = Field(..., description="Last failure kind observed")
    error_message: str = Field(..., description="User-facing error message")
    duration_seconds: float = Field(..., ge=0.0, description="Foreground call duration")
    provider: Optional[str] = None
    model: Optional[str] = None
    attempt_count: int = Field(0, ge=0)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
