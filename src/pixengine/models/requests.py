"""Request models for PixEngine."""

import base64
import binascii
import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

DATA_URL_PATTERN = re.compile(r"^data:(.+);base64,(.+)$", re.DOTALL)


class Feature(str, Enum):
    """User-facing features that produce an image."""

    RETOUCH = "retouch"  # source image + mask
    BACKGROUND = "background"
    GENERATE_IMAGE = "generate_image"  # text only
    LOGO = "logo"  # optional background or existing logo
    MAGIC_EDIT = "magic_edit"
    COMPOSE = "compose"  # two source images


class ProviderName(str, Enum):
    """Built-in generation providers."""

    GOOGLE = "google"
    OPENROUTER = "openrouter"
    FAL = "fal"


class ImageRef(BaseModel):
    """An in-memory source image with its declared MIME type."""

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(..., min_length=1, description="Raw image bytes")
    mime_type: str = Field("image/png", description="Declared MIME type, e.g. image/png")

    @field_validator("mime_type")
    @classmethod
    def validate_mime_type(cls, value: str) -> str:
        value = value.strip().lower()
        if not value.startswith("image/"):
            raise ValueError(f"mime_type must be an image type, got {value!r}")
        return value

    @classmethod
    def from_data_url(cls, data_url: str) -> "ImageRef":
        """Parse a ``data:<mime>;base64,<payload>`` string."""
        match = DATA_URL_PATTERN.match(data_url or "")
        if not match:
            raise ValueError("Invalid data URL format")
        try:
            data = base64.b64decode(match.group(2), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("Invalid data URL format") from e
        return cls(data=data, mime_type=match.group(1))


class GenerationRequest(BaseModel):
    """One user action asking for a generated image."""

    model_config = ConfigDict(frozen=True)

    feature: Feature = Field(..., description="Feature that issued the request")
    prompt: str = Field(..., min_length=1, description="User prompt")
    images: tuple[ImageRef, ...] = Field((), description="Ordered source images (0..N)")
    provider: Optional[str] = Field(
        None,
        description="Preferred provider id. None uses the configured default provider.",
    )


class Credential(BaseModel):
    """A secret token scoped to exactly one provider."""

    model_config = ConfigDict(frozen=True)

    provider: str = Field(..., min_length=1)
    secret: SecretStr
    label: str = Field("", description="Non-secret name used in logs")

    def reveal(self) -> str:
        return self.secret.get_secret_value().strip()
