"""Upload service for Cloudflare Images, used as the audit image store."""

import logging
import mimetypes
import os
import uuid
from datetime import datetime, timezone

import httpx

from pixengine.models.responses import GeneratedImage

logger = logging.getLogger(__name__)


class UploadError(Exception):
    """Raised when an image cannot be stored."""


CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"
ACCOUNT_ID_ENV = "CLOUDFLARE_ACCOUNT_ID"
API_TOKEN_ENV = "CLOUDFLARE_IMAGES_API_TOKEN"
PUBLIC_VARIANT = "public"


class UploadService:
    """Audit image store backed by Cloudflare Images."""

    def __init__(self, account_id: str | None = None, api_token: str | None = None, timeout_seconds: float = 30.0):
        """
        Args:
            account_id: Cloudflare account (falls back to $CLOUDFLARE_ACCOUNT_ID)
            api_token: Images API token (falls back to $CLOUDFLARE_IMAGES_API_TOKEN)
            timeout_seconds: HTTP timeout for one upload

        Raises:
            ValueError: If either value is missing from both the arguments and the environment
        """
        self.account_id = account_id or os.getenv(ACCOUNT_ID_ENV)
        self.api_token = api_token or os.getenv(API_TOKEN_ENV)
        self.timeout_seconds = timeout_seconds

        missing = [env for env, value in ((ACCOUNT_ID_ENV, self.account_id), (API_TOKEN_ENV, self.api_token)) if not value]
        if missing:
            raise ValueError(f"Cloudflare Images upload is not configured: set {', '.join(missing)}")

    @property
    def upload_url(self) -> str:
        return f"{CLOUDFLARE_API_BASE}/accounts/{self.account_id}/images/v1"

    @staticmethod
    def make_filename(prefix: str, mime_type: str | None = None) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        extension = mimetypes.guess_extension(mime_type or "") or ".png"
        return f"{prefix}_{stamp}_{uuid.uuid4().hex[:8]}{extension}"

    async def put(self, image: GeneratedImage, prefix: str = "generated") -> str:
        """
        Store a generated image and return its public URL.

        Inline images are uploaded as files; URL images are handed to
        Cloudflare's upload-by-URL form field.

        Raises:
            UploadError: If the upload fails for any reason
        """
        headers = {"Authorization": f"Bearer {self.api_token}"}
        files: dict[str, tuple] = {
            "metadata": (None, '{"source":"pixengine"}'),
            "requireSignedURLs": (None, "false"),
        }
        if image.is_inline:
            filename = self.make_filename(prefix, image.mime_type)
            files["file"] = (filename, image.data, image.mime_type)
        else:
            files["url"] = (None, image.url)

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(self.upload_url, headers=headers, files=files)
        except httpx.TimeoutException as e:
            raise UploadError(f"Cloudflare Images upload timed out: {str(e)}") from e
        except httpx.HTTPError as e:
            raise UploadError(f"Cloudflare Images upload failed: {str(e)}") from e

        if response.status_code == 429:
            raise UploadError("Cloudflare Images rate limit exceeded")
        if response.status_code != 200:
            raise UploadError(f"Cloudflare Images API error {response.status_code}: {response.text}")

        try:
            variants = response.json()["result"].get("variants") or []
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise UploadError("Cloudflare Images API returned an unexpected body") from e

        url = public_variant(variants)
        logger.debug(f"☁️ [UploadService] Stored image at {url}")
        return url


def public_variant(variants: list[str]) -> str:
    """Pick the public delivery URL, deriving it from another variant if needed."""
    if not variants:
        raise UploadError("Cloudflare Images API returned no delivery variants")
    for variant in variants:
        if variant.rsplit("/", 1)[-1] == PUBLIC_VARIANT:
            return variant
    base, _, _ = variants[0].rpartition("/")
    return f"{base}/{PUBLIC_VARIANT}"
