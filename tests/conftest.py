"""Shared pytest fixtures for PixEngine tests."""

import pytest
from pydantic import SecretStr

from pixengine.models.requests import Credential, ImageRef

from tests.fakes import PNG_BYTES, MemoryAuditSink, RecordingSleep


@pytest.fixture
def png_image():
    return ImageRef(data=PNG_BYTES, mime_type="image/png")


@pytest.fixture
def credential():
    return Credential(provider="google", secret=SecretStr("test-key"), label="google#1")


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()
