"""Protocol interfaces for PixEngine collaborators."""

from typing import Protocol

from typing_extensions import runtime_checkable

from pixengine.models.metrics import FailureEvent, UsageEvent
from pixengine.models.responses import GeneratedImage


@runtime_checkable
class ImageStore(Protocol):
    """Object storage that keeps a copy of generated images."""

    async def put(self, image: GeneratedImage) -> str:
        """Store the image and return its public URL."""
        ...


@runtime_checkable
class EventLog(Protocol):
    """Append-only log of successful and failed generations."""

    async def append(self, event: UsageEvent | FailureEvent) -> None:
        ...


@runtime_checkable
class AuditSink(ImageStore, EventLog, Protocol):
    """Receives generation outcomes. Best-effort; callers never wait on it."""
