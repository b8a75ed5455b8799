"""Fire-and-forget audit of successful generations.

The audit runs as a detached task after the caller already has its image.
Nothing here may raise into the foreground call: failures go to the
``pixengine.audit`` logger and are counted on the dispatcher.
"""

import asyncio
import logging
from typing import Optional

from pixengine.interfaces import AuditSink, EventLog, ImageStore
from pixengine.models.metrics import FailureEvent, UsageEvent
from pixengine.models.responses import GeneratedImage

audit_logger = logging.getLogger("pixengine.audit")


class StorageAuditSink:
    """Audit sink composed of an image store and an event log."""

    def __init__(self, store: ImageStore, log: EventLog):
        self.store = store
        self.log = log

    async def put(self, image: GeneratedImage) -> str:
        return await self.store.put(image)

    async def append(self, event: UsageEvent | FailureEvent) -> None:
        await self.log.append(event)


class AuditDispatcher:
    """Schedules audit tasks and keeps them alive until they finish."""

    def __init__(self, sink: Optional[AuditSink]):
        self.sink = sink
        self.failure_count = 0
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, event: UsageEvent, image: GeneratedImage) -> Optional[asyncio.Task]:
        """Start the audit in the background and return immediately."""
        if self.sink is None:
            return None
        return self._spawn(self._run(event, image), f"pixengine-audit-{event.feature}")

    def dispatch_failure(self, event: FailureEvent) -> Optional[asyncio.Task]:
        """Record a failed generation in the background; nothing is uploaded."""
        if self.sink is None:
            return None
        return self._spawn(self._append(event), f"pixengine-audit-failure-{event.feature}")

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def drain(self) -> None:
        """Wait for every outstanding audit task."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, event: UsageEvent, image: GeneratedImage) -> None:
        try:
            event = event.model_copy(update={"image_reference": await self.sink.put(image)})
        except Exception as e:
            # The usage record is still written, without the image reference
            self.failure_count += 1
            audit_logger.error(f"❌ [Audit] Image upload failed for {event.feature}: {str(e)}")

        await self._append(event)

    async def _append(self, event: UsageEvent | FailureEvent) -> None:
        try:
            await self.sink.append(event)
        except Exception as e:
            self.failure_count += 1
            audit_logger.error(f"❌ [Audit] {type(event).__name__} append failed for {event.feature}: {str(e)}")

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            audit_logger.warning("⚠️ [Audit] Audit task cancelled before completion")
            return
        exc = task.exception()
        if exc is not None:
            self.failure_count += 1
            audit_logger.error(f"❌ [Audit] Audit task crashed: {exc!r}")
