"""In-memory append-only log of generation usage and failures."""

import asyncio
import logging
from collections import Counter
from typing import Any

from pixengine.models.metrics import FailureEvent, UsageEvent

logger = logging.getLogger(__name__)


class UsageLog:
    """
    Append-only record of usage and failure events.

    Keeps events in memory; subclasses or other ``EventLog`` implementations
    can forward them to a database or analytics backend.
    """

    def __init__(self):
        self._events: list[UsageEvent] = []
        self._failures: list[FailureEvent] = []
        self._lock = asyncio.Lock()

    async def append(self, event: UsageEvent | FailureEvent) -> None:
        """Record one usage or failure event."""
        async with self._lock:
            if isinstance(event, FailureEvent):
                self._failures.append(event)
            else:
                self._events.append(event)

        if isinstance(event, FailureEvent):
            logger.debug(f"📊 [UsageLog] Recorded failure in {event.feature}: {event.error_kind.value}")
        else:
            logger.debug(
                f"📊 [UsageLog] Recorded {event.feature}: duration={event.duration_seconds:.2f}s, "
                f"image={'yes' if event.image_reference else 'no'}"
            )

    def get_all(self) -> list[UsageEvent]:
        """Get all recorded usage events."""
        return self._events.copy()

    def get_failures(self) -> list[FailureEvent]:
        """Get all recorded failure events."""
        return self._failures.copy()

    def clear(self) -> None:
        self._events.clear()
        self._failures.clear()

    def summary(self) -> dict[str, Any]:
        """Get a summary of recorded events."""
        failures = {
            "failure_count": len(self._failures),
            "failures_by_kind": dict(Counter(f.error_kind.value for f in self._failures)),
        }
        if not self._events:
            return {
                "count": 0,
                "total_duration_seconds": 0.0,
                "avg_duration_seconds": 0.0,
                "missing_image_count": 0,
                "by_feature": {},
                **failures,
            }

        total_duration = sum(e.duration_seconds for e in self._events)
        return {
            "count": len(self._events),
            "total_duration_seconds": total_duration,
            "avg_duration_seconds": total_duration / len(self._events),
            "missing_image_count": sum(1 for e in self._events if e.image_reference is None),
            "by_feature": dict(Counter(e.feature for e in self._events)),
            **failures,
        }
