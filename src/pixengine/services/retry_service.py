"""Backoff policy and same-model retry loop for provider attempts."""

import asyncio
import logging
import math
import re
from typing import Any, Awaitable, Callable, Optional

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from pixengine.config import BackoffSettings
from pixengine.models.errors import SAME_MODEL_RETRY_KINDS, FailureKind
from pixengine.models.responses import AttemptFailure, AttemptOutcome

logger = logging.getLogger(__name__)

# Matches: "retry in 54.5s", "retryDelay": "54s"
RETRY_IN_PATTERN = re.compile(r"retry in\s+([0-9.]+)\s*s", re.IGNORECASE)
RETRY_DELAY_FIELD_PATTERN = re.compile(r"retryDelay\"?\s*:\s*\"?([0-9.]+)\s*s\"?", re.IGNORECASE)

SleepFunc = Callable[[float], Awaitable[Any]]


class AttemptError(Exception):
    """Carries a classified failure through the retry loop."""

    def __init__(self, failure: AttemptFailure):
        super().__init__(failure.detail or failure.kind.value)
        self.failure = failure


class HighTrafficError(AttemptError):
    """The required wait exceeds the ceiling; fail now instead of blocking the caller."""

    def __init__(self, failure: AttemptFailure, delay_seconds: float):
        self.delay_seconds = delay_seconds
        message = (
            f"High traffic: the provider asked to wait {delay_seconds:.1f}s. "
            "Please try again later."
        )
        super().__init__(failure.model_copy(update={"detail": message}))


def parse_suggested_delay(text: str | None) -> Optional[float]:
    """Extract a server-suggested wait (seconds) from error text."""
    if not text:
        return None
    match = RETRY_IN_PATTERN.search(text) or RETRY_DELAY_FIELD_PATTERN.search(text)
    if not match:
        return None
    try:
        seconds = float(match.group(1))
    except ValueError:
        return None
    logger.debug(f"⏱️ [Backoff] Provider requested a wait of {seconds}s")
    return seconds


def parse_retry_after(value: str | None) -> Optional[float]:
    """Parse a numeric ``Retry-After`` header value."""
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except (AttributeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


class BackoffPolicy(wait_base):
    """Computes retry waits; usable directly or as a tenacity wait strategy."""

    def __init__(self, settings: BackoffSettings | None = None):
        self.settings = settings or BackoffSettings()

    def compute_delay(self, failure: AttemptFailure, attempt_index: int) -> float:
        """
        Return the wait before the next attempt.

        Args:
            failure: The failure that ended the previous attempt
            attempt_index: Zero-based index of the retry about to be scheduled

        Raises:
            HighTrafficError: If the wait would exceed the configured ceiling
        """
        if failure.suggested_delay_seconds is not None:
            delay = math.ceil(failure.suggested_delay_seconds) + self.settings.safety_buffer_seconds
        else:
            delay = self.settings.initial_delay_seconds * (2 ** attempt_index)

        if delay > self.settings.ceiling_seconds:
            logger.warning(
                f"🚦 [Backoff] Required wait {delay:.1f}s exceeds ceiling "
                f"{self.settings.ceiling_seconds:.1f}s, failing fast"
            )
            raise HighTrafficError(failure, delay)
        return delay

    def is_retryable(self, exc: BaseException) -> bool:
        return isinstance(exc, AttemptError) and exc.failure.kind in SAME_MODEL_RETRY_KINDS and not exc.failure.final

    def __call__(self, retry_state: RetryCallState) -> float:
        # No wait follows the final attempt
        if retry_state.attempt_number > self.settings.max_retries:
            return 0.0
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if not isinstance(exc, AttemptError):
            return 0.0
        return self.compute_delay(exc.failure, retry_state.attempt_number - 1)


async def retry_same_model(
    attempt: Callable[[], Awaitable[AttemptOutcome]],
    policy: BackoffPolicy,
    sleep: SleepFunc = asyncio.sleep,
) -> AttemptOutcome:
    """
    Run ``attempt`` until it succeeds or stops failing with a retryable kind.

    Only rate limiting is retried here, always against the same model and
    credential. Every other failure, an exhausted retry budget, or a wait that
    exceeds the ceiling is returned as an ``AttemptFailure``.
    """

    async def _raise_on_failure() -> AttemptOutcome:
        outcome = await attempt()
        if isinstance(outcome, AttemptFailure):
            raise AttemptError(outcome)
        return outcome

    try:
        async for retry_attempt in AsyncRetrying(
            retry=retry_if_exception(policy.is_retryable),
            stop=stop_after_attempt(policy.settings.max_retries + 1),
            wait=policy,
            sleep=sleep,
            before_sleep=_log_retry,
            reraise=True,
        ):
            with retry_attempt:
                return await _raise_on_failure()
    except AttemptError as e:
        return e.failure
    raise RuntimeError("retry_same_model: no outcome and no error")


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    kind = exc.failure.kind.value if isinstance(exc, AttemptError) else FailureKind.UNKNOWN.value
    wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        f"🔁 [Backoff] {kind} on attempt {retry_state.attempt_number}, "
        f"waiting {wait:.1f}s before retrying the same model"
    )
