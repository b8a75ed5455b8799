"""Ordered, provider-scoped credential rotation."""

import logging
from typing import Awaitable, Callable, Iterable

from pixengine.models.errors import FailureKind, rotates_credential
from pixengine.models.requests import Credential
from pixengine.models.responses import AttemptFailure, AttemptOutcome

logger = logging.getLogger(__name__)


class CredentialPool:
    """
    Credentials for one provider in priority order.

    The pool is immutable and safe to share between concurrent requests; the
    rotation cursor lives inside ``try_each``, so every call starts from the
    primary credential.
    """

    def __init__(self, provider: str, credentials: Iterable[Credential]):
        self.provider = provider
        self.credentials: tuple[Credential, ...] = tuple(credentials)
        foreign = [c.label for c in self.credentials if c.provider != provider]
        if foreign:
            raise ValueError(f"Credentials {foreign} are not scoped to provider {provider!r}")

    def __len__(self) -> int:
        return len(self.credentials)

    async def try_each(
        self, operation: Callable[[int, Credential], Awaitable[AttemptOutcome]]
    ) -> AttemptOutcome:
        """
        Run ``operation`` with each credential until one is not quota/rate limited.

        Args:
            operation: Called as ``operation(index, credential)``

        Returns:
            The first outcome that does not warrant rotation, or an aggregate
            failure once every credential is exhausted
        """
        if not self.credentials:
            return AttemptFailure(
                kind=FailureKind.ACCESS_DENIED,
                detail=f"No credentials configured for provider {self.provider}",
                final=True,
            )

        last_failure: AttemptFailure | None = None
        for index, credential in enumerate(self.credentials):
            if index > 0:
                logger.info(f"🔑 [CredentialPool] Switching to {self.provider} credential #{index + 1}")
            outcome = await operation(index, credential)
            if not isinstance(outcome, AttemptFailure):
                return outcome
            if outcome.final or not rotates_credential(outcome.kind):
                return outcome

            logger.warning(
                f"🔑 [CredentialPool] {self.provider} credential #{index + 1} "
                f"{outcome.kind.value.lower()}, trying next credential"
            )
            last_failure = outcome

        logger.error(f"❌ [CredentialPool] All {self.provider} credentials exhausted")
        return AttemptFailure(
            kind=last_failure.kind,
            detail=(
                f"All {len(self.credentials)} {self.provider} credential(s) are exhausted. "
                f"Last error: {last_failure.detail}"
            ),
            suggested_delay_seconds=last_failure.suggested_delay_seconds,
            final=True,
        )
