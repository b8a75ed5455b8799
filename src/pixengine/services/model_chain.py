"""Per-provider model fallback sequencing."""

import logging
from typing import Awaitable, Callable, Iterable

from pixengine.models.errors import advances_model
from pixengine.models.responses import AttemptFailure, AttemptOutcome

logger = logging.getLogger(__name__)


class ModelFallbackChain:
    """
    Primary model first, then fallbacks.

    A fallback may repeat the primary id, which gives the same model a second
    full retry budget. Only access and availability failures move to the next
    model; rate limits never do.
    """

    def __init__(self, provider: str, models: Iterable[str]):
        self.provider = provider
        self.models: tuple[str, ...] = tuple(models)
        if not self.models:
            raise ValueError(f"Provider {provider!r} needs at least one model")

    @property
    def primary(self) -> str:
        return self.models[0]

    async def try_each(self, operation: Callable[[str], Awaitable[AttemptOutcome]]) -> AttemptOutcome:
        """Run ``operation(model)`` down the chain while the model itself is unreachable."""
        outcome: AttemptOutcome | None = None
        for position, model in enumerate(self.models):
            outcome = await operation(model)
            if not isinstance(outcome, AttemptFailure):
                return outcome
            if outcome.final or not advances_model(outcome.kind):
                return outcome
            if position + 1 < len(self.models):
                logger.warning(
                    f"🔀 [ModelChain] {model} failed with {outcome.kind.value}, "
                    f"auto-switching to {self.models[position + 1]}"
                )
        return outcome
