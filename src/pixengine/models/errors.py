"""Failure classification for PixEngine."""

from enum import Enum


class FailureKind(str, Enum):
    """Closed classification of a failed provider attempt."""

    # Recoverable by same-model retry or credential rotation
    RATE_LIMITED = "RATE_LIMITED"
    QUOTA_EXHAUSTED = "QUOTA_EXHAUSTED"

    # Recoverable by model fallback only
    ACCESS_DENIED = "ACCESS_DENIED"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"

    # Terminal
    CONTENT_REJECTED = "CONTENT_REJECTED"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    UNKNOWN = "UNKNOWN"


# Retried against the same model and credential with backoff
SAME_MODEL_RETRY_KINDS = frozenset({FailureKind.RATE_LIMITED})

# Advance the credential pool
CREDENTIAL_ROTATION_KINDS = frozenset({
    FailureKind.RATE_LIMITED,
    FailureKind.QUOTA_EXHAUSTED,
})

# Advance the model fallback chain
MODEL_FALLBACK_KINDS = frozenset({
    FailureKind.ACCESS_DENIED,
    FailureKind.MODEL_UNAVAILABLE,
})

# Never retried at all
TERMINAL_KINDS = frozenset({
    FailureKind.CONTENT_REJECTED,
    FailureKind.MALFORMED_RESPONSE,
    FailureKind.UNKNOWN,
})


def is_retryable(kind: FailureKind) -> bool:
    """Check whether the caller may succeed by trying again later."""
    return kind in CREDENTIAL_ROTATION_KINDS or kind in MODEL_FALLBACK_KINDS


def rotates_credential(kind: FailureKind) -> bool:
    return kind in CREDENTIAL_ROTATION_KINDS


def advances_model(kind: FailureKind) -> bool:
    return kind in MODEL_FALLBACK_KINDS
