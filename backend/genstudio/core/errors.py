"""Failure taxonomy for generation attempts.

Every failure the executor can produce is a ``GenerationError`` subclass tagged
with a ``FailureKind``. The orchestrator only looks at the kind (and, for
errors it did not expect, at the message text) to decide whether the cached
credential flag must be revoked.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable

# Provider text seen when a stale or rotated key is used to query an operation
ENTITY_NOT_FOUND = "Requested entity was not found"

UNKNOWN_ERROR_MESSAGE = "An unknown error occurred."


class FailureKind(str, Enum):
    VALIDATION = "validation"
    CREDENTIAL_MISSING = "credential_missing"
    CREDENTIAL_NOT_SELECTED = "credential_not_selected"
    CREDENTIAL_INVALIDATED = "credential_invalidated"
    NO_OUTPUT_PRODUCED = "no_output_produced"
    DOWNLOAD_FAILED = "download_failed"
    TRANSIENT_PROVIDER_ERROR = "transient_provider_error"
    ENVIRONMENT_UNSUPPORTED = "environment_unsupported"

    @property
    def is_credential(self) -> bool:
        return self in _CREDENTIAL_KINDS


_CREDENTIAL_KINDS = frozenset(
    {
        FailureKind.CREDENTIAL_MISSING,
        FailureKind.CREDENTIAL_NOT_SELECTED,
        FailureKind.CREDENTIAL_INVALIDATED,
    }
)


class GenerationError(Exception):
    """Base class for failures surfaced to the user as a session error."""

    kind: FailureKind = FailureKind.TRANSIENT_PROVIDER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GenerationError):
    """Raised when input is rejected before any service call."""

    kind = FailureKind.VALIDATION


class CredentialMissing(GenerationError):
    """Raised when no API key is configured at the service-access layer."""

    kind = FailureKind.CREDENTIAL_MISSING


class CredentialNotSelected(GenerationError):
    """Raised when video generation is attempted before a key was selected."""

    kind = FailureKind.CREDENTIAL_NOT_SELECTED


class CredentialInvalidated(GenerationError):
    """Raised when the provider stops recognising a submitted operation."""

    kind = FailureKind.CREDENTIAL_INVALIDATED


class NoOutputProduced(GenerationError):
    """Raised when the provider settles without any media."""

    kind = FailureKind.NO_OUTPUT_PRODUCED


class DownloadFailed(GenerationError):
    """Raised when fetching the finished video returns a non-2xx status."""

    kind = FailureKind.DOWNLOAD_FAILED


class TransientProviderError(GenerationError):
    """Raised for any other provider failure. Not retried automatically."""

    kind = FailureKind.TRANSIENT_PROVIDER_ERROR


class EnvironmentUnsupported(GenerationError):
    """Raised when the interactive key selector is not available."""

    kind = FailureKind.ENVIRONMENT_UNSUPPORTED


class GenerationInProgress(Exception):
    """Raised when the session is asked to change while a request is in flight."""


ErrorClassifier = Callable[[BaseException], FailureKind]


def classify_provider_error(error: BaseException) -> FailureKind:
    """Classify a provider error raised while polling a video operation.

    Matches on provider message text, so a wording change upstream silently
    turns credential failures into transient ones.
    """
    if isinstance(error, GenerationError):
        return error.kind
    if ENTITY_NOT_FOUND in str(error):
        return FailureKind.CREDENTIAL_INVALIDATED
    return FailureKind.TRANSIENT_PROVIDER_ERROR


def is_credential_failure(error: BaseException) -> bool:
    """True when a failed attempt should force the user to re-select a key."""
    if isinstance(error, GenerationError):
        return error.kind.is_credential
    return "API key error" in str(error)


def error_message(error: BaseException) -> str:
    return str(error) or UNKNOWN_ERROR_MESSAGE
