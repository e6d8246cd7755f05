"""Errors raised by the Apify job client and their classification.

Every failure of a remote job is a ``RemoteJobError``. The orchestrator never
lets one escape a keyword: it is classified with :func:`classify_failure`,
used to demote the credential, and reported as that keyword's error.
"""

import enum
from typing import Optional


class FailureKind(str, enum.Enum):
    INVALID_KEY = "invalid_key"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    GENERIC = "generic"


class RemoteJobError(Exception):
    """Base class for failures talking to the job-based API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_type = error_type


class SubmissionError(RemoteJobError):
    """Starting the run failed or returned no run id."""


class JobTimeout(RemoteJobError):
    """The run did not reach a terminal status within the poll budget."""


class JobFailed(RemoteJobError):
    """The run reached a failed terminal status upstream."""


class MissingDataset(RemoteJobError):
    """The finished run carried no output dataset id."""


class EmptyDataset(RemoteJobError):
    """The output dataset stayed empty for the whole poll budget."""


class UnexpectedShape(RemoteJobError):
    """The dataset payload matched none of the known layouts."""


_STATUS_KINDS = {
    401: FailureKind.INVALID_KEY,
    403: FailureKind.INVALID_KEY,
    402: FailureKind.RATE_LIMITED,
    429: FailureKind.RATE_LIMITED,
    404: FailureKind.NOT_FOUND,
}

# Apify `error.type` values seen on failed calls
_ERROR_TYPE_KINDS = {
    "user-or-token-not-found": FailureKind.INVALID_KEY,
    "token-not-valid": FailureKind.INVALID_KEY,
    "unauthorized": FailureKind.INVALID_KEY,
    "insufficient-permissions": FailureKind.INVALID_KEY,
    "rate-limit-exceeded": FailureKind.RATE_LIMITED,
    "not-enough-usage-to-run-paid-actor": FailureKind.RATE_LIMITED,
    "monthly-usage-hard-limit-exceeded": FailureKind.RATE_LIMITED,
    "actor-memory-limit-exceeded": FailureKind.RATE_LIMITED,
    "record-not-found": FailureKind.NOT_FOUND,
    "actor-not-found": FailureKind.NOT_FOUND,
    "page-not-found": FailureKind.NOT_FOUND,
}

_RATE_LIMIT_HINTS = ("rate", "credit", "429", "quota")
_INVALID_KEY_HINTS = ("invalid api key", "401", "unauthorized")
_NOT_FOUND_HINTS = ("404", "actor not found")


def classify_failure(error: Exception) -> FailureKind:
    """Map an upstream failure to a FailureKind.

    Structured evidence wins: the HTTP status, then the provider's error type
    code. Substring matching on the message is the last resort, since upstream
    wording is not a contract.
    """
    status_code = getattr(error, "status_code", None)
    if status_code in _STATUS_KINDS:
        return _STATUS_KINDS[status_code]

    error_type = getattr(error, "error_type", None)
    if error_type:
        kind = _ERROR_TYPE_KINDS.get(error_type.strip().lower())
        if kind:
            return kind

    message = str(error).lower()
    if any(hint in message for hint in _RATE_LIMIT_HINTS):
        return FailureKind.RATE_LIMITED
    if any(hint in message for hint in _INVALID_KEY_HINTS):
        return FailureKind.INVALID_KEY
    if any(hint in message for hint in _NOT_FOUND_HINTS):
        return FailureKind.NOT_FOUND
    return FailureKind.GENERIC


def describe_failure(kind: FailureKind, error: Exception) -> str:
    """Human readable message for a classified failure."""
    if kind is FailureKind.INVALID_KEY:
        return "Invalid API key - please check your Apify API key"
    if kind is FailureKind.RATE_LIMITED:
        return "Rate limit exceeded - API key may be out of credits"
    if kind is FailureKind.NOT_FOUND:
        return "Apify actor not found - please check actor configuration"
    return f"Apify API error: {error}"
