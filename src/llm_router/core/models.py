"""Closed vocabularies shared across the router.

Every enum here is a stable, caller-visible contract. Values are lower-case
strings for log friendliness except `ErrorCode`, whose values match the
identifiers callers match on.
"""

from enum import StrEnum


class Purpose(StrEnum):
    """What a candidate chain is used for."""

    COMPLETION = "completion"
    EMBEDDING = "embedding"


class OutputFormat(StrEnum):
    """Shape the caller expects back from a completion."""

    TEXT = "text"
    JSON = "json"


class ErrorCode(StrEnum):
    """Stable error codes carried by `LLMError`."""

    BAD_CONFIGURATION = "BAD_CONFIGURATION"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    CONTENT_TOO_LARGE = "CONTENT_TOO_LARGE"
    BAD_RESPONSE_CONTENT = "BAD_RESPONSE_CONTENT"
    AUTH_FAILED = "AUTH_FAILED"
    BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"
    BAD_REQUEST = "BAD_REQUEST"
    BACKEND_ERROR = "BACKEND_ERROR"


class FailureKind(StrEnum):
    """Classification of a single failed attempt against one candidate."""

    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    OVERLOADED = "overloaded"
    NETWORK = "network"
    CONTENT_TOO_LARGE = "content_too_large"
    AUTH_FAILED = "auth_failed"
    MALFORMED_REQUEST = "malformed_request"
    INVALID_RESPONSE = "invalid_response"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        """Whether the same candidate may be attempted again after a backoff."""
        return self in _RETRYABLE

    @property
    def error_code(self) -> ErrorCode:
        """The caller-visible code for a run that ended on this kind."""
        return _ERROR_CODES[self]


_RETRYABLE = frozenset(
    {
        FailureKind.RATE_LIMITED,
        FailureKind.TIMEOUT,
        FailureKind.OVERLOADED,
        FailureKind.NETWORK,
    }
)

_ERROR_CODES: dict[FailureKind, ErrorCode] = {
    FailureKind.RATE_LIMITED: ErrorCode.RATE_LIMITED,
    FailureKind.TIMEOUT: ErrorCode.TIMEOUT,
    FailureKind.OVERLOADED: ErrorCode.BACKEND_UNAVAILABLE,
    FailureKind.NETWORK: ErrorCode.BACKEND_UNAVAILABLE,
    FailureKind.CONTENT_TOO_LARGE: ErrorCode.CONTENT_TOO_LARGE,
    FailureKind.AUTH_FAILED: ErrorCode.AUTH_FAILED,
    FailureKind.MALFORMED_REQUEST: ErrorCode.BAD_REQUEST,
    FailureKind.INVALID_RESPONSE: ErrorCode.BAD_RESPONSE_CONTENT,
    FailureKind.UNKNOWN: ErrorCode.BACKEND_ERROR,
}


class RecoveryErrorKind(StrEnum):
    """Why the recovery pipeline could not produce a value."""

    PARSE = "parse"
    VALIDATION = "validation"


class ExecutionState(StrEnum):
    """States of the execution pipeline's fallback state machine."""

    ATTEMPTING = "attempting"
    BACKOFF_WAIT = "backoff_wait"
    CROPPING = "cropping"
    FALLING_BACK = "falling_back"
    DONE = "done"
