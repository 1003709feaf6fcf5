"""Failure taxonomy for remote calls.

Maps whatever a candidate raised (SDK errors, httpx errors, timeouts) onto a
`FailureKind`. Typed signals win over status codes, which win over message
patterns. Within messages, content-too-large patterns are checked first.
"""

from __future__ import annotations

import httpx

from llm_router.core.exceptions import BackendError
from llm_router.core.models import FailureKind

_MESSAGE_PATTERNS: tuple[tuple[FailureKind, tuple[str, ...]], ...] = (
    (
        FailureKind.CONTENT_TOO_LARGE,
        (
            "context length",
            "context window",
            "too many tokens",
            "token limit",
            "maximum context",
            "input is too long",
            "input too long",
            "exceeds the maximum number of tokens",
            "prompt is too long",
        ),
    ),
    (
        FailureKind.RATE_LIMITED,
        ("429", "rate limit", "rate_limit", "resource exhausted", "resource_exhausted", "quota"),
    ),
    (
        FailureKind.AUTH_FAILED,
        (
            "unauthenticated",
            "unauthorized",
            "permission denied",
            "permission_denied",
            "api key not valid",
            "invalid api key",
        ),
    ),
    (FailureKind.TIMEOUT, ("timeout", "timed out", "deadline exceeded", "deadline_exceeded")),
    (FailureKind.OVERLOADED, ("overloaded", "unavailable", "temporarily", "try again later")),
    (FailureKind.NETWORK, ("connection reset", "connection refused", "connection aborted")),
    (FailureKind.MALFORMED_REQUEST, ("invalid argument", "invalid_argument", "bad request", "malformed")),
)


def classify_status(status: int | None, message: str = "") -> FailureKind:
    """Classify an HTTP-style status code.

    Content-too-large and auth messages take precedence over the status.

    Args:
        status: HTTP status code, if known.
        message: Error text used for disambiguation.
    """
    by_message = classify_message(message)
    if by_message in (FailureKind.CONTENT_TOO_LARGE, FailureKind.AUTH_FAILED):
        return by_message
    if status is None:
        return by_message
    if status in (408, 504):
        return FailureKind.TIMEOUT
    if status == 413:
        return FailureKind.CONTENT_TOO_LARGE
    if status == 429:
        return FailureKind.RATE_LIMITED
    if status in (401, 403):
        return FailureKind.AUTH_FAILED
    if status in (500, 502, 503):
        return FailureKind.OVERLOADED
    if 400 <= status < 500:
        return FailureKind.MALFORMED_REQUEST
    return by_message


def classify_message(message: str) -> FailureKind:
    """Classify free-form error text; UNKNOWN when nothing matches."""
    lowered = message.lower()
    for kind, patterns in _MESSAGE_PATTERNS:
        if any(p in lowered for p in patterns):
            return kind
    return FailureKind.UNKNOWN


def _status_of(error: BaseException) -> int | None:
    for attr in ("code", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None


def classify_exception(error: BaseException) -> FailureKind:
    """Classify an exception raised while attempting a candidate."""
    if isinstance(error, BackendError):
        return error.kind
    if isinstance(error, TimeoutError | httpx.TimeoutException):
        return FailureKind.TIMEOUT
    if isinstance(error, httpx.TransportError | ConnectionError):
        return FailureKind.NETWORK
    return classify_status(_status_of(error), str(error))


def to_backend_error(error: BaseException) -> BackendError:
    """Wrap any exception as a classified `BackendError`."""
    if isinstance(error, BackendError):
        return error
    kind = classify_exception(error)
    message = str(error) or type(error).__name__
    return BackendError(kind, message, cause=error)
