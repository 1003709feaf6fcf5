"""Exception hierarchy for the router.

Only `ConfigurationError` and `InvariantViolationError` are ever raised past
the public API. The others travel inside `Failure` values so callers can
branch on them without try/except.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from llm_router.core.models import (
    ErrorCode,
    FailureKind,
    RecoveryErrorKind,
)

if TYPE_CHECKING:
    from llm_router.core.types import ExecutionDiagnostics, TokensUsage


class LLMRouterError(Exception):
    """Base exception for all router errors."""


class LLMError(LLMRouterError):
    """Structured, caller-visible error with a stable code.

    Attributes:
        code: Stable error code.
        message: Human-readable description.
        cause: Underlying error, if any.
        diagnostics: Attempt counts and repair logs for the failed run.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        cause: BaseException | None = None,
        diagnostics: ExecutionDiagnostics | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.cause = cause
        self.diagnostics = diagnostics
        super().__init__(f"[{code}] {message}")


class ConfigurationError(LLMError):
    """Raised at construction time when chains or metadata are unusable."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(ErrorCode.BAD_CONFIGURATION, message, cause=cause)


class BackendError(LLMRouterError):
    """A single failed attempt against one candidate, already classified."""

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        *,
        tokens_usage: TokensUsage | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.tokens_usage = tokens_usage
        self.cause = cause
        super().__init__(f"{kind}: {message}")


class RecoveryError(LLMRouterError):
    """Raw output could not be recovered into a schema-conforming value."""

    def __init__(
        self,
        kind: RecoveryErrorKind,
        message: str,
        *,
        applied_repairs: tuple[str, ...] = (),
        pipeline_phases: tuple[str, ...] = (),
        cause: BaseException | None = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.applied_repairs = applied_repairs
        self.pipeline_phases = pipeline_phases
        self.cause = cause
        super().__init__(message)


class InvariantViolationError(LLMRouterError):
    """A collaborator broke its contract (e.g. returned a non-Result value)."""

    def __init__(self, message: str, *, candidate: str | None = None) -> None:
        self.candidate = candidate
        super().__init__(message)
