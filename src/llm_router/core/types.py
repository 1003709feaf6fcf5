"""Core data types that flow through the router.

Everything here is immutable. Descriptors and policies are built once at
startup and shared by concurrent calls; contexts, options and diagnostics are
built fresh per call.
"""

from __future__ import annotations

import dataclasses
import typing

from llm_router.core.models import OutputFormat, Purpose

# --- Minimal guard helpers ---


def _require(
    *,
    condition: bool,
    message: str,
    exc: type[Exception] = ValueError,
    field_name: str | None = None,
) -> None:
    """Centralized validation with optional field context for clearer errors."""
    if not condition:
        if field_name:
            raise exc(f"{field_name}: {message}")
        raise exc(message)


# --- Result Monad ---
# Expected failures are values, not exceptions. The execution pipeline always
# returns one of these two shapes.

TSuccess = typing.TypeVar("TSuccess")
TFailure = typing.TypeVar("TFailure", bound=Exception)


@dataclasses.dataclass(frozen=True, slots=True)
class Success[TSuccess]:
    """A successful result, optionally with the diagnostics of the run."""

    value: TSuccess
    diagnostics: ExecutionDiagnostics | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class Failure[TFailure]:
    """A failed result, containing the error."""

    error: TFailure


Result = Success[TSuccess] | Failure[TFailure]


class SchemaLike(typing.Protocol):
    """Anything exposing a parse-or-throw operation."""

    def parse(self, value: typing.Any) -> typing.Any: ...  # noqa: D102


# --- Model metadata ---


@dataclasses.dataclass(frozen=True, slots=True)
class TokensUsage:
    """Token accounting reported by a backend; -1 means unknown."""

    prompt_tokens: int = -1
    completion_tokens: int = -1
    max_total_tokens: int = -1


@dataclasses.dataclass(frozen=True, slots=True)
class ModelDescriptor:
    """Static description of one model offered by a backend."""

    backend_family: str
    model_key: str
    max_total_tokens: int
    purpose: Purpose = Purpose.COMPLETION
    dimensions: int | None = None

    def __post_init__(self) -> None:
        """Validate invariants for type safety."""
        _require(
            condition=bool(self.backend_family),
            message="must be a non-empty string",
            field_name="backend_family",
        )
        _require(
            condition=bool(self.model_key),
            message="must be a non-empty string",
            field_name="model_key",
        )
        _require(
            condition=self.max_total_tokens > 0,
            message="must be positive",
            field_name="max_total_tokens",
        )
        _require(
            condition=self.dimensions is None or self.dimensions > 0,
            message="must be positive when provided",
            field_name="dimensions",
        )

    @property
    def label(self) -> str:
        """`family/model` identifier used in logs and descriptions."""
        return f"{self.backend_family}/{self.model_key}"


@dataclasses.dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Per-candidate retry budget and backoff bounds (seconds)."""

    max_attempts_per_candidate: int = 3
    min_delay: float = 1.0
    max_delay: float = 30.0
    per_attempt_timeout: float | None = 120.0
    max_crop_attempts: int = 3

    def __post_init__(self) -> None:
        """Validate bounds so the backoff computation stays well-defined."""
        _require(
            condition=self.max_attempts_per_candidate >= 1,
            message="must be at least 1",
            field_name="max_attempts_per_candidate",
        )
        _require(
            condition=0 <= self.min_delay <= self.max_delay,
            message="must satisfy 0 <= min_delay <= max_delay",
            field_name="min_delay/max_delay",
        )
        _require(
            condition=self.per_attempt_timeout is None or self.per_attempt_timeout > 0,
            message="must be positive or None",
            field_name="per_attempt_timeout",
        )
        _require(
            condition=self.max_crop_attempts >= 0,
            message="must be non-negative",
            field_name="max_crop_attempts",
        )

    def backoff_delay(self, retry_number: int, jitter: float) -> float:
        """Exponential backoff with jitter, clamped to [min_delay, max_delay].

        Args:
            retry_number: Zero-based index of the retry about to happen.
            jitter: Random value in [0, 1) scaling up to +25% extra delay.
        """
        raw = self.min_delay * (2**retry_number) * (1 + 0.25 * jitter)
        return min(self.max_delay, max(self.min_delay, raw))


# --- Per-call records ---


@dataclasses.dataclass(frozen=True, slots=True)
class ExecutionContext:
    """Read-only description of the request being executed."""

    resource_name: str
    purpose: Purpose
    output_format: OutputFormat = OutputFormat.TEXT
    model_key: str | None = None

    def for_model(self, model_key: str) -> ExecutionContext:
        """Return a copy bound to the candidate being attempted."""
        return dataclasses.replace(self, model_key=model_key)


@dataclasses.dataclass(frozen=True, slots=True)
class CompletionOptions:
    """Caller options for a completion request."""

    output_format: OutputFormat = OutputFormat.TEXT
    schema: SchemaLike | None = None

    def __post_init__(self) -> None:
        """A schema only makes sense for structured output."""
        _require(
            condition=self.schema is None or self.output_format is OutputFormat.JSON,
            message="a schema requires output_format=JSON",
            field_name="schema",
        )


@dataclasses.dataclass(frozen=True, slots=True)
class ExecutionOptions:
    """Behavior switches for one execution pipeline run."""

    retry_on_invalid: bool = True
    track_mutations: bool = True
    schema: SchemaLike | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class ExecutionDiagnostics:
    """What happened during one execution pipeline run.

    `attempts[i]` counts every call made to `candidates[i]`, crop retries
    included. `states` is the ordered trail of state-machine states visited.
    """

    candidates: tuple[str, ...]
    attempts: tuple[int, ...]
    retries: int = 0
    crops: int = 0
    fallbacks: int = 0
    states: tuple[str, ...] = ()
    applied_repairs: tuple[str, ...] = ()
    pipeline_phases: tuple[str, ...] = ()
    winning_index: int | None = None

    @property
    def total_attempts(self) -> int:
        """Sum of attempts across all candidates."""
        return sum(self.attempts)


# --- Recovery outcome ---


@dataclasses.dataclass(frozen=True, slots=True)
class RecoverySuccess[TSuccess]:
    """A recovered, schema-conforming value and the repairs that produced it."""

    value: TSuccess
    applied_repairs: tuple[str, ...] = ()
    pipeline_phases: tuple[str, ...] = ()


if typing.TYPE_CHECKING:
    from llm_router.core.exceptions import RecoveryError

RecoveryOutcome = RecoverySuccess[TSuccess] | Failure["RecoveryError"]
