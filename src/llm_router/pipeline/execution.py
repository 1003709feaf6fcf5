"""Ordered-fallback execution of one logical request.

The pipeline walks a candidate chain strictly in priority order and is an
explicit state machine:

    ATTEMPTING -> BACKOFF_WAIT -> ATTEMPTING      retryable failure, budget left
    ATTEMPTING -> CROPPING -> ATTEMPTING          content too large, crops left
    ATTEMPTING -> FALLING_BACK -> ATTEMPTING      budget spent or non-retryable
    FALLING_BACK -> DONE                          chain exhausted
    CROPPING -> DONE                              content cropped to nothing

Every transition is driven only by the classified `FailureKind` of the last
attempt. All counters live in a per-call `_RunState`; nothing is shared
between concurrent calls except the immutable chain and policy.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
import dataclasses
import json
import logging
import random
from typing import Any

from llm_router.core.exceptions import (
    BackendError,
    InvariantViolationError,
    LLMError,
)
from llm_router.core.models import (
    ExecutionState,
    FailureKind,
    OutputFormat,
    Purpose,
)
from llm_router.core.types import (
    ExecutionContext,
    ExecutionDiagnostics,
    ExecutionOptions,
    Failure,
    RecoverySuccess,
    Result,
    RetryPolicy,
    Success,
)
from llm_router.pipeline.candidates import Candidate
from llm_router.pipeline.classification import to_backend_error
from llm_router.pipeline.cropping import CropPolicy, TruncatingCropPolicy
from llm_router.recovery.pipeline import recover
from llm_router.telemetry import TelemetryContext, TelemetryContextProtocol

logger = logging.getLogger(__name__)

type SleepFunction = Callable[[float], Awaitable[None]]


@dataclasses.dataclass(slots=True)
class _RunState:
    """Mutable bookkeeping for a single call."""

    content: str
    index: int
    attempts: list[int]
    budget_used: list[int]
    crops_used: list[int]
    retries: int = 0
    crops: int = 0
    fallbacks: int = 0
    states: list[ExecutionState] = dataclasses.field(default_factory=list)
    last_error: BackendError | None = None
    applied_repairs: tuple[str, ...] = ()
    pipeline_phases: tuple[str, ...] = ()

    def diagnostics(
        self, candidates: Sequence[Candidate], winning_index: int | None = None
    ) -> ExecutionDiagnostics:
        return ExecutionDiagnostics(
            candidates=tuple(c.label for c in candidates),
            attempts=tuple(self.attempts),
            retries=self.retries,
            crops=self.crops,
            fallbacks=self.fallbacks,
            states=tuple(self.states),
            applied_repairs=self.applied_repairs,
            pipeline_phases=self.pipeline_phases,
            winning_index=winning_index,
        )


class ExecutionPipeline:
    """Runs one request against a candidate chain with retry, crop and fallback.

    The pipeline itself is stateless between calls and safe to share.
    """

    def __init__(
        self,
        *,
        crop_policy: CropPolicy | None = None,
        sleep: SleepFunction | None = None,
        jitter: Callable[[], float] | None = None,
        telemetry: TelemetryContextProtocol | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            crop_policy: Strategy for shrinking oversized content.
            sleep: Awaitable used for backoff waits (defaults to `asyncio.sleep`).
            jitter: Source of values in [0, 1) for backoff jitter.
            telemetry: Telemetry context; no-op unless enabled.
        """
        self._crop_policy = crop_policy or TruncatingCropPolicy()
        self._sleep = sleep or asyncio.sleep
        self._jitter = jitter or random.random
        self._telemetry = telemetry or TelemetryContext()

    async def execute(
        self,
        candidates: Sequence[Candidate],
        content: str,
        context: ExecutionContext,
        retry_policy: RetryPolicy,
        options: ExecutionOptions | None = None,
        *,
        start_index: int = 0,
    ) -> Result[Any, LLMError]:
        """Execute a request, returning the first valid candidate result.

        Args:
            candidates: Priority-ordered candidate chain.
            content: Request content.
            context: Request context (purpose, output format, resource name).
            retry_policy: Per-candidate budget and backoff bounds.
            options: Recovery and mutation-tracking switches.
            start_index: Position in the chain to start from.

        Returns:
            `Success` with the value and diagnostics, or `Failure(LLMError)`
            carrying the last candidate's error and the run's diagnostics.

        Raises:
            ValueError: If the chain is empty or `start_index` is out of range.
            InvariantViolationError: If a candidate returns a non-Result value.
        """
        if not candidates:
            raise ValueError("Candidate chain may not be empty; provide at least one candidate.")
        if not 0 <= start_index < len(candidates):
            raise ValueError(
                f"start_index {start_index} is out of range for a chain of "
                f"{len(candidates)} candidates"
            )
        options = options or ExecutionOptions()
        size = len(candidates)
        run = _RunState(
            content=content,
            index=start_index,
            attempts=[0] * size,
            budget_used=[0] * size,
            crops_used=[0] * size,
        )

        state = ExecutionState.ATTEMPTING
        while state is not ExecutionState.DONE:
            run.states.append(state)
            candidate = candidates[run.index]
            if state is ExecutionState.ATTEMPTING:
                outcome = await self._attempt(candidate, run, context, retry_policy, options)
                if isinstance(outcome, Success):
                    run.states.append(ExecutionState.DONE)
                    self._telemetry.count("llm.success", model=candidate.label)
                    return Success(
                        outcome.value,
                        diagnostics=run.diagnostics(candidates, winning_index=run.index),
                    )
                run.last_error = outcome.error
                state = self._after_failure(outcome.error, candidate, run, context, retry_policy)
            elif state is ExecutionState.BACKOFF_WAIT:
                state = await self._backoff(candidate, run, context, retry_policy)
            elif state is ExecutionState.CROPPING:
                state = self._crop(candidate, run, context, retry_policy)
            else:
                state = self._fall_back(candidates, run, context)

        run.states.append(ExecutionState.DONE)
        return self._give_up(candidates, run, context)

    async def _attempt(
        self,
        candidate: Candidate,
        run: _RunState,
        context: ExecutionContext,
        policy: RetryPolicy,
        options: ExecutionOptions,
    ) -> Result[Any, BackendError]:
        run.attempts[run.index] += 1
        bound = context.for_model(candidate.descriptor.model_key)
        try:
            with self._telemetry(
                "llm.attempt", model=candidate.label, attempt=run.attempts[run.index]
            ):
                async with asyncio.timeout(policy.per_attempt_timeout):
                    outcome = await candidate.call(run.content, bound)
        except Exception as e:
            return Failure(to_backend_error(e))

        if isinstance(outcome, Failure):
            return Failure(to_backend_error(outcome.error))
        if not isinstance(outcome, Success):
            raise InvariantViolationError(
                "Candidate returned a non-Result value; expected Success|Failure.",
                candidate=candidate.label,
            )
        return self._accept(outcome.value, bound, run, options)

    def _accept(
        self,
        payload: Any,
        context: ExecutionContext,
        run: _RunState,
        options: ExecutionOptions,
    ) -> Result[Any, BackendError]:
        if context.purpose is Purpose.EMBEDDING:
            return _accept_embedding(payload)
        if context.output_format is OutputFormat.TEXT:
            if isinstance(payload, str) and payload.strip():
                return Success(payload)
            return Failure(
                BackendError(FailureKind.INVALID_RESPONSE, "Completion returned no text")
            )
        return self._accept_structured(payload, context, run, options)

    def _accept_structured(
        self,
        payload: Any,
        context: ExecutionContext,
        run: _RunState,
        options: ExecutionOptions,
    ) -> Result[Any, BackendError]:
        schema = options.schema
        try:
            value = json.loads(payload) if isinstance(payload, str) else payload
            return Success(schema.parse(value) if schema is not None else value)
        except Exception as direct_error:
            if not options.retry_on_invalid:
                return Failure(
                    BackendError(
                        FailureKind.INVALID_RESPONSE,
                        f"Response for resource '{context.resource_name}' is invalid: "
                        f"{direct_error}",
                        cause=direct_error,
                    )
                )

        raw = payload if isinstance(payload, str) else json.dumps(payload, default=str)
        recovered = recover(raw, schema, resource_name=context.resource_name)
        if isinstance(recovered, RecoverySuccess):
            if options.track_mutations:
                run.applied_repairs = recovered.applied_repairs
                run.pipeline_phases = recovered.pipeline_phases
            if recovered.applied_repairs:
                logger.debug(
                    "Recovered response for resource '%s' from %s using %s",
                    context.resource_name,
                    context.model_key,
                    ", ".join(recovered.applied_repairs),
                )
            return Success(recovered.value)

        error = recovered.error
        if options.track_mutations:
            run.applied_repairs = error.applied_repairs
            run.pipeline_phases = error.pipeline_phases
        return Failure(BackendError(FailureKind.INVALID_RESPONSE, error.message, cause=error))

    def _after_failure(
        self,
        error: BackendError,
        candidate: Candidate,
        run: _RunState,
        context: ExecutionContext,
        policy: RetryPolicy,
    ) -> ExecutionState:
        index = run.index
        if (
            error.kind is FailureKind.CONTENT_TOO_LARGE
            and run.crops_used[index] < policy.max_crop_attempts
        ):
            return ExecutionState.CROPPING

        run.budget_used[index] += 1
        if not error.kind.retryable:
            return ExecutionState.FALLING_BACK
        if run.budget_used[index] < policy.max_attempts_per_candidate:
            return ExecutionState.BACKOFF_WAIT
        logger.warning(
            "Exhausted %d attempts on %s for resource '%s'; last error: %s",
            policy.max_attempts_per_candidate,
            candidate.label,
            context.resource_name,
            error,
        )
        return ExecutionState.FALLING_BACK

    async def _backoff(
        self,
        candidate: Candidate,
        run: _RunState,
        context: ExecutionContext,
        policy: RetryPolicy,
    ) -> ExecutionState:
        used = run.budget_used[run.index]
        delay = policy.backoff_delay(used - 1, self._jitter())
        logger.warning(
            "Retrying %s for resource '%s' after %s (attempt %d/%d, waiting %.2fs)",
            candidate.label,
            context.resource_name,
            run.last_error,
            used + 1,
            policy.max_attempts_per_candidate,
            delay,
        )
        self._telemetry.count("llm.retry", model=candidate.label)
        run.retries += 1
        await self._sleep(delay)
        return ExecutionState.ATTEMPTING

    def _crop(
        self,
        candidate: Candidate,
        run: _RunState,
        context: ExecutionContext,
        policy: RetryPolicy,
    ) -> ExecutionState:
        error = run.last_error or BackendError(
            FailureKind.CONTENT_TOO_LARGE, "Content too large"
        )
        index = run.index
        run.crops_used[index] += 1
        run.crops += 1
        self._telemetry.count("llm.crop", model=candidate.label)
        cropped = self._crop_policy.crop(run.content, candidate.descriptor, error)
        if not cropped.strip():
            logger.warning(
                "Content became empty after cropping for resource '%s', terminating attempts",
                context.resource_name,
            )
            return ExecutionState.DONE
        logger.warning(
            "Cropped content for resource '%s' from %d to %d chars for %s (crop %d/%d)",
            context.resource_name,
            len(run.content),
            len(cropped),
            candidate.label,
            run.crops_used[index],
            policy.max_crop_attempts,
        )
        run.content = cropped
        return ExecutionState.ATTEMPTING

    def _fall_back(
        self,
        candidates: Sequence[Candidate],
        run: _RunState,
        context: ExecutionContext,
    ) -> ExecutionState:
        following = run.index + 1
        if following >= len(candidates):
            return ExecutionState.DONE
        logger.warning(
            "Falling back from %s to %s for resource '%s' after: %s",
            candidates[run.index].label,
            candidates[following].label,
            context.resource_name,
            run.last_error,
        )
        self._telemetry.count("llm.fallback", model=candidates[following].label)
        run.fallbacks += 1
        run.index = following
        return ExecutionState.ATTEMPTING

    def _give_up(
        self,
        candidates: Sequence[Candidate],
        run: _RunState,
        context: ExecutionContext,
    ) -> Failure[LLMError]:
        error = run.last_error or BackendError(
            FailureKind.UNKNOWN, "No attempt was made"
        )
        diagnostics = run.diagnostics(candidates)
        logger.warning(
            "Gave up on resource '%s' after %d attempts across %s; last error: %s",
            context.resource_name,
            diagnostics.total_attempts,
            ", ".join(diagnostics.candidates),
            error,
        )
        self._telemetry.count("llm.failure", resource=context.resource_name)
        return Failure(
            LLMError(
                error.kind.error_code,
                f"Failed to fulfill request for resource '{context.resource_name}' "
                f"after exhausting all retry and fallback strategies: {error.message}",
                cause=error,
                diagnostics=diagnostics,
            )
        )


def _accept_embedding(payload: Any) -> Result[list[float], BackendError]:
    if (
        isinstance(payload, Sequence)
        and not isinstance(payload, str | bytes)
        and payload
        and all(isinstance(x, int | float) and not isinstance(x, bool) for x in payload)
    ):
        return Success([float(x) for x in payload])
    return Failure(
        BackendError(
            FailureKind.INVALID_RESPONSE,
            "Embedding response was not a non-empty numeric vector",
        )
    )
