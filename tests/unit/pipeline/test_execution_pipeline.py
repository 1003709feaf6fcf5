"""Behavior of the execution pipeline's retry, crop and fallback state machine."""

import asyncio
import json
from typing import TypedDict
from unittest.mock import AsyncMock

import httpx
import pytest

from llm_router.core.exceptions import BackendError, InvariantViolationError
from llm_router.core.models import (
    ErrorCode,
    ExecutionState,
    FailureKind,
    OutputFormat,
    Purpose,
)
from llm_router.core.types import (
    ExecutionContext,
    ExecutionOptions,
    Failure,
    RetryPolicy,
    Success,
    TokensUsage,
)
from llm_router.pipeline.execution import ExecutionPipeline
from llm_router.recovery.schema import ResponseSchema
from llm_router.telemetry import InMemoryReporter, TelemetryContext

pytestmark = pytest.mark.unit


class Profile(TypedDict):
    name: str
    tags: list[str]


def _text_context(resource: str = "doc.md") -> ExecutionContext:
    return ExecutionContext(resource_name=resource, purpose=Purpose.COMPLETION)


def _json_context(resource: str = "doc.md") -> ExecutionContext:
    return ExecutionContext(
        resource_name=resource,
        purpose=Purpose.COMPLETION,
        output_format=OutputFormat.JSON,
    )


def _pipeline(**kwargs) -> tuple[ExecutionPipeline, AsyncMock]:
    sleep = AsyncMock()
    return ExecutionPipeline(sleep=sleep, jitter=lambda: 0.0, **kwargs), sleep


@pytest.mark.asyncio
async def test_first_candidate_success_short_circuits(make_candidate, fast_policy):
    first = make_candidate("a", Success("hello"))
    second = make_candidate("b", Success("unused"))
    pipeline, sleep = _pipeline()

    result = await pipeline.execute([first, second], "prompt", _text_context(), fast_policy)

    assert isinstance(result, Success)
    assert result.value == "hello"
    assert result.diagnostics.attempts == (1, 0)
    assert result.diagnostics.winning_index == 0
    second.call.assert_not_called()
    sleep.assert_not_called()


@pytest.mark.asyncio
async def test_candidate_receives_context_bound_to_its_model(make_candidate, fast_policy):
    candidate = make_candidate("model-x", Success("ok"))
    pipeline, _ = _pipeline()

    await pipeline.execute([candidate], "prompt", _text_context("r1"), fast_policy)

    content, context = candidate.call.await_args.args
    assert content == "prompt"
    assert context.model_key == "model-x"
    assert context.resource_name == "r1"


@pytest.mark.asyncio
async def test_retryable_failures_fall_back_and_skip_later_candidates(
    make_candidate, fast_policy
):
    first = make_candidate("a", BackendError(FailureKind.RATE_LIMITED, "slow down"))
    second = make_candidate("b", [TimeoutError(), Success("from b")])
    third = make_candidate("c", Success("never"))
    pipeline, sleep = _pipeline()

    result = await pipeline.execute(
        [first, second, third], "prompt", _text_context(), fast_policy
    )

    assert isinstance(result, Success)
    assert result.value == "from b"
    assert first.call.await_count == 3
    assert second.call.await_count == 2
    third.call.assert_not_called()
    diagnostics = result.diagnostics
    assert diagnostics.attempts == (3, 2, 0)
    assert diagnostics.retries == 3
    assert diagnostics.fallbacks == 1
    assert diagnostics.winning_index == 1
    assert sleep.await_count == 3


@pytest.mark.asyncio
async def test_all_candidates_exhausted_reports_budget_sized_attempts(
    make_candidate, fast_policy
):
    candidates = [
        make_candidate(key, BackendError(FailureKind.OVERLOADED, "busy"))
        for key in ("a", "b", "c")
    ]
    pipeline, _ = _pipeline()

    result = await pipeline.execute(candidates, "prompt", _text_context(), fast_policy)

    assert isinstance(result, Failure)
    assert result.error.code is ErrorCode.BACKEND_UNAVAILABLE
    assert result.error.diagnostics.attempts == (3, 3, 3)
    assert result.error.diagnostics.fallbacks == 2
    assert "exhausting all retry and fallback strategies" in result.error.message
    assert result.error.diagnostics.states[-1] == ExecutionState.DONE


@pytest.mark.asyncio
async def test_non_retryable_failure_falls_back_immediately(make_candidate, fast_policy):
    first = make_candidate("a", BackendError(FailureKind.AUTH_FAILED, "bad key"))
    second = make_candidate("b", Success("ok"))
    pipeline, sleep = _pipeline()

    result = await pipeline.execute([first, second], "prompt", _text_context(), fast_policy)

    assert isinstance(result, Success)
    assert first.call.await_count == 1
    sleep.assert_not_called()
    assert result.diagnostics.states[:3] == (
        ExecutionState.ATTEMPTING,
        ExecutionState.FALLING_BACK,
        ExecutionState.ATTEMPTING,
    )


@pytest.mark.asyncio
async def test_last_candidate_error_code_is_returned(make_candidate, fast_policy):
    first = make_candidate("a", TimeoutError())
    second = make_candidate("b", BackendError(FailureKind.AUTH_FAILED, "denied"))
    pipeline, _ = _pipeline()

    result = await pipeline.execute([first, second], "prompt", _text_context(), fast_policy)

    assert isinstance(result, Failure)
    assert result.error.code is ErrorCode.AUTH_FAILED
    assert isinstance(result.error.cause, BackendError)
    assert result.error.cause.kind is FailureKind.AUTH_FAILED


@pytest.mark.asyncio
async def test_raised_exceptions_are_classified(make_candidate, fast_policy):
    request = httpx.Request("POST", "https://example.invalid")
    first = make_candidate("a", httpx.ConnectError("refused", request=request))
    pipeline, _ = _pipeline()

    result = await pipeline.execute([first], "prompt", _text_context(), fast_policy)

    assert isinstance(result, Failure)
    assert result.error.code is ErrorCode.BACKEND_UNAVAILABLE
    assert first.call.await_count == 3


@pytest.mark.asyncio
async def test_per_attempt_timeout_consumes_one_budget_unit(make_candidate):
    async def hang(*_args):
        await asyncio.sleep(10)

    first = make_candidate("slow", Success("unused"))
    first.call.side_effect = hang
    second = make_candidate("fast", Success("done"))
    policy = RetryPolicy(
        max_attempts_per_candidate=2,
        min_delay=0.0,
        max_delay=0.0,
        per_attempt_timeout=0.01,
    )
    pipeline, _ = _pipeline()

    result = await pipeline.execute([first, second], "prompt", _text_context(), policy)

    assert isinstance(result, Success)
    assert result.value == "done"
    assert result.diagnostics.attempts == (2, 1)


@pytest.mark.asyncio
async def test_backoff_delays_grow_within_bounds(make_candidate):
    candidate = make_candidate("a", BackendError(FailureKind.RATE_LIMITED, "429"))
    policy = RetryPolicy(max_attempts_per_candidate=4, min_delay=1.0, max_delay=3.0)
    pipeline, sleep = _pipeline()

    await pipeline.execute([candidate], "prompt", _text_context(), policy)

    delays = [call.args[0] for call in sleep.await_args_list]
    assert delays == [1.0, 2.0, 3.0]


@pytest.mark.asyncio
async def test_content_too_large_crops_and_retries_same_candidate(
    make_candidate, fast_policy
):
    candidate = make_candidate(
        "a",
        [
            BackendError(FailureKind.CONTENT_TOO_LARGE, "too many tokens"),
            Success("fits now"),
        ],
    )
    pipeline, sleep = _pipeline()

    result = await pipeline.execute([candidate], "x" * 100, _text_context(), fast_policy)

    assert isinstance(result, Success)
    assert result.diagnostics.crops == 1
    assert result.diagnostics.attempts == (2,)
    assert ExecutionState.CROPPING in result.diagnostics.states
    first_content = candidate.call.await_args_list[0].args[0]
    second_content = candidate.call.await_args_list[1].args[0]
    assert len(second_content) < len(first_content)
    sleep.assert_not_called()


@pytest.mark.asyncio
async def test_crop_uses_reported_token_usage(make_candidate, fast_policy):
    usage = TokensUsage(prompt_tokens=1700, max_total_tokens=1000)
    candidate = make_candidate(
        "a",
        [
            BackendError(FailureKind.CONTENT_TOO_LARGE, "limit", tokens_usage=usage),
            Success("ok"),
        ],
    )
    pipeline, _ = _pipeline()

    await pipeline.execute([candidate], "y" * 1000, _text_context(), fast_policy)

    # 1000 * 0.85 / 1700 of the content survives
    assert len(candidate.call.await_args_list[1].args[0]) == 500


@pytest.mark.asyncio
async def test_crop_ceiling_then_fallback(make_candidate, fast_policy):
    too_large = BackendError(FailureKind.CONTENT_TOO_LARGE, "context length exceeded")
    first = make_candidate("a", too_large)
    second = make_candidate("b", Success("bigger window"))
    pipeline, _ = _pipeline()

    result = await pipeline.execute([first, second], "z" * 400, _text_context(), fast_policy)

    assert isinstance(result, Success)
    # two crop retries plus the attempt that exhausted the crop ceiling
    assert first.call.await_count == 3
    assert result.diagnostics.crops == 2
    # cropped content carries over to the next candidate
    assert len(second.call.await_args.args[0]) < 400


@pytest.mark.asyncio
async def test_content_cropped_to_nothing_terminates(make_candidate):
    candidate = make_candidate(
        "a", BackendError(FailureKind.CONTENT_TOO_LARGE, "too long")
    )
    spare = make_candidate("b", Success("unused"))
    policy = RetryPolicy(max_crop_attempts=5, min_delay=0.0, max_delay=0.0)
    pipeline, _ = _pipeline()

    result = await pipeline.execute([candidate, spare], "ab", _text_context(), policy)

    assert isinstance(result, Failure)
    assert result.error.code is ErrorCode.CONTENT_TOO_LARGE
    assert result.error.diagnostics.crops == 2
    # empty content ends the run; later candidates are not tried
    spare.call.assert_not_called()


@pytest.mark.asyncio
async def test_empty_text_is_invalid_response(make_candidate, fast_policy):
    first = make_candidate("a", Success("   "))
    pipeline, _ = _pipeline()

    result = await pipeline.execute([first], "prompt", _text_context(), fast_policy)

    assert isinstance(result, Failure)
    assert result.error.code is ErrorCode.BAD_RESPONSE_CONTENT
    assert first.call.await_count == 1


@pytest.mark.asyncio
async def test_structured_output_is_validated_directly(make_candidate, fast_policy):
    payload = json.dumps({"name": "Foo", "tags": ["a"]})
    candidate = make_candidate("a", Success(payload))
    pipeline, _ = _pipeline()

    result = await pipeline.execute(
        [candidate],
        "prompt",
        _json_context(),
        fast_policy,
        ExecutionOptions(schema=ResponseSchema(Profile)),
    )

    assert isinstance(result, Success)
    assert result.value == {"name": "Foo", "tags": ["a"]}
    assert result.diagnostics.applied_repairs == ()


@pytest.mark.asyncio
async def test_structured_output_is_recovered(make_candidate, fast_policy):
    raw = '```json\n{"name":"Foo","tags":"one, two, three"}\n```'
    candidate = make_candidate("a", Success(raw))
    pipeline, _ = _pipeline()

    result = await pipeline.execute(
        [candidate],
        "prompt",
        _json_context(),
        fast_policy,
        ExecutionOptions(schema=ResponseSchema(Profile)),
    )

    assert isinstance(result, Success)
    assert result.value == {"name": "Foo", "tags": ["one", "two", "three"]}
    assert "coerce_string_to_array" in result.diagnostics.applied_repairs
    assert result.diagnostics.pipeline_phases[0] == "parse"


@pytest.mark.asyncio
async def test_mutation_log_omitted_when_not_tracked(make_candidate, fast_policy):
    raw = '```json\n{"name":"Foo","tags":"one, two, three"}\n```'
    candidate = make_candidate("a", Success(raw))
    pipeline, _ = _pipeline()

    result = await pipeline.execute(
        [candidate],
        "prompt",
        _json_context(),
        fast_policy,
        ExecutionOptions(track_mutations=False, schema=ResponseSchema(Profile)),
    )

    assert isinstance(result, Success)
    assert result.diagnostics.applied_repairs == ()


@pytest.mark.asyncio
async def test_invalid_output_without_recovery_falls_back(make_candidate, fast_policy):
    first = make_candidate("a", Success('{"name": "Foo", "tags": "x, y, z"}'))
    second = make_candidate("b", Success('{"name": "Bar", "tags": ["ok"]}'))
    pipeline, _ = _pipeline()

    result = await pipeline.execute(
        [first, second],
        "prompt",
        _json_context(),
        fast_policy,
        ExecutionOptions(retry_on_invalid=False, schema=ResponseSchema(Profile)),
    )

    assert isinstance(result, Success)
    assert result.value["name"] == "Bar"
    assert first.call.await_count == 1


@pytest.mark.asyncio
async def test_timeouts_then_unparseable_output_is_bad_response_content(make_candidate):
    policy = RetryPolicy(max_attempts_per_candidate=3, min_delay=0.0, max_delay=0.0)
    first = make_candidate("a", TimeoutError())
    second = make_candidate("b", Success("Sorry, no structured answer is available"))
    pipeline, sleep = _pipeline()

    result = await pipeline.execute([first, second], "prompt", _json_context(), policy)

    assert isinstance(result, Failure)
    assert result.error.code is ErrorCode.BAD_RESPONSE_CONTENT
    assert first.call.await_count == 3
    assert second.call.await_count == 1
    assert result.error.diagnostics.attempts == (3, 1)
    assert sleep.await_count == 2
    assert "sanitize" in result.error.diagnostics.pipeline_phases


@pytest.mark.asyncio
async def test_embedding_vectors_are_accepted(make_candidate, fast_policy):
    candidate = make_candidate("e", Success([1, 2.5, 3]), purpose=Purpose.EMBEDDING)
    pipeline, _ = _pipeline()
    context = ExecutionContext(resource_name="doc", purpose=Purpose.EMBEDDING)

    result = await pipeline.execute([candidate], "text", context, fast_policy)

    assert isinstance(result, Success)
    assert result.value == [1.0, 2.5, 3.0]


@pytest.mark.asyncio
async def test_empty_embedding_falls_back(make_candidate, fast_policy):
    first = make_candidate("e1", Success([]), purpose=Purpose.EMBEDDING)
    second = make_candidate("e2", Success([0.5]), purpose=Purpose.EMBEDDING)
    pipeline, _ = _pipeline()
    context = ExecutionContext(resource_name="doc", purpose=Purpose.EMBEDDING)

    result = await pipeline.execute([first, second], "text", context, fast_policy)

    assert isinstance(result, Success)
    assert result.diagnostics.winning_index == 1


@pytest.mark.asyncio
async def test_start_index_skips_earlier_candidates(make_candidate, fast_policy):
    first = make_candidate("a", Success("first"))
    second = make_candidate("b", Success("second"))
    pipeline, _ = _pipeline()

    result = await pipeline.execute(
        [first, second], "prompt", _text_context(), fast_policy, start_index=1
    )

    assert isinstance(result, Success)
    assert result.value == "second"
    first.call.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("start_index", [-1, 2])
async def test_start_index_out_of_range_raises(make_candidate, fast_policy, start_index):
    pipeline, _ = _pipeline()
    chain = [make_candidate("a", Success("x")), make_candidate("b", Success("y"))]

    with pytest.raises(ValueError, match="start_index"):
        await pipeline.execute(
            chain, "prompt", _text_context(), fast_policy, start_index=start_index
        )


@pytest.mark.asyncio
async def test_empty_chain_raises(fast_policy):
    pipeline, _ = _pipeline()

    with pytest.raises(ValueError, match="may not be empty"):
        await pipeline.execute([], "prompt", _text_context(), fast_policy)


@pytest.mark.asyncio
async def test_non_result_return_is_an_invariant_violation(make_candidate, fast_policy):
    candidate = make_candidate("a", "bare string")
    pipeline, _ = _pipeline()

    with pytest.raises(InvariantViolationError) as exc_info:
        await pipeline.execute([candidate], "prompt", _text_context(), fast_policy)
    assert exc_info.value.candidate == "test/a"


@pytest.mark.asyncio
async def test_concurrent_calls_keep_separate_counters(make_candidate, fast_policy):
    flaky = make_candidate("a", BackendError(FailureKind.TIMEOUT, "t"))
    steady = make_candidate("b", Success("ok"))
    pipeline, _ = _pipeline()

    results = await asyncio.gather(
        *(
            pipeline.execute([flaky, steady], f"p{i}", _text_context(f"r{i}"), fast_policy)
            for i in range(5)
        )
    )

    assert all(r.diagnostics.attempts == (3, 1) for r in results)


@pytest.mark.asyncio
async def test_telemetry_counts_retries_and_fallbacks(make_candidate, fast_policy):
    reporter = InMemoryReporter()
    first = make_candidate("a", BackendError(FailureKind.RATE_LIMITED, "429"))
    second = make_candidate("b", Success("ok"))
    pipeline, _ = _pipeline(telemetry=TelemetryContext(reporter, enabled=True))

    await pipeline.execute([first, second], "prompt", _text_context(), fast_policy)

    assert reporter.total("llm.retry") == 2
    assert reporter.total("llm.fallback") == 1
    assert reporter.total("llm.success") == 1
    assert len(reporter.timings["llm.attempt"]) == 4


@pytest.mark.asyncio
async def test_retries_and_fallbacks_log_warnings(make_candidate, fast_policy, caplog):
    first = make_candidate("a", BackendError(FailureKind.RATE_LIMITED, "429"))
    second = make_candidate("b", Success("ok"))
    pipeline, _ = _pipeline()

    with caplog.at_level("WARNING", logger="llm_router.pipeline.execution"):
        await pipeline.execute([first, second], "prompt", _text_context("f.txt"), fast_policy)

    messages = [r.getMessage() for r in caplog.records]
    assert any(m.startswith("Retrying test/a") for m in messages)
    assert any(m.startswith("Falling back from test/a to test/b") for m in messages)
