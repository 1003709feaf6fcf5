"""Candidate chain construction."""

import pytest

from llm_router.adapters.mock import MockBackend
from llm_router.core.exceptions import ConfigurationError
from llm_router.core.models import ErrorCode, Purpose
from llm_router.core.types import ExecutionContext
from llm_router.pipeline.candidates import CandidateSpec, build_chain

pytestmark = pytest.mark.unit


@pytest.fixture
def backends():
    return {"mock": MockBackend(), "alt": MockBackend(family="alt")}


def test_spec_parse_splits_on_first_slash():
    spec = CandidateSpec.parse("local/org/model-7b")
    assert spec.backend == "local"
    assert spec.model_key == "org/model-7b"
    assert str(spec) == "local/org/model-7b"


@pytest.mark.parametrize("entry", ["", "mock", "mock/", "/model"])
def test_spec_parse_rejects_malformed_entries(entry):
    with pytest.raises(ConfigurationError, match="family/model"):
        CandidateSpec.parse(entry)


def test_chain_preserves_priority_order(backends):
    chain = build_chain(
        ["alt/mock-completion", CandidateSpec("mock", "mock-completion")],
        purpose=Purpose.COMPLETION,
        backends=backends,
    )
    assert isinstance(chain, tuple)
    assert [c.label for c in chain] == ["alt/mock-completion", "mock/mock-completion"]


@pytest.mark.asyncio
async def test_bound_candidates_call_their_backend(backends):
    (candidate,) = build_chain(
        ["alt/mock-completion"], purpose=Purpose.COMPLETION, backends=backends
    )

    await candidate.call("hi", ExecutionContext("r", Purpose.COMPLETION))

    assert backends["alt"].calls == [("mock-completion", "hi")]
    assert backends["mock"].calls == []


def test_empty_chain_is_a_configuration_error(backends):
    with pytest.raises(ConfigurationError) as exc_info:
        build_chain([], purpose=Purpose.EMBEDDING, backends=backends)
    assert exc_info.value.code is ErrorCode.BAD_CONFIGURATION
    assert "embedding" in str(exc_info.value)


def test_unknown_backend_is_a_configuration_error(backends):
    with pytest.raises(ConfigurationError, match="No backend registered for family 'nope'"):
        build_chain(["nope/x"], purpose=Purpose.COMPLETION, backends=backends)


def test_unknown_model_is_a_configuration_error(backends):
    with pytest.raises(ConfigurationError, match="no metadata for model 'missing'"):
        build_chain(["mock/missing"], purpose=Purpose.COMPLETION, backends=backends)


def test_purpose_mismatch_is_a_configuration_error(backends):
    with pytest.raises(ConfigurationError, match="serves embedding"):
        build_chain(["mock/mock-embedding"], purpose=Purpose.COMPLETION, backends=backends)
