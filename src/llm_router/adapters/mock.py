"""Deterministic backend for offline use and tests.

Without a script it echoes completions and returns a content-derived
embedding vector. A script maps a model key to a sequence of outcomes served
in order; the last outcome repeats once the others are used up. An outcome
may be a plain payload, a `Success`/`Failure`, or an exception to raise.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Mapping, Sequence
import hashlib
import json
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from llm_router.core.models import OutputFormat, Purpose
from llm_router.core.types import (
    ExecutionContext,
    Failure,
    ModelDescriptor,
    RetryPolicy,
    Success,
)

if TYPE_CHECKING:
    from llm_router.pipeline.base import CandidateFunction


def default_mock_models(family: str = "mock") -> dict[str, ModelDescriptor]:
    """One completion and one embedding model under `family`."""
    return {
        "mock-completion": ModelDescriptor(family, "mock-completion", 128_000),
        "mock-embedding": ModelDescriptor(
            family, "mock-embedding", 8_192, Purpose.EMBEDDING, dimensions=8
        ),
    }


def pseudo_embedding(content: str, dimensions: int) -> list[float]:
    """Stable vector in [-1, 1] derived from a hash of `content`."""
    digest = b""
    counter = 0
    while len(digest) < dimensions:
        digest += hashlib.sha256(f"{counter}:{content}".encode()).digest()
        counter += 1
    return [round(b / 127.5 - 1.0, 6) for b in digest[:dimensions]]


class MockBackend:
    """Scriptable in-memory backend."""

    def __init__(
        self,
        *,
        family: str = "mock",
        models: Mapping[str, ModelDescriptor] | None = None,
        retry_policy: RetryPolicy | None = None,
        script: Mapping[str, Sequence[Any]] | None = None,
    ) -> None:
        self.family = family
        self.models = MappingProxyType(
            dict(models) if models is not None else default_mock_models(family)
        )
        self.retry_policy = retry_policy or RetryPolicy()
        self._script = {key: deque(items) for key, items in (script or {}).items()}
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    def bind(self, descriptor: ModelDescriptor, purpose: Purpose) -> CandidateFunction:
        async def call(content: str, context: ExecutionContext) -> Any:
            return self._respond(descriptor, purpose, content, context)

        return call

    def _respond(
        self,
        descriptor: ModelDescriptor,
        purpose: Purpose,
        content: str,
        context: ExecutionContext,
    ) -> Any:
        self.calls.append((descriptor.model_key, content))
        queue = self._script.get(descriptor.model_key)
        if queue:
            item = queue.popleft() if len(queue) > 1 else queue[0]
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, Success | Failure):
                return item
            return Success(item)

        if purpose is Purpose.EMBEDDING:
            return Success(pseudo_embedding(content, descriptor.dimensions or 8))
        if context.output_format is OutputFormat.JSON:
            return Success(json.dumps({"echo": content}))
        return Success(f"echo: {content}")

    def calls_for(self, model_key: str) -> int:
        """Number of calls made to `model_key`."""
        return sum(1 for key, _ in self.calls if key == model_key)

    async def validate_credentials(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.closed = True
