"""Collaborator protocols consumed by the execution pipeline."""

from collections.abc import Mapping
from typing import Any, Protocol

from llm_router.core.exceptions import BackendError
from llm_router.core.models import Purpose
from llm_router.core.types import (
    ExecutionContext,
    ModelDescriptor,
    Result,
    RetryPolicy,
)


class CandidateFunction(Protocol):
    """One bound (backend, model) pair.

    Performs a single remote call. Expected failures come back as
    `Failure(BackendError)`; anything raised is classified by the pipeline.
    """

    async def __call__(
        self, content: str, context: ExecutionContext
    ) -> Result[Any, BackendError]:
        """Perform one attempt.

        Args:
            content: Request content, possibly cropped by the pipeline.
            context: Read-only request context bound to this candidate's model.

        Returns:
            The raw payload (text, structured value, or vector) or a failure.
        """
        ...


class Backend(Protocol):
    """A model provider able to bind candidate functions for its models."""

    family: str
    retry_policy: RetryPolicy
    models: Mapping[str, ModelDescriptor]

    def bind(self, descriptor: ModelDescriptor, purpose: Purpose) -> CandidateFunction:
        """Return the candidate function serving `descriptor` for `purpose`."""
        ...

    async def validate_credentials(self) -> bool:
        """Return True when the backend accepts its credentials."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...
