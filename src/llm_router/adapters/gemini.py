"""Gemini backend built on the `google-genai` SDK.

SDK errors are classified here from their HTTP status so the pipeline sees a
`Failure(BackendError)`; transport errors (httpx) are left to propagate and
are classified by the pipeline.
"""

from __future__ import annotations

from collections.abc import Mapping
import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from google import genai
from google.genai import errors, types

from llm_router.core.exceptions import BackendError
from llm_router.core.models import FailureKind, OutputFormat, Purpose
from llm_router.core.types import (
    ExecutionContext,
    Failure,
    ModelDescriptor,
    Result,
    RetryPolicy,
    Success,
    TokensUsage,
)
from llm_router.pipeline.classification import classify_status

if TYPE_CHECKING:
    from llm_router.pipeline.base import CandidateFunction

logger = logging.getLogger(__name__)

FAMILY = "gemini"

# model key -> (max total tokens, purpose, embedding dimensions)
_KNOWN_MODELS: dict[str, tuple[int, Purpose, int | None]] = {
    "gemini-2.5-pro": (1_048_576, Purpose.COMPLETION, None),
    "gemini-2.5-flash": (1_048_576, Purpose.COMPLETION, None),
    "gemini-2.5-flash-lite": (1_048_576, Purpose.COMPLETION, None),
    "gemini-2.0-flash": (1_048_576, Purpose.COMPLETION, None),
    "gemini-2.0-flash-lite": (1_048_576, Purpose.COMPLETION, None),
    "gemini-embedding-001": (2_048, Purpose.EMBEDDING, 3_072),
    "text-embedding-004": (2_048, Purpose.EMBEDDING, 768),
}


def default_gemini_models() -> dict[str, ModelDescriptor]:
    """Descriptors for the Gemini models the router knows about."""
    return {
        key: ModelDescriptor(FAMILY, key, max_tokens, purpose, dimensions)
        for key, (max_tokens, purpose, dimensions) in _KNOWN_MODELS.items()
    }


def _usage(response: Any, descriptor: ModelDescriptor) -> TokensUsage:
    metadata = getattr(response, "usage_metadata", None)
    prompt = getattr(metadata, "prompt_token_count", None)
    completion = getattr(metadata, "candidates_token_count", None)
    return TokensUsage(
        prompt_tokens=prompt if isinstance(prompt, int) else -1,
        completion_tokens=completion if isinstance(completion, int) else -1,
        max_total_tokens=descriptor.max_total_tokens,
    )


def _finish_reason(response: Any) -> Any:
    candidates = getattr(response, "candidates", None) or ()
    return getattr(candidates[0], "finish_reason", None) if candidates else None


def _api_failure(error: errors.APIError) -> Failure[BackendError]:
    message = str(error)
    return Failure(BackendError(classify_status(error.code, message), message, cause=error))


class GeminiBackend:
    """Completion and embedding calls against the Gemini API."""

    family = FAMILY

    def __init__(
        self,
        api_key: str | None = None,
        *,
        models: Mapping[str, ModelDescriptor] | None = None,
        retry_policy: RetryPolicy | None = None,
        client: genai.Client | None = None,
    ) -> None:
        """Initialize the backend.

        Args:
            api_key: Gemini API key; ignored when `client` is given.
            models: Model metadata; defaults to the known Gemini models.
            retry_policy: Retry policy for chains led by this backend.
            client: Pre-built SDK client (useful for tests).
        """
        self._client = client if client is not None else genai.Client(api_key=api_key)
        self.models = MappingProxyType(
            dict(models) if models is not None else default_gemini_models()
        )
        self.retry_policy = retry_policy or RetryPolicy()

    def bind(self, descriptor: ModelDescriptor, purpose: Purpose) -> CandidateFunction:
        if purpose is Purpose.EMBEDDING:

            async def embed(content: str, context: ExecutionContext) -> Result[Any, BackendError]:  # noqa: ARG001
                return await self._embed(descriptor, content)

            return embed

        async def complete(content: str, context: ExecutionContext) -> Result[Any, BackendError]:
            return await self._complete(descriptor, content, context)

        return complete

    async def _complete(
        self, descriptor: ModelDescriptor, content: str, context: ExecutionContext
    ) -> Result[str, BackendError]:
        config = None
        if context.output_format is OutputFormat.JSON:
            config = types.GenerateContentConfig(response_mime_type="application/json")
        try:
            response = await self._client.aio.models.generate_content(
                model=descriptor.model_key, contents=content, config=config
            )
        except errors.APIError as e:
            return _api_failure(e)

        usage = _usage(response, descriptor)
        finish = _finish_reason(response)
        if finish == types.FinishReason.MAX_TOKENS:
            return Failure(
                BackendError(
                    FailureKind.CONTENT_TOO_LARGE,
                    f"{descriptor.label} stopped at its token limit",
                    tokens_usage=usage,
                )
            )
        text = response.text
        if not text:
            return Failure(
                BackendError(
                    FailureKind.INVALID_RESPONSE,
                    f"{descriptor.label} returned no text (finish reason: {finish})",
                    tokens_usage=usage,
                )
            )
        return Success(text)

    async def _embed(
        self, descriptor: ModelDescriptor, content: str
    ) -> Result[list[float], BackendError]:
        try:
            response = await self._client.aio.models.embed_content(
                model=descriptor.model_key, contents=content
            )
        except errors.APIError as e:
            return _api_failure(e)
        embeddings = response.embeddings or []
        values = embeddings[0].values if embeddings else None
        if not values:
            return Failure(
                BackendError(
                    FailureKind.INVALID_RESPONSE,
                    f"{descriptor.label} returned no embedding",
                )
            )
        return Success(list(values))

    async def validate_credentials(self) -> bool:
        """Fetch one model's metadata; False when the key is rejected."""
        model_key = next(iter(self.models), None)
        if model_key is None:
            return False
        try:
            await self._client.aio.models.get(model=model_key)
        except errors.ClientError as e:
            if e.code in (401, 403):
                logger.warning("Gemini rejected the configured credentials: %s", e)
                return False
            raise
        return True

    async def aclose(self) -> None:
        await self._client.aio.aclose()
