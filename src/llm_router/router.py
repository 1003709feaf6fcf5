"""The primary user-facing entry point: the router facade.

The router holds two immutable candidate chains (completion and embedding)
built once from an explicit `RouterConfig`, and exposes the two operations
callers use. It keeps no mutable state beyond backend handles, so a single
instance may serve any number of concurrent requests.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import dataclasses
import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Self

from llm_router.config import FrozenConfig, resolve_config
from llm_router.config.audit import generate_telemetry_summary
from llm_router.core.exceptions import ConfigurationError, LLMError
from llm_router.core.models import Purpose
from llm_router.core.types import (
    CompletionOptions,
    ExecutionContext,
    ExecutionOptions,
    ModelDescriptor,
    Result,
    RetryPolicy,
)
from llm_router.pipeline.candidates import CandidateChain, CandidateSpec, build_chain
from llm_router.pipeline.execution import ExecutionPipeline

if TYPE_CHECKING:
    from llm_router.pipeline.base import Backend

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class RouterConfig:
    """Everything the router needs, constructed once at startup.

    Attributes:
        backends: Backends keyed by family name.
        completions: Priority-ordered completion chain entries.
        embeddings: Priority-ordered embedding chain entries.
    """

    backends: Mapping[str, Backend]
    completions: Sequence[CandidateSpec | str]
    embeddings: Sequence[CandidateSpec | str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "backends", MappingProxyType(dict(self.backends)))
        object.__setattr__(self, "completions", tuple(self.completions))
        object.__setattr__(self, "embeddings", tuple(self.embeddings))


class LLMRouter:
    """Routes completion and embedding requests through their candidate chains."""

    def __init__(
        self,
        config: RouterConfig,
        *,
        pipeline: ExecutionPipeline | None = None,
    ) -> None:
        """Build both chains and validate the configuration.

        Args:
            config: Backends and chain entries.
            pipeline: Execution pipeline; a default one is created if omitted.

        Raises:
            ConfigurationError: If either chain is empty or references an
                unknown backend or model.
        """
        self._config = config
        self._completions: CandidateChain = build_chain(
            config.completions, purpose=Purpose.COMPLETION, backends=config.backends
        )
        self._embeddings: CandidateChain = build_chain(
            config.embeddings, purpose=Purpose.EMBEDDING, backends=config.backends
        )
        self._retry_policy = self._leading_retry_policy(config)
        self._pipeline = pipeline or ExecutionPipeline()
        logger.info("Router ready. %s", self.describe_models())

    @staticmethod
    def _leading_retry_policy(config: RouterConfig) -> RetryPolicy:
        first = config.completions[0]
        spec = first if isinstance(first, CandidateSpec) else CandidateSpec.parse(first)
        backend = config.backends.get(spec.backend)
        if backend is None:
            raise ConfigurationError(f"No backend registered for family '{spec.backend}'")
        return backend.retry_policy

    # --- Public operations ---

    async def run_completion(
        self,
        resource_name: str,
        content: str,
        options: CompletionOptions | None = None,
        *,
        start_index: int = 0,
    ) -> Result[Any, LLMError]:
        """Run a completion request through the completion chain.

        Args:
            resource_name: Name of the resource being processed, used in
                diagnostics and error messages.
            content: Fully rendered request content.
            options: Output format and, for JSON output, the response schema.
            start_index: Chain position to resume from.

        Returns:
            `Success` with the text (or schema-validated value), or
            `Failure(LLMError)` once every candidate is exhausted.
        """
        options = options or CompletionOptions()
        context = ExecutionContext(
            resource_name=resource_name,
            purpose=Purpose.COMPLETION,
            output_format=options.output_format,
        )
        return await self._pipeline.execute(
            self._completions,
            content,
            context,
            self._retry_policy,
            ExecutionOptions(
                retry_on_invalid=True,
                track_mutations=True,
                schema=options.schema,
            ),
            start_index=start_index,
        )

    async def run_embedding(
        self,
        resource_name: str,
        content: str,
        *,
        start_index: int = 0,
    ) -> Result[list[float], LLMError]:
        """Run an embedding request through the embedding chain."""
        context = ExecutionContext(resource_name=resource_name, purpose=Purpose.EMBEDDING)
        return await self._pipeline.execute(
            self._embeddings,
            content,
            context,
            self._retry_policy,
            ExecutionOptions(retry_on_invalid=False, track_mutations=False),
            start_index=start_index,
        )

    # --- Introspection ---

    @property
    def completion_chain(self) -> tuple[ModelDescriptor, ...]:
        return tuple(c.descriptor for c in self._completions)

    @property
    def embedding_chain(self) -> tuple[ModelDescriptor, ...]:
        return tuple(c.descriptor for c in self._embeddings)

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    @property
    def embedding_dimensions(self) -> int | None:
        """Vector size of the leading embedding model, when known."""
        return self._embeddings[0].descriptor.dimensions

    @property
    def first_completion_max_tokens(self) -> int:
        """Token window of the leading completion model."""
        return self._completions[0].descriptor.max_total_tokens

    def describe_models(self) -> str:
        """Human-readable summary of both chains."""
        completions = ", ".join(c.label for c in self._completions)
        embeddings = ", ".join(c.label for c in self._embeddings)
        return f"Completions: [{completions}] | Embeddings: [{embeddings}]"

    # --- Lifecycle ---

    def _chain_backends(self) -> dict[str, Backend]:
        families = [c.descriptor.backend_family for c in (*self._completions, *self._embeddings)]
        return {family: self._config.backends[family] for family in dict.fromkeys(families)}

    async def validate_credentials(self) -> dict[str, bool]:
        """Check credentials for every backend referenced by a chain."""
        results: dict[str, bool] = {}
        for family, backend in self._chain_backends().items():
            results[family] = await backend.validate_credentials()
            if not results[family]:
                logger.warning("Credentials rejected by backend '%s'", family)
        return results

    async def aclose(self) -> None:
        """Release every configured backend."""
        for backend in self._config.backends.values():
            await backend.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def _default_backends(config: FrozenConfig) -> dict[str, Backend]:
    """Backends built from frozen configuration.

    With `use_real_api` the Gemini family talks to the real API; otherwise it
    is served by a mock carrying the same model metadata.
    """
    from llm_router.adapters.gemini import GeminiBackend, default_gemini_models
    from llm_router.adapters.mock import MockBackend

    retry_policy = config.retry_policy()
    gemini: Backend
    if config.use_real_api:
        gemini = GeminiBackend(config.api_key, retry_policy=retry_policy)
    else:
        gemini = MockBackend(
            family="gemini", models=default_gemini_models(), retry_policy=retry_policy
        )
    return {
        "gemini": gemini,
        "mock": MockBackend(retry_policy=retry_policy),
    }


def create_router(
    config: FrozenConfig | None = None,
    *,
    backends: Mapping[str, Backend] | None = None,
    pipeline: ExecutionPipeline | None = None,
) -> LLMRouter:
    """Create a router with optional configuration.

    If no configuration is provided, it is resolved from the environment,
    configuration files and defaults.

    Args:
        config: Frozen configuration.
        backends: Backends keyed by family; built from `config` if omitted.
        pipeline: Execution pipeline override.

    Raises:
        ConfigurationError: If a chain is empty or names an unknown model.
    """
    # This is the only place where ambient configuration is resolved.
    if config is None:
        resolved = resolve_config()
        logger.debug(
            "Resolved configuration sources: %s",
            generate_telemetry_summary(resolved.origin),
        )
        config = resolved.to_frozen()

    router_config = RouterConfig(
        backends=backends if backends is not None else _default_backends(config),
        completions=config.completion_chain,
        embeddings=config.embedding_chain,
    )
    return LLMRouter(router_config, pipeline=pipeline)
