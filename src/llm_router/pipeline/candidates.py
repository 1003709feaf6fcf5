"""Candidate chain construction.

Turns a declarative, priority-ordered list of `family/model` entries into an
immutable tuple of bound candidates. All lookups happen here, once, so the
execution pipeline never consults a registry at call time.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import dataclasses
import logging
from typing import TYPE_CHECKING

from llm_router.core.exceptions import ConfigurationError
from llm_router.core.models import Purpose
from llm_router.core.types import ModelDescriptor

if TYPE_CHECKING:
    from llm_router.pipeline.base import Backend, CandidateFunction

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class CandidateSpec:
    """A declarative chain entry naming a backend family and a model key."""

    backend: str
    model_key: str

    @classmethod
    def parse(cls, entry: str) -> CandidateSpec:
        """Parse a `family/model` entry.

        The model key may itself contain slashes; only the first one splits.

        Raises:
            ConfigurationError: If the entry is not `family/model`.
        """
        family, sep, model = entry.strip().partition("/")
        if not sep or not family or not model:
            raise ConfigurationError(
                f"Invalid chain entry {entry!r}; expected 'family/model'"
            )
        return cls(backend=family, model_key=model)

    def __str__(self) -> str:
        return f"{self.backend}/{self.model_key}"


@dataclasses.dataclass(frozen=True, slots=True)
class Candidate:
    """A model descriptor bound to the function that calls it."""

    descriptor: ModelDescriptor
    call: CandidateFunction

    @property
    def label(self) -> str:
        """`family/model` of the bound model."""
        return self.descriptor.label


type CandidateChain = tuple[Candidate, ...]


def build_chain(
    entries: Sequence[CandidateSpec | str],
    *,
    purpose: Purpose,
    backends: Mapping[str, Backend],
) -> CandidateChain:
    """Bind every entry to its backend, preserving priority order.

    Args:
        entries: Chain entries, highest priority first.
        purpose: Whether the chain serves completions or embeddings.
        backends: Available backends keyed by family name.

    Returns:
        The non-empty, immutable candidate chain.

    Raises:
        ConfigurationError: If the chain is empty, a backend or model is
            unknown, or a model does not serve `purpose`.
    """
    if not entries:
        raise ConfigurationError(f"The {purpose} candidate chain is empty")

    chain: list[Candidate] = []
    for entry in entries:
        spec = entry if isinstance(entry, CandidateSpec) else CandidateSpec.parse(entry)
        backend = backends.get(spec.backend)
        if backend is None:
            raise ConfigurationError(
                f"No backend registered for family '{spec.backend}' "
                f"(available: {sorted(backends)})"
            )
        descriptor = backend.models.get(spec.model_key)
        if descriptor is None:
            raise ConfigurationError(
                f"Backend '{spec.backend}' has no metadata for model "
                f"'{spec.model_key}'"
            )
        if descriptor.purpose is not purpose:
            raise ConfigurationError(
                f"Model '{spec}' serves {descriptor.purpose}, not {purpose}"
            )
        chain.append(Candidate(descriptor, backend.bind(descriptor, purpose)))

    logger.debug(
        "Built %s chain: %s", purpose, ", ".join(c.label for c in chain)
    )
    return tuple(chain)
