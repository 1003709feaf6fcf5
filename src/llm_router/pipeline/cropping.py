"""Content cropping for requests that exceed a model's context window."""

from __future__ import annotations

import dataclasses
import math
from typing import Protocol

from llm_router.core.exceptions import BackendError
from llm_router.core.types import ModelDescriptor, _require


class CropPolicy(Protocol):
    """Decides how to shrink content after a content-too-large failure."""

    def crop(
        self, content: str, descriptor: ModelDescriptor, error: BackendError
    ) -> str:
        """Return a strictly shorter version of `content` (possibly empty)."""
        ...


@dataclasses.dataclass(frozen=True, slots=True)
class TruncatingCropPolicy:
    """Keep the head of the content, sized from reported token usage.

    When the backend reports prompt tokens, the content is scaled so the
    prompt lands at `safety_ratio` of the model's total token limit. Without
    usage data the content shrinks by `fallback_ratio`. Either way the result
    is never longer than `fallback_ratio` of the input, so repeated crops
    always make progress.
    """

    safety_ratio: float = 0.85
    fallback_ratio: float = 0.75

    def __post_init__(self) -> None:
        """Both ratios must shrink the content."""
        for name in ("safety_ratio", "fallback_ratio"):
            value = getattr(self, name)
            _require(condition=0 < value < 1, message="must be in (0, 1)", field_name=name)

    def crop(
        self, content: str, descriptor: ModelDescriptor, error: BackendError
    ) -> str:
        ratio = self.fallback_ratio
        usage = error.tokens_usage
        if usage is not None and usage.prompt_tokens > 0:
            limit = (
                usage.max_total_tokens
                if usage.max_total_tokens > 0
                else descriptor.max_total_tokens
            )
            ratio = min(ratio, (limit * self.safety_ratio) / usage.prompt_tokens)
        keep = max(0, math.floor(len(content) * ratio))
        if keep >= len(content):
            keep = len(content) - 1
        return content[: max(keep, 0)]
