"""Configuration data types, following the resolve-once, freeze-then-flow pattern."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, NamedTuple

from llm_router.core.types import RetryPolicy

ConfigOrigin = Literal["programmatic", "env", "file", "default"]
SourceMap = Mapping[str, ConfigOrigin]

_SENSITIVE_FIELDS = frozenset({"api_key"})


def _shown(name: str, value: Any) -> str:
    if name in _SENSITIVE_FIELDS and value is not None:
        return "<redacted>"
    return repr(value)


class ResolvedConfig(NamedTuple):
    """Merged settings plus the `origin` of every field.

    Only lives between resolution and `to_frozen()`; the router never sees it.
    """

    api_key: str | None
    use_real_api: bool
    completion_chain: tuple[str, ...]
    embedding_chain: tuple[str, ...]
    max_attempts_per_candidate: int
    min_retry_delay: float
    max_retry_delay: float
    request_timeout: float | None
    max_crop_attempts: int

    origin: SourceMap

    def _settings(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self._fields if name != "origin"}

    def __repr__(self) -> str:
        shown = ", ".join(f"{k}={_shown(k, v)}" for k, v in self._settings().items())
        return f"ResolvedConfig({shown})"

    __str__ = __repr__

    def to_frozen(self) -> "FrozenConfig":
        return FrozenConfig(**self._settings())

    def with_overrides(self, **overrides: object) -> "ResolvedConfig":
        """Copy with known fields replaced; unknown names are ignored."""
        known = {k: v for k, v in overrides.items() if k in self._settings()}
        return self._replace(
            **known, origin={**self.origin, **dict.fromkeys(known, "programmatic")}
        )

    def audit(self) -> str:
        """Where each value came from, one `field: origin:value` line apiece.

        Environment values name their variable; secrets are redacted.
        """

        def describe(name: str, value: Any) -> str:
            origin = self.origin[name]
            if name in _SENSITIVE_FIELDS and value is not None:
                return f"{origin}:<redacted>"
            if origin == "env":
                return f"env:LLM_ROUTER_{name.upper()}={value}"
            return f"{origin}:{value}"

        return "\n".join(
            f"{name}: {describe(name, value)}"
            for name, value in self._settings().items()
            if name in self.origin
        )


@dataclass(frozen=True)
class FrozenConfig:
    """Immutable configuration handed to `create_router`."""

    api_key: str | None = field(repr=False)
    use_real_api: bool
    completion_chain: tuple[str, ...]
    embedding_chain: tuple[str, ...]
    max_attempts_per_candidate: int
    min_retry_delay: float
    max_retry_delay: float
    request_timeout: float | None
    max_crop_attempts: int

    def retry_policy(self) -> RetryPolicy:
        """The retry policy given to backends built from this config."""
        return RetryPolicy(
            max_attempts_per_candidate=self.max_attempts_per_candidate,
            min_delay=self.min_retry_delay,
            max_delay=self.max_retry_delay,
            per_attempt_timeout=self.request_timeout,
            max_crop_attempts=self.max_crop_attempts,
        )
