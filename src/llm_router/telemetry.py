"""Optional timing and counter telemetry for router calls.

Telemetry is off unless `LLM_ROUTER_TELEMETRY=1` (or `DEBUG=1`) is set, or
`enabled=True` is passed, and at least one reporter is supplied. When off,
every call site receives the same stateless no-op context.

Scope names nest per task through a context variable: a count recorded inside
`with ctx("llm.attempt")` is reported as `llm.attempt.<name>`. Reporter errors
are logged and never reach the caller.
"""

from collections import Counter, defaultdict, deque
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
import dataclasses
import logging
import os
import time
from typing import Any, Protocol, Self, runtime_checkable

logger = logging.getLogger(__name__)

_active_scopes: ContextVar[tuple[str, ...]] = ContextVar("llm_router_scopes", default=())


def _env_enabled() -> bool:
    return "1" in (os.getenv("LLM_ROUTER_TELEMETRY"), os.getenv("DEBUG"))


@runtime_checkable
class TelemetryReporter(Protocol):
    """Sink for scope timings and metric values."""

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None: ...  # noqa: D102
    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None: ...  # noqa: D102


def _locate(name: str) -> tuple[str, dict[str, Any]]:
    """Full dotted path for `name` under the active scopes, plus nesting info."""
    parents = _active_scopes.get()
    return ".".join((*parents, name)), {
        "depth": len(parents),
        "parent_scope": ".".join(parents) or None,
    }


@dataclasses.dataclass(frozen=True, slots=True)
class _NoOpTelemetryContext:
    def __call__(self, name: str, **metadata: Any) -> Self:  # noqa: ARG002
        return self

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        pass

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        pass


@dataclasses.dataclass(frozen=True, slots=True)
class _EnabledTelemetryContext:
    reporters: tuple[TelemetryReporter, ...]

    @contextmanager
    def __call__(self, name: str, **metadata: Any) -> Iterator[Self]:
        """Time the enclosed block as scope `name`."""
        if not isinstance(name, str) or not name:
            raise ValueError("Scope name must be a non-empty string")
        path, nesting = _locate(name)
        token = _active_scopes.set((*_active_scopes.get(), name))
        started = time.perf_counter()
        try:
            yield self
        finally:
            elapsed = time.perf_counter() - started
            _active_scopes.reset(token)
            self._emit("record_timing", path, elapsed, {**nesting, **metadata})

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        path, nesting = _locate(name)
        self._emit("record_metric", path, value, {**nesting, **metadata})

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        self.metric(name, increment, metric_type="counter", **metadata)

    def _emit(self, method: str, path: str, value: Any, metadata: dict[str, Any]) -> None:
        for reporter in self.reporters:
            try:
                getattr(reporter, method)(path, value, **metadata)
            except Exception:
                logger.exception("Telemetry reporter '%s' failed", type(reporter).__name__)


type TelemetryContextProtocol = _EnabledTelemetryContext | _NoOpTelemetryContext

_DISABLED = _NoOpTelemetryContext()


def TelemetryContext(  # noqa: N802
    *reporters: TelemetryReporter, enabled: bool | None = None
) -> TelemetryContextProtocol:
    """Return an active context, or the shared no-op one.

    Args:
        *reporters: Sinks for timings and metrics.
        enabled: Overrides the environment switch when given.
    """
    if reporters and (_env_enabled() if enabled is None else enabled):
        return _EnabledTelemetryContext(reporters)
    return _DISABLED


class InMemoryReporter:
    """Keeps recent timings and metrics per scope; handy in tests and notebooks."""

    def __init__(self, max_entries_per_scope: int = 1000):
        def bounded() -> deque[tuple[Any, dict[str, Any]]]:
            return deque(maxlen=max_entries_per_scope)

        self.timings: defaultdict[str, deque[tuple[Any, dict[str, Any]]]] = defaultdict(bounded)
        self.metrics: defaultdict[str, deque[tuple[Any, dict[str, Any]]]] = defaultdict(bounded)

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None:
        self.timings[scope].append((duration, metadata))

    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None:
        self.metrics[scope].append((value, metadata))

    def total(self, scope: str) -> float:
        """Sum of the numeric values recorded under `scope`."""
        return sum(
            value
            for value, _ in self.metrics.get(scope, ())
            if isinstance(value, int | float)
        )

    def by_model(self, scope: str) -> Counter[str]:
        """Totals under `scope` keyed by the `model` metadata of each entry."""
        totals: Counter[str] = Counter()
        for value, metadata in self.metrics.get(scope, ()):
            if isinstance(value, int | float) and "model" in metadata:
                totals[metadata["model"]] += value
        return totals

    def get_report(self) -> str:
        """One line per scope: call count and mean duration, or metric total."""
        lines = ["=== Router Telemetry ==="]
        for scope in sorted(self.timings):
            durations = [d for d, _ in self.timings[scope]]
            mean = sum(durations) / len(durations)
            lines.append(f"{scope:<40} | Calls: {len(durations):<4} | Avg: {mean:.4f}s")
        lines.extend(
            f"{scope:<40} | Events: {len(self.metrics[scope]):<4} | Total: {self.total(scope):,.0f}"
            for scope in sorted(self.metrics)
        )
        return "\n".join(lines)
