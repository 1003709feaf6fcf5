"""Module-level entry points to configuration resolution."""

from pathlib import Path
from typing import Any

from .resolver import ConfigResolver
from .types import ResolvedConfig

_default_resolver = ConfigResolver()


def resolve_config(
    overrides: dict[str, Any] | None = None,
    *,
    profile: str | None = None,
    env_file: str | Path | None = None,
    project_root: Path | None = None,
) -> ResolvedConfig:
    """Resolve router configuration from every source.

    Precedence, highest first: `overrides`, ``LLM_ROUTER_*`` variables,
    ``[tool.llm_router]`` in the nearest pyproject.toml, the home file, and
    the schema defaults.

    Args:
        overrides: Values keyed by field name; unknown keys are ignored.
        profile: Profile to read from the files; defaults to ``LLM_ROUTER_PROFILE``.
        env_file: A ``.env`` file loaded before reading the environment.
        project_root: Where to start looking for pyproject.toml (default: cwd).

    Raises:
        ValueError: If any value is invalid.
        ConfigFileError: If the project file cannot be parsed.

    Example:
        config = resolve_config({"completion_chain": "mock/mock-completion"})
        print(config.audit())
    """
    return _default_resolver.resolve(
        overrides, profile=profile, env_file=env_file, project_root=project_root
    )


def list_available_profiles(project_root: Path | None = None) -> dict[str, list[str]]:
    """Profile names keyed by ``"project"`` and ``"home"``."""
    return _default_resolver.profiles(project_root)


def get_effective_profile() -> str | None:
    """The profile selected by ``LLM_ROUTER_PROFILE``, if any."""
    return _default_resolver.get_effective_profile()


def validate_profile(profile: str, project_root: Path | None = None) -> dict[str, bool]:
    """Report where `profile` is defined.

    Raises:
        ValueError: If neither configuration file defines it.
    """
    found = _default_resolver.profile_availability(profile, project_root)
    if not any(found):
        known = sorted({name for names in list_available_profiles(project_root).values() for name in names})
        raise ValueError(f"Profile '{profile}' not found. Available profiles: {known}")
    return found._asdict()
