"""File-based configuration loading with profile support.

Reads `[tool.llm_router]` from the nearest `pyproject.toml` and the home file
`~/.config/llm_router.toml` (or the path in `LLM_ROUTER_CONFIG_HOME`). Named
profiles live under `profiles.<name>` in either file.
"""

import logging
import os
from pathlib import Path
import tomllib
from typing import Any

logger = logging.getLogger(__name__)

TOOL_SECTION = "llm_router"
HOME_OVERRIDE_ENV = "LLM_ROUTER_CONFIG_HOME"


class ConfigFileError(Exception):
    """A configuration file could not be used; `file_path` names it."""

    def __init__(self, file_path: Path, message: str, cause: Exception | None = None):
        super().__init__(f"{file_path}: {message}")
        self.file_path = file_path
        self.message = message
        self.cause = cause


class ProfileNotFoundError(ConfigFileError):
    """The requested profile is not defined in a readable file."""


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open(mode="rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigFileError(path, f"Failed to parse TOML: {e}", cause=e) from e


def _select_profile(
    section: dict[str, Any], profile: str | None, path: Path
) -> dict[str, Any]:
    profiles = section.get("profiles", {})
    if not profile:
        return {k: v for k, v in section.items() if k != "profiles"}
    if profile not in profiles:
        raise ProfileNotFoundError(
            path, f"Profile '{profile}' not found. Available profiles: {list(profiles)}"
        )
    return dict(profiles[profile])


def _nearest_pyproject(start_dir: Path | None) -> Path | None:
    here = Path(start_dir or Path.cwd()).resolve()
    return next(
        (d / "pyproject.toml" for d in (here, *here.parents) if (d / "pyproject.toml").is_file()),
        None,
    )


def _home_path() -> Path:
    return Path(os.getenv(HOME_OVERRIDE_ENV) or Path.home() / ".config" / f"{TOOL_SECTION}.toml")


class FileConfigLoader:
    """Reads the project and home TOML files."""

    def _project_table(self, project_root: Path | None) -> tuple[Path | None, dict[str, Any]]:
        path = _nearest_pyproject(project_root)
        if path is None:
            return None, {}
        return path, _read_toml(path).get("tool", {}).get(TOOL_SECTION, {})

    def _home_table(self) -> tuple[Path, dict[str, Any]]:
        path = _home_path()
        return path, _read_toml(path) if path.exists() else {}

    def load_project_config(
        self, project_root: Path | None = None, profile: str | None = None
    ) -> dict[str, Any]:
        """Values from `[tool.llm_router]`, or one of its profiles.

        Empty when there is no pyproject.toml or it has no such table.

        Raises:
            ConfigFileError: If the file cannot be parsed.
            ProfileNotFoundError: If the table lacks `profile`.
        """
        path, table = self._project_table(project_root)
        return _select_profile(table, profile, path) if path and table else {}

    def load_home_config(self, profile: str | None = None) -> dict[str, Any]:
        """Values from the home file, or one of its profiles."""
        path, table = self._home_table()
        return _select_profile(table, profile, path) if table else {}

    def list_available_profiles(
        self, project_root: Path | None = None
    ) -> dict[str, list[str]]:
        """Profile names per source; unreadable files contribute none."""
        found: dict[str, list[str]] = {}
        for source, read in (
            ("project", lambda: self._project_table(project_root)[1]),
            ("home", lambda: self._home_table()[1]),
        ):
            try:
                found[source] = list(read().get("profiles", {}))
            except ConfigFileError as e:
                logger.debug("Skipping unreadable %s configuration: %s", source, e)
                found[source] = []
        return found
