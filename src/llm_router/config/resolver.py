"""Layered configuration resolution.

Layers are applied lowest precedence first, each overwriting the fields it
sets:

    defaults -> home file -> project file -> environment -> overrides

The merged values are validated once as a whole, so cross-field rules see
the final picture regardless of which layer supplied each field.
"""

from collections.abc import Iterator
import logging
import os
from pathlib import Path
from typing import Any, NamedTuple

from pydantic import ValidationError

from .env_loader import EnvironmentConfigLoader
from .file_loader import ConfigFileError, FileConfigLoader, ProfileNotFoundError
from .schema import RouterSettings, settings_defaults
from .types import ConfigOrigin, ResolvedConfig

logger = logging.getLogger(__name__)

PROFILE_ENV = "LLM_ROUTER_PROFILE"

type Layer = tuple[ConfigOrigin, dict[str, Any]]


class ProfileAvailability(NamedTuple):
    """Whether a profile is defined in the project and home files."""

    project: bool
    home: bool


class ConfigResolver:
    """Merges configuration layers and records each field's origin."""

    def __init__(
        self,
        file_loader: FileConfigLoader | None = None,
        env_loader: EnvironmentConfigLoader | None = None,
    ) -> None:
        self.file_loader = file_loader or FileConfigLoader()
        self.env_loader = env_loader or EnvironmentConfigLoader()

    def resolve(
        self,
        overrides: dict[str, Any] | None = None,
        *,
        profile: str | None = None,
        env_file: str | Path | None = None,
        project_root: Path | None = None,
    ) -> ResolvedConfig:
        """Merge every layer and validate the result.

        Raises:
            ValueError: If a layer holds invalid values or the merged
                configuration breaks a cross-field rule.
            ConfigFileError: If the project file cannot be parsed.
        """
        values: dict[str, Any] = {}
        origin: dict[str, ConfigOrigin] = {}
        for layer_origin, layer in self._layers(
            overrides or {}, profile or self.get_effective_profile(), env_file, project_root
        ):
            for field in layer.keys() & set(RouterSettings.model_fields):
                values[field] = layer[field]
                origin[field] = layer_origin

        try:
            settings = RouterSettings.model_validate(values)
        except ValidationError as e:
            raise ValueError(f"Configuration validation failed: {e}") from e
        return ResolvedConfig(**settings.to_dict(), origin=origin)

    def _layers(
        self,
        overrides: dict[str, Any],
        profile: str | None,
        env_file: str | Path | None,
        project_root: Path | None,
    ) -> Iterator[Layer]:
        yield "default", settings_defaults()

        try:
            yield "file", self.file_loader.load_home_config(profile=profile)
        except ProfileNotFoundError:
            logger.debug("Profile %r not defined in the home configuration", profile)
        except ConfigFileError as e:
            logger.warning("Ignoring home configuration: %s", e)

        try:
            yield "file", self.file_loader.load_project_config(
                project_root=project_root, profile=profile
            )
        except ProfileNotFoundError:
            logger.debug("Profile %r not defined in the project configuration", profile)

        try:
            yield "env", self.env_loader.load_env_config(env_file=env_file)
        except (ValueError, FileNotFoundError) as e:
            raise ValueError(f"Environment configuration error: {e}") from e

        yield "programmatic", overrides

    def get_effective_profile(self) -> str | None:
        """Profile named by ``LLM_ROUTER_PROFILE``, or None."""
        return os.getenv(PROFILE_ENV) or None

    def profiles(self, project_root: Path | None = None) -> dict[str, list[str]]:
        """Profile names defined in the project and home files."""
        return self.file_loader.list_available_profiles(project_root)

    def profile_availability(
        self, profile: str, project_root: Path | None = None
    ) -> ProfileAvailability:
        available = self.profiles(project_root)
        return ProfileAvailability(
            project=profile in available["project"],
            home=profile in available["home"],
        )
