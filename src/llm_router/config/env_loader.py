"""Environment variable configuration loading.

Reads LLM_ROUTER_* variables, optionally after loading a `.env` file with
python-dotenv, and coerces them through the settings schema.
"""

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .schema import RouterSettings

ENV_PREFIX = "LLM_ROUTER_"


def env_var_for(field_name: str) -> str:
    """Environment variable name for a settings field."""
    return f"{ENV_PREFIX}{field_name.upper()}"


class EnvironmentConfigLoader:
    """Loads configuration from LLM_ROUTER_* environment variables."""

    def load_env_config(self, env_file: str | Path | None = None) -> dict[str, Any]:
        """Return the typed values of fields actually set in the environment.

        Args:
            env_file: Optional `.env` file loaded first. Existing variables
                are never overridden by the file.

        Raises:
            FileNotFoundError: If `env_file` does not exist.
            ValueError: If a variable holds an invalid value.
        """
        if env_file:
            env_path = Path(env_file)
            if not env_path.exists():
                raise FileNotFoundError(f"Environment file not found: {env_path}")
            load_dotenv(env_path, override=False)

        env_values = {
            name: os.environ[env_var_for(name)]
            for name in RouterSettings.model_fields
            if env_var_for(name) in os.environ
        }
        if not env_values:
            return {}

        try:
            settings = RouterSettings.model_validate(
                env_values, context={"partial": True}
            )
        except Exception as e:
            env_var_list = [f"{env_var_for(name)}" for name in env_values]
            raise ValueError(
                f"Invalid environment variable values: {', '.join(env_var_list)}. "
                f"Error: {e}"
            ) from e
        return {name: getattr(settings, name) for name in env_values}
