"""Configuration for the router.

Resolve once at the edge with `resolve_config()`, freeze with
`ResolvedConfig.to_frozen()`, and hand the result to `create_router()`.
"""

from .api import (
    get_effective_profile,
    list_available_profiles,
    resolve_config,
    validate_profile,
)
from .file_loader import ConfigFileError
from .schema import RouterSettings
from .types import FrozenConfig, ResolvedConfig, SourceMap

__all__ = [
    "ConfigFileError",
    "FrozenConfig",
    "ResolvedConfig",
    "RouterSettings",
    "SourceMap",
    "get_effective_profile",
    "list_available_profiles",
    "resolve_config",
    "validate_profile",
]
