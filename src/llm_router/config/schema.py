"""Configuration schema and validation using Pydantic.

Validates and coerces values from every source (environment, files,
programmatic overrides) into typed settings with defaults.
"""

from typing import Annotated, Any

from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Chains arrive from env and TOML as "family/model, family/model" strings.
ChainEntries = Annotated[tuple[str, ...], NoDecode]


class RouterSettings(BaseSettings):
    """Pydantic settings schema for the router.

    Integrates with environment variables using the LLM_ROUTER_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="LLM_ROUTER_",
        env_file=None,  # Only used when explicitly requested
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Backends ---

    api_key: str | None = Field(
        default=None,
        description="API key for the real backend",
    )

    use_real_api: bool = Field(
        default=False,
        description="Call the real backend instead of the offline mock",
    )

    # --- Candidate chains ---

    completion_chain: ChainEntries = Field(
        default=("gemini/gemini-2.5-flash", "gemini/gemini-2.0-flash"),
        description="Priority-ordered 'family/model' entries for completions",
    )

    embedding_chain: ChainEntries = Field(
        default=("gemini/gemini-embedding-001",),
        description="Priority-ordered 'family/model' entries for embeddings",
    )

    # --- Retry policy ---

    max_attempts_per_candidate: int = Field(default=3, ge=1)
    min_retry_delay: float = Field(default=1.0, ge=0, description="Seconds")
    max_retry_delay: float = Field(default=30.0, ge=0, description="Seconds")
    request_timeout: float | None = Field(
        default=120.0, gt=0, description="Per-attempt timeout in seconds"
    )
    max_crop_attempts: int = Field(default=3, ge=0)

    # --- Validation Rules ---

    @field_validator("completion_chain", "embedding_chain", mode="before")
    @classmethod
    def split_chain(cls, v: Any) -> Any:
        """Accept comma-separated strings as well as sequences."""
        if isinstance(v, str):
            return tuple(part.strip() for part in v.split(",") if part.strip())
        return v

    @field_validator("completion_chain", "embedding_chain")
    @classmethod
    def check_chain_entries(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Every entry must be 'family/model' and the chain non-empty."""
        if not v:
            raise ValueError("must list at least one 'family/model' entry")
        for entry in v:
            family, sep, model = entry.partition("/")
            if not (family and sep and model):
                raise ValueError(f"invalid entry {entry!r}; expected 'family/model'")
        return v

    @model_validator(mode="after")
    def validate_consistency(self, info: ValidationInfo) -> "RouterSettings":
        """Cross-field rules: key presence and delay ordering.

        Skipped when validating a partial source (context ``{"partial": True}``),
        since the other fields may still arrive from a later source.
        """
        if info.context and info.context.get("partial"):
            return self
        if self.use_real_api and not self.api_key:
            raise ValueError(
                "api_key is required when use_real_api=True. "
                "Set LLM_ROUTER_API_KEY, provide it in a config file, "
                "or pass it programmatically."
            )
        if self.max_retry_delay < self.min_retry_delay:
            raise ValueError("max_retry_delay must be >= min_retry_delay")
        return self

    def to_dict(self) -> dict[str, Any]:
        """Field values keyed by name, for source tracking."""
        return {name: getattr(self, name) for name in type(self).model_fields}


def settings_defaults() -> dict[str, Any]:
    """Schema defaults without reading the environment."""
    return {
        name: field.get_default(call_default_factory=True)
        for name, field in RouterSettings.model_fields.items()
    }
