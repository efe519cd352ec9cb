"""
Host configuration.

Every field can be set from a ``PLUGHOST_*`` environment variable, e.g.
``PLUGHOST_PLUGINS_DIR`` or ``PLUGHOST_BATCH_SIZE``. Keyword arguments win
over the environment.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class HostConfig(BaseSettings):
    """Settings for the plugin runtime."""

    model_config = SettingsConfigDict(
        env_prefix="PLUGHOST_",
        case_sensitive=False,
        extra="ignore",
    )

    plugins_dir: str = Field(default="./plugins")
    state_filename: str = Field(default="plugins_state.json")
    manifest_filename: str = Field(default="plugin.json")
    batch_size: int = Field(default=5)
    reload_warning_threshold: int = Field(default=10)
    # Seconds; None or <= 0 disables the bound
    hook_timeout: Optional[float] = Field(default=30.0)
    remove_routes_on_unload: bool = Field(default=False)
    settings_path: str = Field(default=":memory:")

    @field_validator("batch_size")
    @classmethod
    def validate_batch_size(cls, v):
        if v < 1:
            raise ValueError(f"batch_size must be at least 1, got {v}")
        return v

    @field_validator("hook_timeout")
    @classmethod
    def validate_hook_timeout(cls, v):
        if v is not None and v <= 0:
            return None
        return v

    @property
    def plugins_root(self) -> Path:
        return Path(self.plugins_dir)

    @property
    def state_path(self) -> Path:
        return self.plugins_root / self.state_filename

    @classmethod
    def from_env(cls, **overrides) -> "HostConfig":
        """Build a config from the environment.

        Overrides set to None are ignored, so unset CLI options fall back to
        the environment.
        """
        return cls(**{k: v for k, v in overrides.items() if v is not None})
