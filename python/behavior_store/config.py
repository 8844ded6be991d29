"""
Configuration management for the behavior store.

Supports YAML config files with environment variable overrides.
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from behavior_store.exceptions import ConfigurationError

# Used when the device does not report a quota of its own
DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024
DEFAULT_RETENTION_DAYS = 90


class StorageConfig(BaseModel):
    """Configuration for the on-device storage medium."""

    path: str = Field(
        default=".data/behavior-store.db",
        description="SQLite database file (':memory:' for an ephemeral store)",
    )
    quota_bytes: int | None = Field(
        default=None,
        gt=0,
        description="Device-reported quota in bytes (None uses the 5 MiB default)",
    )
    enforce_quota: bool = Field(
        default=True,
        description="Have the medium reject writes that would exceed the quota",
    )
    timeout_seconds: float = Field(default=5.0, description="SQLite busy timeout")

    @property
    def effective_quota_bytes(self) -> int:
        """Quota used for usage reports and enforcement."""
        return self.quota_bytes or DEFAULT_QUOTA_BYTES


class RetentionSettings(BaseModel):
    """Configuration for retention sweeps."""

    default_days: int = Field(
        default=DEFAULT_RETENTION_DAYS,
        ge=0,
        description="Retention window when preferences do not override it",
    )
    sweep_interval_seconds: float = Field(
        default=3600.0,
        ge=0.0,
        description="Minimum spacing between opportunistic post-write sweeps",
    )
    include_site_activity: bool = Field(
        default=False,
        description="Also expire site activity records by their last visit",
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Console format (json, plain)")
    console: bool = Field(default=True, description="Log to stdout")
    file: str | None = Field(default=None, description="JSONL log file (None disables file logging)")
    max_bytes: int = Field(default=2 * 1024 * 1024, gt=0, description="Log file size before rotation")
    backup_count: int = Field(default=3, ge=0, description="Rotated log files to keep")


class Config(BaseSettings):
    """Main configuration for the behavior store."""

    model_config = SettingsConfigDict(
        env_prefix="BEHAVIOR_STORE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    storage: StorageConfig = Field(default_factory=StorageConfig)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> Config:
        """
        Load configuration from a YAML file.

        Raises:
            ConfigurationError: if the file is missing, is not a YAML
                mapping, or holds values that fail validation.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError.missing_file(str(path))

        with path.open() as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError.validation_failed(str(path), "<unparseable>", str(e)) from e

        if not isinstance(data, dict):
            raise ConfigurationError.validation_failed(
                str(path), type(data).__name__, "top level must be a mapping"
            )

        try:
            return cls(**data)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ())) or "<root>"
            raise ConfigurationError.validation_failed(
                field, first.get("input"), first.get("msg", "invalid")
            ) from e

    @classmethod
    def load(cls, config_path: str | None = None) -> Config:
        """
        Load configuration with precedence:
        1. Environment variables (highest)
        2. Config file
        3. Defaults (lowest)
        """
        if config_path is None:
            config_path = os.getenv("BEHAVIOR_STORE_CONFIG")

        if config_path is None:
            for candidate in [
                "behavior-store.yaml",
                "behavior-store.yml",
                "config/behavior-store.yaml",
                ".behavior-store.yaml",
            ]:
                if Path(candidate).exists():
                    config_path = candidate
                    break

        if config_path:
            return cls.from_yaml(config_path)

        return cls()

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with path.open("w") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False)


# Process configuration; store instances are always passed explicitly
_config: Config | None = None


def get_config() -> Config:
    """Get the process configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the process configuration instance."""
    global _config
    _config = config
