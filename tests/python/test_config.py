"""Tests for configuration module."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from behavior_store.config import (
    DEFAULT_QUOTA_BYTES,
    Config,
    LoggingConfig,
    RetentionSettings,
    StorageConfig,
    get_config,
    set_config,
)
from behavior_store.exceptions import ConfigurationError, ErrorCode


class TestStorageConfig:
    """Test StorageConfig model."""

    def test_default_values(self):
        """Test default storage config values."""
        config = StorageConfig()

        assert config.path == ".data/behavior-store.db"
        assert config.quota_bytes is None
        assert config.enforce_quota is True
        assert config.timeout_seconds == 5.0

    def test_effective_quota_defaults(self):
        """Without a device quota the 5 MiB default applies."""
        assert StorageConfig().effective_quota_bytes == DEFAULT_QUOTA_BYTES == 5_242_880

    def test_effective_quota_uses_device_value(self):
        """A reported quota wins over the default."""
        assert StorageConfig(quota_bytes=1024).effective_quota_bytes == 1024

    def test_quota_must_be_positive(self):
        """Zero or negative quotas are rejected."""
        with pytest.raises(ValidationError):
            StorageConfig(quota_bytes=0)


class TestRetentionSettings:
    """Test RetentionSettings model."""

    def test_default_values(self):
        """Test default retention values."""
        settings = RetentionSettings()

        assert settings.default_days == 90
        assert settings.sweep_interval_seconds == 3600.0
        assert settings.include_site_activity is False

    def test_negative_window_rejected(self):
        """A negative window is invalid."""
        with pytest.raises(ValidationError):
            RetentionSettings(default_days=-1)


class TestLoggingConfig:
    """Test LoggingConfig model."""

    def test_default_values(self):
        """Test default logging config values."""
        config = LoggingConfig()

        assert config.level == "INFO"
        assert config.format == "json"
        assert config.console is True
        assert config.file is None
        assert config.max_bytes == 2 * 1024 * 1024
        assert config.backup_count == 3


class TestConfig:
    """Test main Config class."""

    def test_default_config(self):
        """Test default configuration sections."""
        config = Config()

        assert isinstance(config.storage, StorageConfig)
        assert isinstance(config.retention, RetentionSettings)
        assert isinstance(config.logging, LoggingConfig)

    def test_env_override(self, monkeypatch):
        """Environment variables override nested values."""
        monkeypatch.setenv("BEHAVIOR_STORE_STORAGE__PATH", ":memory:")
        monkeypatch.setenv("BEHAVIOR_STORE_RETENTION__DEFAULT_DAYS", "30")

        config = Config()

        assert config.storage.path == ":memory:"
        assert config.retention.default_days == 30

    def test_from_yaml(self, tmp_path: Path):
        """Test loading config from YAML."""
        config_file = tmp_path / "behavior-store.yaml"
        config_file.write_text(
            "storage:\n"
            "  path: /tmp/store.db\n"
            "  quota_bytes: 2048\n"
            "retention:\n"
            "  default_days: 14\n"
            "  include_site_activity: true\n"
            "logging:\n"
            "  level: DEBUG\n"
        )

        config = Config.from_yaml(config_file)

        assert config.storage.path == "/tmp/store.db"
        assert config.storage.quota_bytes == 2048
        assert config.retention.default_days == 14
        assert config.retention.include_site_activity is True
        assert config.logging.level == "DEBUG"

    def test_from_yaml_missing_file(self, tmp_path: Path):
        """A named file that does not exist is a configuration error."""
        missing = tmp_path / "absent.yaml"

        with pytest.raises(ConfigurationError) as exc_info:
            Config.from_yaml(missing)

        assert exc_info.value.error_code == ErrorCode.CONFIG_MISSING
        assert exc_info.value.context["path"] == str(missing)

    def test_from_yaml_invalid_value(self, tmp_path: Path):
        """Values that fail validation name the offending field."""
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("retention:\n  default_days: -1\n")

        with pytest.raises(ConfigurationError) as exc_info:
            Config.from_yaml(config_file)

        assert exc_info.value.error_code == ErrorCode.CONFIG_VALIDATION
        assert exc_info.value.context["field"] == "retention.default_days"
        assert exc_info.value.context["value"] == "-1"

    def test_from_yaml_not_a_mapping(self, tmp_path: Path):
        """A top level that is not a mapping is rejected."""
        config_file = tmp_path / "list.yaml"
        config_file.write_text("- storage\n- retention\n")

        with pytest.raises(ConfigurationError) as exc_info:
            Config.from_yaml(config_file)

        assert exc_info.value.error_code == ErrorCode.CONFIG_VALIDATION

    def test_from_yaml_unparseable(self, tmp_path: Path):
        """Broken YAML is a configuration error."""
        config_file = tmp_path / "broken.yaml"
        config_file.write_text("storage: [unclosed\n")

        with pytest.raises(ConfigurationError) as exc_info:
            Config.from_yaml(config_file)

        assert exc_info.value.error_code == ErrorCode.CONFIG_VALIDATION

    def test_load_missing_env_path(self, tmp_path: Path, monkeypatch):
        """An explicitly configured path must exist."""
        monkeypatch.setenv("BEHAVIOR_STORE_CONFIG", str(tmp_path / "absent.yaml"))

        with pytest.raises(ConfigurationError):
            Config.load()

    def test_from_empty_yaml(self, tmp_path: Path):
        """An empty file yields defaults."""
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        config = Config.from_yaml(config_file)

        assert config.storage.enforce_quota is True

    def test_to_yaml_round_trip(self, tmp_path: Path):
        """Saved configuration loads back unchanged."""
        original = Config(retention=RetentionSettings(default_days=7))
        path = tmp_path / "nested" / "config.yaml"

        original.to_yaml(path)
        loaded = Config.from_yaml(path)

        assert path.exists()
        assert loaded.retention.default_days == 7

    def test_load_from_env_path(self, tmp_path: Path, monkeypatch):
        """BEHAVIOR_STORE_CONFIG points load() at a file."""
        config_file = tmp_path / "custom.yaml"
        config_file.write_text("retention:\n  default_days: 3\n")
        monkeypatch.setenv("BEHAVIOR_STORE_CONFIG", str(config_file))

        config = Config.load()

        assert config.retention.default_days == 3

    def test_load_without_file(self, tmp_path: Path, monkeypatch):
        """load() falls back to defaults."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("BEHAVIOR_STORE_CONFIG", raising=False)

        config = Config.load()

        assert config.retention.default_days == 90


class TestGlobalConfig:
    """Test process configuration helpers."""

    def test_set_and_get(self):
        """set_config replaces the process configuration."""
        previous = get_config()
        custom = Config(retention=RetentionSettings(default_days=5))
        try:
            set_config(custom)
            assert get_config() is custom
        finally:
            set_config(previous)
