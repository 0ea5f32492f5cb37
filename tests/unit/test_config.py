"""
Unit tests for engine configuration.

Tests cover:
- Defaults
- Loading from environment variables
- Validation errors
- Immutability of the section dataclasses
"""

import dataclasses
import logging

import pytest

from doctype_engine.config import (
    DatabaseConfig,
    EngineConfig,
    MetaConfig,
    MigrationConfig,
    ObservabilityConfig,
)


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self):
        """Defaults target a local SQLite file."""
        config = EngineConfig()
        assert config.database.path == "./data/site.db"
        assert config.database.dialect == "sqlite"
        assert config.database.wal_mode
        assert config.meta.preload
        assert not config.migration.allow_destructive
        assert config.migration.validate_data
        assert config.migration.history_table == "tabMigrationHistory"
        assert config.observability.log_format == "text"

    def test_sections_are_frozen(self):
        """Section dataclasses cannot be mutated in place."""
        config = DatabaseConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.path = "other.db"
        replaced = dataclasses.replace(config, path="other.db")
        assert replaced.path == "other.db"
        assert config.path == "./data/site.db"


class TestFromEnv:
    """Tests for from_env."""

    def test_reads_environment(self, monkeypatch, tmp_path):
        """Every section reads its variables."""
        monkeypatch.setenv("DOCTYPE_DB_PATH", str(tmp_path / "site.db"))
        monkeypatch.setenv("DOCTYPE_DB_BUSY_TIMEOUT_MS", "250")
        monkeypatch.setenv("DOCTYPE_DB_WAL_MODE", "false")
        monkeypatch.setenv("DOCTYPE_DB_DIALECT", "Postgres")
        monkeypatch.setenv("DOCTYPE_DIR", str(tmp_path))
        monkeypatch.setenv("DOCTYPE_PRELOAD", "0")
        monkeypatch.setenv("MIGRATION_ALLOW_DESTRUCTIVE", "yes")
        monkeypatch.setenv("MIGRATION_VALIDATE_DATA", "false")
        monkeypatch.setenv("MIGRATION_APPLIED_BY", "deploy-bot")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("LOG_FORMAT", "JSON")

        config = EngineConfig.from_env()
        assert config.database == DatabaseConfig(
            path=str(tmp_path / "site.db"), busy_timeout_ms=250, wal_mode=False, dialect="postgres"
        )
        assert config.meta == MetaConfig(doctype_dir=str(tmp_path), preload=False)
        assert config.migration == MigrationConfig(
            allow_destructive=True, validate_data=False, applied_by="deploy-bot"
        )
        assert config.observability == ObservabilityConfig(log_level="DEBUG", log_format="json")

    def test_invalid_dialect(self, monkeypatch):
        """Unknown dialects are rejected."""
        monkeypatch.setenv("DOCTYPE_DB_DIALECT", "oracle")
        with pytest.raises(ValueError, match="DOCTYPE_DB_DIALECT"):
            EngineConfig.from_env()

    def test_invalid_log_format(self, monkeypatch):
        """Unknown log formats are rejected."""
        monkeypatch.setenv("LOG_FORMAT", "xml")
        with pytest.raises(ValueError, match="LOG_FORMAT"):
            EngineConfig.from_env()


class TestValidate:
    """Tests for validate."""

    def test_empty_history_table(self, tmp_path):
        """The history table needs a name."""
        config = EngineConfig(
            meta=MetaConfig(doctype_dir=str(tmp_path)),
            migration=MigrationConfig(history_table=""),
        )
        with pytest.raises(ValueError, match="MIGRATION_HISTORY_TABLE"):
            config.validate()

    def test_negative_timeout(self, tmp_path):
        """Negative busy timeouts are rejected."""
        config = EngineConfig(
            database=DatabaseConfig(busy_timeout_ms=-1),
            meta=MetaConfig(doctype_dir=str(tmp_path)),
        )
        with pytest.raises(ValueError, match="must not be negative"):
            config.validate()

    def test_missing_directory_warns(self, tmp_path, caplog):
        """A missing DocType directory only logs a warning."""
        config = EngineConfig(meta=MetaConfig(doctype_dir=str(tmp_path / "missing")))
        with caplog.at_level(logging.WARNING, logger="doctype_engine.config"):
            config.validate()
        assert "DocType directory does not exist" in caplog.text
