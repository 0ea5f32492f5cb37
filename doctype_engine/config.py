"""
Configuration management for the DocType engine.

All configuration is done via environment variables.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Configuration objects are immutable once loaded

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Document new environment variables in the class docstring
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

LOG_FORMATS = ("text", "json")


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Attributes:
        path: SQLite database file, or ":memory:"
        busy_timeout_ms: SQLite busy timeout in milliseconds
        wal_mode: Enable SQLite WAL journal mode
        dialect: SQL dialect of the database adapter (sqlite, postgres); an Engine
            refuses a value that differs from its adapter's dialect
    """

    path: str = "./data/site.db"
    busy_timeout_ms: int = 5000
    wal_mode: bool = True
    dialect: str = "sqlite"

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """Load configuration from environment variables."""
        return cls(
            path=os.getenv("DOCTYPE_DB_PATH", "./data/site.db"),
            busy_timeout_ms=int(os.getenv("DOCTYPE_DB_BUSY_TIMEOUT_MS", "5000")),
            wal_mode=_env_bool("DOCTYPE_DB_WAL_MODE", True),
            dialect=os.getenv("DOCTYPE_DB_DIALECT", "sqlite").lower(),
        )


@dataclass(frozen=True)
class MetaConfig:
    """Metadata loading configuration.

    Attributes:
        doctype_dir: Directory of declarative DocType records
        preload: Warm the meta cache for every loaded DocType at startup
    """

    doctype_dir: str = "./doctypes"
    preload: bool = True

    @classmethod
    def from_env(cls) -> MetaConfig:
        """Load configuration from environment variables."""
        return cls(
            doctype_dir=os.getenv("DOCTYPE_DIR", "./doctypes"),
            preload=_env_bool("DOCTYPE_PRELOAD", True),
        )


@dataclass(frozen=True)
class MigrationConfig:
    """Migration defaults.

    Attributes:
        allow_destructive: Apply column/index drops and lossy type changes
        validate_data: Run row-level checks before risky changes
        applied_by: Actor recorded in migration history
        history_table: Table holding migration records
    """

    allow_destructive: bool = False
    validate_data: bool = True
    applied_by: str = "system"
    history_table: str = "tabMigrationHistory"

    @classmethod
    def from_env(cls) -> MigrationConfig:
        """Load configuration from environment variables."""
        return cls(
            allow_destructive=_env_bool("MIGRATION_ALLOW_DESTRUCTIVE", False),
            validate_data=_env_bool("MIGRATION_VALIDATE_DATA", True),
            applied_by=os.getenv("MIGRATION_APPLIED_BY", "system"),
            history_table=os.getenv("MIGRATION_HISTORY_TABLE", "tabMigrationHistory"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (text or json)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text").lower(),
        )


@dataclass
class EngineConfig:
    """Complete engine configuration.

    Attributes:
        database: Database configuration
        meta: Metadata loading configuration
        migration: Migration defaults
        observability: Logging configuration
    """

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    meta: MetaConfig = field(default_factory=MetaConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            database=DatabaseConfig.from_env(),
            meta=MetaConfig.from_env(),
            migration=MigrationConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        from .migration.dialect import DIALECTS

        if self.database.dialect not in DIALECTS:
            raise ValueError(
                f"Invalid DOCTYPE_DB_DIALECT '{self.database.dialect}'. "
                f"Must be one of: {', '.join(sorted(DIALECTS))}"
            )
        if self.observability.log_format not in LOG_FORMATS:
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: text, json"
            )
        if not self.migration.history_table:
            raise ValueError("MIGRATION_HISTORY_TABLE must not be empty")
        if self.database.busy_timeout_ms < 0:
            raise ValueError("DOCTYPE_DB_BUSY_TIMEOUT_MS must not be negative")

        if not os.path.isdir(self.meta.doctype_dir):
            logger.warning(
                f"DocType directory does not exist: {self.meta.doctype_dir}. "
                "No DocTypes will be loaded from disk."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Engine configuration loaded",
            extra={
                "db_path": self.database.path,
                "dialect": self.database.dialect,
                "doctype_dir": self.meta.doctype_dir,
                "preload": self.meta.preload,
                "allow_destructive": self.migration.allow_destructive,
                "validate_data": self.migration.validate_data,
                "history_table": self.migration.history_table,
                "log_level": self.observability.log_level,
            },
        )
