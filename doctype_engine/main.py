"""
DocType engine - service wiring.

This module builds the engine with all components:
- Database (SQLite)
- DocType registry, loaded from the DocType directory
- Custom field and property setter overlays
- Meta cache, subscribed to registry and overlay changes
- Migration history and workflow

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - All components share one registry and one database connection
    - The meta cache is invalidated by every registry/overlay mutation
    - Engine.close() closes the database even if startup failed

How to change safely:
    - Add new components in start() after the ones they depend on
    - Keep close() tolerant of partially started engines
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import json_log_formatter

from .config import EngineConfig
from .db import Database, SqliteDatabase
from .meta import Meta, MetaCache
from .migration import (
    MigrationHistory,
    MigrationOptions,
    MigrationResult,
    MigrationWorkflow,
    get_dialect,
)
from .overlay import CustomFieldManager, PropertySetterManager
from .schema import DocTypeRegistry, load_custom_fields_file, load_doctype_dir
from .schema.loader import SUPPORTED_EXTENSIONS, load_property_setters_file

logger = logging.getLogger(__name__)


def setup_logging(config: EngineConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Engine configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


class Engine:
    """DocType engine orchestrator.

    Manages the lifecycle of all engine components.

    Attributes:
        config: Engine configuration
        db: Database connection
        registry: DocType registry
        custom_fields: Custom field overlay
        property_setters: Property setter overlay
        cache: Meta cache
        history: Migration history store
        workflow: Migration workflow

    Example:
        >>> async with Engine(config) as engine:
        ...     result = await engine.execute_migration("User")
        ...     result.success
        True
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        db: Optional[Database] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Optional engine configuration (loaded from env if not provided)
            db: Optional database (a SqliteDatabase from config if not provided)

        Raises:
            ValueError: If the configured dialect differs from the database adapter's
        """
        self.config = config or EngineConfig.from_env()
        self.db: Database = db or SqliteDatabase(
            path=self.config.database.path,
            wal_mode=self.config.database.wal_mode,
            busy_timeout_ms=self.config.database.busy_timeout_ms,
        )
        if self.config.database.dialect != self.db.dialect_name:
            raise ValueError(
                f"DOCTYPE_DB_DIALECT '{self.config.database.dialect}' does not match the "
                f"{self.db.dialect_name} database adapter"
            )
        self.registry = DocTypeRegistry()
        self.custom_fields = CustomFieldManager(self.registry)
        self.property_setters = PropertySetterManager()
        self.cache = MetaCache(self.registry, self.custom_fields, self.property_setters)
        self.history = MigrationHistory(self.db, table=self.config.migration.history_table)
        self.workflow = MigrationWorkflow(
            self.cache,
            self.db,
            dialect=get_dialect(self.db.dialect_name),
            history=self.history,
            defaults=MigrationOptions(
                validate_data=self.config.migration.validate_data,
                allow_destructive=self.config.migration.allow_destructive,
                applied_by=self.config.migration.applied_by,
            ),
        )
        self._started = False

    async def start(self) -> None:
        """Connect, prepare the history table and load declarative records."""
        if self._started:
            logger.warning("Engine already started")
            return

        logger.info("Starting DocType engine")
        self.config.log_config()
        try:
            if isinstance(self.db, SqliteDatabase):
                await self.db.connect()
            await self.history.initialize()

            doctype_dir = Path(self.config.meta.doctype_dir)
            if doctype_dir.is_dir():
                await self.load_directory(doctype_dir)

            if self.config.meta.preload:
                await self.cache.preload_metas(d.name for d in self.registry.get_all())
        except Exception as e:
            logger.error(f"Engine startup failed: {e}", exc_info=True)
            await self.close()
            raise

        self._started = True
        logger.info(
            "DocType engine started",
            extra={"doctypes": self.registry.count(), "cached_metas": len(self.cache)},
        )

    async def load_directory(self, directory: Path) -> int:
        """Register every DocType record in a directory plus its overlay files.

        Returns:
            Number of DocTypes registered
        """
        registered = 0
        for record in load_doctype_dir(directory):
            await self.registry.register(record)
            registered += 1

        for extension in SUPPORTED_EXTENSIONS:
            custom_fields_path = directory / f"custom_fields{extension}"
            if custom_fields_path.is_file():
                for custom_field in load_custom_fields_file(custom_fields_path):
                    await self.custom_fields.create_custom_field(custom_field)
            setters_path = directory / f"property_setters{extension}"
            if setters_path.is_file():
                for setter in load_property_setters_file(setters_path):
                    await self.property_setters.set_property(
                        setter.doctype, setter.fieldname, setter.property, setter.value
                    )

        logger.info(
            f"Loaded {registered} DocType(s) from {directory}",
            extra={
                "custom_fields": self.custom_fields.count(),
                "modules": self.registry.get_modules(),
            },
        )
        return registered

    async def close(self) -> None:
        """Close the database connection."""
        if isinstance(self.db, SqliteDatabase):
            await self.db.close()
        if self._started:
            logger.info("DocType engine stopped")
        self._started = False

    async def __aenter__(self) -> Engine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def get_effective_meta(self, name: str) -> Meta:
        """Merged metadata for a DocType (raises NotFoundError)."""
        return await self.workflow.get_effective_meta(name)

    async def execute_migration(
        self, name: str, options: Optional[MigrationOptions] = None
    ) -> MigrationResult:
        return await self.workflow.execute_migration(name, options)

    async def migrate_all(
        self, names: Optional[List[str]] = None, options: Optional[MigrationOptions] = None
    ) -> Dict[str, MigrationResult]:
        """Migrate several DocTypes in the given order (all registered ones by default)."""
        if names is None:
            names = [d.name for d in self.registry.get_all() if not d.is_virtual]
        results = {}
        for name in names:
            results[name] = await self.workflow.execute_migration(name, options)
        return results
