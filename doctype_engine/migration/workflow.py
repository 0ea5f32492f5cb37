"""
Migration workflow.

Turns the effective metadata of a DocType into an applied schema change:

    Loading -> Comparing -> Generating -> DryRunComplete
                                       -> Executing -> Applied | Failed

Invariants:
    - execute_migration never raises for missing DocTypes or database
      failures; they are reported as MigrationResult(success=False)
    - A live run executes all statements in one transaction; on failure
      the transaction is rolled back and nothing is left half-applied
    - The applied history record is written inside the same transaction
    - Dry runs never send statements to the database
    - Destructive diffs are only applied with allow_destructive

How to change safely:
    - Keep statement order identical between dry run and live run
    - New states must be terminal or lead to Applied/Failed
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..db.base import Database, Transaction, quote_identifier
from ..errors import DocTypeEngineError, MigrationFailedError, NotFoundError
from ..meta.cache import MetaCache
from ..meta.meta import Meta
from .comparator import SchemaComparator
from .dialect import Dialect, get_dialect
from .diff import SchemaDiff
from .generator import SqlGenerator
from .history import Migration, MigrationHistory, MigrationStatus

logger = logging.getLogger(__name__)


class MigrationState(str, Enum):
    """States of one migration run."""

    LOADING = "loading"
    COMPARING = "comparing"
    GENERATING = "generating"
    DRY_RUN_COMPLETE = "dry_run_complete"
    EXECUTING = "executing"
    APPLIED = "applied"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class MigrationOptions:
    """Options for one migration run.

    Attributes:
        dry_run: Generate SQL without executing it
        validate_data: Run row-level checks before risky changes
        allow_destructive: Permit dropping columns/indexes and lossy type changes
        applied_by: Actor recorded in the migration history
    """

    dry_run: bool = False
    validate_data: bool = True
    allow_destructive: bool = False
    applied_by: str = "system"


@dataclass
class MigrationResult:
    """Outcome of a migration run."""

    doctype: str
    success: bool = False
    state: MigrationState = MigrationState.LOADING
    sql: List[str] = field(default_factory=list)
    rollback_sql: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    migration: Optional[Migration] = None
    diff: Optional[SchemaDiff] = None
    affected_rows: int = 0
    execution_time_ms: float = 0.0

    def fail(self, message: str) -> MigrationResult:
        self.success = False
        self.state = MigrationState.FAILED
        self.errors.append(message)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "doctype": self.doctype,
            "success": self.success,
            "state": self.state.value,
            "sql": list(self.sql),
            "rollback_sql": list(self.rollback_sql),
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "migration": self.migration.to_dict() if self.migration else None,
            "destructive": self.diff.destructive if self.diff else False,
            "affected_rows": self.affected_rows,
            "execution_time_ms": self.execution_time_ms,
        }


class MigrationWorkflow:
    """Compares, generates and applies schema migrations for DocTypes.

    One workflow owns its Database connection: live runs and rollbacks are
    serialized by an asyncio.Lock so only one transaction is open at a time.

    Example:
        >>> workflow = MigrationWorkflow(cache, db, history=history)
        >>> result = await workflow.execute_migration("User", MigrationOptions(dry_run=True))
        >>> result.sql
        ['ALTER TABLE "tabUser" ADD COLUMN ...']
    """

    def __init__(
        self,
        cache: MetaCache,
        db: Database,
        dialect: Optional[Dialect] = None,
        history: Optional[MigrationHistory] = None,
        defaults: Optional[MigrationOptions] = None,
    ) -> None:
        self.cache = cache
        self.db = db
        self.dialect = dialect or get_dialect(db.dialect_name)
        self.history = history or MigrationHistory(db)
        self.defaults = defaults or MigrationOptions()
        self.comparator = SchemaComparator(self.dialect)
        self.generator = SqlGenerator(self.dialect)
        self._lock = asyncio.Lock()
        self._history_ready = False

    async def get_effective_meta(self, name: str) -> Meta:
        """Merged metadata for a DocType.

        Raises:
            NotFoundError: If the DocType is not registered
        """
        meta = await self.cache.get_meta(name)
        if meta is None:
            raise NotFoundError(f"DocType '{name}' not found", kind="doctype", key=name)
        return meta

    async def plan(self, name: str) -> Tuple[Meta, SchemaDiff]:
        """Load and compare without generating SQL."""
        meta = await self.get_effective_meta(name)
        return meta, await self.comparator.compare(meta, self.db)

    async def execute_migration(
        self, name: str, options: Optional[MigrationOptions] = None
    ) -> MigrationResult:
        """Bring the table of a DocType in line with its effective metadata.

        Args:
            name: DocType name
            options: Run options (defaults to the workflow defaults)

        Returns:
            MigrationResult; success is False for missing DocTypes,
            blocked destructive changes and failed executions
        """
        options = options or self.defaults
        # comparison and apply run under one lock
        async with self._lock:
            return await self._execute(name, options)

    async def _execute(self, name: str, options: MigrationOptions) -> MigrationResult:
        result = MigrationResult(doctype=name)

        try:
            meta = await self.get_effective_meta(name)
        except NotFoundError as e:
            logger.warning(f"Migration requested for unknown DocType {name}")
            return result.fail(f"DocTypeNotFound: {e.message}")

        result.state = MigrationState.COMPARING
        try:
            diff = await self.comparator.compare(meta, self.db)
        except (DocTypeEngineError, ValueError) as e:
            logger.error(f"Schema comparison failed for {name}: {e}", exc_info=True)
            return result.fail(f"Schema comparison failed: {e}")
        result.diff = diff

        if diff.is_empty:
            result.success = True
            result.state = (
                MigrationState.DRY_RUN_COMPLETE if options.dry_run else MigrationState.APPLIED
            )
            result.warnings.append("No schema changes detected")
            return result

        result.state = MigrationState.GENERATING
        generated = self.generator.generate(diff)
        result.sql = generated.statements
        result.rollback_sql = generated.rollback
        result.warnings.extend(generated.warnings)
        if diff.destructive:
            result.warnings.append(
                f"Migration for {name} contains destructive changes: "
                + "; ".join(str(c) for c in diff.changes() if c.destructive)
            )

        if options.validate_data and diff.table_exists:
            try:
                notices, losses = await self.validate_data(diff)
            except DocTypeEngineError as e:
                return result.fail(f"Data validation failed: {e}")
            result.warnings.extend(notices)
            if losses and not options.allow_destructive and not options.dry_run:
                result.errors.extend(losses)
            else:
                result.warnings.extend(losses)

        if options.dry_run:
            result.success = True
            result.state = MigrationState.DRY_RUN_COMPLETE
            result.warnings.append("Dry run - no changes applied")
            logger.info(
                f"Dry run for {name}: {len(result.sql)} statement(s)",
                extra={"doctype": name, "destructive": diff.destructive},
            )
            return result

        if diff.destructive and not options.allow_destructive:
            logger.warning(f"Refusing destructive migration for {name}")
            return result.fail(
                f"Migration for {name} is destructive; enable allow_destructive to apply it"
            )
        if result.errors:
            result.state = MigrationState.FAILED
            return result
        if diff.destructive:
            result.warnings.append(
                f"Destructive changes applied to {diff.table}; back up the table before "
                f"running this migration on production data"
            )

        try:
            await self._ensure_history()
        except DocTypeEngineError as e:
            return result.fail(f"Migration history unavailable: {e}")
        return await self._apply(meta, diff, options, result)

    async def _apply(
        self,
        meta: Meta,
        diff: SchemaDiff,
        options: MigrationOptions,
        result: MigrationResult,
    ) -> MigrationResult:
        name = meta.name
        result.state = MigrationState.EXECUTING
        try:
            version = await self.history.next_version(name)
            fingerprint = self.cache.registry.fingerprint(name)
        except DocTypeEngineError as e:
            logger.error(f"Cannot prepare migration for {name}: {e}", extra={"doctype": name})
            return result.fail(f"Migration for {name} could not be prepared: {e.message}")

        migration = Migration.new(
            doctype=name,
            version=version,
            description=self._describe(diff),
            sql=list(result.sql),
            rollback_sql=list(result.rollback_sql),
            destructive=diff.destructive,
            requires_backup=diff.destructive or diff.requires_data_migration,
            diff=diff.to_dict(),
            fingerprint=fingerprint,
            applied_by=options.applied_by,
        )

        started = time.perf_counter()
        tx: Optional[Transaction] = None
        try:
            tx = await self.db.begin()
            for statement in result.sql:
                executed = await self.db.execute(statement)
                result.affected_rows += executed.rowcount
            migration.execution_time = (time.perf_counter() - started) * 1000
            migration.affected_rows = result.affected_rows
            migration.status = MigrationStatus.APPLIED
            await self.history.record(migration)
            await self.db.commit(tx)
        except Exception as e:
            await self._abort(tx)
            error = MigrationFailedError(
                f"Migration for {name} failed and was rolled back: {e}",
                doctype=name,
                cause=e,
            )
            logger.error(error.message, exc_info=True, extra={"doctype": name})
            result.execution_time_ms = (time.perf_counter() - started) * 1000
            migration.status = MigrationStatus.FAILED
            migration.error = str(e)
            migration.execution_time = result.execution_time_ms
            migration.affected_rows = 0
            result.affected_rows = 0
            await self._record_failure(migration)
            result.migration = migration
            return result.fail(error.message)

        result.execution_time_ms = migration.execution_time
        result.migration = migration
        result.success = True
        result.state = MigrationState.APPLIED
        logger.info(
            f"Applied migration v{migration.version} for {name} "
            f"({len(result.sql)} statement(s), {result.execution_time_ms:.1f} ms)",
            extra={"doctype": name, "migration_id": migration.id},
        )
        return result

    async def _ensure_history(self) -> None:
        if not self._history_ready:
            await self.history.initialize()
            self._history_ready = True

    async def _abort(self, tx: Optional[Transaction]) -> None:
        if tx is None or not tx.active:
            return
        try:
            await self.db.rollback(tx)
        except DocTypeEngineError as e:
            logger.error(f"Rollback of transaction {tx.id} failed: {e}")

    async def _record_failure(self, migration: Migration) -> None:
        try:
            await self.history.record(migration)
        except DocTypeEngineError as e:
            logger.error(f"Could not record failed migration {migration.id}: {e}")

    @staticmethod
    def _describe(diff: SchemaDiff) -> str:
        counts = diff.summary()
        parts = [
            f"{counts[key]} {key.replace('_', ' ')}"
            for key in (
                "added_columns",
                "modified_columns",
                "removed_columns",
                "renamed_columns",
                "added_indexes",
                "removed_indexes",
            )
            if counts[key]
        ]
        prefix = "Create table" if not diff.table_exists else "Alter table"
        return f"{prefix} {diff.table}: " + (", ".join(parts) or "no column changes")

    async def validate_data(self, diff: SchemaDiff) -> Tuple[List[str], List[str]]:
        """Row-level checks against the live table.

        Returns:
            (notices, losses): notices describe values that will be
            back-filled; losses describe values a destructive change
            would drop or truncate
        """
        q = quote_identifier
        table = q(diff.table)
        notices: List[str] = []
        losses: List[str] = []

        async def count(column: str, condition: str) -> int:
            rows = await self.db.query(
                f"SELECT COUNT(*) AS n FROM {table} WHERE {q(column)} {condition}"
            )
            return int(rows[0]["n"]) if rows else 0

        for change in diff.modified_columns:
            live_name = change.previous.name if change.previous else change.fieldname
            nullable = change.changed("nullable")
            if nullable is not None and not nullable.to_value:
                nulls = await count(live_name, "IS NULL")
                if nulls:
                    fill = change.column.default or self.dialect.fallback_default(change.column)
                    notices.append(
                        f"{nulls} row(s) in {diff.table}.{live_name} are NULL and will be set to {fill}"
                    )
            if change.destructive:
                values = await count(live_name, "IS NOT NULL")
                if values:
                    losses.append(
                        f"{values} value(s) in {diff.table}.{live_name} may be truncated or "
                        f"lost by the type change"
                    )

        for change in diff.removed_columns:
            values = await count(change.fieldname, "IS NOT NULL")
            if values:
                losses.append(
                    f"{values} value(s) in {diff.table}.{change.fieldname} will be lost "
                    f"when the column is dropped"
                )
        return notices, losses

    async def rollback_migration(self, migration_id: str) -> MigrationResult:
        """Undo an applied migration with its recorded rollback SQL.

        Raises:
            NotFoundError: If no migration has this id
            MigrationFailedError: If the migration is not in applied state
        """
        async with self._lock:
            await self._ensure_history()
        migration = await self.history.get_by_id(migration_id)
        if migration is None:
            raise NotFoundError(
                f"Migration '{migration_id}' not found", kind="migration", key=migration_id
            )
        if migration.status != MigrationStatus.APPLIED:
            raise MigrationFailedError(
                f"Migration {migration_id} is {migration.status.value if migration.status else 'unknown'}; "
                f"only applied migrations can be rolled back",
                doctype=migration.doctype,
            )

        result = MigrationResult(
            doctype=migration.doctype,
            state=MigrationState.EXECUTING,
            sql=list(migration.rollback_sql),
            migration=migration,
        )
        latest = await self.history.get_latest(migration.doctype)
        if latest is not None and latest.id != migration.id:
            result.warnings.append(
                f"Migration v{migration.version} is not the latest for {migration.doctype} "
                f"(latest is v{latest.version})"
            )

        started = time.perf_counter()
        async with self._lock:
            tx: Optional[Transaction] = None
            try:
                tx = await self.db.begin()
                for statement in migration.rollback_sql:
                    executed = await self.db.execute(statement)
                    result.affected_rows += executed.rowcount
                await self.history.update_status(migration.id, MigrationStatus.ROLLED_BACK)
                await self.db.commit(tx)
            except Exception as e:
                await self._abort(tx)
                logger.error(
                    f"Rollback of migration {migration.id} failed: {e}",
                    exc_info=True,
                    extra={"doctype": migration.doctype},
                )
                result.affected_rows = 0
                return result.fail(f"Rollback of migration {migration.id} failed: {e}")

        self.cache.invalidate_meta(migration.doctype)
        migration.status = MigrationStatus.ROLLED_BACK
        result.execution_time_ms = (time.perf_counter() - started) * 1000
        result.success = True
        result.state = MigrationState.ROLLED_BACK
        logger.warning(
            f"Rolled back migration v{migration.version} for {migration.doctype}",
            extra={"doctype": migration.doctype, "migration_id": migration.id},
        )
        return result

    async def migration_status(self, doctype: Optional[str] = None) -> List[Dict[str, Any]]:
        """Sync status of one or all registered DocTypes.

        Raises:
            NotFoundError: If a named DocType is not registered
        """
        async with self._lock:
            await self._ensure_history()
        if doctype is not None:
            names = [doctype]
        else:
            names = [d.name for d in self.cache.registry.get_all() if not d.is_virtual]

        statuses = []
        for name in names:
            meta, diff = await self.plan(name)
            latest = await self.history.get_latest(name)
            statuses.append(
                {
                    "doctype": name,
                    "table": meta.table_name,
                    "table_exists": diff.table_exists,
                    "in_sync": diff.is_empty,
                    "destructive": diff.destructive,
                    "pending_sql": self.generator.forward(diff) if not diff.is_empty else [],
                    "summary": diff.summary(),
                    "latest_migration": (
                        {
                            "id": latest.id,
                            "version": latest.version,
                            "status": latest.status.value if latest.status else None,
                            "timestamp": latest.timestamp,
                        }
                        if latest
                        else None
                    ),
                }
            )
        return statuses

    def options(self, **overrides: Any) -> MigrationOptions:
        """Workflow defaults with some fields replaced."""
        return MigrationOptions(**{**asdict(self.defaults), **overrides})
