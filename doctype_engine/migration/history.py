"""
Migration history store.

Every live migration leaves one record in a history table in the same
database as the DocType tables. Applied records are written inside the
migration transaction, so a record exists iff the schema change committed.
Failed runs are recorded afterwards in a separate write.

Table schema (default name tabMigrationHistory):
    - id TEXT PRIMARY KEY
    - doctype TEXT
    - version INTEGER (per-doctype, monotonically increasing)
    - timestamp INTEGER (Unix ms)
    - sql TEXT (JSON array)
    - rollback_sql TEXT (JSON array)
    - status TEXT (applied | failed | rolled_back)
    - applied_by TEXT
    - execution_time REAL (ms)
    - affected_rows INTEGER
    - destructive INTEGER
    - error TEXT
    - metadata TEXT (JSON: description, requires_backup, diff, fingerprint)

How to change safely:
    - Add new columns with defaults for backward compatibility
    - Keep sql/rollback_sql as JSON arrays; rollback replays them verbatim
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..db.base import Database, quote_identifier
from ..errors import NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_TABLE = "tabMigrationHistory"


class MigrationStatus(str, Enum):
    """Lifecycle status of a recorded migration."""

    APPLIED = "applied"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


@dataclass
class Migration:
    """One executable, auditable application of a schema diff.

    Attributes:
        id: Unique migration ID
        doctype: DocType the migration belongs to
        version: Per-doctype sequence number
        timestamp: Creation time (Unix ms)
        description: Human-readable summary
        sql: Ordered forward statements
        rollback_sql: Ordered statements undoing the forward ones
        destructive: Whether the diff could lose data
        requires_backup: Whether a backup is recommended before applying
        diff: Serialized SchemaDiff
        fingerprint: Registry fingerprint of the base DocType at generation time
        status: Lifecycle status once recorded
        applied_by: Actor that ran the migration
        execution_time: Execution time in milliseconds
        affected_rows: Rows touched by the statements
        error: Failure message for failed runs
    """

    id: str
    doctype: str
    version: int
    timestamp: int
    description: str = ""
    sql: List[str] = field(default_factory=list)
    rollback_sql: List[str] = field(default_factory=list)
    destructive: bool = False
    requires_backup: bool = False
    diff: Dict[str, Any] = field(default_factory=dict)
    fingerprint: str = ""
    status: Optional[MigrationStatus] = None
    applied_by: str = "system"
    execution_time: float = 0.0
    affected_rows: int = 0
    error: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.status == MigrationStatus.APPLIED

    @classmethod
    def new(
        cls,
        doctype: str,
        version: int,
        description: str = "",
        **kwargs: Any,
    ) -> Migration:
        return cls(
            id=str(uuid.uuid4()),
            doctype=doctype,
            version=version,
            timestamp=int(time.time() * 1000),
            description=description,
            **kwargs,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "doctype": self.doctype,
            "version": self.version,
            "timestamp": self.timestamp,
            "description": self.description,
            "sql": list(self.sql),
            "rollback_sql": list(self.rollback_sql),
            "applied": self.applied,
            "destructive": self.destructive,
            "requires_backup": self.requires_backup,
            "status": self.status.value if self.status else None,
            "applied_by": self.applied_by,
            "execution_time": self.execution_time,
            "affected_rows": self.affected_rows,
            "error": self.error,
            "fingerprint": self.fingerprint,
            "diff": self.diff,
        }


@dataclass(frozen=True)
class HistoryStats:
    """Aggregate counts over recorded migrations."""

    total: int = 0
    applied: int = 0
    failed: int = 0
    rolled_back: int = 0
    average_execution_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "applied": self.applied,
            "failed": self.failed,
            "rolled_back": self.rolled_back,
            "average_execution_time": self.average_execution_time,
        }


class MigrationHistory:
    """Persists Migration records through a Database.

    Example:
        >>> history = MigrationHistory(db)
        >>> await history.initialize()
        >>> latest = await history.get_latest("User")
    """

    def __init__(self, db: Database, table: str = DEFAULT_HISTORY_TABLE) -> None:
        self.db = db
        self.table = table
        self._q = quote_identifier(table)

    async def initialize(self) -> None:
        """Create the history table and its indexes if absent."""
        await self.db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self._q} (
                id TEXT PRIMARY KEY,
                doctype TEXT NOT NULL,
                version INTEGER NOT NULL,
                timestamp INTEGER NOT NULL,
                sql TEXT NOT NULL,
                rollback_sql TEXT NOT NULL,
                status TEXT NOT NULL,
                applied_by TEXT,
                execution_time REAL DEFAULT 0,
                affected_rows INTEGER DEFAULT 0,
                destructive INTEGER DEFAULT 0,
                error TEXT,
                metadata TEXT
            )
            """
        )
        for column in ("doctype", "status", "timestamp"):
            name = quote_identifier(f"{self.table}_{column}_idx")
            await self.db.execute(
                f"CREATE INDEX IF NOT EXISTS {name} ON {self._q} ({quote_identifier(column)})"
            )
        logger.debug(f"Migration history table {self.table} ready")

    async def next_version(self, doctype: str) -> int:
        """Version the next migration of a DocType will get.

        Read outside the migration transaction: callers must serialize runs
        per database. MigrationWorkflow holds its lock from the schema
        comparison through this read and the insert. Two processes migrating
        the same DocType against one database can compute the same version.
        """
        rows = await self.db.query(
            f"SELECT MAX(version) AS version FROM {self._q} WHERE doctype = ?", (doctype,)
        )
        current = rows[0]["version"] if rows else None
        return (current or 0) + 1

    async def record(self, migration: Migration) -> None:
        """Insert a migration record.

        A record without a status is written as applied.
        """
        status = migration.status or MigrationStatus.APPLIED
        metadata = {
            "description": migration.description,
            "requires_backup": migration.requires_backup,
            "diff": migration.diff,
            "fingerprint": migration.fingerprint,
        }
        await self.db.execute(
            f"""
            INSERT INTO {self._q} (
                id, doctype, version, timestamp, sql, rollback_sql, status,
                applied_by, execution_time, affected_rows, destructive, error, metadata
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                migration.id,
                migration.doctype,
                migration.version,
                migration.timestamp,
                json.dumps(migration.sql),
                json.dumps(migration.rollback_sql),
                status.value,
                migration.applied_by,
                migration.execution_time,
                migration.affected_rows,
                1 if migration.destructive else 0,
                migration.error,
                json.dumps(metadata, default=str),
            ),
        )
        migration.status = status
        logger.debug(
            f"Recorded migration {migration.id} for {migration.doctype} ({status.value})",
            extra={"migration_id": migration.id, "doctype": migration.doctype},
        )

    async def update_status(
        self, migration_id: str, status: MigrationStatus, error: Optional[str] = None
    ) -> None:
        """Change the status of a recorded migration.

        Raises:
            NotFoundError: If no record has this id
        """
        result = await self.db.execute(
            f"UPDATE {self._q} SET status = ?, error = COALESCE(?, error) WHERE id = ?",
            (status.value, error, migration_id),
        )
        if result.rowcount == 0:
            raise NotFoundError(
                f"Migration '{migration_id}' not found", kind="migration", key=migration_id
            )

    async def get_by_id(self, migration_id: str) -> Optional[Migration]:
        rows = await self.db.query(f"SELECT * FROM {self._q} WHERE id = ?", (migration_id,))
        return self._from_row(rows[0]) if rows else None

    async def get_latest(self, doctype: str) -> Optional[Migration]:
        rows = await self.db.query(
            f"SELECT * FROM {self._q} WHERE doctype = ? ORDER BY version DESC LIMIT 1",
            (doctype,),
        )
        return self._from_row(rows[0]) if rows else None

    async def get_history(
        self, doctype: Optional[str] = None, limit: Optional[int] = None
    ) -> List[Migration]:
        """Records newest first, optionally for one DocType."""
        sql = f"SELECT * FROM {self._q}"
        params: List[Any] = []
        if doctype is not None:
            sql += " WHERE doctype = ?"
            params.append(doctype)
        sql += " ORDER BY timestamp DESC, version DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = await self.db.query(sql, params)
        return [self._from_row(row) for row in rows]

    async def get_stats(self, doctype: Optional[str] = None) -> HistoryStats:
        sql = (
            f"SELECT status, COUNT(*) AS n, AVG(execution_time) AS avg_time "
            f"FROM {self._q}"
        )
        params: List[Any] = []
        if doctype is not None:
            sql += " WHERE doctype = ?"
            params.append(doctype)
        sql += " GROUP BY status"
        rows = await self.db.query(sql, params)

        counts = {row["status"]: row["n"] for row in rows}
        total = sum(counts.values())
        weighted = sum((row["avg_time"] or 0.0) * row["n"] for row in rows)
        return HistoryStats(
            total=total,
            applied=counts.get(MigrationStatus.APPLIED.value, 0),
            failed=counts.get(MigrationStatus.FAILED.value, 0),
            rolled_back=counts.get(MigrationStatus.ROLLED_BACK.value, 0),
            average_execution_time=weighted / total if total else 0.0,
        )

    async def clear(self, doctype: Optional[str] = None) -> int:
        """Delete records, optionally for one DocType. Returns the count."""
        if doctype is None:
            result = await self.db.execute(f"DELETE FROM {self._q}")
        else:
            result = await self.db.execute(f"DELETE FROM {self._q} WHERE doctype = ?", (doctype,))
        logger.info(f"Cleared {result.rowcount} migration record(s)", extra={"doctype": doctype})
        return result.rowcount

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> Migration:
        metadata = json.loads(row["metadata"]) if row.get("metadata") else {}
        return Migration(
            id=row["id"],
            doctype=row["doctype"],
            version=row["version"],
            timestamp=row["timestamp"],
            description=metadata.get("description", ""),
            sql=json.loads(row["sql"]),
            rollback_sql=json.loads(row["rollback_sql"]),
            destructive=bool(row["destructive"]),
            requires_backup=bool(metadata.get("requires_backup", False)),
            diff=metadata.get("diff") or {},
            fingerprint=metadata.get("fingerprint", ""),
            status=MigrationStatus(row["status"]),
            applied_by=row.get("applied_by") or "system",
            execution_time=row.get("execution_time") or 0.0,
            affected_rows=row.get("affected_rows") or 0,
            error=row.get("error"),
        )
