"""
Database capability interface consumed by the comparator and the workflow.

This module defines the Database protocol that storage backends implement,
along with the introspection and transaction types they return.

Invariants:
    - Column and index descriptors are listed in physical order
    - At most one transaction is open per Database instance
    - Implementations wrap driver errors in errors.DatabaseError

How to change safely:
    - Protocol changes require updating all implementations
    - Add new descriptor attributes with defaults
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable


def quote_identifier(name: str) -> str:
    """Quote a table, column or index name for SQL."""
    return '"' + name.replace('"', '""') + '"'


@dataclass(frozen=True)
class ColumnInfo:
    """Live column descriptor.

    Attributes:
        name: Column name
        type: Declared SQL type as reported by the database (e.g. "VARCHAR(255)")
        nullable: Whether NULL is allowed
        unique: Whether a single-column UNIQUE constraint covers the column
        default_value: Default expression as SQL text, or None
        primary_key: Whether the column is (part of) the primary key
    """

    name: str
    type: str
    nullable: bool = True
    unique: bool = False
    default_value: Optional[str] = None
    primary_key: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "nullable": self.nullable,
            "unique": self.unique,
            "default_value": self.default_value,
            "primary_key": self.primary_key,
        }


@dataclass(frozen=True)
class IndexInfo:
    """Live index descriptor.

    Attributes:
        name: Index name
        columns: Ordered column names
        unique: Whether the index enforces uniqueness
        partial: Whether the index has a WHERE predicate
        origin: "c" for CREATE INDEX, "u" for a UNIQUE constraint,
            "pk" for a primary key
        sql: Creating statement, when the database records one
    """

    name: str
    columns: tuple[str, ...]
    unique: bool = False
    partial: bool = False
    origin: str = "c"
    sql: Optional[str] = None

    @property
    def implicit(self) -> bool:
        """Whether the index exists because of a constraint, not CREATE INDEX."""
        return self.origin != "c" or self.name.startswith("sqlite_autoindex")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "columns": list(self.columns),
            "unique": self.unique,
            "partial": self.partial,
            "origin": self.origin,
        }


@dataclass(frozen=True)
class ExecuteResult:
    """Outcome of a statement sent with Database.execute()."""

    rowcount: int = 0
    lastrowid: Optional[int] = None


@dataclass
class Transaction:
    """Handle for an open transaction."""

    id: str
    started_at: float
    active: bool = True
    statements: List[str] = field(default_factory=list)


@runtime_checkable
class Database(Protocol):
    """Minimal database capability set.

    Example:
        >>> async with SqliteDatabase(":memory:") as db:
        ...     tx = await db.begin()
        ...     await db.execute('ALTER TABLE "tabUser" ADD COLUMN "x" TEXT')
        ...     await db.commit(tx)
    """

    @property
    def dialect_name(self) -> str:
        """Name of the SQL dialect ("sqlite", "postgres")."""
        ...

    async def table_exists(self, table: str) -> bool:
        ...

    async def introspect_columns(self, table: str) -> List[ColumnInfo]:
        ...

    async def introspect_indexes(self, table: str) -> List[IndexInfo]:
        ...

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        ...

    async def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        ...

    async def begin(self) -> Transaction:
        ...

    async def commit(self, tx: Transaction) -> None:
        ...

    async def rollback(self, tx: Transaction) -> None:
        ...
