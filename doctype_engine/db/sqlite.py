"""
SQLite implementation of the Database interface.

One connection is held open for the lifetime of the instance so that a
transaction can span several execute() calls (and so that ":memory:"
databases keep their contents).

Invariants:
    - Connections run in autocommit mode; transactions are explicit
      (BEGIN IMMEDIATE / COMMIT / ROLLBACK)
    - sqlite3 errors never escape; they are wrapped in DatabaseError
    - Schema changes (DDL) are transactional in SQLite and roll back with
      the surrounding transaction

How to change safely:
    - Keep introspection aligned with PRAGMA table_info/index_list output
    - Test with both file and in-memory databases
"""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..errors import DatabaseError
from .base import ColumnInfo, ExecuteResult, IndexInfo, Transaction, quote_identifier

logger = logging.getLogger(__name__)


class SqliteDatabase:
    """Database backed by a single SQLite connection.

    Args:
        path: Database file path, or ":memory:"
        wal_mode: Enable SQLite WAL journal mode (file databases only)
        busy_timeout_ms: SQLite busy timeout

    Example:
        >>> db = SqliteDatabase("/var/lib/doctypes/site.db")
        >>> await db.connect()
        >>> await db.table_exists("tabUser")
        False
    """

    def __init__(
        self,
        path: str = ":memory:",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.path = path
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._conn: Optional[sqlite3.Connection] = None
        self._tx: Optional[Transaction] = None

    @property
    def dialect_name(self) -> str:
        return "sqlite"

    @property
    def in_transaction(self) -> bool:
        return self._tx is not None

    async def connect(self) -> None:
        """Open the connection (idempotent)."""
        if self._conn is not None:
            return
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            self.path,
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        if self.wal_mode and self.path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        self._conn = conn
        logger.debug(f"Connected to SQLite database {self.path}")

    async def close(self) -> None:
        """Close the connection, rolling back an open transaction."""
        if self._conn is None:
            return
        if self._tx is not None:
            logger.warning(f"Closing database with open transaction {self._tx.id}; rolling back")
            self._conn.execute("ROLLBACK")
            self._tx = None
        self._conn.close()
        self._conn = None

    async def __aenter__(self) -> SqliteDatabase:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise DatabaseError(f"Database {self.path} is not connected")
        return self._conn

    def _run(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._connection().execute(sql, tuple(params))
        except sqlite3.Error as e:
            raise DatabaseError(f"{e} (while executing: {sql})", sql=sql) from e

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        """Execute one statement."""
        cursor = self._run(sql, params)
        if self._tx is not None:
            self._tx.statements.append(sql)
        return ExecuteResult(rowcount=max(cursor.rowcount, 0), lastrowid=cursor.lastrowid)

    async def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Execute a query and return rows as dictionaries."""
        cursor = self._run(sql, params)
        return [dict(row) for row in cursor.fetchall()]

    async def table_exists(self, table: str) -> bool:
        rows = await self.query(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
        )
        return bool(rows)

    async def introspect_columns(self, table: str) -> List[ColumnInfo]:
        """Describe the columns of a table (empty if the table is absent)."""
        rows = await self.query(f"PRAGMA table_info({quote_identifier(table)})")
        unique_columns = {
            index.columns[0]
            for index in await self.introspect_indexes(table)
            if index.unique and index.origin == "u" and len(index.columns) == 1
        }
        return [
            ColumnInfo(
                name=row["name"],
                type=row["type"] or "",
                nullable=not row["notnull"] and not row["pk"],
                unique=row["name"] in unique_columns,
                default_value=row["dflt_value"],
                primary_key=bool(row["pk"]),
            )
            for row in sorted(rows, key=lambda r: r["cid"])
        ]

    async def introspect_indexes(self, table: str) -> List[IndexInfo]:
        """Describe the indexes of a table, including implicit ones."""
        index_rows = await self.query(f"PRAGMA index_list({quote_identifier(table)})")
        sql_rows = await self.query(
            "SELECT name, sql FROM sqlite_master WHERE type = 'index' AND tbl_name = ?",
            (table,),
        )
        statements = {row["name"]: row["sql"] for row in sql_rows}

        indexes = []
        for row in index_rows:
            name = row["name"]
            info = await self.query(f"PRAGMA index_info({quote_identifier(name)})")
            columns = tuple(r["name"] for r in sorted(info, key=lambda r: r["seqno"]))
            indexes.append(
                IndexInfo(
                    name=name,
                    columns=columns,
                    unique=bool(row["unique"]),
                    partial=bool(row["partial"]),
                    origin=row["origin"],
                    sql=statements.get(name),
                )
            )
        return sorted(indexes, key=lambda i: i.name)

    async def begin(self) -> Transaction:
        """Open a transaction.

        Raises:
            DatabaseError: If a transaction is already open
        """
        if self._tx is not None:
            raise DatabaseError(f"Transaction {self._tx.id} is already active")
        self._run("BEGIN IMMEDIATE")
        self._tx = Transaction(id=str(uuid.uuid4()), started_at=time.time())
        logger.debug(f"Began transaction {self._tx.id}")
        return self._tx

    def _check_current(self, tx: Transaction) -> None:
        if self._tx is None or self._tx.id != tx.id:
            raise DatabaseError(f"Transaction {tx.id} is not the active transaction")

    async def commit(self, tx: Transaction) -> None:
        self._check_current(tx)
        self._run("COMMIT")
        tx.active = False
        self._tx = None
        logger.debug(f"Committed transaction {tx.id} ({len(tx.statements)} statement(s))")

    async def rollback(self, tx: Transaction) -> None:
        self._check_current(tx)
        try:
            self._run("ROLLBACK")
        finally:
            tx.active = False
            self._tx = None
        logger.debug(f"Rolled back transaction {tx.id}")
