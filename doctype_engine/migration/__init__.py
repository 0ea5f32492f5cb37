"""
Migration module: schema comparison, SQL generation and execution.

Pipeline:
    Meta + live table --SchemaComparator--> SchemaDiff
    SchemaDiff --SqlGenerator--> forward + rollback SQL
    MigrationWorkflow runs the SQL in one transaction and records a
    Migration in the MigrationHistory table

Invariants:
    - Only additions (and annotated renames) are non-destructive
    - System columns, primary keys and implicit indexes are never dropped
"""

from .comparator import SchemaComparator, unique_index_name
from .dialect import (
    DIALECTS,
    ColumnSpec,
    Dialect,
    ParsedType,
    PostgresDialect,
    SqliteDialect,
    TypeCategory,
    get_dialect,
    parse_type,
)
from .diff import (
    AttributeChange,
    ChangeKind,
    ColumnChange,
    ColumnRename,
    IndexChange,
    SchemaChange,
    SchemaDiff,
)
from .generator import GeneratedSql, SqlGenerator
from .history import (
    DEFAULT_HISTORY_TABLE,
    HistoryStats,
    Migration,
    MigrationHistory,
    MigrationStatus,
)
from .workflow import (
    MigrationOptions,
    MigrationResult,
    MigrationState,
    MigrationWorkflow,
)

__all__ = [
    # Dialects
    "Dialect",
    "SqliteDialect",
    "PostgresDialect",
    "DIALECTS",
    "get_dialect",
    "ColumnSpec",
    "ParsedType",
    "TypeCategory",
    "parse_type",
    # Diff
    "SchemaComparator",
    "SchemaDiff",
    "SchemaChange",
    "ChangeKind",
    "AttributeChange",
    "ColumnChange",
    "ColumnRename",
    "IndexChange",
    "unique_index_name",
    # Generation
    "SqlGenerator",
    "GeneratedSql",
    # History
    "Migration",
    "MigrationHistory",
    "MigrationStatus",
    "HistoryStats",
    "DEFAULT_HISTORY_TABLE",
    # Workflow
    "MigrationWorkflow",
    "MigrationOptions",
    "MigrationResult",
    "MigrationState",
]
