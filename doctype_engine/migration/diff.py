"""
Schema diff model.

A SchemaDiff is the structured difference between the declared (effective)
metadata of a DocType and the live table. Each entry carries what the SQL
generator needs to emit statements and what an operator needs to judge the
risk of applying them.

Invariants:
    - A diff with only added columns/indexes (and annotated renames) is
      non-destructive
    - Any removed column, removed index or destructive modification makes
      the whole diff destructive
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional

from ..db.base import ColumnInfo, IndexInfo
from ..schema.types import IndexDef
from .dialect import ColumnSpec


class ChangeKind(Enum):
    """Kinds of schema change."""

    TABLE_CREATED = auto()
    COLUMN_ADDED = auto()
    COLUMN_RENAMED = auto()
    COLUMN_MODIFIED = auto()
    COLUMN_REMOVED = auto()
    INDEX_ADDED = auto()
    INDEX_REMOVED = auto()


@dataclass(frozen=True)
class AttributeChange:
    """One changed column attribute with its live and declared values."""

    attribute: str
    from_value: Any
    to_value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"attribute": self.attribute, "from": self.from_value, "to": self.to_value}


@dataclass(frozen=True)
class ColumnChange:
    """An added, modified or removed column.

    Attributes:
        fieldname: Column name
        column: Target shape (for removed columns: the live shape)
        previous: Live descriptor, for modified and removed columns
        changes: Changed attributes, for modified columns
        destructive: Whether applying the change can lose data
        requires_data_migration: Whether existing values must be converted
            or back-filled (not a no-op cast)
    """

    fieldname: str
    column: ColumnSpec
    previous: Optional[ColumnInfo] = None
    changes: tuple[AttributeChange, ...] = ()
    destructive: bool = False
    requires_data_migration: bool = False

    def changed(self, attribute: str) -> Optional[AttributeChange]:
        for change in self.changes:
            if change.attribute == attribute:
                return change
        return None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "fieldname": self.fieldname,
            "column": self.column.to_dict(),
            "destructive": self.destructive,
            "requires_data_migration": self.requires_data_migration,
        }
        if self.changes:
            result["changes"] = [c.to_dict() for c in self.changes]
        return result


@dataclass(frozen=True)
class ColumnRename:
    """A column rename declared through a field's old_fieldname."""

    old_name: str
    new_name: str
    column: ColumnSpec

    def to_dict(self) -> Dict[str, Any]:
        return {"from": self.old_name, "to": self.new_name}


@dataclass(frozen=True)
class IndexChange:
    """An added or removed index.

    Attributes:
        index: Declared definition (added) or live definition (removed)
        previous: Live index replaced or dropped by this change
        replaces: An added index whose name exists live with another shape
        destructive: Whether the change drops an index
    """

    index: IndexDef
    previous: Optional[IndexInfo] = None
    replaces: bool = False
    destructive: bool = False

    @property
    def name(self) -> str:
        return self.index.name

    def to_dict(self) -> Dict[str, Any]:
        result = self.index.to_dict()
        result["destructive"] = self.destructive
        if self.replaces:
            result["replaces"] = True
        return result


@dataclass(frozen=True)
class SchemaChange:
    """Flat, printable view of one diff entry."""

    kind: ChangeKind
    path: str
    message: str
    destructive: bool = False

    def __str__(self) -> str:
        status = "DESTRUCTIVE" if self.destructive else "OK"
        return f"[{status}] {self.kind.name}: {self.path} - {self.message}"


@dataclass
class SchemaDiff:
    """Difference between declared metadata and the live table.

    Attributes:
        doctype: DocType name
        table: Physical table name
        table_exists: False on the fresh-table path
        live_columns: Introspected columns, kept for rebuild and rollback
        live_indexes: Introspected indexes, kept for rebuild and rollback
    """

    doctype: str
    table: str
    table_exists: bool = True
    added_columns: List[ColumnChange] = field(default_factory=list)
    removed_columns: List[ColumnChange] = field(default_factory=list)
    modified_columns: List[ColumnChange] = field(default_factory=list)
    renamed_columns: List[ColumnRename] = field(default_factory=list)
    added_indexes: List[IndexChange] = field(default_factory=list)
    removed_indexes: List[IndexChange] = field(default_factory=list)
    live_columns: List[ColumnInfo] = field(default_factory=list)
    live_indexes: List[IndexInfo] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.table_exists and not (
            self.added_columns
            or self.removed_columns
            or self.modified_columns
            or self.renamed_columns
            or self.added_indexes
            or self.removed_indexes
        )

    @property
    def destructive(self) -> bool:
        return bool(
            self.removed_columns
            or self.removed_indexes
            or any(c.destructive for c in self.modified_columns)
        )

    @property
    def requires_data_migration(self) -> bool:
        return any(c.requires_data_migration for c in self.modified_columns)

    def changes(self) -> List[SchemaChange]:
        """All entries as SchemaChange records, in generation order."""
        result = []
        if not self.table_exists:
            result.append(
                SchemaChange(ChangeKind.TABLE_CREATED, self.table, "Table will be created")
            )
        for r in self.renamed_columns:
            result.append(
                SchemaChange(
                    ChangeKind.COLUMN_RENAMED,
                    f"{self.table}.{r.old_name}",
                    f"Column renamed to '{r.new_name}'",
                )
            )
        for c in self.added_columns:
            result.append(
                SchemaChange(ChangeKind.COLUMN_ADDED, f"{self.table}.{c.fieldname}", "Column added")
            )
        for c in self.modified_columns:
            detail = ", ".join(
                f"{a.attribute}: {a.from_value!r} -> {a.to_value!r}" for a in c.changes
            )
            result.append(
                SchemaChange(
                    ChangeKind.COLUMN_MODIFIED,
                    f"{self.table}.{c.fieldname}",
                    detail,
                    destructive=c.destructive,
                )
            )
        for c in self.removed_columns:
            result.append(
                SchemaChange(
                    ChangeKind.COLUMN_REMOVED,
                    f"{self.table}.{c.fieldname}",
                    "Column and its data will be dropped",
                    destructive=True,
                )
            )
        for i in self.added_indexes:
            message = "Index recreated with new definition" if i.replaces else "Index added"
            result.append(SchemaChange(ChangeKind.INDEX_ADDED, i.name, message))
        for i in self.removed_indexes:
            result.append(
                SchemaChange(ChangeKind.INDEX_REMOVED, i.name, "Index dropped", destructive=True)
            )
        return result

    def summary(self) -> Dict[str, Any]:
        return {
            "doctype": self.doctype,
            "table": self.table,
            "table_exists": self.table_exists,
            "added_columns": len(self.added_columns),
            "removed_columns": len(self.removed_columns),
            "modified_columns": len(self.modified_columns),
            "renamed_columns": len(self.renamed_columns),
            "added_indexes": len(self.added_indexes),
            "removed_indexes": len(self.removed_indexes),
            "destructive": self.destructive,
            "requires_data_migration": self.requires_data_migration,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "doctype": self.doctype,
            "table": self.table,
            "table_exists": self.table_exists,
            "added_columns": [c.to_dict() for c in self.added_columns],
            "removed_columns": [c.to_dict() for c in self.removed_columns],
            "modified_columns": [c.to_dict() for c in self.modified_columns],
            "renamed_columns": [r.to_dict() for r in self.renamed_columns],
            "added_indexes": [i.to_dict() for i in self.added_indexes],
            "removed_indexes": [i.to_dict() for i in self.removed_indexes],
            "destructive": self.destructive,
        }
