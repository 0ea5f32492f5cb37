"""
SQL dialects and field type mapping.

A Dialect maps each column-bearing FieldType to a physical column type and
knows how to render column definitions, literals and type comparisons for
its database.

Type categories (shared by every dialect):
    text       bounded or unbounded text
    integer    integers, booleans stored as integers
    decimal    fixed or floating point numbers
    date, datetime, time
    blob

Invariants:
    - Layout markers and child tables have no mapping
    - Type changes are classified by category, so the same declared change
      is judged destructive the same way on every backend

How to change safely:
    - Every FieldType with has_column must appear in TYPE_MAP of each
      dialect (tests assert this)
    - Changing a mapping changes the declared type of existing columns and
      will produce modifications on the next migration
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..db.base import ColumnInfo, quote_identifier
from ..schema.types import DocField, FieldType

_TYPE_PATTERN = re.compile(r"^\s*([A-Za-z][A-Za-z ]*?)\s*(?:\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\))?\s*$")
_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}")
_TIME_PATTERN = re.compile(r"^\d{2}:\d{2}")


class TypeCategory(Enum):
    """Broad physical type categories."""

    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    BLOB = "blob"
    UNKNOWN = "unknown"


_CATEGORY_BY_BASE: Dict[str, TypeCategory] = {
    "VARCHAR": TypeCategory.TEXT,
    "CHARACTER VARYING": TypeCategory.TEXT,
    "CHAR": TypeCategory.TEXT,
    "CHARACTER": TypeCategory.TEXT,
    "TEXT": TypeCategory.TEXT,
    "CLOB": TypeCategory.TEXT,
    "INTEGER": TypeCategory.INTEGER,
    "INT": TypeCategory.INTEGER,
    "BIGINT": TypeCategory.INTEGER,
    "SMALLINT": TypeCategory.INTEGER,
    "SERIAL": TypeCategory.INTEGER,
    "BIGSERIAL": TypeCategory.INTEGER,
    "TINYINT": TypeCategory.INTEGER,
    "BOOLEAN": TypeCategory.INTEGER,
    "DECIMAL": TypeCategory.DECIMAL,
    "NUMERIC": TypeCategory.DECIMAL,
    "REAL": TypeCategory.DECIMAL,
    "FLOAT": TypeCategory.DECIMAL,
    "DOUBLE": TypeCategory.DECIMAL,
    "DOUBLE PRECISION": TypeCategory.DECIMAL,
    "DATE": TypeCategory.DATE,
    "DATETIME": TypeCategory.DATETIME,
    "TIMESTAMP": TypeCategory.DATETIME,
    "TIME": TypeCategory.TIME,
    "BLOB": TypeCategory.BLOB,
    "BYTEA": TypeCategory.BLOB,
}

# Synonyms compared as the same base type
_CANONICAL_BASE = {
    "INT": "INTEGER",
    "CHARACTER VARYING": "VARCHAR",
    "NUMERIC": "DECIMAL",
    "TIMESTAMP": "DATETIME",
    "DOUBLE PRECISION": "DOUBLE",
}

# Category changes that never lose information
_SAFE_CONVERSIONS = {
    (TypeCategory.INTEGER, TypeCategory.DECIMAL),
    (TypeCategory.INTEGER, TypeCategory.TEXT),
    (TypeCategory.DECIMAL, TypeCategory.TEXT),
    (TypeCategory.DATE, TypeCategory.TEXT),
    (TypeCategory.DATETIME, TypeCategory.TEXT),
    (TypeCategory.TIME, TypeCategory.TEXT),
    (TypeCategory.DATE, TypeCategory.DATETIME),
}

_FALLBACK_DEFAULTS = {
    TypeCategory.INTEGER: "0",
    TypeCategory.DECIMAL: "0",
    TypeCategory.DATE: "'1970-01-01'",
    TypeCategory.DATETIME: "'1970-01-01 00:00:00'",
    TypeCategory.TIME: "'00:00:00'",
}


@dataclass(frozen=True)
class ParsedType:
    """A SQL type split into its parts.

    For VARCHAR(255): base="VARCHAR", length=255.
    For DECIMAL(21, 9): base="DECIMAL", digits=21, scale=9.
    """

    base: str
    length: Optional[int] = None
    digits: Optional[int] = None
    scale: Optional[int] = None

    @property
    def canonical_base(self) -> str:
        return _CANONICAL_BASE.get(self.base, self.base)

    @property
    def category(self) -> TypeCategory:
        return _CATEGORY_BY_BASE.get(self.base, TypeCategory.UNKNOWN)


def parse_type(type_sql: str) -> ParsedType:
    """Parse a SQL type string such as "VARCHAR(140)" or "decimal(21,2)"."""
    match = _TYPE_PATTERN.match(type_sql or "")
    if not match:
        return ParsedType(base=(type_sql or "").strip().upper())
    base = " ".join(match.group(1).upper().split())
    first = int(match.group(2)) if match.group(2) else None
    second = int(match.group(3)) if match.group(3) else None
    category = _CATEGORY_BY_BASE.get(base, TypeCategory.UNKNOWN)
    if category == TypeCategory.DECIMAL:
        return ParsedType(base=base, digits=first, scale=second)
    return ParsedType(base=base, length=first)


def normalize_default(value: Optional[str]) -> Optional[str]:
    """Normalize a default expression for comparison ('x' -> x, NULL -> None)."""
    if value is None:
        return None
    text = str(value).strip()
    if text.upper() == "NULL" or text == "":
        return None
    if len(text) >= 2 and text[0] == "'" and text[-1] == "'":
        return text[1:-1].replace("''", "'")
    if text.startswith("(") and text.endswith(")"):
        return normalize_default(text[1:-1])
    return text


@dataclass(frozen=True)
class ColumnSpec:
    """Target shape of a physical column.

    Attributes:
        name: Column name
        type: Parsed SQL type
        nullable: Whether NULL is allowed
        unique: Inline UNIQUE constraint (declared uniqueness is normally
            realized as a separate unique index)
        default: Default as a SQL literal, or None
        primary_key: Column is the single-column primary key
        fieldtype: Source field type, when derived from a DocField
    """

    name: str
    type: ParsedType
    nullable: bool = True
    unique: bool = False
    default: Optional[str] = None
    primary_key: bool = False
    fieldtype: Optional[str] = None

    @property
    def category(self) -> TypeCategory:
        return self.type.category

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": render_type(self.type),
            "nullable": self.nullable,
            "unique": self.unique,
            "default": self.default,
            "primary_key": self.primary_key,
        }


def render_type(parsed: ParsedType) -> str:
    """Render a ParsedType back to SQL."""
    if parsed.digits is not None and parsed.scale is not None:
        return f"{parsed.base}({parsed.digits}, {parsed.scale})"
    if parsed.digits is not None:
        return f"{parsed.base}({parsed.digits})"
    if parsed.length is not None:
        return f"{parsed.base}({parsed.length})"
    return parsed.base


# mapping entry: (base type, default length/digits, default scale)
TypeMapping = Tuple[str, Optional[int], Optional[int]]


class Dialect:
    """Base SQL dialect.

    Subclasses provide TYPE_MAP and SYSTEM_COLUMNS and declare which ALTER
    operations the database supports natively.
    """

    name = "generic"
    supports_alter_column = False
    supports_drop_column = False
    supports_rename_column = True
    TYPE_MAP: Dict[FieldType, TypeMapping] = {}
    SYSTEM_COLUMNS: Tuple[Tuple[str, str, bool, Optional[str], bool], ...] = ()

    def quote(self, name: str) -> str:
        return quote_identifier(name)

    def column_spec(self, f: DocField) -> ColumnSpec:
        """Map a DocField to its target column shape.

        Raises:
            ValueError: If the field has no physical column
        """
        kind = f.field_type
        if kind is None or kind not in self.TYPE_MAP:
            raise ValueError(f"Field '{f.fieldname}' ({f.fieldtype}) has no column mapping")
        base, default_size, default_scale = self.TYPE_MAP[kind]
        category = _CATEGORY_BY_BASE.get(base, TypeCategory.UNKNOWN)

        if category == TypeCategory.DECIMAL:
            scale = f.precision if f.precision is not None else default_scale
            parsed = ParsedType(base=base, digits=default_size, scale=scale)
        elif base == "VARCHAR":
            parsed = ParsedType(base=base, length=f.length or default_size)
        else:
            parsed = ParsedType(base=base)

        return ColumnSpec(
            name=f.fieldname,
            type=parsed,
            nullable=not f.required,
            default=self.literal(f.default, category),
            fieldtype=f.fieldtype,
        )

    def system_column_specs(self) -> List[ColumnSpec]:
        """Columns created on every fresh DocType table."""
        return [
            ColumnSpec(
                name=name,
                type=parse_type(type_sql),
                nullable=not not_null,
                default=default,
                primary_key=primary_key,
            )
            for name, type_sql, not_null, default, primary_key in self.SYSTEM_COLUMNS
        ]

    def spec_from_live(self, column: ColumnInfo) -> ColumnSpec:
        """Column shape that reproduces a live column."""
        return ColumnSpec(
            name=column.name,
            type=parse_type(column.type),
            nullable=column.nullable,
            unique=column.unique,
            default=column.default_value,
            primary_key=column.primary_key,
        )

    def literal(self, value: Any, category: TypeCategory) -> Optional[str]:
        """Render a default value as a SQL literal, or None if it has none.

        Dynamic defaults such as "Today" or "now" are not representable
        and yield None.
        """
        if value is None or value == "":
            return None
        if isinstance(value, bool):
            return "1" if value else "0"
        if category in (TypeCategory.INTEGER, TypeCategory.DECIMAL):
            try:
                number = float(value)
            except (TypeError, ValueError):
                return None
            if category == TypeCategory.INTEGER:
                return str(int(number))
            return str(value).strip()
        text = str(value)
        if category == TypeCategory.DATE or category == TypeCategory.DATETIME:
            if not _DATE_PATTERN.match(text):
                return None
        elif category == TypeCategory.TIME and not _TIME_PATTERN.match(text):
            return None
        return "'" + text.replace("'", "''") + "'"

    def fallback_default(self, spec: ColumnSpec) -> str:
        """Type-neutral default used to back-fill NOT NULL columns."""
        return _FALLBACK_DEFAULTS.get(spec.category, "''")

    def column_definition(self, spec: ColumnSpec, for_add: bool = False) -> str:
        """Render a column definition.

        Args:
            spec: Column shape
            for_add: Render for ALTER TABLE ADD COLUMN (NOT NULL columns
                always get a default so existing rows can be filled)
        """
        parts = [self.quote(spec.name), render_type(spec.type)]
        if spec.primary_key:
            parts.append("PRIMARY KEY")
        if not spec.nullable and not spec.primary_key:
            parts.append("NOT NULL")
        if spec.unique and not spec.primary_key and not for_add:
            parts.append("UNIQUE")
        default = spec.default
        if default is None and for_add and not spec.nullable:
            default = self.fallback_default(spec)
        if default is not None:
            parts.append(f"DEFAULT {default}")
        return " ".join(parts)

    def cast_expression(self, column: str, spec: ColumnSpec) -> str:
        return f"CAST({self.quote(column)} AS {render_type(spec.type)})"

    def types_equal(self, live: ParsedType, declared: ParsedType) -> bool:
        return (
            live.canonical_base == declared.canonical_base
            and live.length == declared.length
            and live.digits == declared.digits
            and live.scale == declared.scale
        )

    def classify_type_change(
        self, live: ParsedType, declared: ParsedType
    ) -> Tuple[bool, bool]:
        """Classify a type change.

        Returns:
            (requires_data_migration, destructive)
        """
        src, dst = live.category, declared.category
        if src != dst:
            return True, (src, dst) not in _SAFE_CONVERSIONS

        if src == TypeCategory.TEXT:
            # unbounded -> bounded, or a smaller bound, can truncate values
            if live.length is None and declared.length is not None:
                return True, True
            if live.length is not None and declared.length is not None:
                if declared.length < live.length:
                    return True, True
            return False, False

        if src == TypeCategory.DECIMAL:
            live_scale = live.scale if live.scale is not None else 0
            declared_scale = declared.scale if declared.scale is not None else 0
            if declared_scale < live_scale:
                return True, True
            if live.digits is not None and declared.digits is not None:
                if declared.digits < live.digits:
                    return True, True
            return False, False

        if live.canonical_base != declared.canonical_base:
            return True, False
        return False, False


class SqliteDialect(Dialect):
    """SQLite: no native ALTER COLUMN; drop/modify go through a table rebuild."""

    name = "sqlite"
    supports_alter_column = False
    supports_drop_column = False

    TYPE_MAP: Dict[FieldType, TypeMapping] = {
        FieldType.DATA: ("VARCHAR", 255, None),
        FieldType.SELECT: ("VARCHAR", 255, None),
        FieldType.LINK: ("VARCHAR", 255, None),
        FieldType.DYNAMIC_LINK: ("VARCHAR", 255, None),
        FieldType.PASSWORD: ("VARCHAR", 255, None),
        FieldType.READ_ONLY: ("VARCHAR", 255, None),
        FieldType.COLOR: ("VARCHAR", 255, None),
        FieldType.ATTACH: ("VARCHAR", 255, None),
        FieldType.ATTACH_IMAGE: ("VARCHAR", 255, None),
        FieldType.DURATION: ("VARCHAR", 255, None),
        FieldType.SMALL_TEXT: ("TEXT", None, None),
        FieldType.LONG_TEXT: ("TEXT", None, None),
        FieldType.TEXT_EDITOR: ("TEXT", None, None),
        FieldType.CODE: ("TEXT", None, None),
        FieldType.MARKDOWN_EDITOR: ("TEXT", None, None),
        FieldType.HTML_EDITOR: ("TEXT", None, None),
        FieldType.GEOLOCATION: ("TEXT", None, None),
        FieldType.SIGNATURE: ("TEXT", None, None),
        FieldType.INT: ("INTEGER", None, None),
        FieldType.CHECK: ("INTEGER", None, None),
        FieldType.FLOAT: ("DECIMAL", 21, 9),
        FieldType.CURRENCY: ("DECIMAL", 21, 2),
        FieldType.PERCENT: ("DECIMAL", 21, 2),
        FieldType.RATING: ("DECIMAL", 3, 2),
        FieldType.DATE: ("DATE", None, None),
        FieldType.DATETIME: ("DATETIME", None, None),
        FieldType.TIME: ("TIME", None, None),
    }

    # (name, type, not null, default, primary key)
    SYSTEM_COLUMNS = (
        ("id", "INTEGER", True, None, True),
        ("creation", "DATETIME", False, None, False),
        ("modified", "DATETIME", False, None, False),
        ("modified_by", "VARCHAR(255)", False, None, False),
        ("owner", "VARCHAR(255)", False, None, False),
        ("docstatus", "INTEGER", True, "0", False),
        ("idx", "INTEGER", True, "0", False),
        ("parent", "VARCHAR(255)", False, None, False),
        ("parentfield", "VARCHAR(255)", False, None, False),
        ("parenttype", "VARCHAR(255)", False, None, False),
    )


class PostgresDialect(Dialect):
    """PostgreSQL: native ALTER COLUMN and DROP COLUMN."""

    name = "postgres"
    supports_alter_column = True
    supports_drop_column = True

    TYPE_MAP: Dict[FieldType, TypeMapping] = {
        **SqliteDialect.TYPE_MAP,
        FieldType.CHECK: ("SMALLINT", None, None),
        FieldType.FLOAT: ("NUMERIC", 21, 9),
        FieldType.CURRENCY: ("NUMERIC", 21, 2),
        FieldType.PERCENT: ("NUMERIC", 21, 2),
        FieldType.RATING: ("NUMERIC", 3, 2),
        FieldType.DATETIME: ("TIMESTAMP", None, None),
    }

    SYSTEM_COLUMNS = (
        ("id", "BIGSERIAL", True, None, True),
        ("creation", "TIMESTAMP", False, None, False),
        ("modified", "TIMESTAMP", False, None, False),
        ("modified_by", "VARCHAR(255)", False, None, False),
        ("owner", "VARCHAR(255)", False, None, False),
        ("docstatus", "SMALLINT", True, "0", False),
        ("idx", "INTEGER", True, "0", False),
        ("parent", "VARCHAR(255)", False, None, False),
        ("parentfield", "VARCHAR(255)", False, None, False),
        ("parenttype", "VARCHAR(255)", False, None, False),
    )

    def cast_expression(self, column: str, spec: ColumnSpec) -> str:
        return f"{self.quote(column)}::{render_type(spec.type)}"


DIALECTS: Dict[str, type[Dialect]] = {
    "sqlite": SqliteDialect,
    "postgres": PostgresDialect,
}


def get_dialect(name: str) -> Dialect:
    """Instantiate a dialect by name.

    Raises:
        ValueError: If the dialect is unknown
    """
    try:
        return DIALECTS[name]()
    except KeyError:
        raise ValueError(f"Unknown SQL dialect '{name}'. Valid: {sorted(DIALECTS)}") from None


def with_name(spec: ColumnSpec, name: str) -> ColumnSpec:
    """Copy of a column spec under another name."""
    return replace(spec, name=name)
