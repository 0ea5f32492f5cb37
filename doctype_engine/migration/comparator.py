"""
Schema comparator.

Diffs the valid columns and indexes of an effective DocType (a Meta)
against the introspected shape of its table.

Algorithm:
    1. Map every column-bearing field to a ColumnSpec with the dialect's
       type table; layout markers and child tables are skipped
    2. Match declared columns to live columns by name; a field whose
       old_fieldname names a live column (and whose own name does not)
       is a rename
    3. Declared-only columns are added, live-only columns removed (except
       system and primary-key columns), matched columns are compared for
       type, nullability, length/precision and explicit default
    4. Declared indexes (plus one unique index per unique field) are
       matched to live explicit indexes by name and shape; implicit indexes
       are never removed

Unannotated renames are reported as remove + add.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Dict, List, Optional, Sequence

from ..db.base import ColumnInfo, Database, IndexInfo
from ..meta.meta import Meta
from ..schema.types import SYSTEM_COLUMNS, DocField, IndexDef
from .dialect import ColumnSpec, Dialect, normalize_default, parse_type, render_type
from .diff import (
    AttributeChange,
    ColumnChange,
    ColumnRename,
    IndexChange,
    SchemaDiff,
)

logger = logging.getLogger(__name__)


def unique_index_name(table: str, fieldname: str) -> str:
    """Name of the index backing a unique field."""
    return f"{table}_{fieldname}_unique"


class SchemaComparator:
    """Computes SchemaDiffs for one SQL dialect.

    Example:
        >>> comparator = SchemaComparator(SqliteDialect())
        >>> diff = await comparator.compare(meta, db)
        >>> [c.fieldname for c in diff.added_columns]
        ['full_name', 'email']
    """

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect

    async def compare(self, meta: Meta, db: Database) -> SchemaDiff:
        """Introspect the live table and diff it against meta."""
        table = meta.table_name
        if not await db.table_exists(table):
            return self.diff(meta, [], [], table_exists=False)
        columns = await db.introspect_columns(table)
        indexes = await db.introspect_indexes(table)
        return self.diff(meta, columns, indexes)

    def declared_columns(self, meta: Meta) -> List[ColumnSpec]:
        return [self.dialect.column_spec(f) for f in meta.get_data_fields()]

    def diff(
        self,
        meta: Meta,
        live_columns: Sequence[ColumnInfo],
        live_indexes: Sequence[IndexInfo],
        table_exists: bool = True,
    ) -> SchemaDiff:
        """Pure diff of meta against introspection results."""
        table = meta.table_name
        result = SchemaDiff(
            doctype=meta.name,
            table=table,
            table_exists=table_exists,
            live_columns=list(live_columns),
            live_indexes=list(live_indexes),
        )

        live_by_name: Dict[str, ColumnInfo] = {c.name: c for c in live_columns}
        declared_names = {f.fieldname for f in meta.get_data_fields()}
        renamed_from: set[str] = set()

        for f in meta.get_data_fields():
            spec = self.dialect.column_spec(f)
            live = live_by_name.get(f.fieldname)

            if live is None and f.old_fieldname:
                source = live_by_name.get(f.old_fieldname)
                if (
                    source is not None
                    and f.old_fieldname not in declared_names
                    and f.old_fieldname not in renamed_from
                ):
                    result.renamed_columns.append(ColumnRename(f.old_fieldname, f.fieldname, spec))
                    renamed_from.add(f.old_fieldname)
                    live = source

            if live is None:
                result.added_columns.append(ColumnChange(fieldname=f.fieldname, column=spec))
                continue

            modification = self._compare_column(f, spec, live)
            if modification is not None:
                result.modified_columns.append(modification)

        for live in live_columns:
            if (
                live.name in declared_names
                or live.name in renamed_from
                or live.name in SYSTEM_COLUMNS
                or live.primary_key
            ):
                continue
            result.removed_columns.append(
                ColumnChange(
                    fieldname=live.name,
                    column=self.dialect.spec_from_live(live),
                    previous=live,
                    destructive=True,
                )
            )

        self._diff_indexes(meta, live_by_name, live_indexes, result)

        if not result.is_empty:
            logger.debug(f"Schema diff for {meta.name}: {result.summary()}")
        return result

    def _compare_column(
        self, f: DocField, spec: ColumnSpec, live: ColumnInfo
    ) -> Optional[ColumnChange]:
        dialect = self.dialect
        live_type = parse_type(live.type)
        changes: List[AttributeChange] = []
        requires_data_migration = False
        destructive = False

        if not dialect.types_equal(live_type, spec.type):
            if live_type.canonical_base == spec.type.canonical_base:
                if live_type.length != spec.type.length:
                    changes.append(
                        AttributeChange("length", live_type.length, spec.type.length)
                    )
                if live_type.scale != spec.type.scale:
                    changes.append(
                        AttributeChange("precision", live_type.scale, spec.type.scale)
                    )
                if live_type.digits != spec.type.digits:
                    changes.append(
                        AttributeChange("digits", live_type.digits, spec.type.digits)
                    )
            else:
                changes.append(AttributeChange("type", live.type, render_type(spec.type)))
            requires_data_migration, destructive = dialect.classify_type_change(
                live_type, spec.type
            )

        if live.nullable != spec.nullable:
            changes.append(AttributeChange("nullable", live.nullable, spec.nullable))
            if not spec.nullable:
                requires_data_migration = True

        if f.default is not None and spec.default is not None:
            if normalize_default(live.default_value) != normalize_default(spec.default):
                changes.append(AttributeChange("default", live.default_value, spec.default))

        if not changes:
            return None

        # keep an inline UNIQUE constraint across a rebuild of this column
        if live.unique and f.unique:
            spec = dataclasses.replace(spec, unique=True)
        return ColumnChange(
            fieldname=f.fieldname,
            column=spec,
            previous=live,
            changes=tuple(changes),
            destructive=destructive,
            requires_data_migration=requires_data_migration,
        )

    def declared_indexes(
        self, meta: Meta, live_by_name: Dict[str, ColumnInfo]
    ) -> List[IndexDef]:
        """Indexes the table should carry: declared ones plus unique-field indexes."""
        table = meta.table_name
        indexes = list(meta.doctype.indexes)
        names = {i.name for i in indexes}
        for f in meta.get_unique_fields():
            live = live_by_name.get(f.fieldname)
            if live is None and f.old_fieldname:
                live = live_by_name.get(f.old_fieldname)
            if live is not None and live.unique:
                continue
            name = unique_index_name(table, f.fieldname)
            if name not in names:
                indexes.append(IndexDef(name=name, columns=(f.fieldname,), unique=True))
                names.add(name)
        return indexes

    def _diff_indexes(
        self,
        meta: Meta,
        live_by_name: Dict[str, ColumnInfo],
        live_indexes: Sequence[IndexInfo],
        result: SchemaDiff,
    ) -> None:
        explicit = {i.name: i for i in live_indexes if not i.implicit}
        declared = self.declared_indexes(meta, live_by_name)
        declared_names = {d.name for d in declared}

        for index in declared:
            live = explicit.get(index.name)
            if live is None:
                result.added_indexes.append(IndexChange(index=index))
            elif (
                tuple(live.columns) != tuple(index.columns)
                or live.unique != index.unique
                or live.partial != bool(index.where)
            ):
                result.added_indexes.append(IndexChange(index=index, previous=live, replaces=True))

        for name, live in explicit.items():
            if name in declared_names:
                continue
            result.removed_indexes.append(
                IndexChange(
                    index=IndexDef(name=live.name, columns=tuple(live.columns), unique=live.unique),
                    previous=live,
                    destructive=True,
                )
            )
