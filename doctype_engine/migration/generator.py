"""
SQL generation for schema diffs.

Statements are emitted in a fixed order:
    renamed columns -> added columns -> modified columns -> removed columns
    -> added indexes -> removed indexes

On a fresh table the CREATE TABLE (system columns only) comes first and
every declared column is then added with ADD COLUMN.

Dialects without native ALTER COLUMN / DROP COLUMN (SQLite) get a single
table rebuild for all modified and removed columns:
    CREATE TABLE "_tmp_<table>" (<target shape>)
    INSERT INTO "_tmp_<table>" (...) SELECT <CAST/COALESCE exprs> FROM "<table>"
    DROP TABLE "<table>"
    ALTER TABLE "_tmp_<table>" RENAME TO "<table>"
    <recreate surviving explicit indexes>

Rollback SQL is produced alongside: DROP TABLE for a fresh table,
otherwise the inverse operations (a rebuild back to the live shape on
SQLite). Data in dropped columns cannot be restored by rollback.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..db.base import ColumnInfo, IndexInfo
from ..schema.types import IndexDef
from .dialect import ColumnSpec, Dialect, render_type, with_name
from .diff import ColumnChange, SchemaDiff

logger = logging.getLogger(__name__)

TYPE_ATTRIBUTES = ("type", "length", "precision", "digits")


@dataclass
class GeneratedSql:
    """Forward and rollback statements for one diff."""

    statements: List[str] = field(default_factory=list)
    rollback: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class SqlGenerator:
    """Turns SchemaDiffs into SQL for one dialect.

    Example:
        >>> generator = SqlGenerator(SqliteDialect())
        >>> generated = generator.generate(diff)
        >>> generated.statements[0]
        'ALTER TABLE "tabUser" ADD COLUMN "email" VARCHAR(255) NOT NULL DEFAULT \\'\\''
    """

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect

    def generate(self, diff: SchemaDiff) -> GeneratedSql:
        """Generate forward and rollback SQL for a diff."""
        result = GeneratedSql()
        if diff.is_empty:
            return result
        result.statements = self.forward(diff)
        result.rollback = self.rollback(diff)

        if not self.dialect.supports_drop_column and (diff.removed_columns or diff.modified_columns):
            result.warnings.append(
                f"Table {diff.table} will be rebuilt to apply "
                f"{len(diff.modified_columns)} modification(s) and "
                f"{len(diff.removed_columns)} removal(s)"
            )
        for c in diff.removed_columns:
            result.warnings.append(
                f"Column {diff.table}.{c.fieldname} will be dropped; rollback cannot restore its data"
            )
        logger.debug(
            f"Generated {len(result.statements)} statement(s) and "
            f"{len(result.rollback)} rollback statement(s) for {diff.doctype}"
        )
        return result

    # Statement builders

    def create_table(self, table: str, columns: Sequence[ColumnSpec]) -> str:
        q = self.dialect.quote
        primary = [c.name for c in columns if c.primary_key]
        definitions = []
        for column in columns:
            if len(primary) > 1 and column.primary_key:
                column = dataclasses.replace(column, primary_key=False, nullable=False)
            definitions.append(self.dialect.column_definition(column))
        if len(primary) > 1:
            definitions.append(f"PRIMARY KEY ({', '.join(q(n) for n in primary)})")
        return f"CREATE TABLE {q(table)} ({', '.join(definitions)})"

    def add_column(self, table: str, column: ColumnSpec) -> str:
        definition = self.dialect.column_definition(column, for_add=True)
        return f"ALTER TABLE {self.dialect.quote(table)} ADD COLUMN {definition}"

    def drop_column(self, table: str, name: str) -> str:
        q = self.dialect.quote
        return f"ALTER TABLE {q(table)} DROP COLUMN {q(name)}"

    def rename_column(self, table: str, old: str, new: str) -> str:
        q = self.dialect.quote
        return f"ALTER TABLE {q(table)} RENAME COLUMN {q(old)} TO {q(new)}"

    def create_index(self, table: str, index: IndexDef) -> str:
        q = self.dialect.quote
        unique = "UNIQUE " if index.unique else ""
        columns = ", ".join(q(c) for c in index.columns)
        sql = f"CREATE {unique}INDEX {q(index.name)} ON {q(table)} ({columns})"
        if index.where:
            sql += f" WHERE {index.where}"
        return sql

    def drop_index(self, name: str) -> str:
        return f"DROP INDEX IF EXISTS {self.dialect.quote(name)}"

    def recreate_index(
        self, table: str, index: IndexInfo, renames: Optional[Dict[str, str]] = None
    ) -> str:
        """Statement recreating a live index, renaming its columns if needed."""
        renames = renames or {}
        if index.sql and not any(c in renames for c in index.columns):
            return index.sql
        columns = tuple(renames.get(c, c) for c in index.columns)
        return self.create_index(table, IndexDef(name=index.name, columns=columns, unique=index.unique))

    def rebuild_table(
        self,
        table: str,
        columns: Sequence[ColumnSpec],
        expressions: Sequence[str],
        indexes: Sequence[str],
    ) -> List[str]:
        """Create-copy-drop-rename sequence producing a table with the given columns."""
        q = self.dialect.quote
        temp = f"_tmp_{table}"
        names = ", ".join(q(c.name) for c in columns)
        return [
            self.create_table(temp, columns),
            f"INSERT INTO {q(temp)} ({names}) SELECT {', '.join(expressions)} FROM {q(table)}",
            f"DROP TABLE {q(table)}",
            f"ALTER TABLE {q(temp)} RENAME TO {q(table)}",
            *indexes,
        ]

    # Forward

    def forward(self, diff: SchemaDiff) -> List[str]:
        """Forward statements in generation order."""
        table = diff.table
        statements: List[str] = []

        if not diff.table_exists:
            statements.append(self.create_table(table, self.dialect.system_column_specs()))

        for rename in diff.renamed_columns:
            statements.append(self.rename_column(table, rename.old_name, rename.new_name))

        for added in diff.added_columns:
            statements.append(self.add_column(table, added.column))

        if diff.modified_columns or diff.removed_columns:
            if self.dialect.supports_alter_column and self.dialect.supports_drop_column:
                for modified in diff.modified_columns:
                    statements.extend(self._alter_column(table, modified))
                for removed in diff.removed_columns:
                    statements.append(self.drop_column(table, removed.fieldname))
            else:
                statements.extend(self._forward_rebuild(diff))

        for index in diff.added_indexes:
            if index.replaces:
                statements.append(self.drop_index(index.name))
            statements.append(self.create_index(table, index.index))

        for index in diff.removed_indexes:
            statements.append(self.drop_index(index.name))

        return statements

    def _convert_expression(self, source: str, change: ColumnChange) -> str:
        expression = self.dialect.quote(source)
        if any(change.changed(a) for a in TYPE_ATTRIBUTES):
            expression = self.dialect.cast_expression(source, change.column)
        if not change.column.nullable:
            fill = change.column.default or self.dialect.fallback_default(change.column)
            expression = f"COALESCE({expression}, {fill})"
        return expression

    def _forward_rebuild(self, diff: SchemaDiff) -> List[str]:
        renames = {r.old_name: r.new_name for r in diff.renamed_columns}
        removed = {c.fieldname for c in diff.removed_columns}
        modified = {c.fieldname: c for c in diff.modified_columns}

        columns: List[ColumnSpec] = []
        expressions: List[str] = []
        for live in diff.live_columns:
            if live.name in removed:
                continue
            name = renames.get(live.name, live.name)
            if name in modified:
                columns.append(modified[name].column)
                expressions.append(self._convert_expression(name, modified[name]))
            else:
                columns.append(with_name(self.dialect.spec_from_live(live), name))
                expressions.append(self.dialect.quote(name))
        for added in diff.added_columns:
            column = added.column
            if not column.nullable and column.default is None:
                column = dataclasses.replace(column, default=self.dialect.fallback_default(column))
            columns.append(column)
            expressions.append(self.dialect.quote(added.fieldname))

        kept = {c.name for c in columns}
        dropped = {i.name for i in diff.removed_indexes}
        replaced = {i.name for i in diff.added_indexes if i.replaces}
        indexes = [
            self.recreate_index(diff.table, index, renames)
            for index in diff.live_indexes
            if not index.implicit
            and index.name not in dropped
            and index.name not in replaced
            and all(renames.get(c, c) in kept for c in index.columns)
        ]
        return self.rebuild_table(diff.table, columns, expressions, indexes)

    def _alter_column(self, table: str, change: ColumnChange) -> List[str]:
        q = self.dialect.quote
        prefix = f"ALTER TABLE {q(table)} ALTER COLUMN {q(change.fieldname)}"
        statements = []
        if any(change.changed(a) for a in TYPE_ATTRIBUTES):
            type_sql = render_type(change.column.type)
            cast = self.dialect.cast_expression(change.fieldname, change.column)
            statements.append(f"{prefix} TYPE {type_sql} USING {cast}")
        nullable = change.changed("nullable")
        if nullable is not None:
            if nullable.to_value:
                statements.append(f"{prefix} DROP NOT NULL")
            else:
                fill = change.column.default or self.dialect.fallback_default(change.column)
                statements.append(
                    f"UPDATE {q(table)} SET {q(change.fieldname)} = {fill} "
                    f"WHERE {q(change.fieldname)} IS NULL"
                )
                statements.append(f"{prefix} SET NOT NULL")
        default = change.changed("default")
        if default is not None:
            if change.column.default is None:
                statements.append(f"{prefix} DROP DEFAULT")
            else:
                statements.append(f"{prefix} SET DEFAULT {change.column.default}")
        return statements

    # Rollback

    def rollback(self, diff: SchemaDiff) -> List[str]:
        """Statements that undo forward(diff), in execution order."""
        table = diff.table
        if not diff.table_exists:
            return [f"DROP TABLE IF EXISTS {self.dialect.quote(table)}"]

        statements = [self.drop_index(i.name) for i in diff.added_indexes]
        restore = [i.previous for i in diff.removed_indexes + diff.added_indexes if i.previous]
        columns_changed = bool(
            diff.added_columns
            or diff.modified_columns
            or diff.removed_columns
            or diff.renamed_columns
        )

        if columns_changed and not (
            self.dialect.supports_alter_column and self.dialect.supports_drop_column
        ):
            statements.extend(self._rollback_rebuild(diff))
            return statements

        if columns_changed:
            for removed in diff.removed_columns:
                statements.append(self.add_column(table, removed.column))
            for modified in diff.modified_columns:
                if modified.previous is not None:
                    statements.extend(self._revert_column(table, modified, modified.previous))
            for added in diff.added_columns:
                statements.append(self.drop_column(table, added.fieldname))
            for rename in diff.renamed_columns:
                statements.append(self.rename_column(table, rename.new_name, rename.old_name))

        statements.extend(self.recreate_index(table, index) for index in restore)
        return statements

    def _rollback_rebuild(self, diff: SchemaDiff) -> List[str]:
        renames = {r.old_name: r.new_name for r in diff.renamed_columns}
        removed = {c.fieldname for c in diff.removed_columns}
        modified = {c.fieldname for c in diff.modified_columns}

        columns: List[ColumnSpec] = []
        expressions: List[str] = []
        for live in diff.live_columns:
            spec = self.dialect.spec_from_live(live)
            columns.append(spec)
            current = renames.get(live.name, live.name)
            if live.name in removed:
                expressions.append(self._restore_fill(spec))
            elif current in modified:
                expression = self.dialect.cast_expression(current, spec)
                if not spec.nullable:
                    expression = f"COALESCE({expression}, {self._restore_fill(spec)})"
                expressions.append(expression)
            else:
                expressions.append(self.dialect.quote(current))

        indexes = [
            self.recreate_index(diff.table, index)
            for index in diff.live_indexes
            if not index.implicit
        ]
        return self.rebuild_table(diff.table, columns, expressions, indexes)

    def _restore_fill(self, spec: ColumnSpec) -> str:
        if spec.nullable:
            return "NULL"
        return spec.default or self.dialect.fallback_default(spec)

    def _revert_column(
        self, table: str, change: ColumnChange, previous: ColumnInfo
    ) -> List[str]:
        original = self.dialect.spec_from_live(previous)
        q = self.dialect.quote
        prefix = f"ALTER TABLE {q(table)} ALTER COLUMN {q(change.fieldname)}"
        statements = []
        if any(change.changed(a) for a in TYPE_ATTRIBUTES):
            cast = self.dialect.cast_expression(change.fieldname, original)
            statements.append(f"{prefix} TYPE {render_type(original.type)} USING {cast}")
        if change.changed("nullable") is not None:
            statements.append(f"{prefix} {'DROP' if original.nullable else 'SET'} NOT NULL")
        if change.changed("default") is not None:
            if original.default is None:
                statements.append(f"{prefix} DROP DEFAULT")
            else:
                statements.append(f"{prefix} SET DEFAULT {original.default}")
        return statements
