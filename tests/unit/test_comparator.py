"""
Unit tests for the schema comparator.

Tests cover:
- Fresh tables
- Added, removed, modified and renamed columns
- System and primary-key columns are never removed
- Unique-field and declared index diffs
"""

import pytest

from doctype_engine.db.base import ColumnInfo, IndexInfo
from doctype_engine.db.sqlite import SqliteDatabase
from doctype_engine.meta import Meta
from doctype_engine.migration import SchemaComparator, SqliteDialect
from doctype_engine.migration.diff import ChangeKind
from doctype_engine.schema.types import DocType, IndexDef, field


def user_meta(*fields, indexes=()):
    fields = fields or (field("full_name", required=True), field("email", required=True))
    return Meta(DocType(name="User", module="Core", fields=fields, indexes=indexes))


def live(name, type_sql="VARCHAR(255)", **kwargs):
    return ColumnInfo(name=name, type=type_sql, **kwargs)


SYSTEM = [
    live("id", "INTEGER", nullable=False, primary_key=True),
    live("creation", "DATETIME"),
    live("modified", "DATETIME"),
    live("docstatus", "INTEGER", nullable=False, default_value="0"),
]


class TestColumns:
    """Tests for column diffs."""

    def setup_method(self):
        self.comparator = SchemaComparator(SqliteDialect())

    def test_fresh_table(self):
        """Without a table every valid column is added."""
        diff = self.comparator.diff(user_meta(), [], [], table_exists=False)
        assert not diff.is_empty
        assert [c.fieldname for c in diff.added_columns] == ["full_name", "email"]
        assert diff.changes()[0].kind == ChangeKind.TABLE_CREATED
        assert not diff.destructive

    def test_in_sync(self):
        """Matching shapes give an empty diff."""
        columns = SYSTEM + [
            live("full_name", nullable=False),
            live("email", nullable=False),
        ]
        diff = self.comparator.diff(user_meta(), columns, [])
        assert diff.is_empty

    def test_removed_column_is_destructive(self):
        """Live columns without a field are removed."""
        columns = SYSTEM + [
            live("full_name", nullable=False),
            live("email", nullable=False),
            live("phone"),
            live("fax"),
        ]
        meta = user_meta(
            field("full_name", required=True), field("email", required=True), field("phone")
        )
        diff = self.comparator.diff(meta, columns, [])
        assert [c.fieldname for c in diff.removed_columns] == ["fax"]
        assert diff.destructive

    def test_system_columns_kept(self):
        """System and primary-key columns are never removed."""
        columns = SYSTEM + [live("legacy_pk", "INTEGER", primary_key=True)]
        diff = self.comparator.diff(user_meta(field("email")), columns, [])
        assert diff.removed_columns == []

    def test_layout_fields_ignored(self):
        """Section breaks and tables never produce columns."""
        meta = user_meta(
            field("email"),
            field("details", "Section Break"),
            field("roles", "Table", options="Has Role"),
        )
        diff = self.comparator.diff(meta, [], [], table_exists=False)
        assert [c.fieldname for c in diff.added_columns] == ["email"]

    def test_length_narrowing(self):
        """A shorter length is a destructive modification."""
        columns = SYSTEM + [live("email", "VARCHAR(255)")]
        diff = self.comparator.diff(user_meta(field("email", length=100)), columns, [])
        change = diff.modified_columns[0]
        assert change.changed("length").to_value == 100
        assert change.destructive
        assert change.requires_data_migration

    def test_type_change(self):
        """A category change is reported as a type change."""
        columns = SYSTEM + [live("age", "VARCHAR(255)")]
        diff = self.comparator.diff(user_meta(field("age", "Int")), columns, [])
        change = diff.modified_columns[0]
        assert change.changed("type").from_value == "VARCHAR(255)"
        assert change.changed("type").to_value == "INTEGER"
        assert diff.destructive

    def test_not_null_requires_backfill(self):
        """Becoming NOT NULL needs data migration but is not destructive."""
        columns = SYSTEM + [live("email")]
        diff = self.comparator.diff(user_meta(field("email", required=True)), columns, [])
        change = diff.modified_columns[0]
        assert change.changed("nullable").to_value is False
        assert change.requires_data_migration
        assert not diff.destructive

    def test_default_compared_when_declared(self):
        """Explicit defaults are compared after normalization."""
        columns = SYSTEM + [live("status", default_value="'Open'")]
        same = user_meta(field("status", "Select", options="Open\nClosed", default="Open"))
        assert self.comparator.diff(same, columns, []).is_empty
        other = user_meta(field("status", "Select", options="Open\nClosed", default="Closed"))
        change = self.comparator.diff(other, columns, []).modified_columns[0]
        assert change.changed("default").to_value == "'Closed'"

    def test_rename_via_old_fieldname(self):
        """old_fieldname turns remove + add into a rename."""
        columns = SYSTEM + [live("mobile")]
        meta = user_meta(field("phone", old_fieldname="mobile"))
        diff = self.comparator.diff(meta, columns, [])
        assert [(r.old_name, r.new_name) for r in diff.renamed_columns] == [("mobile", "phone")]
        assert diff.added_columns == []
        assert diff.removed_columns == []
        assert not diff.destructive

    def test_unannotated_rename_is_drop_and_add(self):
        """Without old_fieldname a rename is remove + add."""
        columns = SYSTEM + [live("mobile")]
        diff = self.comparator.diff(user_meta(field("phone")), columns, [])
        assert [c.fieldname for c in diff.added_columns] == ["phone"]
        assert [c.fieldname for c in diff.removed_columns] == ["mobile"]


class TestIndexes:
    """Tests for index diffs."""

    def setup_method(self):
        self.comparator = SchemaComparator(SqliteDialect())

    def test_unique_field_gets_index(self):
        """Unique fields are backed by a named unique index."""
        meta = user_meta(field("email", unique=True))
        diff = self.comparator.diff(meta, [], [], table_exists=False)
        index = diff.added_indexes[0].index
        assert index.name == "tabUser_email_unique"
        assert index.unique
        assert index.columns == ("email",)

    def test_inline_unique_constraint_satisfies(self):
        """A live UNIQUE constraint needs no extra index."""
        columns = SYSTEM + [live("email", unique=True)]
        diff = self.comparator.diff(user_meta(field("email", unique=True)), columns, [])
        assert diff.added_indexes == []

    def test_declared_index_replaced(self):
        """A declared index with a new shape replaces the live one."""
        columns = SYSTEM + [live("email"), live("full_name")]
        indexes = [IndexInfo("user_lookup", ("email",))]
        meta = user_meta(
            field("email"),
            field("full_name"),
            indexes=(IndexDef("user_lookup", ("email", "full_name")),),
        )
        diff = self.comparator.diff(meta, columns, indexes)
        assert diff.added_indexes[0].replaces
        assert diff.removed_indexes == []

    def test_undeclared_index_removed(self):
        """Explicit live indexes without a declaration are dropped."""
        columns = SYSTEM + [live("email")]
        indexes = [
            IndexInfo("old_idx", ("email",)),
            IndexInfo("sqlite_autoindex_tabUser_1", ("email",), unique=True, origin="u"),
        ]
        diff = self.comparator.diff(user_meta(field("email")), columns, indexes)
        assert [i.name for i in diff.removed_indexes] == ["old_idx"]
        assert diff.destructive


class TestCompare:
    """Tests for compare against a live database."""

    @pytest.mark.asyncio
    async def test_compare_missing_table(self):
        """A missing table yields the fresh-table diff."""
        async with SqliteDatabase(":memory:") as db:
            diff = await SchemaComparator(SqliteDialect()).compare(user_meta(), db)
        assert not diff.table_exists
        assert len(diff.added_columns) == 2

    @pytest.mark.asyncio
    async def test_compare_live_table(self):
        """Live columns are introspected."""
        async with SqliteDatabase(":memory:") as db:
            await db.execute(
                'CREATE TABLE "tabUser" ("id" INTEGER PRIMARY KEY, '
                '"full_name" VARCHAR(255) NOT NULL, "email" VARCHAR(255))'
            )
            diff = await SchemaComparator(SqliteDialect()).compare(user_meta(), db)
        assert diff.table_exists
        assert [c.fieldname for c in diff.modified_columns] == ["email"]
