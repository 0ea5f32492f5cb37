"""
Unit tests for SQL dialects.

Tests cover:
- Type map completeness
- Type parsing and rendering
- Column specs, literals and definitions
- Type change classification
"""

import pytest

from doctype_engine.db.base import ColumnInfo
from doctype_engine.migration.dialect import (
    DIALECTS,
    ParsedType,
    PostgresDialect,
    SqliteDialect,
    TypeCategory,
    get_dialect,
    normalize_default,
    parse_type,
    render_type,
)
from doctype_engine.schema.types import FieldType, field


class TestTypeMap:
    """Tests for dialect type maps."""

    @pytest.mark.parametrize("name", sorted(DIALECTS))
    def test_every_column_type_is_mapped(self, name):
        """Each column-bearing FieldType has a mapping."""
        dialect = get_dialect(name)
        missing = [k for k in FieldType if k.has_column and k not in dialect.TYPE_MAP]
        assert missing == []

    @pytest.mark.parametrize("name", sorted(DIALECTS))
    def test_layout_and_tables_unmapped(self, name):
        """Layout markers and child tables have no column type."""
        dialect = get_dialect(name)
        assert FieldType.SECTION_BREAK not in dialect.TYPE_MAP
        assert FieldType.TABLE not in dialect.TYPE_MAP
        with pytest.raises(ValueError, match="no column mapping"):
            dialect.column_spec(field("items", "Table", options="Row"))

    def test_unknown_dialect(self):
        """Unknown names raise ValueError."""
        with pytest.raises(ValueError, match="Unknown SQL dialect"):
            get_dialect("oracle")


class TestParseType:
    """Tests for parse_type / render_type."""

    def test_varchar(self):
        """Bounded text keeps its length."""
        parsed = parse_type("varchar(140)")
        assert parsed == ParsedType(base="VARCHAR", length=140)
        assert parsed.category == TypeCategory.TEXT
        assert render_type(parsed) == "VARCHAR(140)"

    def test_decimal(self):
        """Decimals split digits and scale."""
        parsed = parse_type("DECIMAL(21, 9)")
        assert parsed.digits == 21
        assert parsed.scale == 9
        assert render_type(parsed) == "DECIMAL(21, 9)"

    def test_synonyms(self):
        """Synonyms share a canonical base."""
        assert parse_type("character varying(10)").canonical_base == "VARCHAR"
        assert parse_type("TIMESTAMP").canonical_base == "DATETIME"
        assert parse_type("blobby").category == TypeCategory.UNKNOWN

    def test_normalize_default(self):
        """Quotes, parentheses and NULL are normalized."""
        assert normalize_default("'it''s'") == "it's"
        assert normalize_default("('0')") == "0"
        assert normalize_default("NULL") is None
        assert normalize_default(None) is None


class TestColumnSpec:
    """Tests for column_spec and column_definition."""

    def test_data_field(self):
        """Data maps to VARCHAR with the declared length."""
        spec = SqliteDialect().column_spec(field("email", required=True, length=140))
        assert render_type(spec.type) == "VARCHAR(140)"
        assert not spec.nullable

    def test_precision_overrides_scale(self):
        """precision sets the decimal scale."""
        spec = SqliteDialect().column_spec(field("amount", "Currency", precision=4))
        assert render_type(spec.type) == "DECIMAL(21, 4)"

    def test_postgres_types(self):
        """Postgres uses its own names."""
        dialect = PostgresDialect()
        assert render_type(dialect.column_spec(field("ok", "Check")).type) == "SMALLINT"
        assert render_type(dialect.column_spec(field("at", "Datetime")).type) == "TIMESTAMP"

    def test_literals(self):
        """Defaults become SQL literals; dynamic ones are dropped."""
        dialect = SqliteDialect()
        assert dialect.literal(1, TypeCategory.INTEGER) == "1"
        assert dialect.literal(True, TypeCategory.INTEGER) == "1"
        assert dialect.literal("O'Neil", TypeCategory.TEXT) == "'O''Neil'"
        assert dialect.literal("Today", TypeCategory.DATE) is None
        assert dialect.literal("2024-01-31", TypeCategory.DATE) == "'2024-01-31'"
        assert dialect.literal("", TypeCategory.TEXT) is None

    def test_definition_for_add_fills_not_null(self):
        """ADD COLUMN of a NOT NULL column always carries a default."""
        dialect = SqliteDialect()
        spec = dialect.column_spec(field("email", required=True))
        assert dialect.column_definition(spec, for_add=True) == (
            "\"email\" VARCHAR(255) NOT NULL DEFAULT ''"
        )
        count = dialect.column_spec(field("count", "Int", required=True, default=5))
        assert dialect.column_definition(count, for_add=True) == '"count" INTEGER NOT NULL DEFAULT 5'

    def test_system_columns(self):
        """Every fresh table gets the system columns with an id primary key."""
        specs = SqliteDialect().system_column_specs()
        assert specs[0].name == "id"
        assert specs[0].primary_key
        assert "docstatus" in [s.name for s in specs]

    def test_spec_from_live(self):
        """Live columns are reproduced."""
        live = ColumnInfo("phone", "VARCHAR(20)", nullable=False, default_value="''")
        spec = SqliteDialect().spec_from_live(live)
        assert spec.type.length == 20
        assert not spec.nullable
        assert spec.default == "''"


class TestClassifyTypeChange:
    """Tests for classify_type_change."""

    def classify(self, live, declared):
        return SqliteDialect().classify_type_change(parse_type(live), parse_type(declared))

    def test_widening_is_safe(self):
        """Wider text and int -> decimal are not destructive."""
        assert self.classify("VARCHAR(100)", "VARCHAR(255)") == (False, False)
        assert self.classify("INTEGER", "DECIMAL(21, 9)") == (True, False)
        assert self.classify("VARCHAR(255)", "TEXT") == (False, False)

    def test_narrowing_is_destructive(self):
        """Shorter text, bounded text and lower scale can lose data."""
        assert self.classify("VARCHAR(255)", "VARCHAR(100)") == (True, True)
        assert self.classify("TEXT", "VARCHAR(255)") == (True, True)
        assert self.classify("DECIMAL(21, 9)", "DECIMAL(21, 2)") == (True, True)

    def test_category_change(self):
        """Text -> integer is destructive."""
        assert self.classify("VARCHAR(255)", "INTEGER") == (True, True)
        assert self.classify("DATE", "DATETIME") == (True, False)
