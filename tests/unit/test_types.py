"""
Unit tests for the metadata model.

Tests cover:
- FieldType parsing and classification
- DocField / CustomField creation and serialization
- DocType helpers and dictionary round trip
- PropertySetter keys
"""

import pytest

from doctype_engine.schema.types import (
    LAYOUT_FIELD_TYPES,
    CustomField,
    DocField,
    DocPerm,
    DocType,
    FieldType,
    IndexDef,
    PropertySetter,
    field,
)


class TestFieldType:
    """Tests for FieldType."""

    def test_from_str(self):
        """Declarative names parse to enum members."""
        assert FieldType.from_str("Long Text") == FieldType.LONG_TEXT
        assert FieldType.from_str("Data") == FieldType.DATA

    def test_from_str_invalid_raises(self):
        """Unknown names raise ValueError."""
        with pytest.raises(ValueError, match="Invalid field type"):
            FieldType.from_str("Blob")

    def test_layout_markers_have_no_column(self):
        """Layout markers never map to a column."""
        for kind in LAYOUT_FIELD_TYPES:
            assert kind.is_layout
            assert not kind.has_column

    def test_child_tables_have_no_column(self):
        """Table types are stored elsewhere."""
        assert FieldType.TABLE.is_table
        assert not FieldType.TABLE.has_column
        assert not FieldType.TABLE_MULTISELECT.has_column

    def test_requires_options(self):
        """Link, Select and Table types need options."""
        assert FieldType.LINK.requires_options
        assert FieldType.SELECT.requires_options
        assert not FieldType.DATA.requires_options


class TestDocField:
    """Tests for DocField."""

    def test_field_helper_defaults_label(self):
        """field() derives a title-case label."""
        f = field("full_name")
        assert f.label == "Full Name"
        assert f.fieldtype == "Data"

    def test_field_helper_accepts_enum(self):
        """field() accepts a FieldType."""
        f = field("amount", FieldType.CURRENCY, precision=2)
        assert f.fieldtype == "Currency"
        assert f.field_type == FieldType.CURRENCY

    def test_unknown_type_has_no_column(self):
        """An unknown fieldtype is neither layout nor column."""
        f = DocField(fieldname="x", label="X", fieldtype="Nope")
        assert f.field_type is None
        assert not f.has_column
        assert not f.is_layout

    def test_to_dict_omits_defaults(self):
        """Only non-default attributes are serialized."""
        d = field("email", required=True).to_dict()
        assert d == {"fieldname": "email", "label": "Email", "fieldtype": "Data", "required": True}

    def test_from_dict_accepts_reqd_alias(self):
        """reqd is read as required."""
        f = DocField.from_dict({"fieldname": "email", "label": "Email", "reqd": 1})
        assert f.required is True

    def test_from_dict_ignores_unknown_keys(self):
        """Unknown keys are dropped."""
        f = DocField.from_dict({"fieldname": "a", "label": "A", "colour": "red"})
        assert f.fieldname == "a"


class TestCustomField:
    """Tests for CustomField."""

    def test_key_and_to_field(self):
        """Custom fields key on (dt, fieldname) and strip to a DocField."""
        cf = CustomField(fieldname="cf_phone", label="Phone", dt="User", order=2.5)
        assert cf.key == ("User", "cf_phone")
        plain = cf.to_field()
        assert type(plain) is DocField
        assert plain.fieldname == "cf_phone"

    def test_from_dict_builds_custom_field(self):
        """from_dict on CustomField keeps dt and order."""
        cf = CustomField.from_dict(
            {"dt": "User", "fieldname": "cf_x", "label": "X", "fieldtype": "Int", "order": 3}
        )
        assert isinstance(cf, CustomField)
        assert cf.dt == "User"
        assert cf.order == 3


class TestDocType:
    """Tests for DocType."""

    def make_doctype(self):
        return DocType(
            name="Task",
            module="Projects",
            fields=(
                field("subject", required=True),
                field("status", "Select", options="Open\nClosed", default="Open"),
                field("details_section", "Section Break"),
            ),
            permissions=(DocPerm(role="System Manager", read=True, write=True),),
            indexes=(IndexDef(name="task_status", columns=("status",)),),
            title_field="subject",
        )

    def test_default_table_name(self):
        """Table name defaults to tab + name."""
        assert self.make_doctype().get_table_name() == "tabTask"
        assert DocType(name="Task", table_name="tasks").get_table_name() == "tasks"

    def test_get_field(self):
        """Fields are found by name."""
        doctype = self.make_doctype()
        assert doctype.get_field("status").options == "Open\nClosed"
        assert doctype.get_field("missing") is None
        assert doctype.get_fieldnames() == ["subject", "status", "details_section"]

    def test_dict_round_trip(self):
        """to_dict / from_dict preserve the definition."""
        doctype = self.make_doctype()
        assert DocType.from_dict(doctype.to_dict()) == doctype

    def test_from_dict_tolerates_bad_shapes(self):
        """Non-list fields are read as empty."""
        doctype = DocType.from_dict({"name": "X", "fields": "oops", "permissions": None})
        assert doctype.fields == ()
        assert doctype.permissions == ()


class TestPropertySetter:
    """Tests for PropertySetter."""

    def test_field_level_key(self):
        """Field-level setters key on the field name."""
        setter = PropertySetter("User", "email", "label", "E-mail")
        assert setter.key == ("User", "email", "label")
        assert not setter.is_doctype_level

    def test_doctype_level_key(self):
        """DocType-level setters use an empty field name."""
        setter = PropertySetter.from_dict(
            {"doctype": "User", "property": "title_field", "value": "email"}
        )
        assert setter.key == ("User", "", "title_field")
        assert setter.is_doctype_level
