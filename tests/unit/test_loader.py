"""
Unit tests for the declarative DocType loader.

Tests cover:
- JSON and YAML records, wrapped and unwrapped
- Directory loading skips overlay files
- Custom field and property setter files
- Error reporting for unsupported or malformed files
- Dumping records
"""

import json
import tempfile
from pathlib import Path

import pytest
import yaml

from doctype_engine.errors import ValidationFailedError
from doctype_engine.schema.loader import (
    dump_doctype,
    load_custom_fields_file,
    load_doctype_dir,
    load_doctype_file,
    load_property_setters_file,
    read_record,
)
from doctype_engine.schema.types import DocType, field

USER = {
    "name": "User",
    "module": "Core",
    "fields": [
        {"fieldname": "full_name", "fieldtype": "Data", "reqd": 1},
        {"fieldname": "email", "fieldtype": "Data", "unique": True},
    ],
}


class TestLoadDocType:
    """Tests for loading DocType records."""

    @pytest.fixture
    def data_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    def test_json_record(self, data_dir):
        """Plain JSON records load as dictionaries."""
        path = data_dir / "user.json"
        path.write_text(json.dumps(USER))
        record = load_doctype_file(path)
        assert record["name"] == "User"
        doctype = DocType.from_dict(record)
        assert doctype.fields[0].required

    def test_wrapped_yaml_record(self, data_dir):
        """{"doctype": {...}} wrappers are unwrapped."""
        path = data_dir / "user.yaml"
        path.write_text(yaml.safe_dump({"doctype": USER}))
        assert load_doctype_file(path) == USER

    def test_directory_skips_overlays(self, data_dir):
        """Overlay files and other extensions are not DocType records."""
        (data_dir / "user.json").write_text(json.dumps(USER))
        (data_dir / "role.yml").write_text(yaml.safe_dump({"name": "Role", "module": "Core"}))
        (data_dir / "custom_fields.json").write_text("[]")
        (data_dir / "property_setters.yaml").write_text("[]")
        (data_dir / "README.md").write_text("# notes")

        records = load_doctype_dir(data_dir)
        assert [r["name"] for r in records] == ["Role", "User"]

    def test_unsupported_extension(self, data_dir):
        """Only .json, .yaml and .yml are accepted."""
        path = data_dir / "user.toml"
        path.write_text("name = 'User'")
        with pytest.raises(ValidationFailedError, match="Unsupported file extension"):
            read_record(path)

    def test_unparseable_file(self, data_dir):
        """Syntax errors surface as ValidationFailedError."""
        path = data_dir / "user.json"
        path.write_text("{not json")
        with pytest.raises(ValidationFailedError, match="Cannot parse"):
            load_doctype_file(path)

    def test_not_a_record(self, data_dir):
        """A list is not a DocType record."""
        path = data_dir / "user.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValidationFailedError) as exc_info:
            load_doctype_file(path)
        assert exc_info.value.findings[0].field == str(path)


class TestOverlayFiles:
    """Tests for custom field and property setter files."""

    @pytest.fixture
    def data_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    def test_custom_fields_list_and_wrapper(self, data_dir):
        """Both a bare list and a wrapper are accepted."""
        record = {"dt": "User", "fieldname": "cf_phone", "fieldtype": "Data", "order": 1.5}
        bare = data_dir / "bare.json"
        bare.write_text(json.dumps([record]))
        wrapped = data_dir / "custom_fields.yaml"
        wrapped.write_text(yaml.safe_dump({"custom_fields": [record]}))

        [from_bare] = load_custom_fields_file(bare)
        [from_wrapped] = load_custom_fields_file(wrapped)
        assert from_bare == from_wrapped
        assert from_bare.dt == "User"
        assert from_bare.order == 1.5

    def test_malformed_custom_fields(self, data_dir):
        """Non-list content and non-record items are rejected."""
        path = data_dir / "custom_fields.json"
        path.write_text(json.dumps({"fields": []}))
        with pytest.raises(ValidationFailedError, match="list of custom fields"):
            load_custom_fields_file(path)

        path.write_text(json.dumps(["cf_phone"]))
        with pytest.raises(ValidationFailedError, match="Malformed custom field"):
            load_custom_fields_file(path)

    def test_property_setters(self, data_dir):
        """Property setters load with an optional fieldname."""
        path = data_dir / "property_setters.json"
        path.write_text(
            json.dumps(
                {
                    "property_setters": [
                        {"doctype": "User", "fieldname": "email", "property": "label", "value": "E-mail"},
                        {"doctype": "User", "property": "title_field", "value": "full_name"},
                    ]
                }
            )
        )
        field_level, doctype_level = load_property_setters_file(path)
        assert field_level.key == ("User", "email", "label")
        assert doctype_level.is_doctype_level

    def test_malformed_property_setter(self, data_dir):
        """A setter without a property is rejected."""
        path = data_dir / "property_setters.json"
        path.write_text(json.dumps([{"doctype": "User", "value": 1}]))
        with pytest.raises(ValidationFailedError, match="Malformed property setter"):
            load_property_setters_file(path)


class TestDump:
    """Tests for dump_doctype."""

    @pytest.mark.parametrize("suffix", [".json", ".yaml"])
    def test_dump_then_load(self, suffix):
        """Dumped records load back into an equal DocType."""
        doctype = DocType(
            name="Task",
            module="Projects",
            fields=(field("subject", required=True), field("hours", "Float")),
        )
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / f"task{suffix}"
            dump_doctype(doctype, path)
            assert DocType.from_dict(load_doctype_file(path)) == doctype
