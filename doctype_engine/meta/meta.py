"""
Merged metadata view of a DocType.

A Meta wraps an effective DocType (base fields plus custom fields with
property setters applied) and indexes its fields for fast lookup.
Instances are immutable and disposable; the MetaCache owns their lifetime.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..schema.types import CustomField, DocField, DocType, FieldType

LINK_TYPES = (FieldType.LINK.value, FieldType.DYNAMIC_LINK.value)
TABLE_TYPES = (FieldType.TABLE.value, FieldType.TABLE_MULTISELECT.value)


class Meta:
    """Indexed, read-only view over an effective DocType.

    Args:
        doctype: Effective DocType

    Raises:
        TypeError: If doctype is None or not a DocType
        ValueError: If the DocType has no name

    Example:
        >>> meta = Meta(effective_user)
        >>> meta.get_valid_columns()
        ['full_name', 'email', 'cf_phone']
    """

    def __init__(self, doctype: DocType) -> None:
        if doctype is None:
            raise TypeError("Meta requires a DocType, got None")
        if not isinstance(doctype, DocType):
            raise TypeError(f"Meta requires a DocType, got {type(doctype).__name__}")
        if not doctype.name:
            raise ValueError("Meta requires a named DocType")

        self.doctype = doctype
        self._by_name: Dict[str, DocField] = {}
        self._by_type: Dict[str, List[DocField]] = {}
        for f in doctype.fields:
            self._by_name.setdefault(f.fieldname, f)
            self._by_type.setdefault(f.fieldtype, []).append(f)
        self._required = [f for f in doctype.fields if f.required and not f.is_layout]
        self._unique = [f for f in doctype.fields if f.unique and f.has_column]
        self._valid_columns: Optional[List[str]] = None

    @property
    def name(self) -> str:
        return self.doctype.name

    @property
    def module(self) -> str:
        return self.doctype.module

    @property
    def table_name(self) -> str:
        return self.doctype.get_table_name()

    def get_field(self, fieldname: str) -> Optional[DocField]:
        return self._by_name.get(fieldname)

    def has_field(self, fieldname: str) -> bool:
        return fieldname in self._by_name

    def get_all_fields(self) -> List[DocField]:
        return list(self.doctype.fields)

    def get_data_fields(self) -> List[DocField]:
        """Fields that map to a physical column, in field order."""
        return [f for f in self.doctype.fields if f.has_column]

    def get_fields_by_type(self, fieldtype: str | FieldType) -> List[DocField]:
        if isinstance(fieldtype, FieldType):
            fieldtype = fieldtype.value
        return list(self._by_type.get(fieldtype, ()))

    def get_link_fields(self) -> List[DocField]:
        """Link and Dynamic Link fields, in field order."""
        return [f for f in self.doctype.fields if f.fieldtype in LINK_TYPES]

    def get_table_fields(self) -> List[DocField]:
        return [f for f in self.doctype.fields if f.fieldtype in TABLE_TYPES]

    def get_select_fields(self) -> List[DocField]:
        return self.get_fields_by_type(FieldType.SELECT)

    def get_required_fields(self) -> List[DocField]:
        return list(self._required)

    def get_unique_fields(self) -> List[DocField]:
        return list(self._unique)

    def get_custom_fields(self) -> List[CustomField]:
        return list(self.doctype.custom_fields)

    def get_valid_columns(self) -> List[str]:
        """Names of fields that map to a physical column.

        Layout markers and child tables are excluded. Computed once per
        instance.
        """
        if self._valid_columns is None:
            self._valid_columns = [f.fieldname for f in self.get_data_fields()]
        return list(self._valid_columns)

    def get_search_fields(self) -> List[str]:
        """Parse the comma separated search_fields declaration."""
        if not self.doctype.search_fields:
            return []
        return [s.strip() for s in self.doctype.search_fields.split(",") if s.strip()]

    def get_title_field(self) -> str:
        """Title field, falling back to "name"."""
        title = self.doctype.title_field
        if title and (title == "name" or self.has_field(title)):
            return title
        return "name"

    def get_image_field(self) -> Optional[str]:
        image = self.doctype.image_field
        return image if image and self.has_field(image) else None

    def get_label(self, fieldname: str) -> str:
        """Label of a field, or the fieldname if it has none."""
        f = self.get_field(fieldname)
        return f.label if f and f.label else fieldname

    def get_options(self, fieldname: str) -> Optional[str]:
        f = self.get_field(fieldname)
        return f.options if f else None

    def is_submittable(self) -> bool:
        return self.doctype.is_submittable

    def is_single(self) -> bool:
        return self.doctype.is_single

    def is_table(self) -> bool:
        return self.doctype.is_table

    def is_tree(self) -> bool:
        return self.doctype.is_tree

    def is_virtual(self) -> bool:
        return self.doctype.is_virtual

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the effective DocType with derived indexes."""
        result = self.doctype.to_dict()
        result["table_name"] = self.table_name
        result["valid_columns"] = self.get_valid_columns()
        return result

    def __repr__(self) -> str:
        return f"Meta(name={self.name!r}, fields={len(self.doctype.fields)})"
