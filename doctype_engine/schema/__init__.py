"""
Schema module for the DocType engine.

This module provides the metadata model for document types, including:
- Type definitions (DocType, DocField, DocPerm, IndexDef)
- Overlay records (CustomField, PropertySetter)
- Structural validation
- The DocType registry
- Loading of declarative JSON/YAML records

Invariants:
    - DocType names are unique within a registry
    - Field names are unique within a DocType
    - Layout-marker fields never map to a physical column

How to change safely:
    - Add new field attributes with defaults
    - Add new field types to FieldType and to every dialect type map
"""

from .loader import load_custom_fields_file, load_doctype_dir, load_doctype_file
from .registry import DocTypeRegistry
from .types import (
    LAYOUT_FIELD_TYPES,
    SYSTEM_COLUMNS,
    CustomField,
    DocField,
    DocPerm,
    DocType,
    FieldType,
    IndexDef,
    PropertySetter,
    field,
)
from .validator import (
    ValidationFinding,
    ValidationResult,
    validate_custom_field,
    validate_doctype,
)

__all__ = [
    # Types
    "DocType",
    "DocField",
    "DocPerm",
    "IndexDef",
    "CustomField",
    "PropertySetter",
    "FieldType",
    "LAYOUT_FIELD_TYPES",
    "SYSTEM_COLUMNS",
    "field",
    # Validation
    "ValidationFinding",
    "ValidationResult",
    "validate_doctype",
    "validate_custom_field",
    # Registry
    "DocTypeRegistry",
    # Loader
    "load_doctype_file",
    "load_doctype_dir",
    "load_custom_fields_file",
]
