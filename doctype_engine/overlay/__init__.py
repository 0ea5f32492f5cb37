"""
Overlay module: custom fields and property setters.

Effective metadata = apply_properties(merge_custom_fields(base_doctype)).
Both steps are pure and idempotent given the stored overlay records.
"""

from .custom_fields import CustomFieldManager, CustomFieldQuery
from .property_setters import (
    DOCTYPE_PROPERTIES,
    FIELD_PROPERTIES,
    PropertySetterManager,
)

__all__ = [
    "CustomFieldManager",
    "CustomFieldQuery",
    "PropertySetterManager",
    "FIELD_PROPERTIES",
    "DOCTYPE_PROPERTIES",
]
