"""
Property setter overlay.

A property setter overrides one property of a field (base or custom) or of
the DocType itself. Only properties in the allow-lists below may be set;
each has an expected value type that is enforced when the setter is stored.

Invariants:
    - At most one setter per (doctype, fieldname, property); set_property
      replaces an existing one
    - apply_properties is pure and idempotent
    - Setters for fields that do not exist are kept but have no effect

How to change safely:
    - To allow a new property, add it to FIELD_PROPERTIES or
      DOCTYPE_PROPERTIES with its value kind; the name must be an attribute
      of DocField / DocType
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable
from typing import Any, Dict, List, Optional, Tuple

from ..errors import NotFoundError, PropertyNotSupportedError, ValidationFailedError
from ..schema.types import DocType, PropertySetter
from ..schema.validator import ValidationFinding

logger = logging.getLogger(__name__)

# property -> value kind ("bool", "int", "str", "any")
FIELD_PROPERTIES: Dict[str, str] = {
    "label": "str",
    "required": "bool",
    "unique": "bool",
    "hidden": "bool",
    "read_only": "bool",
    "bold": "bool",
    "in_list_view": "bool",
    "in_standard_filter": "bool",
    "options": "str",
    "default": "any",
    "length": "int",
    "precision": "int",
    "permlevel": "int",
    "description": "str",
    "depends_on": "str",
    "mandatory_depends_on": "str",
    "read_only_depends_on": "str",
    "fetch_from": "str",
}

DOCTYPE_PROPERTIES: Dict[str, str] = {
    "title_field": "str",
    "search_fields": "str",
    "image_field": "str",
    "sort_field": "str",
    "sort_order": "str",
    "track_changes": "bool",
    "max_attachments": "int",
    "description": "str",
}

SORT_ORDERS = ("asc", "desc")


def coerce_value(property_name: str, kind: str, value: Any) -> Any:
    """Check a setter value against its kind and normalize it.

    Booleans accept 0/1. None is accepted for str properties (clears them).

    Raises:
        ValidationFailedError: If the value has the wrong type
    """
    ok = True
    if kind == "bool":
        if value in (0, 1) and not isinstance(value, float):
            value = bool(value)
        else:
            ok = False
    elif kind == "int":
        ok = isinstance(value, int) and not isinstance(value, bool)
    elif kind == "str":
        ok = value is None or isinstance(value, str)
    if ok and property_name == "sort_order" and value not in SORT_ORDERS:
        ok = False
    if not ok:
        message = f"Invalid value {value!r} for property '{property_name}' (expected {kind})"
        raise ValidationFailedError(
            message, findings=[ValidationFinding("invalid_type", property_name, message)]
        )
    return value


class PropertySetterManager:
    """Store of property setters keyed by (doctype, fieldname, property).

    Example:
        >>> setters = PropertySetterManager()
        >>> await setters.set_property("User", "email", "label", "E-mail")
        >>> setters.apply_properties(user).get_field("email").label
        'E-mail'
    """

    def __init__(self) -> None:
        self._setters: Dict[Tuple[str, str, str], PropertySetter] = {}
        self._listeners: List[Callable[[str], None]] = []
        self._lock = asyncio.Lock()

    def add_listener(self, listener: Callable[[str], None]) -> None:
        """Subscribe to mutations; listener receives the DocType name."""
        self._listeners.append(listener)

    def _notify(self, doctype: str) -> None:
        for listener in list(self._listeners):
            listener(doctype)

    async def set_property(
        self,
        doctype: str,
        fieldname: Optional[str],
        property_name: str,
        value: Any,
    ) -> PropertySetter:
        """Create or replace a property setter.

        Args:
            doctype: Target DocType name
            fieldname: Target field, or None for a DocType-level property
            property_name: Property to override
            value: New value

        Raises:
            PropertyNotSupportedError: If the property is not allowed at that level
            ValidationFailedError: If the value has the wrong type
        """
        allowed = FIELD_PROPERTIES if fieldname else DOCTYPE_PROPERTIES
        if property_name not in allowed:
            level = "field" if fieldname else "DocType"
            raise PropertyNotSupportedError(
                f"Property '{property_name}' cannot be set at {level} level",
                property_name=property_name,
            )
        value = coerce_value(property_name, allowed[property_name], value)

        setter = PropertySetter(
            doctype=doctype, fieldname=fieldname or None, property=property_name, value=value
        )
        async with self._lock:
            self._setters[setter.key] = setter
            logger.debug(
                f"Set property {doctype}.{fieldname or '*'}.{property_name} = {value!r}"
            )

        self._notify(doctype)
        return setter

    async def remove_property(
        self,
        doctype: str,
        fieldname: Optional[str] = None,
        property_name: Optional[str] = None,
    ) -> int:
        """Remove property setters.

        - fieldname and property_name: that one setter
        - fieldname only: every setter of that field
        - property_name only: that DocType-level setter
        - neither: every setter of the DocType

        Returns:
            Number of setters removed

        Raises:
            NotFoundError: If nothing matched
        """
        async with self._lock:
            if property_name is not None:
                keys = [(doctype, fieldname or "", property_name)]
                keys = [k for k in keys if k in self._setters]
            elif fieldname is not None:
                keys = [k for k in self._setters if k[0] == doctype and k[1] == fieldname]
            else:
                keys = [k for k in self._setters if k[0] == doctype]

            if not keys:
                target = ".".join(p for p in (doctype, fieldname, property_name) if p)
                raise NotFoundError(
                    f"No property setter found for {target}", kind="PropertySetter", key=target
                )
            for key in keys:
                del self._setters[key]
            logger.debug(f"Removed {len(keys)} property setter(s) from {doctype}")

        self._notify(doctype)
        return len(keys)

    async def clear(self) -> None:
        """Remove every property setter."""
        async with self._lock:
            affected = sorted({k[0] for k in self._setters})
            self._setters.clear()
        for doctype in affected:
            self._notify(doctype)

    def get_property(
        self, doctype: str, fieldname: Optional[str], property_name: str
    ) -> Optional[PropertySetter]:
        return self._setters.get((doctype, fieldname or "", property_name))

    def get_properties(
        self, doctype: str, fieldname: Optional[str] = None
    ) -> List[PropertySetter]:
        """Get the setters of a DocType, optionally only those of one field."""
        return [
            s
            for k, s in self._setters.items()
            if k[0] == doctype and (fieldname is None or k[1] == fieldname)
        ]

    def apply_properties(self, doctype: DocType) -> DocType:
        """Return a new DocType with every matching setter overlaid.

        DocType-level setters apply to the DocType's own attributes,
        field-level setters to the field (base or custom) of that name.
        """
        setters = self.get_properties(doctype.name)
        if not setters:
            return doctype

        doctype_changes = {s.property: s.value for s in setters if s.is_doctype_level}
        field_changes: Dict[str, Dict[str, Any]] = {}
        for s in setters:
            if not s.is_doctype_level:
                field_changes.setdefault(s.fieldname or "", {})[s.property] = s.value

        fields = tuple(
            dataclasses.replace(f, **field_changes[f.fieldname])
            if f.fieldname in field_changes
            else f
            for f in doctype.fields
        )
        custom_fields = tuple(
            dataclasses.replace(c, **field_changes[c.fieldname])
            if c.fieldname in field_changes
            else c
            for c in doctype.custom_fields
        )
        return dataclasses.replace(
            doctype, fields=fields, custom_fields=custom_fields, **doctype_changes
        )
