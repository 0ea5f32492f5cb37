"""
Custom field overlay.

Custom fields extend a DocType without touching its base definition. They
are stored here keyed by (dt, fieldname) and spliced into the DocType's
field list at read time by merge_custom_fields().

Ordering:
    Base field i (0-based) has order i + 1. A custom field with order 2.5
    lands between the second and third base field. Sorting is stable:
    base fields come first on ties, then custom fields by insertion
    sequence. A custom field created without an order is appended after
    every existing field.

Invariants:
    - A custom field never shares a fieldname with a base field or
      another custom field of the same DocType
    - merge_custom_fields is pure given the stored custom fields and is
      idempotent (merging a merged DocType yields the same result)
    - Every mutation notifies listeners with the DocType name

How to change safely:
    - Validation rules live in schema.validator.validate_custom_field
    - Keep merge output deterministic; migration SQL depends on field order
"""

from __future__ import annotations

import asyncio
import dataclasses
import itertools
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from ..errors import (
    AlreadyExistsError,
    DependencyNotFoundError,
    NotFoundError,
    ValidationFailedError,
)
from ..schema.registry import DocTypeRegistry
from ..schema.types import CustomField, DocField, DocType, coerce_order
from ..schema.validator import validate_custom_field

logger = logging.getLogger(__name__)

IMMUTABLE_ATTRIBUTES = ("dt", "fieldname")
SORT_KEYS = ("order", "fieldname", "label")


@dataclass(frozen=True)
class CustomFieldQuery:
    """Filtering and pagination options for get_custom_fields().

    Attributes:
        fieldtype: Only fields of this type
        in_list_view: Only fields with this in_list_view flag
        include_hidden: Include hidden fields
        include_deprecated: Include deprecated fields
        sort_by: "order", "fieldname" or "label"
        sort_order: "asc" or "desc"
        offset: Number of matches to skip
        limit: Maximum number of matches to return
    """

    fieldtype: Optional[str] = None
    in_list_view: Optional[bool] = None
    include_hidden: bool = True
    include_deprecated: bool = False
    sort_by: str = "order"
    sort_order: str = "asc"
    offset: int = 0
    limit: Optional[int] = None


class CustomFieldManager:
    """Store of custom fields, independent of the DocType registry.

    Args:
        registry: Used to look up base field names when the caller does not
            pass existing_fieldnames

    Example:
        >>> manager = CustomFieldManager(registry)
        >>> await manager.create_custom_field(
        ...     {"dt": "User", "fieldname": "cf_phone", "label": "Phone", "fieldtype": "Data"}
        ... )
        >>> merged = manager.merge_custom_fields(registry.get("User"))
    """

    def __init__(self, registry: Optional[DocTypeRegistry] = None) -> None:
        self._registry = registry
        self._fields: Dict[str, Dict[str, CustomField]] = {}
        self._sequence: Dict[Tuple[str, str], int] = {}
        self._counter = itertools.count()
        self._listeners: List[Callable[[str], None]] = []
        self._lock = asyncio.Lock()

    def add_listener(self, listener: Callable[[str], None]) -> None:
        """Subscribe to mutations; listener receives the DocType name."""
        self._listeners.append(listener)

    def _notify(self, dt: str) -> None:
        for listener in list(self._listeners):
            listener(dt)

    def _base_fieldnames(self, dt: str) -> List[str]:
        if self._registry is None:
            return []
        doctype = self._registry.get(dt)
        return doctype.get_fieldnames() if doctype else []

    async def create_custom_field(
        self,
        options: Union[CustomField, Mapping[str, Any]],
        existing_fieldnames: Optional[Iterable[str]] = None,
    ) -> CustomField:
        """Create a custom field.

        Args:
            options: CustomField or record with dt, fieldname, label,
                fieldtype and optional constraints
            existing_fieldnames: Field names already on the DocType; looked
                up in the registry when omitted

        Returns:
            The stored CustomField (with its order resolved)

        Raises:
            AlreadyExistsError: If (dt, fieldname) exists as base or custom field
            ValidationFailedError: If the field is structurally invalid
            DependencyNotFoundError: If a dependency names an unknown field
        """
        custom_field = (
            CustomField.from_dict(dict(options)) if isinstance(options, Mapping) else options
        )
        if custom_field.order is not None:
            custom_field = dataclasses.replace(custom_field, order=coerce_order(custom_field.order))
        async with self._lock:
            dt = custom_field.dt
            existing = (
                list(existing_fieldnames)
                if existing_fieldnames is not None
                else self._base_fieldnames(dt)
            )
            customs = self._fields.get(dt, {})
            if custom_field.fieldname in customs or custom_field.fieldname in existing:
                raise AlreadyExistsError(
                    f"Field '{custom_field.fieldname}' already exists on DocType '{dt}'",
                    key=f"{dt}.{custom_field.fieldname}",
                )

            self._check(custom_field, set(existing) | set(customs))

            if custom_field.order is None:
                custom_field = dataclasses.replace(
                    custom_field, order=self._append_order(customs.values(), len(existing))
                )

            self._fields.setdefault(dt, {})[custom_field.fieldname] = custom_field
            self._sequence[custom_field.key] = next(self._counter)
            logger.debug(
                f"Created custom field {dt}.{custom_field.fieldname} "
                f"({custom_field.fieldtype}, order={custom_field.order})"
            )

        self._notify(dt)
        return custom_field

    async def update_custom_field(
        self, dt: str, fieldname: str, patch: Mapping[str, Any]
    ) -> CustomField:
        """Update attributes of a custom field.

        Raises:
            NotFoundError: If the custom field does not exist
            ValidationFailedError: If the patch renames the field or makes
                it invalid
            DependencyNotFoundError: If a dependency names an unknown field
        """
        async with self._lock:
            current = self._fields.get(dt, {}).get(fieldname)
            if current is None:
                raise NotFoundError(
                    f"Custom field '{fieldname}' not found on DocType '{dt}'",
                    kind="CustomField",
                    key=f"{dt}.{fieldname}",
                )

            known = {f.name for f in dataclasses.fields(CustomField)}
            unknown = sorted(set(patch) - known)
            frozen = [a for a in IMMUTABLE_ATTRIBUTES if a in patch and patch[a] != getattr(current, a)]
            if unknown or frozen:
                raise ValidationFailedError(
                    f"Cannot update custom field {dt}.{fieldname}: "
                    f"unknown attributes {unknown}, immutable attributes {frozen}"
                )

            if "order" in patch:
                patch = {**patch, "order": coerce_order(patch["order"])}
            updated = dataclasses.replace(current, **patch)
            base = self._base_fieldnames(dt)
            others = {n: f for n, f in self._fields[dt].items() if n != fieldname}
            self._check(updated, set(base) | set(others))
            if updated.order is None:
                updated = dataclasses.replace(
                    updated, order=self._append_order(others.values(), len(base))
                )

            self._fields[dt][fieldname] = updated
            logger.debug(f"Updated custom field {dt}.{fieldname}: {sorted(patch)}")

        self._notify(dt)
        return updated

    async def delete_custom_field(self, dt: str, fieldname: str) -> CustomField:
        """Delete a custom field.

        Raises:
            NotFoundError: If the custom field does not exist
        """
        async with self._lock:
            customs = self._fields.get(dt, {})
            if fieldname not in customs:
                raise NotFoundError(
                    f"Custom field '{fieldname}' not found on DocType '{dt}'",
                    kind="CustomField",
                    key=f"{dt}.{fieldname}",
                )
            removed = customs.pop(fieldname)
            self._sequence.pop(removed.key, None)
            if not customs:
                del self._fields[dt]
            logger.debug(f"Deleted custom field {dt}.{fieldname}")

        self._notify(dt)
        return removed

    async def clear(self, dt: Optional[str] = None) -> None:
        """Remove all custom fields, or those of one DocType."""
        async with self._lock:
            affected = [dt] if dt is not None else list(self._fields)
            for name in affected:
                for custom_field in self._fields.pop(name, {}).values():
                    self._sequence.pop(custom_field.key, None)

        for name in affected:
            self._notify(name)

    def _check(self, custom_field: CustomField, existing: Iterable[str]) -> None:
        result = validate_custom_field(custom_field, existing)
        structural = [f for f in result.errors if f.type != "dependency"]
        if structural:
            raise ValidationFailedError(
                f"Custom field '{custom_field.dt}.{custom_field.fieldname}' failed validation "
                f"with {len(structural)} error(s)",
                findings=result.findings,
            )
        missing = [f for f in result.errors if f.type == "dependency"]
        if missing:
            dependency = getattr(custom_field, missing[0].field)
            raise DependencyNotFoundError(
                missing[0].message,
                fieldname=custom_field.fieldname,
                dependency=dependency,
            )
        for warning in result.warnings:
            logger.info(f"Custom field {custom_field.dt}.{custom_field.fieldname}: {warning.message}")

    def get_custom_field(self, dt: str, fieldname: str) -> Optional[CustomField]:
        """Get one custom field, or None."""
        return self._fields.get(dt, {}).get(fieldname)

    def get_custom_fields(
        self, dt: str, query: Optional[CustomFieldQuery] = None
    ) -> List[CustomField]:
        """Get the custom fields of a DocType.

        Args:
            dt: DocType name
            query: Optional filtering, sorting and pagination

        Returns:
            Matching custom fields (ordered by order, then creation)
        """
        query = query or CustomFieldQuery()
        if query.sort_by not in SORT_KEYS:
            raise ValueError(f"Invalid sort_by '{query.sort_by}'. Valid: {SORT_KEYS}")

        fields = self._ordered(dt)
        if query.fieldtype is not None:
            fields = [f for f in fields if f.fieldtype == query.fieldtype]
        if query.in_list_view is not None:
            fields = [f for f in fields if f.in_list_view == query.in_list_view]
        if not query.include_hidden:
            fields = [f for f in fields if not f.hidden]
        if not query.include_deprecated:
            fields = [f for f in fields if not f.deprecated]

        if query.sort_by != "order":
            fields.sort(key=lambda f: getattr(f, query.sort_by))
        if query.sort_order == "desc":
            fields.reverse()

        end = None if query.limit is None else query.offset + query.limit
        return fields[query.offset:end]

    def get_all_doctypes_with_custom_fields(self) -> List[str]:
        return sorted(self._fields)

    def count(self, dt: Optional[str] = None) -> int:
        if dt is not None:
            return len(self._fields.get(dt, {}))
        return sum(len(fields) for fields in self._fields.values())

    @staticmethod
    def _append_order(customs: Iterable[CustomField], base_count: int) -> float:
        orders = [f.order for f in customs if f.order is not None]
        return float(max([base_count, *orders]) + 1)

    def _ordered(self, dt: str) -> List[CustomField]:
        return sorted(
            self._fields.get(dt, {}).values(),
            key=lambda f: (f.order, self._sequence.get(f.key, 0)),
        )

    def merge_custom_fields(self, doctype: DocType) -> DocType:
        """Return a new DocType with custom fields spliced into its fields.

        Base fields keep their relative order; each custom field is placed
        by its order value. The merged DocType's custom_fields lists the
        custom fields separately.

        Args:
            doctype: Base DocType (a previously merged DocType is accepted
                and its earlier custom fields are replaced)

        Returns:
            New DocType; the input is not modified
        """
        previous = {c.fieldname for c in doctype.custom_fields}
        base: List[DocField] = [f for f in doctype.fields if f.fieldname not in previous]
        base_names = {f.fieldname for f in base}

        customs = []
        for custom_field in self._ordered(doctype.name):
            if custom_field.fieldname in base_names:
                logger.warning(
                    f"Custom field {doctype.name}.{custom_field.fieldname} shadows a base "
                    "field and is ignored"
                )
                continue
            customs.append(custom_field)

        # (order, group, sequence): base before custom on equal order
        keyed: List[Tuple[Tuple[float, int, int], DocField]] = [
            ((float(i + 1), 0, i), f) for i, f in enumerate(base)
        ]
        keyed.extend(
            ((c.order, 1, self._sequence.get(c.key, 0)), c) for c in customs
        )
        keyed.sort(key=lambda item: item[0])

        return dataclasses.replace(
            doctype,
            fields=tuple(f for _, f in keyed),
            custom_fields=tuple(customs),
        )
