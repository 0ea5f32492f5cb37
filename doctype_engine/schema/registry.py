"""
DocType Registry.

The DocTypeRegistry is the authoritative store of DocType definitions.
It provides:
- Validated registration and unregistration
- Lookup by name and by module
- Change listeners used for meta cache invalidation
- Schema fingerprinting for migration records

Invariants:
    - DocType names are unique
    - Mutations are serialized through one asyncio.Lock (FIFO), so a second
      caller always observes the first caller's completed mutation
    - Reads never take the lock; they see the last published snapshot
    - Every mutation notifies listeners with the affected DocType name
    - Stored DocTypes hold tuples only, never a list shared with the caller

How to change safely:
    - New mutating methods must run under self._lock and call _notify()
    - Never mutate the published dicts in place; publish new ones

Example:
    >>> registry = DocTypeRegistry()
    >>> await registry.register(DocType(name="User", module="Core", fields=(...)))
    >>> registry.get("User")
    DocType(name='User', module='Core', ...)
"""

from __future__ import annotations

import asyncio
import dataclasses
import hashlib
import json
import logging
from collections.abc import Callable, Mapping
from typing import Any, Dict, List, Optional, Union

from ..errors import AlreadyExistsError, NotFoundError, ValidationFailedError
from .types import DocType
from .validator import ValidationResult, validate_doctype

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]


class DocTypeRegistry:
    """In-memory registry of DocType definitions.

    Thread-safety:
        - Designed for a single event loop; mutations are coroutines
          serialized by an asyncio.Lock
        - Lookups are plain dict reads over an immutable snapshot

    Example:
        >>> registry = DocTypeRegistry()
        >>> registry.add_listener(cache.invalidate_meta)
        >>> await registry.register(User)
        >>> registry.count_by_module("Core")
        1
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._doctypes: Dict[str, DocType] = {}
        self._modules: Dict[str, tuple[str, ...]] = {}
        self._listeners: List[ChangeListener] = []
        self._lock = asyncio.Lock()

    def add_listener(self, listener: ChangeListener) -> None:
        """Subscribe to mutations; listener receives the DocType name."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        """Unsubscribe a previously added listener."""
        self._listeners.remove(listener)

    def _notify(self, name: str) -> None:
        for listener in list(self._listeners):
            listener(name)

    async def register(self, doctype: Union[DocType, Mapping[str, Any]]) -> DocType:
        """Register a DocType definition.

        Args:
            doctype: DocType or raw declarative record

        Returns:
            The stored DocType

        Raises:
            AlreadyExistsError: If the name is already registered (checked
                before validation)
            ValidationFailedError: If the definition has error findings
        """
        async with self._lock:
            name = doctype.get("name") if isinstance(doctype, Mapping) else doctype.name
            if name and name in self._doctypes:
                raise AlreadyExistsError(f"DocType '{name}' is already registered", key=name)

            stored = self._validated(doctype)
            self._publish(stored)
            logger.debug(f"Registered DocType: {stored.name} (module={stored.module})")

        self._notify(stored.name)
        return stored

    async def update(self, doctype: Union[DocType, Mapping[str, Any]]) -> DocType:
        """Replace an existing DocType definition.

        Custom fields and property setters are stored apart from the base
        definition, so they survive a redefinition.

        Raises:
            NotFoundError: If no DocType with that name is registered
            ValidationFailedError: If the new definition is invalid
        """
        async with self._lock:
            stored = self._validated(doctype)
            previous = self._doctypes.get(stored.name)
            if previous is None:
                raise NotFoundError(
                    f"DocType '{stored.name}' is not registered", kind="DocType", key=stored.name
                )
            self._unpublish(previous)
            self._publish(stored)
            logger.debug(f"Updated DocType: {stored.name}")

        self._notify(stored.name)
        return stored

    async def unregister(self, name: str) -> DocType:
        """Remove a DocType.

        Returns:
            The removed DocType

        Raises:
            NotFoundError: If the name is not registered
        """
        async with self._lock:
            doctype = self._doctypes.get(name)
            if doctype is None:
                raise NotFoundError(f"DocType '{name}' is not registered", kind="DocType", key=name)
            self._unpublish(doctype)
            logger.debug(f"Unregistered DocType: {name}")

        self._notify(name)
        return doctype

    def _validated(self, doctype: Union[DocType, Mapping[str, Any]]) -> DocType:
        result = self.validate(doctype)
        if not result.valid:
            name = doctype.get("name") if isinstance(doctype, Mapping) else doctype.name
            raise ValidationFailedError(
                f"DocType '{name}' failed validation with {len(result.errors)} error(s)",
                findings=result.findings,
            )
        for warning in result.warnings:
            logger.warning(f"DocType validation warning: {warning}")
        if isinstance(doctype, Mapping):
            return DocType.from_dict(dict(doctype))
        # stored copies never share a mutable sequence with the caller
        return dataclasses.replace(
            doctype,
            fields=tuple(doctype.fields),
            permissions=tuple(doctype.permissions),
            indexes=tuple(doctype.indexes),
            custom_fields=tuple(doctype.custom_fields or ()),
        )

    def _publish(self, doctype: DocType) -> None:
        doctypes = dict(self._doctypes)
        doctypes[doctype.name] = doctype
        modules = dict(self._modules)
        modules[doctype.module] = modules.get(doctype.module, ()) + (doctype.name,)
        self._doctypes = doctypes
        self._modules = modules

    def _unpublish(self, doctype: DocType) -> None:
        doctypes = dict(self._doctypes)
        del doctypes[doctype.name]
        modules = dict(self._modules)
        remaining = tuple(n for n in modules.get(doctype.module, ()) if n != doctype.name)
        if remaining:
            modules[doctype.module] = remaining
        else:
            modules.pop(doctype.module, None)
        self._doctypes = doctypes
        self._modules = modules

    @staticmethod
    def validate(doctype: Union[DocType, Mapping[str, Any]]) -> ValidationResult:
        """Validate a definition without registering it."""
        return validate_doctype(doctype)

    def get(self, name: str) -> Optional[DocType]:
        """Get a DocType by name, or None if not registered."""
        return self._doctypes.get(name)

    def get_all(self) -> List[DocType]:
        """Get all DocTypes in registration order."""
        return list(self._doctypes.values())

    def get_by_module(self, module: str) -> List[DocType]:
        """Get all DocTypes of a module in registration order."""
        doctypes = self._doctypes
        return [doctypes[n] for n in self._modules.get(module, ()) if n in doctypes]

    def get_modules(self) -> List[str]:
        """Get all module names with at least one DocType."""
        return list(self._modules)

    def is_registered(self, name: str) -> bool:
        return name in self._doctypes

    def count(self) -> int:
        return len(self._doctypes)

    def count_by_module(self, module: str) -> int:
        return len(self._modules.get(module, ()))

    def fingerprint(self, name: Optional[str] = None) -> str:
        """SHA-256 fingerprint of one DocType or of the whole registry.

        Raises:
            NotFoundError: If name is given and not registered
        """
        if name is not None:
            doctype = self.get(name)
            if doctype is None:
                raise NotFoundError(f"DocType '{name}' is not registered", kind="DocType", key=name)
            payload: Any = doctype.to_dict()
        else:
            payload = [d.to_dict() for d in sorted(self.get_all(), key=lambda d: d.name)]
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        return f"sha256:{hashlib.sha256(canonical.encode('utf-8')).hexdigest()}"

    def to_dict(self) -> Dict[str, Any]:
        """Export all DocTypes for serialization."""
        return {"doctypes": [d.to_dict() for d in self.get_all()]}

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, name: object) -> bool:
        return name in self._doctypes
