"""
Error types for the DocType engine.

This module defines the error taxonomy shared by the registry, the overlay,
the meta cache and the migration workflow:
- DocTypeEngineError: Base exception
- AlreadyExistsError: Duplicate registration
- NotFoundError: DocType, custom field, property setter or migration absent
- ValidationFailedError: Structural rule violations (carries findings)
- PropertyNotSupportedError: Overlay rejects an unknown property key
- DependencyNotFoundError: A field references a nonexistent dependency field
- MigrationFailedError: SQL execution failed (carries the underlying cause)
- DatabaseError: Low-level database failure

Invariants:
    - All errors inherit from DocTypeEngineError
    - Every error has a stable code for programmatic handling
    - Errors include context for debugging in details
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .schema.validator import ValidationFinding


class DocTypeEngineError(Exception):
    """Base exception for all DocType engine errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DOCTYPE_ENGINE_ERROR"
        self.details = details or {}


class AlreadyExistsError(DocTypeEngineError):
    """An entity with the same key is already present.

    Raised when:
    - A DocType name is registered twice
    - A custom field collides with a base or custom field
    """

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        super().__init__(message, code="ALREADY_EXISTS", details={"key": key})
        self.key = key


class NotFoundError(DocTypeEngineError):
    """The requested entity does not exist.

    Raised for missing DocTypes, custom fields, property setters and
    migration records.
    """

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        key: Optional[str] = None,
    ) -> None:
        super().__init__(message, code="NOT_FOUND", details={"kind": kind, "key": key})
        self.kind = kind
        self.key = key


class ValidationFailedError(DocTypeEngineError):
    """Structural validation failed.

    Attributes:
        findings: Every finding produced by the validator, including
            warnings that did not block on their own
    """

    def __init__(
        self,
        message: str,
        findings: Optional[List[ValidationFinding]] = None,
    ) -> None:
        findings = findings or []
        super().__init__(
            message,
            code="VALIDATION_FAILED",
            details={"findings": [f.to_dict() for f in findings]},
        )
        self.findings = findings

    @property
    def errors(self) -> List[ValidationFinding]:
        """Findings with error severity."""
        return [f for f in self.findings if f.severity == "error"]


class PropertyNotSupportedError(DocTypeEngineError):
    """A property setter names a property outside the allow-list."""

    def __init__(self, message: str, property_name: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="PROPERTY_NOT_SUPPORTED",
            details={"property": property_name},
        )
        self.property_name = property_name


class DependencyNotFoundError(DocTypeEngineError):
    """A field dependency expression references a field that does not exist."""

    def __init__(
        self,
        message: str,
        fieldname: Optional[str] = None,
        dependency: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="DEPENDENCY_NOT_FOUND",
            details={"fieldname": fieldname, "dependency": dependency},
        )
        self.fieldname = fieldname
        self.dependency = dependency


class MigrationFailedError(DocTypeEngineError):
    """Applying migration SQL failed.

    The underlying exception is kept as ``cause`` and chained as
    ``__cause__`` by callers using ``raise ... from``.
    """

    def __init__(
        self,
        message: str,
        doctype: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            message,
            code="MIGRATION_FAILED",
            details={"doctype": doctype, "cause": str(cause) if cause else None},
        )
        self.doctype = doctype
        self.cause = cause


class DatabaseError(DocTypeEngineError):
    """A statement sent to the database failed."""

    def __init__(self, message: str, sql: Optional[str] = None) -> None:
        super().__init__(message, code="DATABASE_ERROR", details={"sql": sql})
        self.sql = sql
