"""
Structural validation of DocTypes and custom fields.

Validation never raises; it collects findings so that a caller sees every
problem at once. The registry and the overlay turn error findings into
ValidationFailedError / DependencyNotFoundError at their boundaries.

Finding types:
    required         A mandatory attribute is missing or empty
    invalid          A value is outside its allowed set
    invalid_type     A value has the wrong shape (e.g. fields is not a list)
    missing_options  Link/Dynamic Link/Table/Select without options
    duplicate        Field name used twice in one DocType
    invalid_name     Field name is not a valid identifier
    reserved         Custom field name collides with a system column
    dependency       Dependency expression names an unknown field

Invariants:
    - validate_doctype is pure: no side effects, same input same output
    - A DocType is valid iff it has zero error-severity findings
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .types import (
    RESERVED_FIELDNAMES,
    SYSTEM_COLUMNS,
    CustomField,
    DocField,
    DocPerm,
    DocType,
    FieldType,
    IndexDef,
)

FIELDNAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
MAX_FIELDNAME_LENGTH = 140
MAX_LABEL_LENGTH = 255
MIN_FIELD_LENGTH = 1
MAX_FIELD_LENGTH = 1_000_000
MAX_PRECISION = 9
CUSTOM_FIELD_PREFIX = "cf_"
DEPENDENCY_ATTRIBUTES = ("depends_on", "mandatory_depends_on", "read_only_depends_on")

# Field types a custom field may use: data types only, no child tables
CUSTOM_FIELD_TYPES = frozenset(
    kind for kind in FieldType if kind.has_column
)

NUMERIC_TYPES = frozenset(
    {FieldType.INT, FieldType.FLOAT, FieldType.CURRENCY, FieldType.PERCENT, FieldType.RATING}
)


@dataclass(frozen=True)
class ValidationFinding:
    """A single validation finding.

    Attributes:
        type: Finding type (see module docstring)
        field: Path of the offending attribute, e.g. "fields[2].fieldname"
        message: Human-readable description
        severity: "error", "warning" or "info"
    """

    type: str
    field: str
    message: str
    severity: str = "error"

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary representation."""
        return {
            "type": self.type,
            "field": self.field,
            "message": self.message,
            "severity": self.severity,
        }

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.field}: {self.message}"


@dataclass
class ValidationResult:
    """Outcome of validating a DocType or custom field."""

    findings: list[ValidationFinding] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        """Whether there are no error-severity findings."""
        return not self.errors

    @property
    def errors(self) -> list[ValidationFinding]:
        return [f for f in self.findings if f.severity == "error"]

    @property
    def warnings(self) -> list[ValidationFinding]:
        return [f for f in self.findings if f.severity == "warning"]


def validate_doctype(doctype: DocType | Mapping[str, Any]) -> ValidationResult:
    """Validate a DocType definition.

    Accepts either a DocType or a raw declarative record. Raw records are
    additionally checked for shape (``fields``/``permissions`` must be
    lists of objects).

    Args:
        doctype: DocType instance or dictionary record

    Returns:
        ValidationResult with every finding

    Example:
        >>> result = validate_doctype({"name": "User", "module": "Core"})
        >>> result.valid
        False
    """
    findings: list[ValidationFinding] = []

    if isinstance(doctype, Mapping):
        findings.extend(_check_record_shape(doctype))
        doctype = DocType.from_dict(dict(doctype))
    else:
        shape = _check_instance_shape(doctype)
        if shape:
            return ValidationResult(shape + _check_identity(doctype))

    findings.extend(_check_identity(doctype))
    findings.extend(_check_fields(doctype.fields))
    findings.extend(_check_permissions(doctype))
    findings.extend(_check_indexes(doctype))
    findings.extend(_check_references(doctype))

    return ValidationResult(findings)


def validate_custom_field(
    custom_field: CustomField,
    existing_fieldnames: Iterable[str] = (),
) -> ValidationResult:
    """Validate a custom field before it is stored.

    Args:
        custom_field: Field to validate
        existing_fieldnames: Base and custom field names of the target
            DocType; dependency expressions must reference one of them

    Returns:
        ValidationResult with every finding
    """
    existing = set(existing_fieldnames)
    findings: list[ValidationFinding] = []

    if not custom_field.dt:
        findings.append(ValidationFinding("required", "dt", "DocType (dt) is required"))

    findings.extend(_check_custom_fieldname(custom_field.fieldname))

    if not custom_field.label:
        findings.append(ValidationFinding("required", "label", "Label is required"))
    elif len(custom_field.label) > MAX_LABEL_LENGTH:
        findings.append(
            ValidationFinding(
                "invalid",
                "label",
                f"Label must be at most {MAX_LABEL_LENGTH} characters",
            )
        )

    kind = custom_field.field_type
    if not custom_field.fieldtype:
        findings.append(ValidationFinding("required", "fieldtype", "Field type is required"))
    elif kind is None:
        findings.append(
            ValidationFinding(
                "invalid", "fieldtype", f"Invalid field type '{custom_field.fieldtype}'"
            )
        )
    elif kind not in CUSTOM_FIELD_TYPES:
        findings.append(
            ValidationFinding(
                "invalid",
                "fieldtype",
                f"Field type '{custom_field.fieldtype}' is not supported for custom fields",
            )
        )
    elif kind.requires_options and not custom_field.options:
        findings.append(
            ValidationFinding(
                "missing_options",
                "options",
                f"Options are required for {custom_field.fieldtype} fields",
            )
        )

    findings.extend(_check_bounds(custom_field, ""))

    order = custom_field.order
    if order is not None and (
        isinstance(order, bool)
        or not isinstance(order, (int, float))
        or not math.isfinite(order)
    ):
        findings.append(
            ValidationFinding("invalid_type", "order", f"Order must be a finite number, got {order!r}")
        )

    if kind is not None and custom_field.default not in (None, ""):
        message = _check_default(kind, custom_field.default, custom_field.options)
        if message:
            findings.append(ValidationFinding("invalid", "default", message))

    for attr in DEPENDENCY_ATTRIBUTES:
        expression = getattr(custom_field, attr)
        if not expression or expression.startswith("eval:"):
            continue
        if expression not in existing:
            findings.append(
                ValidationFinding(
                    "dependency",
                    attr,
                    f"Dependency field '{expression}' does not exist",
                )
            )

    return ValidationResult(findings)


def _check_record_shape(record: Mapping[str, Any]) -> list[ValidationFinding]:
    """Check that list attributes of a raw record are lists of objects."""
    errors = []
    for key in ("fields", "permissions"):
        value = record.get(key)
        if value is None:
            errors.append(ValidationFinding("required", key, f"'{key}' must be a list"))
        elif not isinstance(value, list):
            errors.append(ValidationFinding("invalid_type", key, f"'{key}' must be a list"))
        else:
            for i, item in enumerate(value):
                if not isinstance(item, Mapping):
                    errors.append(
                        ValidationFinding(
                            "invalid_type", f"{key}[{i}]", f"{key}[{i}] must be an object"
                        )
                    )
    return errors


def _check_instance_shape(doctype: DocType) -> list[ValidationFinding]:
    """Check that the sequence attributes of a DocType instance are sequences."""
    errors = []
    for key, item_type in (("fields", DocField), ("permissions", DocPerm), ("indexes", IndexDef)):
        value = getattr(doctype, key)
        if value is None and key != "indexes":
            errors.append(ValidationFinding("required", key, f"'{key}' must be a list"))
        elif not isinstance(value, (list, tuple)):
            errors.append(ValidationFinding("invalid_type", key, f"'{key}' must be a list"))
        else:
            for i, item in enumerate(value):
                if not isinstance(item, item_type):
                    errors.append(
                        ValidationFinding(
                            "invalid_type",
                            f"{key}[{i}]",
                            f"{key}[{i}] must be a {item_type.__name__}",
                        )
                    )
    return errors


def _check_identity(doctype: DocType) -> list[ValidationFinding]:
    errors = []
    if not isinstance(doctype.name, str) or not doctype.name.strip():
        errors.append(ValidationFinding("required", "name", "DocType name is required"))
    if not isinstance(doctype.module, str) or not doctype.module.strip():
        errors.append(ValidationFinding("required", "module", "Module is required"))
    return errors


def _check_fields(fields: Iterable[DocField]) -> list[ValidationFinding]:
    """Check each field's required attributes, type, options and uniqueness."""
    findings = []
    seen: dict[str, int] = {}

    for i, f in enumerate(fields):
        path = f"fields[{i}]"
        if not f.fieldname:
            findings.append(
                ValidationFinding("required", f"{path}.fieldname", "Field name is required")
            )
        else:
            if f.fieldname in seen:
                findings.append(
                    ValidationFinding(
                        "duplicate",
                        f"{path}.fieldname",
                        f"Duplicate field name '{f.fieldname}' "
                        f"(first defined at fields[{seen[f.fieldname]}])",
                    )
                )
            else:
                seen[f.fieldname] = i
            if not FIELDNAME_PATTERN.match(f.fieldname):
                findings.append(
                    ValidationFinding(
                        "invalid_name",
                        f"{path}.fieldname",
                        f"Field name '{f.fieldname}' is not a valid identifier",
                        severity="warning",
                    )
                )

        if not f.label:
            findings.append(ValidationFinding("required", f"{path}.label", "Label is required"))

        kind = f.field_type
        if not f.fieldtype:
            findings.append(
                ValidationFinding("required", f"{path}.fieldtype", "Field type is required")
            )
        elif kind is None:
            findings.append(
                ValidationFinding(
                    "invalid", f"{path}.fieldtype", f"Invalid field type '{f.fieldtype}'"
                )
            )
        elif kind.requires_options and not (f.options or "").strip():
            findings.append(
                ValidationFinding(
                    "missing_options",
                    f"{path}.options",
                    f"{f.fieldtype} field '{f.fieldname}' must declare options",
                )
            )

        findings.extend(_check_bounds(f, f"{path}."))

    return findings


def _check_bounds(f: DocField, prefix: str) -> list[ValidationFinding]:
    errors = []
    if f.length is not None and not MIN_FIELD_LENGTH <= f.length <= MAX_FIELD_LENGTH:
        errors.append(
            ValidationFinding(
                "invalid",
                f"{prefix}length",
                f"Length must be between {MIN_FIELD_LENGTH} and {MAX_FIELD_LENGTH}",
            )
        )
    if f.precision is not None and not 0 <= f.precision <= MAX_PRECISION:
        errors.append(
            ValidationFinding(
                "invalid",
                f"{prefix}precision",
                f"Precision must be between 0 and {MAX_PRECISION}",
            )
        )
    return errors


def _check_permissions(doctype: DocType) -> list[ValidationFinding]:
    errors = []
    for i, perm in enumerate(doctype.permissions):
        if not perm.role:
            errors.append(
                ValidationFinding("required", f"permissions[{i}].role", "Role is required")
            )
    return errors


def _check_indexes(doctype: DocType) -> list[ValidationFinding]:
    """Check that declared indexes name existing columns."""
    errors = []
    known = set(SYSTEM_COLUMNS) | {f.fieldname for f in doctype.fields if f.has_column}
    for i, index in enumerate(doctype.indexes):
        if not index.name:
            errors.append(
                ValidationFinding("required", f"indexes[{i}].name", "Index name is required")
            )
        if not index.columns:
            errors.append(
                ValidationFinding(
                    "required", f"indexes[{i}].columns", "Index must have at least one column"
                )
            )
        for column in index.columns:
            if column not in known:
                errors.append(
                    ValidationFinding(
                        "invalid",
                        f"indexes[{i}].columns",
                        f"Index '{index.name}' references unknown column '{column}'",
                    )
                )
    return errors


def _check_references(doctype: DocType) -> list[ValidationFinding]:
    """Warn about metadata pointers that name no declared field."""
    warnings = []
    fieldnames = set(doctype.get_fieldnames()) | {"name"}
    for attr in ("title_field", "image_field"):
        value = getattr(doctype, attr)
        if value and value not in fieldnames:
            warnings.append(
                ValidationFinding(
                    "invalid",
                    attr,
                    f"{attr} '{value}' does not match any field",
                    severity="warning",
                )
            )
    if doctype.search_fields:
        for name in (s.strip() for s in doctype.search_fields.split(",")):
            if name and name not in fieldnames:
                warnings.append(
                    ValidationFinding(
                        "invalid",
                        "search_fields",
                        f"Search field '{name}' does not match any field",
                        severity="warning",
                    )
                )
    return warnings


def _check_custom_fieldname(fieldname: str) -> list[ValidationFinding]:
    findings = []
    if not fieldname:
        findings.append(ValidationFinding("required", "fieldname", "Field name is required"))
        return findings
    if len(fieldname) > MAX_FIELDNAME_LENGTH:
        findings.append(
            ValidationFinding(
                "invalid",
                "fieldname",
                f"Field name must be at most {MAX_FIELDNAME_LENGTH} characters",
            )
        )
    if not FIELDNAME_PATTERN.match(fieldname):
        findings.append(
            ValidationFinding(
                "invalid_name",
                "fieldname",
                "Field name must start with a letter or underscore and contain "
                "only letters, digits and underscores",
            )
        )
    if fieldname in RESERVED_FIELDNAMES:
        findings.append(
            ValidationFinding(
                "reserved", "fieldname", f"Field name '{fieldname}' is reserved"
            )
        )
    if not fieldname.startswith(CUSTOM_FIELD_PREFIX):
        findings.append(
            ValidationFinding(
                "invalid_name",
                "fieldname",
                f"Custom field names should start with '{CUSTOM_FIELD_PREFIX}'",
                severity="warning",
            )
        )
    return findings


def _check_default(kind: FieldType, default: Any, options: str | None) -> str | None:
    """Return an error message if default is incompatible with kind."""
    if kind in NUMERIC_TYPES:
        if isinstance(default, bool):
            return f"Default value for {kind.value} must be numeric"
        try:
            number = float(default)
        except (TypeError, ValueError):
            return f"Default value for {kind.value} must be numeric"
        if kind == FieldType.INT and not number.is_integer():
            return "Default value for Int must be an integer"
    elif kind == FieldType.CHECK:
        if default not in (0, 1, "0", "1", True, False):
            return "Default value for Check must be 0 or 1"
    elif kind == FieldType.SELECT and options:
        choices = [o.strip() for o in options.split("\n")]
        if str(default) not in choices:
            return f"Default value '{default}' is not one of the Select options"
    return None
