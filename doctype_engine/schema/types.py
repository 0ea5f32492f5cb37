"""
Metadata model for the DocType engine.

This module defines the core data structures that describe document types:
- FieldType: Closed enumeration of supported field types
- DocField: One attribute of a DocType
- DocPerm: Role based permission entry
- IndexDef: Declared database index
- DocType: A document type (table schema plus metadata)
- CustomField: A field added outside the base declaration
- PropertySetter: A single-property override

Invariants:
    - All model types are immutable (frozen dataclasses)
    - Layout-marker field types never map to a physical column
    - Constructors are lenient; structural rules live in the validator so
      that every violation can be reported, not only the first

How to change safely:
    - New field types must be added to FieldType and to every dialect's
      type map in migration.dialect
    - New attributes need a default so old declarative records still load
    - Keep to_dict/from_dict symmetrical

Example:
    >>> User = DocType(
    ...     name="User",
    ...     module="Core",
    ...     fields=(
    ...         field("email", "Data", required=True, unique=True),
    ...         field("full_name", "Data"),
    ...     ),
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import fields as dataclass_fields
from enum import Enum
from typing import Any


class FieldType(Enum):
    """Supported field types.

    The value is the declarative name used in DocType records.
    """

    DATA = "Data"
    LONG_TEXT = "Long Text"
    SMALL_TEXT = "Small Text"
    TEXT_EDITOR = "Text Editor"
    CODE = "Code"
    MARKDOWN_EDITOR = "Markdown Editor"
    HTML_EDITOR = "HTML Editor"
    INT = "Int"
    FLOAT = "Float"
    CURRENCY = "Currency"
    PERCENT = "Percent"
    CHECK = "Check"
    SELECT = "Select"
    LINK = "Link"
    DYNAMIC_LINK = "Dynamic Link"
    TABLE = "Table"
    TABLE_MULTISELECT = "Table MultiSelect"
    DATE = "Date"
    DATETIME = "Datetime"
    TIME = "Time"
    DURATION = "Duration"
    GEOLOCATION = "Geolocation"
    ATTACH = "Attach"
    ATTACH_IMAGE = "Attach Image"
    SIGNATURE = "Signature"
    COLOR = "Color"
    RATING = "Rating"
    PASSWORD = "Password"
    READ_ONLY = "Read Only"
    # Layout markers
    BUTTON = "Button"
    IMAGE = "Image"
    HTML = "HTML"
    SECTION_BREAK = "Section Break"
    COLUMN_BREAK = "Column Break"
    TAB_BREAK = "Tab Break"
    FOLD = "Fold"

    @classmethod
    def from_str(cls, value: str) -> FieldType:
        """Convert a declarative name to FieldType.

        Args:
            value: Declarative field type name (e.g. "Long Text")

        Returns:
            Corresponding FieldType enum value

        Raises:
            ValueError: If value is not a valid field type
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field type '{value}'. Valid types: {valid}")

    @classmethod
    def is_valid(cls, value: Any) -> bool:
        """Whether value names a known field type."""
        return any(kind.value == value for kind in cls)

    @property
    def is_layout(self) -> bool:
        """Whether this type is a pure layout marker."""
        return self in LAYOUT_FIELD_TYPES

    @property
    def is_table(self) -> bool:
        """Whether this type holds child rows stored in another table."""
        return self in (FieldType.TABLE, FieldType.TABLE_MULTISELECT)

    @property
    def has_column(self) -> bool:
        """Whether this type maps to a physical column in the parent table."""
        return not self.is_layout and not self.is_table

    @property
    def requires_options(self) -> bool:
        """Whether fields of this type must declare options."""
        return self in OPTIONS_REQUIRED_TYPES


LAYOUT_FIELD_TYPES = frozenset(
    {
        FieldType.SECTION_BREAK,
        FieldType.COLUMN_BREAK,
        FieldType.TAB_BREAK,
        FieldType.FOLD,
        FieldType.BUTTON,
        FieldType.HTML,
        FieldType.IMAGE,
    }
)

OPTIONS_REQUIRED_TYPES = frozenset(
    {
        FieldType.LINK,
        FieldType.DYNAMIC_LINK,
        FieldType.TABLE,
        FieldType.TABLE_MULTISELECT,
        FieldType.SELECT,
    }
)

# Columns every DocType table carries in addition to its declared fields
SYSTEM_COLUMNS = (
    "id",
    "creation",
    "modified",
    "modified_by",
    "owner",
    "docstatus",
    "idx",
    "parent",
    "parentfield",
    "parenttype",
)

# Field names a custom field may not take
RESERVED_FIELDNAMES = frozenset(
    {
        "name",
        "creation",
        "modified",
        "modified_by",
        "owner",
        "docstatus",
        "parent",
        "parentfield",
        "parenttype",
        "idx",
    }
)


@dataclass(frozen=True)
class DocField:
    """Definition of a single field within a DocType.

    Attributes:
        fieldname: Column name, unique within the DocType
        label: Human-readable label
        fieldtype: Declarative field type name (see FieldType)
        required: Whether a value is mandatory (column is NOT NULL)
        unique: Whether values must be unique (backed by a unique index)
        length: Maximum length for bounded text types
        precision: Decimal places for numeric types
        default: Default value
        options: Target DocType for Link/Table, newline separated choices
            for Select, name of the DocType field for Dynamic Link
        permlevel: Permission level guarding the field
        depends_on: Display dependency (field name or eval: expression)
        mandatory_depends_on: Conditional mandatory expression
        read_only_depends_on: Conditional read-only expression
        old_fieldname: Previous name, used to detect column renames

    Example:
        >>> status = DocField(
        ...     fieldname="status",
        ...     label="Status",
        ...     fieldtype="Select",
        ...     options="Open\\nClosed",
        ... )
    """

    fieldname: str
    label: str = ""
    fieldtype: str = "Data"
    required: bool = False
    unique: bool = False
    length: int | None = None
    precision: int | None = None
    default: Any = None
    options: str | None = None
    permlevel: int = 0
    hidden: bool = False
    read_only: bool = False
    in_list_view: bool = False
    in_standard_filter: bool = False
    bold: bool = False
    description: str = ""
    depends_on: str | None = None
    mandatory_depends_on: str | None = None
    read_only_depends_on: str | None = None
    fetch_from: str | None = None
    old_fieldname: str | None = None
    deprecated: bool = False

    @property
    def field_type(self) -> FieldType | None:
        """Parsed field type, or None if the declared name is unknown."""
        if FieldType.is_valid(self.fieldtype):
            return FieldType.from_str(self.fieldtype)
        return None

    @property
    def is_layout(self) -> bool:
        """Whether this field is a layout marker."""
        kind = self.field_type
        return kind is not None and kind.is_layout

    @property
    def has_column(self) -> bool:
        """Whether this field maps to a physical column."""
        kind = self.field_type
        return kind is not None and kind.has_column

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation, omitting default values."""
        result: dict[str, Any] = {
            "fieldname": self.fieldname,
            "label": self.label,
            "fieldtype": self.fieldtype,
        }
        for f in dataclass_fields(self):
            if f.name in result:
                continue
            value = getattr(self, f.name)
            if value != f.default:
                result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DocField:
        """Create from dictionary representation.

        Unknown keys are ignored. ``reqd`` is accepted as an alias of
        ``required``.
        """
        return cls(**_field_kwargs(cls, data))


@dataclass(frozen=True)
class CustomField(DocField):
    """A field added to a DocType outside its base declaration.

    Custom fields are stored independently of the DocType and merged at
    read time; they are never written into the base definition.

    Attributes:
        dt: Owning DocType name
        order: Position among the DocType's fields. Fractional values
            insert a field between two existing ones without renumbering.
    """

    dt: str = ""
    order: float | None = None

    @property
    def key(self) -> tuple[str, str]:
        """Storage key (dt, fieldname)."""
        return (self.dt, self.fieldname)

    def to_field(self) -> DocField:
        """Strip the custom field attributes, returning a plain DocField."""
        base_names = {f.name for f in dataclass_fields(DocField)}
        return DocField(**{name: getattr(self, name) for name in base_names})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CustomField:
        """Create from dictionary representation.

        Numeric ``order`` values (including numeric strings from YAML) are
        converted to float; anything else is kept for the validator to reject.
        """
        kwargs = _field_kwargs(cls, data)
        if "order" in kwargs:
            kwargs["order"] = coerce_order(kwargs["order"])
        return cls(**kwargs)


def coerce_order(value: Any) -> Any:
    """Normalize a custom field order to float where it is numeric."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return value
    return value


def _field_kwargs(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    """Pick the dataclass attributes of cls out of a loosely typed record."""
    names = {f.name for f in dataclass_fields(cls)}
    kwargs = {k: v for k, v in data.items() if k in names}
    if "required" not in kwargs and "reqd" in data:
        kwargs["required"] = bool(data["reqd"])
    kwargs.setdefault("fieldname", "")
    for flag in ("required", "unique", "hidden", "read_only", "in_list_view", "bold"):
        if flag in kwargs:
            kwargs[flag] = bool(kwargs[flag])
    return kwargs


@dataclass(frozen=True)
class DocPerm:
    """Permission entry granting capabilities to a role.

    Attributes:
        role: Role name
        permlevel: Field permission level this entry applies to
        if_owner: Restrict to documents owned by the user
        condition: Optional conditional expression
    """

    role: str
    read: bool = False
    write: bool = False
    create: bool = False
    delete: bool = False
    submit: bool = False
    cancel: bool = False
    amend: bool = False
    report: bool = False
    export: bool = False
    share: bool = False
    print: bool = False
    email: bool = False
    permlevel: int = 0
    if_owner: bool = False
    condition: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {"role": self.role}
        for f in dataclass_fields(self):
            value = getattr(self, f.name)
            if f.name != "role" and value != f.default:
                result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DocPerm:
        """Create from dictionary representation."""
        names = {f.name for f in dataclass_fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in names}
        kwargs.setdefault("role", "")
        return cls(**kwargs)


@dataclass(frozen=True)
class IndexDef:
    """Declared database index.

    Attributes:
        name: Index name (unique per database)
        columns: Ordered column names
        unique: Whether the index enforces uniqueness
        where: Optional partial-index predicate
    """

    name: str
    columns: tuple[str, ...]
    unique: bool = False
    where: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {"name": self.name, "columns": list(self.columns)}
        if self.unique:
            result["unique"] = True
        if self.where:
            result["where"] = self.where
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexDef:
        """Create from dictionary representation."""
        return cls(
            name=data.get("name", ""),
            columns=tuple(data.get("columns") or ()),
            unique=bool(data.get("unique", False)),
            where=data.get("where"),
        )


@dataclass(frozen=True)
class DocType:
    """Definition of a document type.

    Attributes:
        name: Unique DocType name
        module: Logical module the DocType belongs to
        fields: Ordered field definitions
        permissions: Role permissions
        indexes: Declared indexes
        table_name: Physical table name (defaults to "tab" + name)
        title_field: Field used as the document title
        search_fields: Comma separated list of searchable fields
        image_field: Field holding the document image
        custom_fields: Side channel listing merged custom fields; empty on
            base definitions

    Invariants:
        - Field names are unique within a DocType
        - Link/Table/Select fields carry options
        (both enforced by the validator, not the constructor)
    """

    name: str
    module: str = ""
    fields: tuple[DocField, ...] = ()
    permissions: tuple[DocPerm, ...] = ()
    indexes: tuple[IndexDef, ...] = ()
    is_single: bool = False
    is_table: bool = False
    is_submittable: bool = False
    is_tree: bool = False
    is_virtual: bool = False
    table_name: str | None = None
    title_field: str | None = None
    search_fields: str | None = None
    image_field: str | None = None
    sort_field: str = "modified"
    sort_order: str = "desc"
    track_changes: bool = False
    max_attachments: int = 0
    description: str = ""
    naming_rule: str = ""
    autoname: str = ""
    custom_fields: tuple[CustomField, ...] = ()

    def get_table_name(self) -> str:
        """Physical table name for this DocType."""
        return self.table_name or f"tab{self.name}"

    def get_field(self, fieldname: str) -> DocField | None:
        """Get a field by name."""
        for f in self.fields:
            if f.fieldname == fieldname:
                return f
        return None

    def get_fieldnames(self) -> list[str]:
        """Get all field names in declaration order."""
        return [f.fieldname for f in self.fields]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "module": self.module,
            "fields": [f.to_dict() for f in self.fields],
            "permissions": [p.to_dict() for p in self.permissions],
        }
        if self.indexes:
            result["indexes"] = [i.to_dict() for i in self.indexes]
        if self.custom_fields:
            result["custom_fields"] = [c.to_dict() for c in self.custom_fields]
        skip = {"name", "module", "fields", "permissions", "indexes", "custom_fields"}
        for f in dataclass_fields(self):
            if f.name in skip:
                continue
            value = getattr(self, f.name)
            if value != f.default:
                result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DocType:
        """Create from dictionary representation.

        Non-list ``fields``/``permissions`` values are treated as empty; use
        the validator on the raw record to report them.
        """
        scalar_names = {f.name for f in dataclass_fields(cls)} - {
            "fields",
            "permissions",
            "indexes",
            "custom_fields",
        }
        kwargs = {k: v for k, v in data.items() if k in scalar_names}
        kwargs.setdefault("name", "")
        raw_fields = data.get("fields")
        raw_perms = data.get("permissions")
        raw_indexes = data.get("indexes")
        raw_custom = data.get("custom_fields")
        return cls(
            fields=tuple(
                DocField.from_dict(f) for f in raw_fields if isinstance(f, dict)
            )
            if isinstance(raw_fields, list)
            else (),
            permissions=tuple(
                DocPerm.from_dict(p) for p in raw_perms if isinstance(p, dict)
            )
            if isinstance(raw_perms, list)
            else (),
            indexes=tuple(IndexDef.from_dict(i) for i in raw_indexes)
            if isinstance(raw_indexes, list)
            else (),
            custom_fields=tuple(CustomField.from_dict(c) for c in raw_custom)
            if isinstance(raw_custom, list)
            else (),
            **kwargs,
        )


@dataclass(frozen=True)
class PropertySetter:
    """Override of a single property of a field or of the DocType itself.

    Attributes:
        doctype: Target DocType name
        fieldname: Target field, or None for a DocType-level property
        property: Property name (must be in the allow-list)
        value: New value
    """

    doctype: str
    fieldname: str | None
    property: str
    value: Any

    @property
    def key(self) -> tuple[str, str, str]:
        """Storage key; at most one setter per key is active."""
        return (self.doctype, self.fieldname or "", self.property)

    @property
    def is_doctype_level(self) -> bool:
        """Whether this setter targets the DocType rather than a field."""
        return not self.fieldname

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "doctype": self.doctype,
            "fieldname": self.fieldname,
            "property": self.property,
            "value": self.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PropertySetter:
        """Create from dictionary representation."""
        return cls(
            doctype=data["doctype"],
            fieldname=data.get("fieldname") or None,
            property=data["property"],
            value=data.get("value"),
        )


def field(
    fieldname: str,
    fieldtype: str | FieldType = "Data",
    *,
    label: str | None = None,
    required: bool = False,
    unique: bool = False,
    length: int | None = None,
    precision: int | None = None,
    default: Any = None,
    options: str | None = None,
    **extra: Any,
) -> DocField:
    """Convenience function to create a DocField.

    Args:
        fieldname: Column name
        fieldtype: Field type (declarative name or FieldType)
        label: Human-readable label (defaults to a title-cased fieldname)
        required: Whether a value is mandatory
        unique: Whether values must be unique
        length: Maximum text length
        precision: Decimal places
        default: Default value
        options: Link target, Select choices, etc.
        **extra: Any other DocField attribute

    Returns:
        DocField instance

    Example:
        >>> email = field("email", "Data", required=True, unique=True)
        >>> owner = field("assigned_to", "Link", options="User")
    """
    if isinstance(fieldtype, FieldType):
        fieldtype = fieldtype.value
    if label is None:
        label = fieldname.replace("_", " ").title()
    return DocField(
        fieldname=fieldname,
        label=label,
        fieldtype=fieldtype,
        required=required,
        unique=unique,
        length=length,
        precision=precision,
        default=default,
        options=options,
        **extra,
    )
