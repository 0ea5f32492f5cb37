"""
Declarative DocType loader.

DocType records are plain JSON or YAML documents matching DocType.to_dict().
A record may also be wrapped as {"doctype": {...}}. Custom field files hold
a list of custom field records (or {"custom_fields": [...]}), property setter
files a list of setter records (or {"property_setters": [...]}).

Supported extensions: .json, .yaml, .yml
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from ..errors import ValidationFailedError
from .types import CustomField, DocType, PropertySetter
from .validator import ValidationFinding

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".json", ".yaml", ".yml")

# File stems in a DocType directory that hold overlay records
OVERLAY_STEMS = ("custom_fields", "property_setters")


def read_record(path: str | Path) -> Any:
    """Parse a JSON or YAML file.

    Raises:
        ValidationFailedError: If the file cannot be parsed or has an
            unsupported extension
    """
    path = Path(path)
    if path.suffix not in SUPPORTED_EXTENSIONS:
        raise _file_error(path, f"Unsupported file extension '{path.suffix}'")
    try:
        with open(path, encoding="utf-8") as f:
            if path.suffix == ".json":
                return json.load(f)
            return yaml.safe_load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise _file_error(path, f"Cannot parse {path.name}: {e}") from e


def load_doctype_file(path: str | Path) -> dict[str, Any]:
    """Load one DocType record.

    The raw record is returned so that the registry can validate its shape;
    use DocType.from_dict() to build a DocType directly.

    Raises:
        ValidationFailedError: If the file is not a DocType record
    """
    path = Path(path)
    data = read_record(path)
    if isinstance(data, dict) and isinstance(data.get("doctype"), dict):
        data = data["doctype"]
    if not isinstance(data, dict):
        raise _file_error(path, f"{path.name} does not contain a DocType record")
    return data


def load_doctype_dir(directory: str | Path) -> list[dict[str, Any]]:
    """Load every DocType record in a directory, ordered by file name.

    Overlay files (custom_fields.*, property_setters.*) are skipped.
    """
    directory = Path(directory)
    records = []
    for path in sorted(directory.iterdir()):
        if (
            path.is_file()
            and path.suffix in SUPPORTED_EXTENSIONS
            and path.stem not in OVERLAY_STEMS
        ):
            records.append(load_doctype_file(path))
    logger.info(f"Loaded {len(records)} DocType record(s) from {directory}")
    return records


def load_custom_fields_file(path: str | Path) -> list[CustomField]:
    """Load a list of custom field records."""
    path = Path(path)
    data = read_record(path)
    if isinstance(data, dict):
        data = data.get("custom_fields")
    if not isinstance(data, list):
        raise _file_error(path, f"{path.name} does not contain a list of custom fields")
    try:
        return [CustomField.from_dict(item) for item in data]
    except (KeyError, TypeError, AttributeError) as e:
        raise _file_error(path, f"Malformed custom field in {path.name}: {e}") from e


def load_property_setters_file(path: str | Path) -> list[PropertySetter]:
    """Load a list of property setter records."""
    path = Path(path)
    data = read_record(path)
    if isinstance(data, dict):
        data = data.get("property_setters")
    if not isinstance(data, list):
        raise _file_error(path, f"{path.name} does not contain a list of property setters")
    try:
        return [PropertySetter.from_dict(item) for item in data]
    except (KeyError, TypeError) as e:
        raise _file_error(path, f"Malformed property setter in {path.name}: {e}") from e


def dump_doctype(doctype: DocType, path: str | Path) -> None:
    """Write a DocType record as JSON or YAML depending on the extension."""
    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        if path.suffix == ".json":
            json.dump(doctype.to_dict(), f, indent=2)
        else:
            yaml.safe_dump(doctype.to_dict(), f, sort_keys=False)


def _file_error(path: Path, message: str) -> ValidationFailedError:
    return ValidationFailedError(
        message,
        findings=[ValidationFinding("invalid", str(path), message)],
    )
