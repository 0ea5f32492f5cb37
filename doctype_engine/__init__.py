"""
DocType Engine - metadata-driven document types with automatic schema migration.

This package keeps a relational database schema in step with declared
document types ("DocTypes"):
- DocType definitions are validated and held in an in-memory registry
- Custom fields and property setters overlay the base definitions
- Merged metadata is cached per DocType with single-flight loading
- The live table is introspected, diffed and migrated with generated SQL

Architecture:
    ┌──────────────┐   ┌──────────────────┐
    │   Registry   │   │ Overlay (custom  │
    │  (DocTypes)  │   │ fields, setters) │
    └──────┬───────┘   └────────┬─────────┘
           │   invalidation     │
           ▼                    ▼
        ┌──────────────────────────┐
        │        Meta Cache        │
        └────────────┬─────────────┘
                     ▼
        ┌──────────────────────────┐      ┌──────────┐
        │ Comparator -> Generator  │─────▶│ Database │
        │   -> Migration Workflow  │      │ (SQLite) │
        └──────────────────────────┘      └──────────┘

Invariants:
    - The registry and overlay are the source of truth for declared shape
    - Cached metadata is derived and can always be rebuilt
    - A live migration is either fully committed or fully rolled back

How to change safely:
    - New field types must be added to the type map of every dialect
    - Keep generated SQL deterministic (stable ordering of statements)
"""

from ._version import __version__

__all__ = ["__version__"]
