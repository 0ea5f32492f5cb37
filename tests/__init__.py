"""
DocType Engine Test Suite.

This package contains:
- unit/: Unit tests (in-memory SQLite, no external services)
- integration/: Integration tests (engine wiring and the migration workflow)
"""
