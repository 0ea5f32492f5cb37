"""
Command-line tools for the DocType engine.
"""

from .migrate_cli import MigrateCLI, main

__all__ = ["MigrateCLI", "main"]
