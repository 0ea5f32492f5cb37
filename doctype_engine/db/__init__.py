"""
Database access for the DocType engine.
"""

from .base import (
    ColumnInfo,
    Database,
    ExecuteResult,
    IndexInfo,
    Transaction,
    quote_identifier,
)
from .sqlite import SqliteDatabase

__all__ = [
    "Database",
    "ColumnInfo",
    "IndexInfo",
    "ExecuteResult",
    "Transaction",
    "SqliteDatabase",
    "quote_identifier",
]
