"""
Database Module
"""
from .store import TableStore, PolarsTableStore
from .connection import SqlTableStore, create_store

__all__ = [
    "TableStore",
    "PolarsTableStore",
    "SqlTableStore",
    "create_store",
]
