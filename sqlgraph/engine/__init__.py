"""
Database engines for sqlgraph.

- Connection / Dialect / ExecuteResult: the abstraction compilers target
- SQLiteConnection: reference engine on the standard library sqlite3
"""

from .connection import Connection, Dialect, ExecuteResult, format_datetime
from .sqlite import SQLiteConnection

__all__ = [
    "Connection",
    "Dialect",
    "ExecuteResult",
    "SQLiteConnection",
    "format_datetime",
]
