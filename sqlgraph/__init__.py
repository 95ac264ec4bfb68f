"""
sqlgraph - Relational data access over a resolved model graph.

This package turns table metadata into a graph of models and compiles
document-shaped requests against it into SQL:
- Schema resolution: tables become models; foreign keys become parent
  fields with derived names and reverse (related) fields, including
  many-to-many relations through junction tables
- Filters: nested documents with operator suffixes compiled to WHERE
  clauses, joins and EXISTS subqueries
- Queries and mutations: selects with ordering and cursor pagination,
  nested create/update/upsert/delete with relationship verbs
- Records: an in-memory graph of unsaved rows, flushed in dependency
  order inside one transaction

Architecture:
    SchemaInfo ──▶ Schema/Model ──▶ FilterBuilder / SelectBuilder ──▶ SQL
                                           ▲
    Accessor ──▶ Database/Table ───────────┘──▶ Connection (SQLite)
                      │
                      └──▶ Records ──▶ flush

Invariants:
    - The schema is resolved once and is read-only afterwards
    - Every statement goes through a Connection; the core opens no files
      or sockets itself
    - Writes of one accessor operation run in one transaction

How to change safely:
    - Keep filter keys and mutation verbs stable; clients persist them
    - Keep cursor encoding compatible across releases
"""

from ._version import __version__
from .accessor import Accessor, Callbacks, CursorArgs, Page, QueryArgs
from .database import Database, Table
from .engine import Connection, SQLiteConnection
from .errors import SqlGraphError
from .record import Record
from .schema import Schema, SchemaInfo, build_schema, introspect
from .settings import Settings

__all__ = [
    "__version__",
    "Accessor",
    "Callbacks",
    "CursorArgs",
    "Page",
    "QueryArgs",
    "Database",
    "Table",
    "Connection",
    "SQLiteConnection",
    "SqlGraphError",
    "Record",
    "Schema",
    "SchemaInfo",
    "build_schema",
    "introspect",
    "Settings",
]
