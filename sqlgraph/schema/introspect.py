"""
SQLite introspection for sqlgraph.

Reads a SchemaInfo back from a live database through the Connection
interface:

    info = await introspect(connection)
    schema = build_schema(info)

- Tables come from sqlite_master in creation order; internal sqlite_%
  tables are skipped
- Columns from PRAGMA table_info, unique keys from PRAGMA index_list and
  index_info, foreign keys from PRAGMA foreign_key_list

Invariants:
    - A single INTEGER PRIMARY KEY column is reported as auto-increment
      (it aliases the rowid)
    - Primary key columns are reported as not nullable
    - A foreign key without explicit target columns references the
      primary key of the target table
"""

from __future__ import annotations

import logging
import re
from typing import Any

from ..engine.connection import Connection
from .types import ColumnInfo, ConstraintInfo, ReferenceInfo, SchemaInfo, TableInfo

logger = logging.getLogger(__name__)

TYPE_SIZE = re.compile(r"^\s*([^(]+?)\s*(?:\(\s*(\d+)\s*(?:,\s*\d+\s*)?\))?\s*$")


def _parse_type(declared: str) -> tuple[str, int | None]:
    match = TYPE_SIZE.match(declared or "")
    if not match:
        return declared or "blob", None
    size = match.group(2)
    return match.group(1).lower(), int(size) if size else None


def _parse_default(value: Any) -> Any:
    if isinstance(value, str) and len(value) >= 2 and value[0] == value[-1] == "'":
        return value[1:-1].replace("''", "'")
    return value


async def _table_info(connection: Connection, name: str) -> TableInfo:
    quoted = connection.escape_id(name)
    rows = await connection.query(f"PRAGMA table_info({quoted})")

    key_rows = sorted((r for r in rows if r["pk"]), key=lambda r: r["pk"])
    key_columns = tuple(r["name"] for r in key_rows)
    rowid_alias = len(key_rows) == 1 and (key_rows[0]["type"] or "").upper() == "INTEGER"

    columns = []
    for row in rows:
        type_name, size = _parse_type(row["type"])
        columns.append(
            ColumnInfo(
                name=row["name"],
                type=type_name,
                size=size,
                nullable=not row["notnull"] and not row["pk"],
                auto_increment=rowid_alias and bool(row["pk"]),
                default=_parse_default(row["dflt_value"]),
            )
        )

    constraints = []
    if key_columns:
        constraints.append(ConstraintInfo(columns=key_columns, primary_key=True))

    for index in await connection.query(f"PRAGMA index_list({quoted})"):
        if not index["unique"] or index["origin"] == "pk":
            continue
        info = await connection.query(f"PRAGMA index_info({connection.escape_id(index['name'])})")
        index_columns = tuple(r["name"] for r in sorted(info, key=lambda r: r["seqno"]))
        if None in index_columns:
            # expression index
            continue
        constraints.append(ConstraintInfo(columns=index_columns, unique=True, name=index["name"]))

    foreign_keys: dict[int, list[dict[str, Any]]] = {}
    for row in await connection.query(f"PRAGMA foreign_key_list({quoted})"):
        foreign_keys.setdefault(row["id"], []).append(row)
    for fk_id in sorted(foreign_keys):
        parts = sorted(foreign_keys[fk_id], key=lambda r: r["seq"])
        target = parts[0]["table"]
        referenced = [r["to"] for r in parts]
        if None in referenced:
            referenced = await _primary_key(connection, target)
        constraints.append(
            ConstraintInfo(
                columns=tuple(r["from"] for r in parts),
                references=ReferenceInfo(target, tuple(referenced)),
            )
        )

    return TableInfo(name=name, columns=tuple(columns), constraints=tuple(constraints))


async def _primary_key(connection: Connection, name: str) -> list[str]:
    rows = await connection.query(f"PRAGMA table_info({connection.escape_id(name)})")
    return [r["name"] for r in sorted((r for r in rows if r["pk"]), key=lambda r: r["pk"])]


async def introspect(connection: Connection) -> SchemaInfo:
    """Read the schema of a live SQLite database.

    Args:
        connection: Open connection

    Returns:
        SchemaInfo with tables in creation order
    """
    rows = await connection.query(
        "SELECT name FROM sqlite_master "
        "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY rowid"
    )
    tables = [await _table_info(connection, row["name"]) for row in rows]
    logger.info(f"Introspected {len(tables)} table(s)")
    return SchemaInfo(tables=tuple(tables))
