"""
Query compiler for sqlgraph.

Builds complete SQL statements for one model:
- SelectBuilder.select: SELECT with joins, where, seek predicate, order,
  limit and offset
- SelectBuilder.count: SELECT COUNT(*)
- build_insert / build_update / build_delete: DML from column-keyed rows

Order-by entries name a field or a dotted foreign key path:

    "name", "price desc", "-price", "user.email asc"

Paths are LEFT JOINed and the joined column is selected as "user__email"
so that cursor pagination can read it back from the raw row.

Invariants:
    - limit=None means the default limit; UNLIMITED omits LIMIT
    - Joins for the where filter and for order paths share one alias per
      foreign key path
    - DML where clauses never join; foreign key documents become
      subqueries
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .cursor import build_seek_filter
from .engine.connection import Dialect
from .errors import BadFilterError
from .filter import FilterBuilder, encode_filter, escape_value
from .schema.model import ForeignKeyField, Model, SimpleField

logger = logging.getLogger(__name__)

UNLIMITED = -1

DEFAULT_LIMIT = 50


@dataclass(frozen=True)
class OrderEntry:
    """One parsed order-by entry.

    Attributes:
        path: Field name or dotted foreign key path
        desc: Descending order
    """

    path: str
    desc: bool = False

    @property
    def names(self) -> list[str]:
        return self.path.split(".")

    @property
    def key(self) -> str:
        """Raw row key of the ordered column for joined paths."""
        return self.path.replace(".", "__")

    def __str__(self) -> str:
        return f"{self.path} {'desc' if self.desc else 'asc'}"


def parse_order_by(order_by: str | list[str] | None) -> list[OrderEntry]:
    """Parse order-by entries.

    Args:
        order_by: "path", "path asc|desc", "-path", a comma separated
            string of those, or a list

    Returns:
        Parsed entries

    Raises:
        BadFilterError: If a direction is neither asc nor desc
    """
    if not order_by:
        return []
    if isinstance(order_by, str):
        order_by = order_by.split(",")

    entries = []
    for raw in order_by:
        if isinstance(raw, OrderEntry):
            entries.append(raw)
            continue
        text = raw.strip()
        if not text:
            continue
        if text.startswith("-"):
            entries.append(OrderEntry(text[1:].strip(), True))
            continue
        parts = text.split()
        direction = parts[1].lower() if len(parts) > 1 else "asc"
        if len(parts) > 2 or direction not in ("asc", "desc"):
            raise BadFilterError(f"Invalid order: {raw}")
        entries.append(OrderEntry(parts[0], direction == "desc"))
    return entries


class SelectBuilder:
    """Builds SELECT statements for one model.

    Example:
        >>> builder = SelectBuilder(model, dialect)
        >>> builder.select(where={"price_lt": 6}, order_by="name", limit=10)
        'SELECT "product".* FROM "product" WHERE "product"."price" < 6 ORDER BY ...'
    """

    def __init__(self, model: Model, dialect: Dialect, separator: str = "_") -> None:
        self.model = model
        self.dialect = dialect
        self.separator = separator

    def _order_column(self, root: FilterBuilder, entry: OrderEntry) -> tuple[FilterBuilder, SimpleField]:
        names = entry.names
        builder = root
        for name in names[:-1]:
            field = builder.model.field(name)
            if not isinstance(field, ForeignKeyField):
                raise BadFilterError(f"Not a foreign key: {entry.path}", self.model.name)
            builder._join(field, {})
            builder = root.context.alias_map[".".join(p for p in (builder.path(), field.name) if p)]

        field = builder.model.field(names[-1])
        if not isinstance(field, SimpleField):
            raise BadFilterError(f"Invalid sort column: {entry.path}", self.model.name)
        return builder, field

    def select(
        self,
        fields: str | list[str] = "*",
        where: Any = None,
        order_by: str | list[str] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        seek: list[Any] | None = None,
        default_limit: int = DEFAULT_LIMIT,
    ) -> str:
        """Build a SELECT statement.

        Args:
            fields: "*" or a list of field names
            where: Filter document or list of documents
            order_by: Order-by entries
            limit: Row limit; None for the default, UNLIMITED for none
            offset: Rows to skip
            seek: Cursor values, one per order-by entry, selecting the rows
                strictly after them
            default_limit: Limit used when limit is None

        Returns:
            SQL text
        """
        joins: list[str] = []
        root = FilterBuilder(self.model, self.dialect, self.separator, joins=joins)
        where_sql = root.where(where)

        if fields == "*":
            columns = [root.column("*")]
        else:
            columns = [root.column(self._simple_field(name)) for name in fields]

        order_sql = []
        seek_entries = []
        for entry in parse_order_by(order_by):
            builder, field = self._order_column(root, entry)
            column = builder.column(field)
            if builder is not root:
                columns.append(f"{column} AS {self.dialect.escape_id(entry.key)}")
            elif fields != "*" and column not in columns:
                columns.append(column)
            order_sql.append(f"{column} {'DESC' if entry.desc else 'ASC'}")
            seek_entries.append((column, entry.desc, field))

        seek_sql = ""
        if seek is not None:
            if len(seek) != len(seek_entries):
                raise BadFilterError("Cursor does not match the order", self.model.name)
            seek_sql = build_seek_filter(
                [
                    (column, desc, None if value is None else escape_value(field, value, self.dialect))
                    for (column, desc, field), value in zip(seek_entries, seek)
                ]
            )

        sql = f"SELECT {', '.join(columns)} FROM {self.dialect.escape_id(self.model.table.name)}"
        if joins:
            sql += " " + " ".join(joins)

        conditions = [c for c in (where_sql, seek_sql) if c]
        if len(conditions) == 1:
            sql += f" WHERE {conditions[0]}"
        elif conditions:
            sql += " WHERE " + " AND ".join(f"({c})" for c in conditions)

        if order_sql:
            sql += " ORDER BY " + ", ".join(order_sql)

        if limit is None:
            limit = default_limit
        if limit == UNLIMITED:
            if offset:
                sql += f" LIMIT -1 OFFSET {int(offset)}"
        else:
            sql += f" LIMIT {int(limit)}"
            if offset:
                sql += f" OFFSET {int(offset)}"
        return sql

    def count(self, where: Any = None) -> str:
        """Build a SELECT COUNT(*) statement."""
        joins: list[str] = []
        root = FilterBuilder(self.model, self.dialect, self.separator, joins=joins)
        where_sql = root.where(where)
        sql = f"SELECT COUNT(*) AS count FROM {self.dialect.escape_id(self.model.table.name)}"
        if joins:
            sql += " " + " ".join(joins)
        if where_sql:
            sql += f" WHERE {where_sql}"
        return sql

    def _simple_field(self, name: str) -> SimpleField:
        field = self.model.get_field(name)
        if not isinstance(field, SimpleField):
            raise BadFilterError(f"Cannot select related field: {name}", self.model.name)
        return field


def _values(model: Model, dialect: Dialect, row: dict[str, Any]) -> list[tuple[str, str]]:
    pairs = []
    for name, value in row.items():
        field = model.column_field(name)
        if field is None:
            field = model.get_field(name)
        pairs.append(
            (dialect.escape_id(field.column.name), escape_value(field, value, dialect))
        )
    return pairs


def build_insert(model: Model, dialect: Dialect, row: dict[str, Any]) -> str:
    """Build an INSERT for a column-keyed row."""
    table = dialect.escape_id(model.table.name)
    pairs = _values(model, dialect, row)
    if not pairs:
        return f"INSERT INTO {table} DEFAULT VALUES"
    names = ", ".join(name for name, _ in pairs)
    values = ", ".join(value for _, value in pairs)
    return f"INSERT INTO {table} ({names}) VALUES ({values})"


def build_update(
    model: Model,
    dialect: Dialect,
    row: dict[str, Any],
    where: Any = None,
    separator: str = "_",
) -> str:
    """Build an UPDATE for a column-keyed row."""
    pairs = _values(model, dialect, row)
    if not pairs:
        raise BadFilterError("Nothing to update", model.name)
    sql = f"UPDATE {dialect.escape_id(model.table.name)} SET "
    sql += ", ".join(f"{name} = {value}" for name, value in pairs)
    where_sql = encode_filter(where, model, dialect, separator)
    if where_sql:
        sql += f" WHERE {where_sql}"
    return sql


def build_delete(model: Model, dialect: Dialect, where: Any = None, separator: str = "_") -> str:
    """Build a DELETE."""
    sql = f"DELETE FROM {dialect.escape_id(model.table.name)}"
    where_sql = encode_filter(where, model, dialect, separator)
    if where_sql:
        sql += f" WHERE {where_sql}"
    return sql
