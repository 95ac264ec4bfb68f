"""
Database and table access for sqlgraph.

- Database: schema + connection + settings; owns one Table per model and
  the RecordArena of in-memory Records
- Table: SELECT/INSERT/UPDATE/DELETE on one model, the nested mutations
  of sqlgraph.mutation, and Record creation
- to_document / to_row: conversion between raw rows (column names) and
  documents (field names)

Documents represent a foreign key value as a document on the referenced
field, {"id": 3}, so that it reads the same as a nested filter.

Invariants:
    - Tables are found by model name or table name
    - Selects without a limit get Settings.default_limit; internal reads
      that must see every row pass UNLIMITED
    - Compilers use the connection as their Dialect
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import date
from difflib import get_close_matches
from typing import Any, TypeVar

from .engine.connection import Connection
from .errors import BadFilterError, UnknownFieldError, UnknownModelError
from .filter import normalise_datetime
from .query import UNLIMITED, SelectBuilder, build_delete, build_insert, build_update
from .record import Record, RecordArena, RecordIndex, merge_into
from .schema.model import ForeignKeyField, Model, Schema, SimpleField
from .settings import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def to_document(row: dict[str, Any], model: Model) -> dict[str, Any]:
    """Map a raw row to a document keyed by field names.

    Args:
        row: Row keyed by column names
        model: Model of the row

    Returns:
        Document; columns the model does not know are dropped
    """
    result: dict[str, Any] = {}
    for field in model.simple_fields():
        name = field.column.name
        if name not in row:
            continue
        value = row[name]
        if isinstance(field, ForeignKeyField):
            result[field.name] = None if value is None else {field.referenced_field.name: value}
        else:
            result[field.name] = value
    return result


def to_row(data: dict[str, Any], model: Model) -> dict[str, Any]:
    """Map a flat document to a row keyed by column names.

    Foreign key documents and Records are unwrapped to the referenced
    value; date/time values are normalised.

    Raises:
        UnknownFieldError: If a key is not a column-backed field
        BadFilterError: If a foreign key document lacks the referenced field
    """
    result: dict[str, Any] = {}
    for name, value in data.items():
        field = model.field(name)
        if not isinstance(field, SimpleField):
            names = [f.name for f in model.simple_fields()]
            raise UnknownFieldError(name, model.name, get_close_matches(name, names, n=3))

        if isinstance(field, ForeignKeyField):
            value = _reference_value(field, value)
        if value is not None and field.column.is_datetime() and isinstance(value, (str, date)):
            value = normalise_datetime(value, date_only=field.column.is_date())
        result[field.column.name] = value
    return result


def _reference_value(field: ForeignKeyField, value: Any) -> Any:
    referenced = field.referenced_field
    if isinstance(value, Record):
        value = value.get(referenced.name)
        if isinstance(referenced, ForeignKeyField):
            return _reference_value(referenced, value)
        return value
    if isinstance(value, dict):
        if referenced.name not in value:
            raise BadFilterError(
                f"Expected {{'{referenced.name}': ...}} for {field.display_name}",
                field.model.name,
                value,
            )
        return value[referenced.name]
    return value


class Table:
    """Access to one model's table.

    Example:
        >>> table = db.table("user")
        >>> user_id = await table.insert({"email": "a@example.com"})
        >>> await table.get({"id": user_id})
        {'id': 1, 'email': 'a@example.com', ...}
    """

    def __init__(self, db: Database, model: Model) -> None:
        self.db = db
        self.model = model
        self._index = RecordIndex(model)

    @property
    def connection(self) -> Connection:
        return self.db.connection

    def _builder(self) -> SelectBuilder:
        return SelectBuilder(self.model, self.connection, self.db.settings.field_separator)

    async def select_rows(
        self,
        fields: str | list[str] = "*",
        *,
        where: Any = None,
        order_by: Any = None,
        limit: int | None = None,
        offset: int | None = None,
        seek: list[Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Select raw rows keyed by column name (and "a__b" for joined order columns)."""
        sql = self._builder().select(
            fields,
            where=where,
            order_by=order_by,
            limit=limit,
            offset=offset,
            seek=seek,
            default_limit=self.db.settings.default_limit,
        )
        return await self.connection.query(sql)

    async def select(
        self,
        fields: str | list[str] = "*",
        *,
        where: Any = None,
        order_by: Any = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        """Select documents."""
        rows = await self.select_rows(
            fields, where=where, order_by=order_by, limit=limit, offset=offset
        )
        return [to_document(row, self.model) for row in rows]

    async def get(self, filter: dict[str, Any]) -> dict[str, Any] | None:
        """Get the row identified by a unique key.

        Raises:
            BadFilterError: If the filter does not cover a unique key
        """
        if self.model.check_unique_key(filter) is None:
            raise BadFilterError(
                f"Filter does not identify a unique {self.model.name}: {filter}",
                self.model.name,
                filter,
            )
        rows = await self.select(where=filter, limit=1)
        return rows[0] if rows else None

    async def count(self, where: Any = None) -> int:
        rows = await self.connection.query(self._builder().count(where))
        return rows[0]["count"]

    async def insert(self, data: dict[str, Any]) -> Any:
        """Insert a flat document.

        Returns:
            The primary key value: the assigned id for auto-increment keys
        """
        row = to_row(data, self.model)
        result = await self.connection.execute(build_insert(self.model, self.connection, row))
        key = self.model.key_field()
        if key is None:
            return None
        if key.column.auto_increment and row.get(key.column.name) is None:
            return result.last_insert_id
        return row.get(key.column.name)

    async def update(self, data: dict[str, Any], where: Any = None) -> int:
        """Update matching rows with a flat document.

        Returns:
            Number of affected rows
        """
        row = to_row(data, self.model)
        if not row:
            return 0
        sql = build_update(
            self.model, self.connection, row, where, self.db.settings.field_separator
        )
        result = await self.connection.execute(sql)
        return result.affected_rows

    async def delete(self, where: Any = None) -> int:
        """Delete matching rows.

        Returns:
            Number of affected rows
        """
        sql = build_delete(self.model, self.connection, where, self.db.settings.field_separator)
        result = await self.connection.execute(sql)
        return result.affected_rows

    async def select_all(self, where: Any = None) -> list[dict[str, Any]]:
        """Select every matching document, ignoring the default limit."""
        return await self.select(where=where, limit=UNLIMITED)

    # Nested mutations

    async def create(self, data: dict[str, Any]) -> dict[str, Any]:
        from .mutation import create_one

        return await create_one(self, data)

    async def modify(self, data: dict[str, Any], where: dict[str, Any]) -> dict[str, Any] | None:
        from .mutation import update_one

        return await update_one(self, data, where)

    async def upsert(
        self, create: dict[str, Any], update: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        from .mutation import upsert_one

        return await upsert_one(self, create, update)

    async def delete_one(self, where: dict[str, Any]) -> dict[str, Any] | None:
        from .mutation import delete_one

        return await delete_one(self, where)

    async def update_many(self, data: dict[str, Any], where: Any) -> int:
        from .mutation import update_many

        return await update_many(self, data, where)

    async def delete_many(self, where: Any) -> list[dict[str, Any]]:
        from .mutation import delete_many

        return await delete_many(self, where)

    # Records

    def append(self, data: dict[str, Any] | None = None) -> Record:
        """Create an in-memory Record, merged with an existing one on a shared unique key."""
        record = Record(self, data)
        existing = self._index.lookup(record)
        if existing is not None:
            merge_into(existing, record)
            self._index.add(existing)
        else:
            self._index.add(record)
        return record

    @property
    def records(self) -> list[Record]:
        """Root Records of this table, in creation order."""
        return [r for r in self.db.arena.records if r.table is self and r.root is r]

    def __repr__(self) -> str:
        return f"Table({self.model.table.name})"


class Database:
    """Entry point tying a Schema to a Connection.

    Example:
        >>> schema = build_schema(info)
        >>> db = Database(schema, SQLiteConnection("shop.db"))
        >>> await db.table("product").select(where={"price_lt": 6})
    """

    def __init__(
        self,
        schema: Schema,
        connection: Connection,
        settings: Settings | None = None,
    ) -> None:
        self.schema = schema
        self.connection = connection
        self.settings = settings or Settings()
        self.arena = RecordArena()
        self.tables: dict[str, Table] = {}
        for model in schema.models:
            table = Table(self, model)
            self.tables[model.name] = table
            self.tables[model.table.name] = table

    def table(self, name: str | Model) -> Table:
        """Get a table by model, model name or table name.

        Raises:
            UnknownModelError: If no such table exists
        """
        if isinstance(name, Model):
            name = name.name
        table = self.tables.get(name)
        if table is None:
            raise UnknownModelError(name, get_close_matches(name, list(self.tables), n=3))
        return table

    def unique_tables(self) -> list[Table]:
        """Tables in schema order, each once."""
        return [self.tables[model.name] for model in self.schema.models]

    def append(self, name: str | Model, data: dict[str, Any] | None = None) -> Record:
        return self.table(name).append(data)

    async def flush(self) -> int:
        """Flush every dirty Record.

        Returns:
            Number of persisted Records
        """
        from .flush import flush_database

        return await flush_database(self)

    async def transaction(self, callback: Callable[[], Awaitable[T]]) -> T:
        """Run callback in a transaction of the connection."""
        return await self.connection.transaction(lambda connection: callback())
