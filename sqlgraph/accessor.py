"""
Accessor: the operation surface consumed by API layers.

An Accessor wraps a Database with:
- pydantic argument models for queries and cursor pages, accepting both
  snake_case and the external camelCase names (orderBy, withTotal)
- a LoaderRegistry for batched field lookups
- Callbacks run before and after every operation

Example:
    accessor = Accessor(db, callbacks=Callbacks(context=request, on_query=check_access))
    page = await accessor.cursor_query("product", {"orderBy": "price", "first": 10})
    page.to_dict()   # {"edges": [...], "pageInfo": {...}, "totalCount": None}

Callbacks receive (context, event, table, data) and may be coroutines.
on_query sees the arguments of an operation, on_result its result.
Returning None keeps the data, False forbids the operation, anything
else replaces the data.

Invariants:
    - create/update/upsert/delete and the *_many variants each run in one
      transaction
    - Loader caches are cleared after every write
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .cursor import cursor_query
from .database import Database, Table
from .errors import ForbiddenError
from .loader import LoaderRegistry
from .schema.model import Field as ModelField
from .schema.model import Model
from .settings import Settings

logger = logging.getLogger(__name__)

Callback = Callable[[Any, str, Table, Any], Any]


class QueryArgs(BaseModel):
    """Arguments of a list query."""

    model_config = ConfigDict(populate_by_name=True)

    where: dict[str, Any] | list[dict[str, Any]] | None = Field(None, description="Filter")
    order_by: str | list[str] | None = Field(None, alias="orderBy", description="Order-by entries")
    limit: int | None = Field(None, description="Row limit; the default limit when omitted")
    offset: int | None = Field(None, description="Rows to skip")


class CursorArgs(BaseModel):
    """Arguments of a cursor page query."""

    model_config = ConfigDict(populate_by_name=True)

    where: dict[str, Any] | list[dict[str, Any]] | None = Field(None, description="Filter")
    order_by: str | list[str] | None = Field(None, alias="orderBy", description="Order-by entries")
    first: int | None = Field(None, ge=0, description="Page size")
    after: str | None = Field(None, description="Cursor of the last row of the previous page")
    with_total: bool = Field(False, alias="withTotal", description="Count all matching rows")


class PageInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_cursor: str | None = Field(None, alias="startCursor")
    end_cursor: str | None = Field(None, alias="endCursor")
    has_next_page: bool = Field(False, alias="hasNextPage")


class Edge(BaseModel):
    node: dict[str, Any]
    cursor: str


class Page(BaseModel):
    """One page of a cursor query."""

    model_config = ConfigDict(populate_by_name=True)

    edges: list[Edge] = Field(default_factory=list)
    page_info: PageInfo = Field(default_factory=PageInfo, alias="pageInfo")
    total_count: int | None = Field(None, alias="totalCount")

    @property
    def nodes(self) -> list[dict[str, Any]]:
        return [edge.node for edge in self.edges]

    def to_dict(self) -> dict[str, Any]:
        """Dump with the external camelCase names."""
        return self.model_dump(by_alias=True)


@dataclass
class Callbacks:
    """Hooks run around accessor operations.

    Attributes:
        context: Passed to every callback, e.g. the current request
        on_query: Called with the arguments before an operation
        on_result: Called with the result after an operation
    """

    context: Any = None
    on_query: Callback | None = None
    on_result: Callback | None = None


class Accessor:
    """Database operations with callbacks and batched loading."""

    def __init__(
        self,
        db: Database,
        settings: Settings | None = None,
        callbacks: Callbacks | None = None,
    ) -> None:
        self.db = db
        self.settings = settings or db.settings
        self.callbacks = callbacks or Callbacks()
        self.loaders = LoaderRegistry(db)

    def _table(self, model: str | Model) -> Table:
        return self.db.table(model)

    async def _call(self, callback: Callback | None, event: str, table: Table, data: Any) -> Any:
        if callback is None:
            return data
        result = callback(self.callbacks.context, event, table, data)
        if inspect.isawaitable(result):
            result = await result
        if result is False:
            logger.info(f"Callback forbade {event} on {table.model.name}")
            raise ForbiddenError(event, table.model.name)
        if result is None:
            return data
        return result

    async def _before(self, event: str, table: Table, data: Any) -> Any:
        return await self._call(self.callbacks.on_query, event, table, data)

    async def _after(self, event: str, table: Table, data: Any) -> Any:
        return await self._call(self.callbacks.on_result, event, table, data)

    async def _write(self, event: str, table: Table, run: Callable[[], Awaitable[Any]]) -> Any:
        result = await self.db.transaction(run)
        self.loaders.clear()
        logger.debug(f"{event} on {table.model.name} committed")
        return await self._after(event, table, result)

    # Reads

    async def query(
        self, model: str | Model, args: QueryArgs | dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Select documents."""
        table = self._table(model)
        args = QueryArgs.model_validate(args or {}) if not isinstance(args, QueryArgs) else args
        args = await self._before("query", table, args)
        if not isinstance(args, QueryArgs):
            args = QueryArgs.model_validate(args)
        limit = args.limit if args.limit is not None else self.settings.default_limit
        rows = await table.select(
            where=args.where, order_by=args.order_by, limit=limit, offset=args.offset
        )
        return await self._after("query", table, rows)

    async def get(self, model: str | Model, where: dict[str, Any]) -> dict[str, Any] | None:
        """Get one document by a unique key."""
        table = self._table(model)
        where = await self._before("get", table, where)
        row = await table.get(where)
        return await self._after("get", table, row)

    async def load(self, field: ModelField, value: Any, where: dict[str, Any] | None = None) -> Any:
        """Batched lookup of documents by field value.

        Concurrent loads of one field are coalesced into a single select.
        """
        return await self.loaders.get(field, where).load(value)

    async def cursor_query(
        self, model: str | Model, args: CursorArgs | dict[str, Any] | None = None
    ) -> Page:
        """Fetch one cursor page."""
        table = self._table(model)
        args = CursorArgs.model_validate(args or {}) if not isinstance(args, CursorArgs) else args
        args = await self._before("cursor_query", table, args)
        if not isinstance(args, CursorArgs):
            args = CursorArgs.model_validate(args)
        result = await cursor_query(
            table,
            where=args.where,
            order_by=args.order_by,
            first=args.first,
            after=args.after,
            with_total=args.with_total,
            default_limit=self.settings.default_limit,
        )
        page = Page(
            edges=[Edge(node=n, cursor=c) for n, c in zip(result.nodes, result.cursors)],
            page_info=PageInfo(
                start_cursor=result.cursors[0] if result.cursors else None,
                end_cursor=result.cursors[-1] if result.cursors else None,
                has_next_page=result.has_next_page,
            ),
            total_count=result.total_count,
        )
        return await self._after("cursor_query", table, page)

    # Writes

    async def create(self, model: str | Model, data: dict[str, Any]) -> dict[str, Any]:
        """Create a document with nested relationship verbs."""
        table = self._table(model)
        data = await self._before("create", table, data)
        return await self._write("create", table, lambda: table.create(data))

    async def update(
        self, model: str | Model, data: dict[str, Any], where: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Update the document identified by a unique key."""
        table = self._table(model)
        args = await self._before("update", table, {"where": where, "data": data})
        return await self._write(
            "update", table, lambda: table.modify(args["data"], args["where"])
        )

    async def update_many(self, model: str | Model, data: dict[str, Any], where: Any) -> int:
        table = self._table(model)
        args = await self._before("update_many", table, {"where": where, "data": data})
        return await self._write(
            "update_many", table, lambda: table.update_many(args["data"], args["where"])
        )

    async def upsert(
        self,
        model: str | Model,
        create: dict[str, Any],
        update: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Create a document, or update the one sharing its unique key."""
        table = self._table(model)
        args = await self._before("upsert", table, {"create": create, "update": update})
        return await self._write(
            "upsert", table, lambda: table.upsert(args["create"], args.get("update"))
        )

    async def delete(self, model: str | Model, where: dict[str, Any]) -> dict[str, Any] | None:
        """Delete the document identified by a unique key."""
        table = self._table(model)
        where = await self._before("delete", table, where)
        return await self._write("delete", table, lambda: table.delete_one(where))

    async def delete_many(self, model: str | Model, where: Any) -> list[dict[str, Any]]:
        table = self._table(model)
        where = await self._before("delete_many", table, where)
        return await self._write("delete_many", table, lambda: table.delete_many(where))
