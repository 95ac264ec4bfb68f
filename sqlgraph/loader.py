"""
Batched field loaders for sqlgraph.

Resolving many references one by one issues one query each. A Loader
coalesces every load() issued within one event-loop tick into a single
WHERE field IN (...) select and hands each caller its share:

    loader = registry.get(model.field("email"))
    alice, bob = await asyncio.gather(loader.load("a@x.com"), loader.load("b@x.com"))

- Loader: rows of a model by the value of one of its column-backed fields
- RelatedLoader: children of a related field by parent value, through
  the junction table for many-to-many relations
- LoaderRegistry: one loader per (model, field, where), priming the
  unique-field loaders of the same model with every row fetched

Invariants:
    - A unique field loads one document or None, any other field a list
    - Results are cached per value until clear()
    - Batch queries are unlimited; loaders never truncate results
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from .database import to_document
from .query import UNLIMITED
from .schema.model import Field, Model, RelatedField, SimpleField

if TYPE_CHECKING:
    from .database import Database, Table

logger = logging.getLogger(__name__)


def _scope(where: dict[str, Any] | None, condition: dict[str, Any]) -> dict[str, Any]:
    if not where:
        return condition
    return {"AND": [where, condition]}


class _BatchLoader(ABC):
    """Per-tick batching and per-value caching shared by the loaders."""

    def __init__(self, where: dict[str, Any] | None = None) -> None:
        self.where = where
        self.batches = 0
        self._cache: dict[Any, asyncio.Future] = {}
        self._queue: list[Any] = []
        self._scheduled = False
        self._tasks: set[asyncio.Task] = set()

    @abstractmethod
    def is_unique(self) -> bool:
        """Whether each value loads one document rather than a list."""

    def _missing(self) -> Any:
        return None if self.is_unique() else []

    @abstractmethod
    async def _fetch(self, values: list[Any]) -> dict[Any, Any]:
        """Results keyed by value for one batch."""

    async def load(self, value: Any) -> Any:
        """Load the result for one value, batched with concurrent loads."""
        future = self._cache.get(value)
        if future is None:
            loop = asyncio.get_running_loop()
            future = loop.create_future()
            self._cache[value] = future
            self._queue.append(value)
            if not self._scheduled:
                self._scheduled = True
                loop.call_soon(self._schedule)
        return await asyncio.shield(future)

    async def load_many(self, values: list[Any]) -> list[Any]:
        return list(await asyncio.gather(*(self.load(v) for v in values)))

    def prime(self, value: Any, result: Any) -> None:
        """Cache a result for a value unless one is cached already."""
        if value in self._cache:
            return
        future = asyncio.get_running_loop().create_future()
        future.set_result(result)
        self._cache[value] = future

    def clear(self, value: Any = None) -> None:
        """Drop one cached value, or all of them."""
        if value is None:
            self._cache = {k: f for k, f in self._cache.items() if not f.done()}
        else:
            future = self._cache.get(value)
            if future is not None and future.done():
                del self._cache[value]

    def _schedule(self) -> None:
        task = asyncio.get_running_loop().create_task(self._dispatch())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _dispatch(self) -> None:
        values, self._queue, self._scheduled = self._queue, [], False
        self.batches += 1
        logger.debug(f"{self!r} batch of {len(values)} value(s)")
        try:
            results = await self._fetch(values)
        except Exception as e:
            for value in values:
                future = self._cache.pop(value, None)
                if future is not None and not future.done():
                    future.set_exception(e)
            return

        for value in values:
            future = self._cache[value]
            if not future.done():
                future.set_result(results.get(value, self._missing()))


class Loader(_BatchLoader):
    """Rows of a model by the value of one column-backed field."""

    def __init__(
        self,
        table: Table,
        field: SimpleField,
        where: dict[str, Any] | None = None,
        registry: LoaderRegistry | None = None,
    ) -> None:
        super().__init__(where)
        self.table = table
        self.field = field
        self.registry = registry

    def is_unique(self) -> bool:
        return self.field.is_unique()

    async def _fetch(self, values: list[Any]) -> dict[Any, Any]:
        model = self.table.model
        rows = await self.table.select_rows(
            where=_scope(self.where, {self.field.name: values}), limit=UNLIMITED
        )

        results: dict[Any, Any] = {}
        column = self.field.column.name
        unique = self.is_unique()
        for row in rows:
            doc = to_document(row, model)
            if unique:
                results[row[column]] = doc
                if self.registry is not None and not self.where:
                    self.registry.prime_row(model, doc, skip=self.field)
            else:
                results.setdefault(row[column], []).append(doc)
        return results

    def __repr__(self) -> str:
        return f"Loader({self.field.display_name})"


class RelatedLoader(_BatchLoader):
    """Children of a related field by parent value."""

    def __init__(
        self,
        db: Database,
        field: RelatedField,
        where: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(where)
        self.db = db
        self.field = field

    def is_unique(self) -> bool:
        return self.field.is_unique()

    async def _fetch(self, values: list[Any]) -> dict[Any, Any]:
        referencing = self.field.referencing_field
        through = self.field.through_field
        children = self.db.table(referencing.model)
        parent_column = referencing.column.name

        grouped: dict[Any, list[dict[str, Any]]] = {}
        if through is None:
            rows = await children.select_rows(
                where=_scope(self.where, {referencing.name: values}), limit=UNLIMITED
            )
            for row in rows:
                grouped.setdefault(row[parent_column], []).append(to_document(row, referencing.model))
        else:
            links = await children.select_rows(where={referencing.name: values}, limit=UNLIMITED)
            target = self.db.table(through.target)
            referenced = through.referenced_field
            keys = list(dict.fromkeys(row[through.column.name] for row in links))
            targets = {}
            if keys:
                rows = await target.select_rows(
                    where=_scope(self.where, {referenced.name: keys}), limit=UNLIMITED
                )
                targets = {row[referenced.column.name]: to_document(row, target.model) for row in rows}
            for link in links:
                doc = targets.get(link[through.column.name])
                if doc is not None:
                    grouped.setdefault(link[parent_column], []).append(doc)

        if self.is_unique():
            return {value: docs[0] for value, docs in grouped.items()}
        return grouped

    def __repr__(self) -> str:
        return f"RelatedLoader({self.field.display_name})"


class LoaderRegistry:
    """Loaders of one database, one per (model, field, where)."""

    def __init__(self, db: Database) -> None:
        self.db = db
        self._loaders: dict[tuple[str, str, str], _BatchLoader] = {}

    def get(self, field: Field, where: dict[str, Any] | None = None) -> _BatchLoader:
        """Get or create the loader of a field."""
        key = (field.model.name, field.name, json.dumps(where, sort_keys=True, default=str))
        loader = self._loaders.get(key)
        if loader is None:
            if isinstance(field, RelatedField):
                loader = RelatedLoader(self.db, field, where)
            else:
                loader = Loader(self.db.table(field.model), field, where, self)
            self._loaders[key] = loader
        return loader

    def prime_row(self, model: Model, doc: dict[str, Any], skip: Field | None = None) -> None:
        """Prime the unique-field loaders of a model with a fetched document."""
        for key in model.unique_keys:
            if len(key.fields) != 1 or key.fields[0] is skip:
                continue
            field = key.fields[0]
            value = model.value_of(doc.get(field.name), field.name)
            if value is not None:
                self.get(field).prime(value, doc)

    def clear(self) -> None:
        for loader in self._loaders.values():
            loader.clear()
