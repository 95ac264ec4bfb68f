"""
In-memory record graph for sqlgraph.

A Record is one row that may not be persisted yet. Its foreign key fields
may hold other Records, including Records without a primary key, so
graphs of unsaved objects (cycles included) can be built before flushing:

    user = db.append("user", {"email": "alice@example.com"})
    order = db.append("order", {"code": "A-1", "user": user})
    await order.save()      # inserts user, then order

Identity:
    Two Records found to denote the same row are merged. Merging is a
    union in the database's RecordArena; the merged Record becomes an
    alias and every read or write goes to its root.

Invariants:
    - Only column-backed fields (simple and foreign key) can be read or
      written; names are stored as canonical field names
    - set() marks the field dirty on the root
    - A Record is pending when its referenced value is still unknown
    - A merged Record never holds data of its own

How to change safely:
    - Keep all data access going through root
    - FlushState must stay cloneable; failed flushes restore snapshots
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from difflib import get_close_matches
from enum import Enum
from typing import TYPE_CHECKING, Any

from .errors import MergeConflictError, UnknownFieldError
from .schema.model import ForeignKeyField, Model, SimpleField, UniqueKey

if TYPE_CHECKING:
    from .database import Table

logger = logging.getLogger(__name__)


class FlushMethod(Enum):
    """Statement a Record needs on its next flush."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class FlushState:
    """Flush bookkeeping of one Record.

    Attributes:
        method: Statement needed on the next flush
        dirty: Field names changed since the last flush
        deleted: The row has been deleted
        merged: Record this one was merged into
    """

    method: FlushMethod = FlushMethod.INSERT
    dirty: set[str] = field(default_factory=set)
    deleted: bool = False
    merged: Record | None = None

    def clone(self) -> FlushState:
        return FlushState(self.method, set(self.dirty), self.deleted, self.merged)


class RecordArena:
    """Union-find over all Records of one database.

    Each Record gets an integer id; parent[id] == id for roots.
    """

    def __init__(self) -> None:
        self.records: list[Record] = []
        self.parent: list[int] = []

    def add(self, record: Record) -> int:
        record_id = len(self.records)
        self.records.append(record)
        self.parent.append(record_id)
        return record_id

    def find(self, record_id: int) -> int:
        root = record_id
        while self.parent[root] != root:
            root = self.parent[root]
        # path compression
        while self.parent[record_id] != root:
            self.parent[record_id], record_id = root, self.parent[record_id]
        return root

    def union(self, child: int, root: int) -> None:
        """Make child's set an alias of root's set."""
        child, root = self.find(child), self.find(root)
        if child != root:
            self.parent[child] = root

    def root(self, record: Record) -> Record:
        return self.records[self.find(record.id)]

    def __len__(self) -> int:
        return len(self.records)


def resolve_value(field: SimpleField, value: Any) -> Any:
    """Concrete value of a field, following Records to their referenced value."""
    while isinstance(value, Record) and isinstance(field, ForeignKeyField):
        referenced = field.referenced_field
        value = value.root._data.get(referenced.name)
        field = referenced
    return value


def is_pending(field: SimpleField, value: Any) -> bool:
    """Whether a value is a Record whose referenced value is not known yet."""
    return isinstance(value, Record) and resolve_value(field, value) is None


class Record:
    """One in-memory row.

    Example:
        >>> record = db.append("user", {"email": "a@example.com"})
        >>> record["firstName"] = "Alice"
        >>> record.dirty_fields
        {'email', 'firstName'}
        >>> await record.save()
        >>> record.primary_key
        1
    """

    def __init__(self, table: Table, data: dict[str, Any] | None = None) -> None:
        self.table = table
        self.id = table.db.arena.add(self)
        self._data: dict[str, Any] = {}
        self._state = FlushState()
        if data:
            self.update(data)

    @property
    def model(self) -> Model:
        return self.table.model

    @property
    def root(self) -> Record:
        return self.table.db.arena.root(self)

    @property
    def state(self) -> FlushState:
        return self.root._state

    @property
    def data(self) -> dict[str, Any]:
        return self.root._data

    def _field(self, name: str) -> SimpleField:
        field = self.model.field(name)
        if not isinstance(field, SimpleField):
            names = [f.name for f in self.model.simple_fields()]
            raise UnknownFieldError(name, self.model.name, get_close_matches(name, names, n=3))
        return field

    def get(self, name: str) -> Any:
        return self.root._data.get(self._field(name).name)

    def set(self, name: str, value: Any) -> None:
        field = self._field(name)
        if isinstance(field, ForeignKeyField) and isinstance(value, dict):
            value = value.get(field.referenced_field.name)
        root = self.root
        root._data[field.name] = value
        root._state.dirty.add(field.name)

    def __getitem__(self, name: str) -> Any:
        return self.get(name)

    def __setitem__(self, name: str, value: Any) -> None:
        self.set(name, value)

    def update(self, data: dict[str, Any]) -> None:
        for name, value in data.items():
            self.set(name, value)

    def delete(self) -> None:
        """Mark the row for deletion on the next flush."""
        self.state.method = FlushMethod.DELETE

    @property
    def primary_key(self) -> Any:
        """Primary key value; a dict for composite keys, None while unknown."""
        values = self.value_of(self.model.primary_key)
        if values is None:
            return None
        if len(values) == 1:
            return values[0]
        return {f.name: v for f, v in zip(self.model.primary_key.fields, values)}

    def is_dirty(self) -> bool:
        """Whether the next flush has work for this Record."""
        state = self.state
        if state.deleted:
            return False
        return bool(state.dirty) or state.method != FlushMethod.UPDATE

    @property
    def dirty_fields(self) -> set[str]:
        return set(self.state.dirty)

    def fields(self) -> dict[str, Any]:
        """Copy of the current field values."""
        return dict(self.root._data)

    def resolve(self, name: str) -> Any:
        """Concrete value of a field, None while a referenced Record is pending."""
        field = self._field(name)
        return resolve_value(field, self.root._data.get(field.name))

    def pending_references(self) -> dict[str, Record]:
        """Fields holding Records whose referenced value is not known yet."""
        result = {}
        for name, value in self.root._data.items():
            field = self.model.field(name)
            if is_pending(field, value):
                result[name] = value.root
        return result

    def value_of(self, key: UniqueKey) -> tuple[Any, ...] | None:
        """Concrete values of a unique key, None if any is unknown."""
        data = self.root._data
        values = []
        for key_field in key.fields:
            value = resolve_value(key_field, data.get(key_field.name))
            if value is None:
                return None
            values.append(value)
        return tuple(values)

    def unique_filter(self) -> dict[str, Any] | None:
        """Filter on the first unique key with concrete values, primary key first."""
        model = self.model
        for key in [model.primary_key] + [k for k in model.unique_keys if not k.primary]:
            values = self.value_of(key)
            if values is not None:
                return {f.name: v for f, v in zip(key.fields, values)}
        return None

    def matches(self, row: dict[str, Any]) -> bool:
        """Whether a document agrees with every concrete value of this Record."""
        for name, value in self.root._data.items():
            field = self.model.field(name)
            value = resolve_value(field, value)
            if value is None:
                continue
            if name in row and self.model.value_of(row[name], name) != value:
                return False
        return True

    async def save(self) -> int:
        """Flush this Record and every dirty Record it depends on.

        Returns:
            Number of persisted Records
        """
        from .flush import flush_record

        return await flush_record(self)

    def __repr__(self) -> str:
        key = self.primary_key
        if key is None:
            return f"<{self.model.name} #{self.id}>"
        return f"<{self.model.name} {key}>"


def merge_into(target: Record, record: Record) -> Record:
    """Merge a Record into another denoting the same row.

    Dirty fields of the merged Record overwrite the target; fields the
    target lacks are copied.

    Returns:
        The surviving root
    """
    target, record = target.root, record.root
    if target is record:
        return target

    for name, value in record._data.items():
        if name in record._state.dirty:
            target._data[name] = value
            target._state.dirty.add(name)
        elif name not in target._data:
            target._data[name] = value
    if record._state.method == FlushMethod.DELETE:
        target._state.method = FlushMethod.DELETE

    record._data = {}
    record._state.dirty = set()
    record._state.merged = target
    target.table.db.arena.union(record.id, target.id)
    logger.debug(f"Merged {record.model.name} #{record.id} into {target!r}")
    return target


class RecordIndex:
    """Records of one model keyed by unique key values.

    Entries can go stale when key fields change; lookups verify them.
    """

    def __init__(self, model: Model) -> None:
        self.model = model
        self._entries: dict[tuple[str, tuple[Any, ...]], Record] = {}

    def lookup(self, record: Record) -> Record | None:
        """Find another Record sharing a unique key value.

        Raises:
            MergeConflictError: If two different Records match on different keys
        """
        root = record.root
        found = None
        for key in self.model.unique_keys:
            values = root.value_of(key)
            if values is None:
                continue
            entry = self._entries.get((key.name(), values))
            if entry is None:
                continue
            entry = entry.root
            if entry is root or entry.state.deleted or entry.value_of(key) != values:
                continue
            if found is not None and found is not entry:
                raise MergeConflictError(
                    f"{root!r} matches both {found!r} and {entry!r}", self.model.name
                )
            found = entry
        return found

    def add(self, record: Record) -> None:
        root = record.root
        for key in self.model.unique_keys:
            values = root.value_of(key)
            if values is not None:
                self._entries[(key.name(), values)] = root
