"""
Flush engine for sqlgraph.

Persists dirty Records in dependency order. A Record depends on the
pending Records (no referenced value yet) held by its fields; the engine
works on the reachable dirty subgraph as a worklist:

    1. merge Records that denote the same row
    2. collect dirty Records reachable through pending references
    3. persist the perfectly flushable frontier (nothing pending)
    4. failing that, insert one Record without its nullable pending
       fields (partial flush); they stay dirty for a later round
    5. failing that, raise LoopError
    6. repeat until nothing reachable is dirty

Invariants:
    - Everything runs in one transaction; on failure every Record's data
      and flush state are restored to the pre-flush snapshot
    - Every round persists at least one Record, so flushing terminates
    - INSERT checks for an existing row on the Record's unique key first
      and turns into an UPDATE when one is found
    - Insert races are retried at most Settings.insert_retries times

How to change safely:
    - Keep LoopError for graphs no partial flush can break; callers rely
      on it to detect cycles over non-nullable or unique references
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .errors import BadFilterError, IntegrityError, LoopError, RecordNotFoundError
from .record import (
    FlushMethod,
    FlushState,
    Record,
    RecordArena,
    RecordIndex,
    is_pending,
    merge_into,
    resolve_value,
)

if TYPE_CHECKING:
    from .database import Database, Table

logger = logging.getLogger(__name__)


def merge_records(table: Table) -> int:
    """Merge Records of a table sharing a unique key value.

    Rebuilds the table's record index.

    Returns:
        Number of merged Records

    Raises:
        MergeConflictError: If a Record matches two different Records
    """
    index = RecordIndex(table.model)
    merged = 0
    for record in table.records:
        if record.state.deleted:
            continue
        existing = index.lookup(record)
        if existing is not None:
            merge_into(existing, record)
            index.add(existing)
            merged += 1
        else:
            index.add(record)
    table._index = index
    return merged


def _pending_fields(record: Record, dirty_only: bool = True) -> dict[str, Record]:
    root = record.root
    model = root.model
    names = root._state.dirty if dirty_only else root._data.keys()
    result = {}
    for name in names:
        value = root._data.get(name)
        if is_pending(model.field(name), value):
            result[name] = value.root
    return result


def is_perfect(record: Record) -> bool:
    """No dirty field holds a pending Record."""
    return not _pending_fields(record)


def is_flushable(record: Record) -> bool:
    """Whether the Record's statement can be built now.

    UPDATE and DELETE need a concrete unique key. INSERT needs one too,
    unless the primary key is auto-increment and no unique key waits on a
    pending Record.
    """
    if record.unique_filter() is not None:
        return True
    if record.state.method != FlushMethod.INSERT:
        return False

    model = record.model
    if not model.primary_key.is_auto_increment():
        return False
    data = record.data
    for key in model.unique_keys:
        for field in key.fields:
            if is_pending(field, data.get(field.name)):
                return False
    return True


def is_partially_flushable(record: Record) -> bool:
    """Whether the Record can be inserted without its pending fields.

    Only Records without a primary key qualify, and only when every
    pending dirty field is a nullable column.
    """
    if record.state.method != FlushMethod.INSERT or record.primary_key is not None:
        return False
    if not is_flushable(record):
        return False
    model = record.model
    return all(model.field(name).nullable for name in _pending_fields(record))


def collect_dirty(targets: list[Record]) -> list[Record]:
    """Dirty Records reachable from targets through pending references.

    Iterative depth-first search; each Record is visited once.
    """
    result = []
    visited: set[int] = set()
    stack = [t.root for t in reversed(targets)]
    while stack:
        record = stack.pop()
        if record.id in visited:
            continue
        visited.add(record.id)
        if record.is_dirty():
            result.append(record)
        for value in reversed(list(_pending_fields(record, dirty_only=False).values())):
            if value.id not in visited:
                stack.append(value)
    return result


def _values(record: Record, names: set[str]) -> dict[str, Any]:
    root = record.root
    return {name: root._data.get(name) for name in names}


async def persist(record: Record, partial: bool = False) -> None:
    """Write one flushable Record.

    Args:
        record: Record to persist
        partial: Leave pending fields out of the INSERT

    Raises:
        RecordNotFoundError: If an UPDATE matched no row
        IntegrityError: If inserts keep failing after the configured retries
    """
    root = record.root
    table = root.table
    model = root.model
    state = root._state

    if state.method == FlushMethod.DELETE:
        where = root.unique_filter()
        if where is None:
            raise BadFilterError(f"Cannot delete {root!r} without a unique key", model.name)
        await table.delete(where)
        state.deleted = True
        state.dirty.clear()
        return

    names = set(state.dirty)
    if partial:
        names -= set(_pending_fields(root))
    data = _values(root, names)

    if state.method == FlushMethod.UPDATE:
        where = root.unique_filter()
        if data:
            affected = await table.update(data, where)
            if affected == 0:
                raise RecordNotFoundError(f"Row of {root!r} does not exist", model.name, where)
        state.dirty -= names
        return

    retries = table.db.settings.insert_retries
    attempt = 0
    while True:
        where = root.unique_filter()
        existing = await table.get(where) if where else None
        if existing is not None:
            for field in model.primary_key.fields:
                if root._data.get(field.name) is None:
                    root._data[field.name] = model.value_of(existing[field.name], field.name)
            changed = {
                name: value
                for name, value in data.items()
                if model.value_of(existing.get(name), name) != resolve_value(model.field(name), value)
            }
            if changed:
                await table.update(changed, where)
            break

        try:
            key_value = await table.insert(data)
        except IntegrityError:
            if attempt >= retries:
                raise
            attempt += 1
            logger.warning(
                f"Insert of {root!r} failed, checking for an existing row "
                f"(attempt {attempt} of {retries})"
            )
            continue

        key = model.key_field()
        if key is not None and root._data.get(key.name) is None:
            root._data[key.name] = key_value
        break

    state.method = FlushMethod.UPDATE
    state.dirty -= names


async def _converge(db: Database, targets: list[Record]) -> int:
    persisted = 0
    rounds = 0
    while True:
        for table in db.unique_tables():
            merge_records(table)

        work = collect_dirty(targets)
        if not work:
            return persisted

        rounds += 1
        frontier = [r for r in work if is_perfect(r) and is_flushable(r)]
        partial = False
        if not frontier:
            frontier = [r for r in work if is_partially_flushable(r)][:1]
            partial = True
        if not frontier:
            raise LoopError(
                f"Cannot flush {len(work)} record(s) with unresolved references",
                [repr(r) for r in work],
            )

        logger.debug(
            f"Flush round {rounds}: {len(frontier)} of {len(work)} record(s)"
            f"{' (partial)' if partial else ''}"
        )
        for record in frontier:
            await persist(record, partial)
            persisted += 1


def _snapshot(arena: RecordArena) -> tuple[list[int], list[tuple[dict[str, Any], FlushState]]]:
    return list(arena.parent), [(dict(r._data), r._state.clone()) for r in arena.records]


def _restore(arena: RecordArena, snapshot: tuple[list[int], list[tuple[dict[str, Any], FlushState]]]) -> None:
    parent, states = snapshot
    count = len(parent)
    arena.parent[:count] = parent
    for record, (data, state) in zip(arena.records[:count], states):
        record._data = dict(data)
        record._state = state.clone()


async def _flush(db: Database, targets: list[Record]) -> int:
    snapshot = _snapshot(db.arena)
    try:
        return await db.transaction(lambda: _converge(db, targets))
    except BaseException:
        _restore(db.arena, snapshot)
        logger.warning(f"Flush rolled back; restored {len(snapshot[1])} record(s)")
        raise


async def flush_record(record: Record) -> int:
    """Persist a Record and every dirty Record it depends on.

    Returns:
        Number of persisted Records

    Raises:
        LoopError: If pending references form a cycle no partial flush breaks
    """
    return await _flush(record.table.db, [record])


async def flush_database(db: Database) -> int:
    """Persist every dirty Record of the database.

    Returns:
        Number of persisted Records
    """
    targets = [r for r in db.arena.records if r.root is r and r.is_dirty()]
    count = await _flush(db, targets)
    logger.info(f"Flushed {count} record(s)")
    return count
