"""
Nested mutations for sqlgraph.

Mutation documents mix flat field values with relationship verbs:

    await create_one(db.table("order"), {
        "code": "A-1",
        "user": {"connect": {"email": "alice@example.com"}},
        "orderItems": {"create": [{"product": {"connect": {"sku": "apple"}}, "quantity": 2}]},
    })

Parent (foreign key) fields accept a value, {"connect": where},
{"create": doc} or {"upsert": {"create": doc, "update": doc}}. Parent
fields are resolved before the row is written.

Related fields accept connect, create, update, upsert, delete,
disconnect and set, each with a document or a list of documents. They
are applied after the row is written, keyed to its referenced value.
Many-to-many (through) relations manage junction rows.

Invariants:
    - Statements run one after another in payload order
    - update/upsert/delete of a single row require a unique key
    - Detaching a child nulls its foreign key when nullable and deletes
      the child otherwise
    - Unknown verbs raise UnknownVerbError; nothing is silently skipped
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .errors import BadFilterError, RecordNotFoundError, UnknownVerbError
from .query import UNLIMITED
from .record import Record
from .schema.model import ForeignKeyField, Model, RelatedField, SimpleField

if TYPE_CHECKING:
    from .database import Table

logger = logging.getLogger(__name__)

CONNECT = "connect"
CREATE = "create"
UPDATE = "update"
UPSERT = "upsert"
DELETE = "delete"
DISCONNECT = "disconnect"
SET = "set"

PARENT_VERBS = (CONNECT, CREATE, UPSERT)
CHILD_VERBS = (CONNECT, CREATE, UPDATE, UPSERT, DELETE, DISCONNECT, SET)


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _value(model: Model, doc: dict[str, Any], field: SimpleField) -> Any:
    return model.value_of(doc.get(field.name), field.name)


def _key_filter(model: Model, doc: dict[str, Any]) -> dict[str, Any]:
    return {f.name: _value(model, doc, f) for f in model.primary_key.fields}


def _require_unique(model: Model, where: Any) -> None:
    if not isinstance(where, dict) or model.check_unique_key(where) is None:
        raise BadFilterError(
            f"Filter does not identify a unique {model.name}: {where}", model.name, where
        )


async def resolve_parent_fields(table: Table, data: dict[str, Any]) -> dict[str, Any]:
    """Resolve foreign key payloads into values.

    Args:
        table: Table the data belongs to
        data: Mutation document

    Returns:
        Flat document keyed by field name, without related fields
    """
    model = table.model
    result: dict[str, Any] = {}
    for key, value in data.items():
        field = model.get_field(key)
        if isinstance(field, RelatedField):
            continue
        if isinstance(field, ForeignKeyField):
            result[field.name] = await _resolve_parent(table, field, value)
        else:
            result[field.name] = value
    return result


async def _resolve_parent(table: Table, field: ForeignKeyField, value: Any) -> Any:
    if isinstance(value, Record) or not isinstance(value, dict):
        return value

    referenced = field.referenced_field
    target = table.db.table(referenced.model)

    verbs = [key for key in value if key in PARENT_VERBS]
    if not verbs:
        if set(value) == {referenced.name}:
            return value[referenced.name]
        raise UnknownVerbError(next(iter(value), ""), field.name)
    if len(value) != 1:
        raise BadFilterError(
            f"Expected exactly one of {PARENT_VERBS} for {field.display_name}",
            table.model.name,
            value,
        )

    verb, arg = next(iter(value.items()))
    if verb == CONNECT:
        if isinstance(arg, dict) and set(arg) == {referenced.name}:
            return arg[referenced.name]
        _require_unique(target.model, arg)
        row = await target.get(arg)
        if row is None:
            raise RecordNotFoundError(
                f"No {target.model.name} matches {arg}", target.model.name, arg
            )
    elif verb == CREATE:
        row = await create_one(target, arg)
    else:
        row = await upsert_one(target, arg[CREATE], arg.get(UPDATE))
    return _value(target.model, row, referenced)


async def create_one(table: Table, data: dict[str, Any]) -> dict[str, Any]:
    """Create one row with its nested parents and children.

    Returns:
        The created document
    """
    model = table.model
    row = await resolve_parent_fields(table, data)
    key_value = await table.insert(row)

    key = model.key_field()
    if key is not None and key_value is not None:
        where = {key.name: key_value}
    else:
        where = model.get_unique_fields(row)
        if where is None:
            raise BadFilterError(
                f"Created {model.name} cannot be read back without a unique key", model.name, row
            )

    parent = await table.get(where)
    if _has_children(model, data):
        await update_child_fields(table, data, parent)
        parent = await table.get(where)
    logger.debug(f"Created {model.name} {where}")
    return parent


async def update_one(
    table: Table, data: dict[str, Any], where: dict[str, Any]
) -> dict[str, Any] | None:
    """Update the row identified by a unique key.

    Returns:
        The updated document, or None if no row matched
    """
    model = table.model
    _require_unique(model, where)

    row = await resolve_parent_fields(table, data)
    if row:
        await table.update(row, where)

    # the filter may name columns that were just changed
    lookup = dict(where)
    for key in where:
        field = model.field(key)
        if isinstance(field, SimpleField) and field.name in row:
            lookup[key] = row[field.name]

    parent = await table.get(lookup)
    if parent is None:
        return None

    if _has_children(model, data):
        await update_child_fields(table, data, parent)
        parent = await table.get(_key_filter(model, parent))
    return parent


async def upsert_one(
    table: Table, create: dict[str, Any], update: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Create a row, or update (or return) the existing one with the same unique key."""
    model = table.model
    row = await resolve_parent_fields(table, create)
    where = model.get_unique_fields(row)
    if where is None:
        raise BadFilterError(
            f"Upsert data does not cover a unique key of {model.name}", model.name, create
        )

    existing = await table.get(where)
    if existing is None:
        data = dict(row)
        for key, value in create.items():
            if isinstance(model.field(key), RelatedField):
                data[key] = value
        return await create_one(table, data)

    if update:
        return await update_one(table, update, where)
    return existing


async def delete_one(table: Table, where: dict[str, Any]) -> dict[str, Any] | None:
    """Delete the row identified by a unique key.

    Returns:
        The deleted document, or None if no row matched
    """
    _require_unique(table.model, where)
    row = await table.get(where)
    if row is None:
        return None
    await table.delete(where)
    return row


async def update_many(table: Table, data: dict[str, Any], where: Any) -> int:
    """Apply flat data to every matching row.

    Returns:
        Number of affected rows
    """
    if _has_children(table.model, data):
        raise BadFilterError("update_many does not take related fields", table.model.name, data)
    row = await resolve_parent_fields(table, data)
    return await table.update(row, where)


async def delete_many(table: Table, where: Any) -> list[dict[str, Any]]:
    """Delete every matching row.

    Returns:
        The deleted documents
    """
    rows = await table.select(where=where, limit=UNLIMITED)
    if rows:
        await table.delete(where)
    return rows


def _has_children(model: Model, data: dict[str, Any]) -> bool:
    return any(isinstance(model.field(key), RelatedField) for key in data)


async def update_child_fields(table: Table, data: dict[str, Any], parent: dict[str, Any]) -> None:
    """Apply relationship verbs of related fields to the children of parent."""
    model = table.model
    for key, value in data.items():
        field = model.field(key)
        if not isinstance(field, RelatedField):
            continue
        if not isinstance(value, dict):
            raise BadFilterError(
                f"Related field {field.display_name} takes a document of verbs", model.name, value
            )
        parent_value = _value(model, parent, field.referencing_field.referenced_field)
        for verb, arg in value.items():
            if verb not in CHILD_VERBS:
                raise UnknownVerbError(verb, field.name)
            if field.through_field is not None:
                await _through_verb(table, field, verb, arg, parent_value)
            else:
                await _child_verb(table, field, verb, arg, parent_value)


async def _detach(child: Table, field: ForeignKeyField, where: dict[str, Any]) -> int:
    if field.nullable:
        return await child.update({field.name: None}, where)
    return await child.delete(where)


async def _child_verb(table: Table, field: RelatedField, verb: str, arg: Any, parent_value: Any) -> None:
    referencing = field.referencing_field
    child = table.db.table(referencing.model)
    scope = {referencing.name: parent_value}

    if verb == SET:
        wheres = _as_list(arg)
        where = dict(scope)
        if wheres:
            where["NOT"] = [{"OR": wheres}]
        await _detach(child, referencing, where)
        for item in wheres:
            await _connect_child(child, referencing, item, parent_value)
        return

    for item in _as_list(arg):
        if verb == CONNECT:
            if field.is_unique():
                await _detach(child, referencing, {**scope, "NOT": [item]})
            await _connect_child(child, referencing, item, parent_value)
        elif verb == CREATE:
            if field.is_unique():
                await _detach(child, referencing, scope)
            await create_one(child, {**item, referencing.name: parent_value})
        elif verb == UPSERT:
            # parents are resolved once; nested creates must not run twice
            create = await resolve_parent_fields(child, {**item[CREATE], referencing.name: parent_value})
            create.update(
                (k, v) for k, v in item[CREATE].items() if isinstance(child.model.field(k), RelatedField)
            )
            update = {**(item.get(UPDATE) or {}), referencing.name: parent_value}
            if field.is_unique():
                where = dict(scope)
                unique_fields = child.model.get_unique_fields(create)
                if unique_fields:
                    where["NOT"] = [unique_fields]
                await _detach(child, referencing, where)
            await upsert_one(child, create, update)
        elif verb == UPDATE:
            where = item.get("where") or {}
            await update_one(child, item.get("data", {}), {**where, **scope})
        elif verb == DELETE:
            where = scope if item is True else {**item, **scope}
            await delete_one(child, where)
        elif verb == DISCONNECT:
            where = scope if item is True else {**item, **scope}
            await _detach(child, referencing, where)


async def _connect_child(child: Table, referencing: ForeignKeyField, where: Any, parent_value: Any) -> None:
    _require_unique(child.model, where)
    affected = await child.update({referencing.name: parent_value}, where)
    if affected == 0:
        raise RecordNotFoundError(f"No {child.model.name} matches {where}", child.model.name, where)


async def _through_verb(table: Table, field: RelatedField, verb: str, arg: Any, parent_value: Any) -> None:
    referencing = field.referencing_field
    through = field.through_field
    junction = table.db.table(referencing.model)
    target = table.db.table(through.target)
    referenced = through.referenced_field

    def link_key(doc: dict[str, Any]) -> dict[str, Any]:
        return {referencing.name: parent_value, through.name: _value(target.model, doc, referenced)}

    async def link(doc: dict[str, Any]) -> None:
        key = link_key(doc)
        if not await junction.select(where=key, limit=1):
            await junction.insert(key)

    async def find(where: Any) -> dict[str, Any] | None:
        _require_unique(target.model, where)
        return await target.get(where)

    if verb == SET:
        await junction.delete({referencing.name: parent_value})
        verb = CONNECT

    for item in _as_list(arg):
        if verb == CONNECT:
            doc = await find(item)
            if doc is None:
                raise RecordNotFoundError(
                    f"No {target.model.name} matches {item}", target.model.name, item
                )
            await link(doc)
        elif verb == CREATE:
            await link(await create_one(target, item))
        elif verb == UPSERT:
            await link(await upsert_one(target, item[CREATE], item.get(UPDATE)))
        elif verb == UPDATE:
            where = item.get("where") or {}
            doc = await find(where)
            if doc is None or not await junction.select(where=link_key(doc), limit=1):
                raise RecordNotFoundError(
                    f"No linked {target.model.name} matches {where}", target.model.name, where
                )
            await update_one(target, item.get("data", {}), where)
        elif verb == DELETE:
            doc = await find(item)
            if doc is not None:
                await junction.delete(link_key(doc))
                await delete_one(target, item)
        elif verb == DISCONNECT:
            doc = await find(item)
            if doc is not None:
                await junction.delete(link_key(doc))
