"""
Cursor pagination for sqlgraph.

A cursor is the base64 encoded JSON array of the order-by values of one
row. Paging "after" a cursor compiles to a seek predicate over the order
columns instead of an OFFSET, so pages stay stable while rows are added.

Invariants:
    - The order is always made unique: the primary key is appended as a
      tie-breaker (in the direction of the last requested entry) and the
      result must cover a unique key, otherwise BadFilterError
    - Cursor values are read from raw rows: the column name for root
      fields, "a__b" for joined paths
    - NULLs sort first in ascending order, last in descending order

How to change safely:
    - Cursors are opaque to clients but persist across requests; keep
      encode/decode compatible
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from .errors import BadFilterError

if TYPE_CHECKING:
    from .database import Table
    from .query import OrderEntry
    from .schema.model import Model

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Cannot encode {type(value).__name__} in a cursor")


def encode_cursor(values: list[Any]) -> str:
    """Encode order-by values as an opaque cursor."""
    data = json.dumps(values, separators=(",", ":"), default=_json_default)
    return base64.b64encode(data.encode()).decode("ascii")


def decode_cursor(cursor: str) -> list[Any]:
    """Decode a cursor back into order-by values.

    Raises:
        BadFilterError: If the cursor is malformed
    """
    try:
        values = json.loads(base64.b64decode(cursor, validate=True).decode())
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise BadFilterError(f"Bad cursor: {cursor!r}") from e
    if not isinstance(values, list):
        raise BadFilterError(f"Bad cursor: {cursor!r}")
    return values


def match_unique_key(model: Model, entries: list[OrderEntry]) -> list[OrderEntry] | None:
    """Trim an order to the shortest prefix covering a unique key.

    A unique key is covered when each of its fields heads some entry, and
    every further hop of a dotted path is unique in its own model.

    Args:
        model: Model being ordered
        entries: Parsed order-by entries

    Returns:
        Prefix of entries, or None if no unique key is covered
    """
    names = [entry.names for entry in entries]
    heads = [n[0] for n in names]

    for key in model.unique_keys:
        success = True
        last_index = 0
        for key_field in key.fields:
            if key_field.name not in heads:
                success = False
                break
            index = heads.index(key_field.name)
            hop = key_field
            for name in names[index][1:]:
                target = getattr(hop, "referenced_field", None)
                hop = target.model.field(name) if target is not None else None
                if hop is None or not hop.is_unique():
                    success = False
                    break
            if not success:
                break
            last_index = max(last_index, index)
        if success:
            return entries[: last_index + 1]
    return None


def build_seek_filter(fields: list[tuple[str, bool, str | None]]) -> str:
    """Build the predicate selecting rows strictly after a cursor.

    Args:
        fields: (qualified column, descending, escaped value or None for
            NULL) per order entry

    Returns:
        col1 > v1 OR (col1 = v1 AND (col2 > v2 OR ...))
    """
    expr = ""
    for column, desc, value in reversed(fields):
        if desc:
            after = f"{column} IS NULL OR {column} < {value}" if value is not None else ""
        else:
            after = f"{column} > {value}" if value is not None else f"{column} IS NOT NULL"

        if not expr:
            expr = after or "1 = 0"
            continue

        equal = f"{column} IS NULL" if value is None else f"{column} = {value}"
        if after:
            expr = f"{after} OR ({equal} AND ({expr}))"
        else:
            expr = f"{equal} AND ({expr})"
    return expr


@dataclass
class CursorResult:
    """One page of a cursor query.

    Attributes:
        nodes: Documents of the page
        cursors: Cursor of each node
        has_next_page: More rows follow the last node
        total_count: Rows matching the filter, when requested
    """

    nodes: list[dict[str, Any]] = field(default_factory=list)
    cursors: list[str] = field(default_factory=list)
    has_next_page: bool = False
    total_count: int | None = None


async def cursor_query(
    table: Table,
    *,
    where: Any = None,
    order_by: str | list[str] | None = None,
    first: int | None = None,
    after: str | None = None,
    with_total: bool = False,
    default_limit: int | None = None,
) -> CursorResult:
    """Fetch one page after a cursor.

    Args:
        table: Table to query
        where: Filter
        order_by: Requested order; the primary key is appended
        first: Page size, the default limit when None
        after: Cursor of the last row of the previous page
        with_total: Also count all matching rows
        default_limit: Page size used when first is None

    Returns:
        CursorResult

    Raises:
        BadFilterError: If the order cannot be made unique or the cursor
            is malformed
    """
    from .database import to_document
    from .query import OrderEntry, parse_order_by

    model = table.model
    entries = parse_order_by(order_by)
    desc = entries[-1].desc if entries else False
    entries += [OrderEntry(f.name, desc) for f in model.primary_key.fields]

    matched = match_unique_key(model, entries)
    if matched is None:
        raise BadFilterError(
            f"Order {[str(e) for e in entries]} does not cover a unique key", model.name
        )

    seek = decode_cursor(after) if after else None
    if default_limit is None:
        default_limit = table.db.settings.default_limit
    limit = first if first is not None else default_limit

    rows = await table.select_rows("*", where=where, order_by=matched, limit=limit + 1, seek=seek)
    has_next_page = len(rows) > limit
    rows = rows[:limit]

    keys = []
    for entry in matched:
        if len(entry.names) > 1:
            keys.append(entry.key)
        else:
            keys.append(model.field(entry.path).column.name)

    result = CursorResult(
        nodes=[to_document(row, model) for row in rows],
        cursors=[encode_cursor([row.get(k) for k in keys]) for row in rows],
        has_next_page=has_next_page,
    )
    if with_total:
        result.total_count = await table.count(where)

    logger.debug(f"Cursor page of {len(rows)} {model.plural_name}, next={has_next_page}")
    return result
