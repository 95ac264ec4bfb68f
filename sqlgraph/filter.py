"""
Filter compiler for sqlgraph.

Translates filter documents into SQL boolean expressions:

    {"name_like": "%Apple%", "price_lt": 6}
        -> ("product"."name" LIKE '%Apple%' AND "product"."price" < 6)
    {"OR": [{"id": 1}, {"categories_some": {"name": "Fruit"}}]}
        -> ("product"."id" = 1 OR EXISTS (SELECT 1 FROM ...))

Keys are field names, optionally suffixed with an operator
(lt, le, ge, gt, ne, in, like, null, some, none), or the logical keys
AND / OR / NOT. A list of documents is OR'ed, the keys of one document
are AND'ed.

Foreign key values may be scalars, lists, a document on the referenced
field alone (compiled on the column itself) or any other document
(compiled as a LEFT JOIN at the top level of a select, and as an IN
subquery everywhere else). Related fields compile to correlated
EXISTS / NOT EXISTS subqueries, traversing the junction table for
many-to-many relations.

Invariants:
    - Every subquery or join gets a fresh alias t1, t2, ... from the
      Context shared by one compilation
    - Root columns are qualified by the escaped table name
    - Values are escaped per column kind; identifiers always quoted
    - An empty filter compiles to ""
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from .engine.connection import Dialect
from .errors import BadFilterError, UnknownOperatorError
from .schema.model import Field, ForeignKeyField, Model, RelatedField, SimpleField

logger = logging.getLogger(__name__)

OPERATORS: dict[str, str | None] = {
    "lt": "<",
    "le": "<=",
    "ge": ">=",
    "gt": ">",
    "ne": "<>",
    "in": "IN",
    "like": "LIKE",
    "null": None,
    "some": None,
    "none": None,
}

AND = "AND"
OR = "OR"
NOT = "NOT"

LOGICAL_KEYS = {
    "AND": AND,
    "and": AND,
    "OR": OR,
    "or": OR,
    "NOT": NOT,
    "not": NOT,
}

FALSE_EXPR = "1 = 0"


def split_key(
    key: str,
    model: Model | None = None,
    separator: str = "_",
) -> tuple[str, str | None]:
    """Split a filter key into (field name, operator).

    With a model, an exact field (or column) name wins; otherwise the
    longest field name followed by the separator is taken and the rest
    must be an operator.

    Args:
        key: Filter key, e.g. "price_lt"
        model: Model the key belongs to
        separator: Delimiter between field name and operator

    Returns:
        (name, operator), operator None for equality or nested traversal

    Raises:
        UnknownOperatorError: If a field matches but the suffix is no operator
        UnknownFieldError: If no field name matches
    """
    if model is None:
        head, sep, tail = key.rpartition(separator)
        if sep and head and tail in OPERATORS:
            return head, tail
        return key, None

    if model.field(key) is not None:
        return key, None

    pos = len(key)
    while True:
        pos = key.rfind(separator, 0, pos)
        if pos <= 0:
            break
        name = key[:pos]
        if model.field(name) is not None:
            operator = key[pos + len(separator):]
            if operator not in OPERATORS:
                raise UnknownOperatorError(operator, name)
            return name, operator

    name, operator = split_key(key, None, separator)
    model.get_field(name)
    raise UnknownOperatorError(operator or key)


def normalise_datetime(value: Any, date_only: bool = False) -> Any:
    """Render a date/time value as stored by date/time columns.

    Strings are parsed as ISO 8601; unparseable values are returned as is.

    Args:
        value: datetime, date or string
        date_only: Render YYYY-MM-DD instead of YYYY-MM-DD HH:MM:SS

    Returns:
        Normalised string, or the original value
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value)
        except ValueError:
            return value
    else:
        return value

    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.strftime("%Y-%m-%d" if date_only else "%Y-%m-%d %H:%M:%S")


def escape_value(field: SimpleField, value: Any, dialect: Dialect) -> str:
    """Render a value for comparison with a column."""
    if value is None:
        return "NULL"

    col = field.column
    if col.is_boolean():
        return dialect.true() if value else dialect.false()
    if col.is_numeric() and isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return str(value)
    if col.is_datetime():
        value = normalise_datetime(value, date_only=col.is_date())

    if isinstance(value, (str, bytes, bytearray)):
        return dialect.escape(value)
    return dialect.escape(str(value))


def _is_document(value: Any) -> bool:
    return isinstance(value, dict)


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _and(exprs: list[str]) -> str:
    exprs = [e for e in exprs if e]
    if not exprs:
        return ""
    if len(exprs) == 1:
        return exprs[0]
    return f"({' AND '.join(exprs)})"


def _or(exprs: list[str]) -> str:
    if not exprs:
        return ""
    # an empty member matches every row
    if any(not e for e in exprs):
        return ""
    return f"({' OR '.join(exprs)})"


class Context:
    """State shared by all builders of one compilation.

    Attributes:
        alias_map: Joined builders keyed by dotted foreign key path
    """

    def __init__(self) -> None:
        self.counter = 0
        self.alias_map: dict[str, FilterBuilder] = {}

    def next_alias(self) -> str:
        self.counter += 1
        return f"t{self.counter}"


class FilterBuilder:
    """Compiles filter documents against one model.

    The root builder qualifies columns with the table name; child
    builders (joins and subqueries) get their own alias.

    Attributes:
        model: Model the filter applies to
        dialect: Escaping rules
        parent: Builder this one was created from
        field: Field that led from the parent to this builder
        alias: Table alias, None for the root
        joins: LEFT JOIN clauses collected for the enclosing select, or
            None when joins are not allowed
    """

    def __init__(
        self,
        model: Model,
        dialect: Dialect,
        separator: str = "_",
        *,
        parent: FilterBuilder | None = None,
        field: Field | None = None,
        context: Context | None = None,
        joins: list[str] | None = None,
    ) -> None:
        self.model = model
        self.dialect = dialect
        self.separator = separator
        self.parent = parent
        self.field = field
        self.context = context or Context()
        self.joins = joins
        self.alias = self.context.next_alias() if parent is not None else None

    def _child(self, field: ForeignKeyField | RelatedField, joins: list[str] | None = None) -> FilterBuilder:
        if isinstance(field, ForeignKeyField):
            model = field.target
        else:
            model = field.referencing_field.model
        return FilterBuilder(
            model,
            self.dialect,
            self.separator,
            parent=self,
            field=field,
            context=self.context,
            joins=joins,
        )

    def path(self) -> str:
        """Dotted field path from the root builder to this one."""
        names = []
        builder = self
        while builder.parent is not None:
            names.append(builder.field.name)
            builder = builder.parent
        return ".".join(reversed(names))

    def table(self) -> str:
        """Qualifier for this builder's columns."""
        return self.alias or self.dialect.escape_id(self.model.table.name)

    def column(self, field: SimpleField | str) -> str:
        """Qualified, escaped column of this builder's model."""
        if isinstance(field, SimpleField):
            name = self.dialect.escape_id(field.column.name)
        elif field == "*":
            name = "*"
        else:
            name = self.dialect.escape_id(field)
        return f"{self.table()}.{name}"

    def where(self, filter: Any) -> str:
        """Compile a filter document or list of documents."""
        if not filter:
            return ""
        if isinstance(filter, (list, tuple)):
            return _or([self._and(f, False) for f in filter])
        if not _is_document(filter):
            raise BadFilterError(
                f"Filter must be a document or list of documents, got {type(filter).__name__}",
                self.model.name,
                filter,
            )
        return self._and(filter, self.joins is not None)

    def _and(self, filter: dict[str, Any], top: bool) -> str:
        if not _is_document(filter):
            raise BadFilterError(f"Bad filter: {filter!r}", self.model.name, filter)

        exprs = []
        for key, value in filter.items():
            logical = LOGICAL_KEYS.get(key)
            if logical is not None:
                exprs.append(self._logical(logical, value))
                continue

            name, operator = split_key(key, self.model, self.separator)
            field = self.model.field(name)
            if isinstance(field, ForeignKeyField):
                exprs.append(self._foreign_key(field, operator, value, top))
            elif isinstance(field, SimpleField):
                exprs.append(self._expr(field, operator, value))
            else:
                exprs.append(self._exists(field, operator, value))
        return _and(exprs)

    def _logical(self, logical: str, value: Any) -> str:
        subs = [self._and(item, False) for item in _as_list(value)]
        if logical == AND:
            return _and(subs)
        if logical == OR:
            return _or(subs)
        if not subs:
            return ""
        if any(not s for s in subs):
            return FALSE_EXPR
        return f"NOT ({' OR '.join(subs)})"

    def _expr(self, field: SimpleField, operator: str | None, value: Any) -> str:
        lhs = self.column(field)

        if operator in ("some", "none"):
            raise UnknownOperatorError(operator, field.name)
        if _is_document(value):
            raise BadFilterError(
                f"Nested filter on scalar field {field.display_name}", self.model.name, value
            )

        if isinstance(value, (list, tuple)):
            if operator not in (None, "in"):
                raise BadFilterError(
                    f"List value requires the 'in' operator: {field.display_name}",
                    self.model.name,
                    value,
                )
            return self._in_list(field, list(value))

        if operator == "in":
            return self._in_list(field, [value])

        if operator == "null":
            return f"{lhs} IS NULL" if value else f"{lhs} IS NOT NULL"

        if value is None:
            if operator is None:
                return f"{lhs} IS NULL"
            if operator == "ne":
                return f"{lhs} IS NOT NULL"
            raise BadFilterError(
                f"Cannot compare {field.display_name} with NULL using '{operator}'",
                self.model.name,
            )

        sql_operator = "=" if operator is None else OPERATORS[operator]
        return f"{lhs} {sql_operator} {escape_value(field, value, self.dialect)}"

    def _in_list(self, field: SimpleField, values: list[Any]) -> str:
        lhs = self.column(field)
        present = [v for v in values if v is not None]
        if not present:
            return f"{lhs} IS NULL" if values else FALSE_EXPR
        escaped = ", ".join(escape_value(field, v, self.dialect) for v in present)
        if len(present) < len(values):
            return f"({lhs} IS NULL OR {lhs} IN ({escaped}))"
        return f"{lhs} IN ({escaped})"

    def _foreign_key(self, field: ForeignKeyField, operator: str | None, value: Any, top: bool) -> str:
        if isinstance(value, (list, tuple)):
            docs = [v for v in value if _is_document(v)]
            if not docs:
                return self._expr(field, operator, value)
            if operator not in (None, "in"):
                raise BadFilterError(
                    f"List value requires the 'in' operator: {field.display_name}",
                    self.model.name,
                    value,
                )
            scalars = [v for v in value if not _is_document(v)]
            exprs = [self._in_list(field, scalars)] if scalars else []
            exprs.append(self._subquery(field, docs))
            return exprs[0] if len(exprs) == 1 else _or(exprs)

        if not _is_document(value):
            return self._expr(field, operator, value)

        if operator is not None:
            if operator in ("some", "none"):
                raise UnknownOperatorError(operator, field.name)
            raise BadFilterError(
                f"Operator '{operator}' cannot take a document: {field.display_name}",
                self.model.name,
                value,
            )

        referenced = field.referenced_field
        if len(value) == 1:
            key, inner = next(iter(value.items()))
            if key not in LOGICAL_KEYS:
                name, inner_operator = split_key(key, referenced.model, self.separator)
                if referenced.model.field(name) is referenced and not _is_document(inner):
                    return self._expr(field, inner_operator, inner)

        if top and self.joins is not None:
            return self._join(field, value)
        if not value:
            return ""
        return self._subquery(field, value)

    def _join(self, field: ForeignKeyField, filter: dict[str, Any]) -> str:
        path = ".".join(p for p in (self.path(), field.name) if p)
        builder = self.context.alias_map.get(path)
        if builder is None:
            builder = self._child(field, joins=self.joins)
            referenced = field.referenced_field
            table = self.dialect.escape_id(referenced.model.table.name)
            self.joins.append(
                f"LEFT JOIN {table} {builder.alias} "
                f"ON {self.column(field)} = {builder.column(referenced)}"
            )
            self.context.alias_map[path] = builder
        return builder._and(filter, True)

    def _subquery(self, field: ForeignKeyField, filter: Any) -> str:
        builder = self._child(field)
        referenced = field.referenced_field
        table = self.dialect.escape_id(referenced.model.table.name)
        sql = f"SELECT {builder.column(referenced)} FROM {table} {builder.alias}"
        inner = builder.where(filter)
        if inner:
            sql += f" WHERE {inner}"
        return f"{self.column(field)} IN ({sql})"

    def _exists(self, field: RelatedField, operator: str | None, value: Any) -> str:
        if operator not in (None, "some", "none"):
            raise UnknownOperatorError(operator, field.name)
        if value is None:
            operator, value = "none", {}
        if not (_is_document(value) or isinstance(value, (list, tuple))):
            raise BadFilterError(
                f"Related field {field.display_name} requires a document", self.model.name, value
            )

        builder = self._child(field)
        referencing = field.referencing_field
        if field.through_field is not None:
            inner = builder._foreign_key(field.through_field, None, value, False)
        else:
            inner = builder.where(value)

        table = self.dialect.escape_id(referencing.model.table.name)
        scope = (
            f"SELECT 1 FROM {table} {builder.alias} "
            f"WHERE {builder.column(referencing)} = {self.column(referencing.referenced_field)}"
        )
        exists = "NOT EXISTS" if operator == "none" else "EXISTS"
        if inner:
            return f"{exists} ({scope} AND {inner})"
        return f"{exists} ({scope})"


def encode_filter(
    filter: Any,
    model: Model,
    dialect: Dialect,
    separator: str = "_",
) -> str:
    """Compile a filter into a SQL boolean expression.

    Args:
        filter: Document or list of documents
        model: Model the filter applies to
        dialect: Escaping rules
        separator: Delimiter between field names and operators

    Returns:
        SQL expression, "" for an empty filter
    """
    return FilterBuilder(model, dialect, separator).where(filter)
