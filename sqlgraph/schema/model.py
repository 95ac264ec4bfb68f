"""
Schema model for sqlgraph.

Turns raw SchemaInfo into resolved models:
- Schema: all models, looked up by model name or table name
- Model: one table with its fields, unique keys and plural name
- SimpleField: one physical column
- ForeignKeyField: a column referencing a unique column of another model
- RelatedField: synthetic reverse field for "rows that reference this one",
  optionally traversing a junction table (through field)
- UniqueKey: ordered set of fields identifying a row

Resolution runs once per Schema, in order:
    1. unique keys of every model
    2. foreign keys (referenced field lookup, validation, forward naming)
    3. related fields (through inference, reverse naming)

Invariants:
    - Model names and table names are unique across the schema
    - Field names (and column names) are unique within a model
    - Every ForeignKeyField references a field that is unique on its own
    - Every model has exactly one primary UniqueKey
    - Composite foreign keys are rejected

How to change safely:
    - Naming rules are observable API; changing them renames fields
    - Keep the junction threshold (at most 3 columns, exactly two foreign
      keys, no column outside the primary key besides them) stable
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterator
from difflib import get_close_matches
from typing import Any

from ..config import FieldConfig, ModelConfig, SchemaConfig
from ..errors import ConfigurationError, UnknownFieldError, UnknownModelError
from .forms import lcfirst, pluralise, to_camel_case, to_pascal_case
from .types import ColumnInfo, ReferenceInfo, SchemaInfo, TableInfo

logger = logging.getLogger(__name__)

_FOREIGN_KEY_SUFFIX = re.compile(r"^(.+?)(?:_id|Id)$")

# Largest column count a table may have to qualify as a pure junction
JUNCTION_MAX_COLUMNS = 3


class UniqueKey:
    """Ordered set of fields whose combined value identifies a row."""

    def __init__(self, fields: list[SimpleField], primary: bool = False) -> None:
        self.fields = fields
        self.primary = primary

    def name(self) -> str:
        return "_".join(f.name for f in self.fields)

    def is_auto_increment(self) -> bool:
        return len(self.fields) == 1 and self.fields[0].column.auto_increment

    def __repr__(self) -> str:
        kind = "PrimaryKey" if self.primary else "UniqueKey"
        return f"{kind}({', '.join(f.name for f in self.fields)})"


class Field:
    """Base of the three field variants.

    Attributes:
        name: Field name, unique within the model
        model: Owning model
        config: Field configuration, if any
        unique_keys: Unique keys this field takes part in
    """

    def __init__(self, name: str | None, model: Model, config: FieldConfig | None = None) -> None:
        self.name = name
        self.model = model
        self.config = config
        self.unique_keys: list[UniqueKey] = []

    def is_unique(self) -> bool:
        """Whether the field alone forms a unique key."""
        return any(len(key.fields) == 1 for key in self.unique_keys)

    @property
    def display_name(self) -> str:
        return f"{self.model.name}::{self.name}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.display_name})"


class SimpleField(Field):
    """Field backed by one physical column."""

    def __init__(self, model: Model, column: ColumnInfo, config: FieldConfig | None = None) -> None:
        name = config.name if config and config.name else to_camel_case(column.name)
        super().__init__(name, model, config)
        self.column = column

    @property
    def nullable(self) -> bool:
        return self.column.nullable


class ForeignKeyField(SimpleField):
    """Column referencing a unique column of another (or the same) model.

    The field name is assigned during foreign key resolution, since the
    default name depends on the other fields of the model.
    """

    def __init__(
        self,
        model: Model,
        column: ColumnInfo,
        config: FieldConfig | None,
        reference: ReferenceInfo,
    ) -> None:
        super().__init__(model, column, config)
        if not (config and config.name):
            self.name = None
        self.reference = reference
        self.referenced_field: SimpleField | None = None
        self.related_field: RelatedField | None = None

    @property
    def short_name(self) -> str:
        """Column name without its _id/Id suffix."""
        match = _FOREIGN_KEY_SUFFIX.match(self.column.name)
        return match.group(1) if match else self.column.name

    @property
    def target(self) -> Model:
        return self.referenced_field.model


class RelatedField(Field):
    """Synthetic reverse field on the model a foreign key points to.

    Attributes:
        referencing_field: The foreign key pointing at this model
        through_field: Second foreign key of a junction table, for
            many-to-many relations
    """

    def __init__(
        self,
        referencing_field: ForeignKeyField,
        through_field: ForeignKeyField | None = None,
    ) -> None:
        super().__init__(None, referencing_field.target, referencing_field.config)
        self.referencing_field = referencing_field
        self.through_field = through_field

    def is_unique(self) -> bool:
        """One-to-one: at most one referencing row."""
        return self.through_field is None and self.referencing_field.is_unique()

    @property
    def target(self) -> Model:
        """Model reached by following this field."""
        if self.through_field is not None:
            return self.through_field.target
        return self.referencing_field.model


class Model:
    """One table with resolved field semantics.

    Attributes:
        schema: Owning schema
        table: Raw table description
        config: Model configuration
        name: Model name, PascalCase of the table name unless configured
        plural_name: camelCase plural of the table name unless configured
        fields: Fields in column order, followed by related fields
        unique_keys: Unique keys in declaration order
        primary_key: The primary unique key
    """

    def __init__(self, schema: Schema, table: TableInfo, config: ModelConfig | None = None) -> None:
        self.schema = schema
        self.table = table
        self.config = config or ModelConfig(table=table.name)
        forms = schema.config.plural_forms

        self.name = self.config.name or to_pascal_case(table.name)
        self.plural_name = self.config.plural_name or to_camel_case(pluralise(table.name, forms))

        self.fields: list[Field] = []
        self.unique_keys: list[UniqueKey] = []
        self.primary_key: UniqueKey | None = None

        self._field_map: dict[str, Field] = {}
        self._column_map: dict[str, SimpleField] = {}

        for field_config in self.config.fields:
            if table.column(field_config.column) is None:
                raise ConfigurationError(
                    f"Configured column '{field_config.column}' does not exist in '{table.name}'",
                    model_name=self.name,
                )

        references: dict[str, ReferenceInfo] = {}
        for constraint in table.constraints:
            if constraint.references is not None:
                if len(constraint.columns) > 1:
                    raise ConfigurationError(
                        f"Composite foreign keys are not supported: "
                        f"{table.name}({', '.join(constraint.columns)})",
                        model_name=self.name,
                    )
                references[constraint.columns[0]] = constraint.references

        for col in table.columns:
            field_config = self.config.field(col.name)
            if col.name in references:
                field: SimpleField = ForeignKeyField(self, col, field_config, references[col.name])
            else:
                field = SimpleField(self, col, field_config)
            self.fields.append(field)
            self._column_map[col.name] = field
            if field.name is not None:
                self._register(field)

    def field(self, name: str) -> Field | None:
        """Get a field by field name or column name."""
        return self._field_map.get(name)

    def get_field(self, name: str) -> Field:
        """Get a field by name, raising UnknownFieldError with suggestions."""
        field = self._field_map.get(name)
        if field is None:
            names = [f.name for f in self.fields if f.name]
            raise UnknownFieldError(name, self.name, get_close_matches(name, names, n=3))
        return field

    def column_field(self, column: str) -> SimpleField | None:
        """Get the field backed by a column."""
        return self._column_map.get(column)

    def simple_fields(self) -> Iterator[SimpleField]:
        for field in self.fields:
            if isinstance(field, SimpleField):
                yield field

    def foreign_keys(self) -> Iterator[ForeignKeyField]:
        for field in self.fields:
            if isinstance(field, ForeignKeyField):
                yield field

    def related_fields(self) -> Iterator[RelatedField]:
        for field in self.fields:
            if isinstance(field, RelatedField):
                yield field

    def key_field(self) -> SimpleField | None:
        """The primary key field, or None for composite primary keys."""
        if len(self.primary_key.fields) == 1:
            return self.primary_key.fields[0]
        return None

    def key_value(self, row: dict[str, Any]) -> Any:
        return row.get(self.key_field().name)

    def check_unique_key(
        self,
        row: dict[str, Any] | None,
        accept: Callable[[Any], bool] | None = None,
    ) -> UniqueKey | None:
        """Find the first unique key whose fields all have acceptable values.

        The primary key is tried first, then the other keys in declaration
        order.

        Args:
            row: Field name to value mapping
            accept: Value predicate, defaults to "not None"

        Returns:
            The matching unique key, or None
        """
        if not row:
            return None

        if accept is None:
            def accept(value: Any) -> bool:
                return value is not None

        def covers(key: UniqueKey) -> bool:
            return all(f.name in row and accept(row[f.name]) for f in key.fields)

        if covers(self.primary_key):
            return self.primary_key
        for key in self.unique_keys:
            if not key.primary and covers(key):
                return key
        return None

    def get_unique_fields(self, row: dict[str, Any] | None) -> dict[str, Any] | None:
        """Project a row onto its first complete unique key."""
        key = self.check_unique_key(row)
        if key is None:
            return None
        return {f.name: row[f.name] for f in key.fields}

    def get_foreign_key_count(self, model: Model) -> int:
        """Number of foreign keys of this model pointing to the given model."""
        return sum(1 for f in self.foreign_keys() if f.referenced_field.model is model)

    def value_of(self, value: Any, name: str) -> Any:
        """Comparable value of a field: foreign key documents are unwrapped."""
        field = self.field(name)
        if isinstance(field, ForeignKeyField) and isinstance(value, dict):
            return value.get(field.referenced_field.name)
        return value

    # Resolution passes

    def resolve_unique_keys(self) -> None:
        for constraint in self.table.constraints:
            if not constraint.is_unique:
                continue
            fields = [self._column_map[name] for name in constraint.columns]
            key = UniqueKey(fields, constraint.primary_key)
            if constraint.primary_key:
                if self.primary_key is not None:
                    raise ConfigurationError(
                        f"Table '{self.table.name}' has more than one primary key",
                        model_name=self.name,
                    )
                self.primary_key = key
            for field in fields:
                field.unique_keys.append(key)
            self.unique_keys.append(key)

        if self.primary_key is None:
            raise ConfigurationError(
                f"Table '{self.table.name}' has no primary key", model_name=self.name
            )

    def resolve_foreign_key_fields(self) -> None:
        for field in list(self.foreign_keys()):
            reference = field.reference
            target = self.schema.model(reference.table)
            if target is None:
                raise ConfigurationError(
                    f"Foreign key {self.table.name}.{field.column.name} references "
                    f"unknown table '{reference.table}'",
                    model_name=self.name,
                )
            referenced = target.column_field(reference.columns[0])
            if referenced is None:
                raise ConfigurationError(
                    f"Bad referenced field: {reference.table}.{reference.columns[0]}",
                    model_name=self.name,
                )
            if not referenced.is_unique():
                raise ConfigurationError(
                    f"Foreign key {self.table.name}.{field.column.name} references "
                    f"non-unique column {reference.table}.{reference.columns[0]}",
                    model_name=self.name,
                )
            field.referenced_field = referenced

        for field in self.foreign_keys():
            if field.name is None:
                field.name = self._foreign_key_name(field)
                self._register(field)

    def resolve_related_fields(self) -> None:
        for field in list(self.foreign_keys()):
            through = self._through_field(field)
            related = RelatedField(field, through)
            related.name = self._related_name(field, through)
            field.related_field = related
            target = field.target
            target._register(related)
            target.fields.append(related)
            if through is not None:
                logger.debug(
                    f"{target.name}.{related.name} goes through {self.name} to {through.target.name}"
                )

    # Naming helpers

    def _taken(self, name: str, field: SimpleField) -> bool:
        if name in self._field_map:
            return True
        col = self.table.column(name)
        return col is not None and col.name != field.column.name

    def _foreign_key_name(self, field: ForeignKeyField) -> str:
        short = field.short_name
        name = to_camel_case(short)
        if not self._taken(name, field):
            return name
        i = 0
        while True:
            name = to_camel_case(f"{short}{i or ''}_{field.target.table.name}")
            if not self._taken(name, field):
                return name
            i += 1

    def _auto_through(self) -> bool:
        if self.config.auto_through is not None:
            return self.config.auto_through
        return self.schema.config.auto_through

    def _is_junction(self) -> bool:
        if len(self.table.columns) > JUNCTION_MAX_COLUMNS:
            return False
        keys = list(self.foreign_keys())
        if len(keys) != 2:
            return False
        key_fields = set(id(f) for f in self.primary_key.fields)
        for field in self.simple_fields():
            if not isinstance(field, ForeignKeyField) and id(field) not in key_fields:
                return False
        return True

    def _through_field(self, field: ForeignKeyField) -> ForeignKeyField | None:
        config = field.config
        if config and config.through_field:
            through = self.field(config.through_field)
            if not isinstance(through, ForeignKeyField) or through is field:
                raise ConfigurationError(
                    f"Field {config.through_field} is not a foreign key", model_name=self.name
                )
            return through

        if self._auto_through() and not field.is_unique() and self._is_junction():
            for other in self.foreign_keys():
                if other is not field:
                    return other
        return None

    def _related_name(self, field: ForeignKeyField, through: ForeignKeyField | None) -> str:
        if field.config and field.config.related_name:
            return field.config.related_name

        if through is not None:
            name = through.target.plural_name
        elif field.is_unique():
            name = lcfirst(self.name)
        else:
            name = self.plural_name

        if self.get_foreign_key_count(field.target) > 1:
            name += to_pascal_case(field.name)
        return name

    def _register(self, field: Field) -> None:
        if field.name in self._field_map:
            raise ConfigurationError(
                f"Duplicate field name: {self.name}.{field.name}", model_name=self.name
            )
        if isinstance(field, SimpleField):
            col = field.column.name
            existing = self._field_map.get(col)
            if existing is not None and existing is not field:
                raise ConfigurationError(
                    f"Duplicate field name: {self.name}.{col}", model_name=self.name
                )
            self._field_map[field.name] = field
            self._field_map[col] = field
        else:
            self._field_map[field.name] = field

    def __repr__(self) -> str:
        return f"Model({self.name})"


class Schema:
    """All models of one database.

    Example:
        >>> schema = Schema(info)
        >>> schema.model("order_item") is schema.model("OrderItem")
        True
    """

    def __init__(self, info: SchemaInfo, config: SchemaConfig | None = None) -> None:
        self.info = info
        self.config = config or SchemaConfig()
        self.models: list[Model] = []
        self._model_map: dict[str, Model] = {}

        for model_config in self.config.models:
            if info.table(model_config.table) is None:
                raise ConfigurationError(
                    f"Configured table '{model_config.table}' does not exist"
                )

        for table in info.tables:
            self._add_model(Model(self, table, self.config.model(table.name)))

        for model in self.models:
            model.resolve_unique_keys()

        for model in self.models:
            model.resolve_foreign_key_fields()

        for model in self.models:
            model.resolve_related_fields()

        logger.info(
            f"Schema built with {len(self.models)} model(s), "
            f"{sum(1 for m in self.models for f in m.related_fields() if f.through_field)} "
            f"through relation(s)"
        )

    def _add_model(self, model: Model) -> None:
        if model.name in self._model_map:
            raise ConfigurationError(f"Duplicate model name: {model.name}", model_name=model.name)
        if model.table.name != model.name and model.table.name in self._model_map:
            raise ConfigurationError(
                f"Duplicate model name: {model.table.name}", model_name=model.name
            )

        self.models.append(model)
        self._model_map[model.name] = model
        if model.table.name != model.name:
            self._model_map[model.table.name] = model

    def model(self, name: str) -> Model | None:
        """Get a model by model name or table name."""
        return self._model_map.get(name)

    def get_model(self, name: str) -> Model:
        """Get a model by name, raising UnknownModelError with suggestions."""
        model = self._model_map.get(name)
        if model is None:
            raise UnknownModelError(name, get_close_matches(name, list(self._model_map), n=3))
        return model


def build_schema(
    info: SchemaInfo | dict[str, Any],
    config: SchemaConfig | dict[str, Any] | None = None,
) -> Schema:
    """Build a Schema from raw metadata.

    Args:
        info: SchemaInfo, or its dictionary form
        config: SchemaConfig, or its dictionary form

    Returns:
        Resolved Schema

    Raises:
        ConfigurationError: If the metadata or configuration is inconsistent
    """
    if isinstance(info, dict):
        info = SchemaInfo.from_dict(info)
    if isinstance(config, dict):
        config = SchemaConfig.from_dict(config)
    return Schema(info, config)
