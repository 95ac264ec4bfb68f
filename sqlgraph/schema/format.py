"""
Declarative schema documents.

A schema document describes tables as object types, the way a type
definition language would, and is turned into a SchemaInfo plus the
SchemaConfig needed to keep the declared type and field names:

    types:
      User:
        fields:
          id: ID!
          email: String!
        unique: [[email]]
      Order:
        fields:
          id: ID!
          user: User!
          note:
            type: String
            default: ""

Mapping:
    - object type -> table (snake_case of the type name unless `table` is set)
    - scalar field -> column (snake_case of the field name)
    - `!` suffix -> NOT NULL
    - field typed as another object type -> `<snake_name>_id` foreign key
      column referencing the other type's primary key
    - `unique` / `primaryKey` blocks -> constraints

Invariants:
    - validate_document() and parse_* agree: a document with no problems
      always parses
    - Reference columns use the referenced primary key column's type
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from ..config import FieldConfig, ModelConfig, SchemaConfig
from ..errors import ConfigurationError
from .forms import to_camel_case, to_pascal_case, to_snake_case
from .types import ColumnInfo, ConstraintInfo, ReferenceInfo, SchemaInfo, TableInfo

logger = logging.getLogger(__name__)

SCALAR_TYPES: dict[str, str] = {
    "ID": "integer",
    "Int": "integer",
    "Float": "float",
    "Boolean": "boolean",
    "String": "varchar",
    "Text": "text",
    "DateTime": "datetime",
    "Date": "date",
}


@dataclass(frozen=True)
class SchemaDocument:
    """Result of parsing a schema document.

    Attributes:
        info: Tables, columns and constraints
        config: Names that differ from the derived defaults
    """

    info: SchemaInfo
    config: SchemaConfig


def _field_spec(spec: Any) -> dict[str, Any]:
    if isinstance(spec, str):
        return {"type": spec}
    return dict(spec)


def _type_name(spec: dict[str, Any]) -> tuple[str, bool]:
    """Split a type expression into (name, not_null)."""
    name = str(spec.get("type", "")).strip()
    if name.endswith("!"):
        return name[:-1], True
    return name, False


def _column_name(field_name: str, spec: dict[str, Any], types: dict[str, Any]) -> str:
    if "column" in spec:
        return spec["column"]
    name, _ = _type_name(spec)
    if name in types:
        return f"{to_snake_case(field_name)}_id"
    return to_snake_case(field_name)


def validate_document(data: Any) -> list[str]:
    """Check a schema document for problems.

    Args:
        data: Parsed document

    Returns:
        List of problems, empty when the document is valid
    """
    if not isinstance(data, dict):
        return ["Schema document must be a mapping"]
    types = data.get("types")
    if not isinstance(types, dict) or not types:
        return ["Schema document requires a non-empty 'types' mapping"]

    errors = []
    for type_name, type_def in types.items():
        if not isinstance(type_def, dict):
            errors.append(f"{type_name}: type definition must be a mapping")
            continue
        fields = type_def.get("fields")
        if not isinstance(fields, dict) or not fields:
            errors.append(f"{type_name}: requires a non-empty 'fields' mapping")
            continue

        has_id = False
        for field_name, raw in fields.items():
            if not isinstance(raw, (str, dict)):
                errors.append(f"{type_name}.{field_name}: field must be a type name or mapping")
                continue
            spec = _field_spec(raw)
            name, _ = _type_name(spec)
            if name == "ID":
                has_id = True
            if name not in SCALAR_TYPES and name not in types:
                errors.append(f"{type_name}.{field_name}: unknown type '{name}'")
            through = spec.get("throughField")
            if through is not None:
                other = fields.get(through)
                if other is None or _type_name(_field_spec(other))[0] not in types:
                    errors.append(
                        f"{type_name}.{field_name}: throughField '{through}' is not a reference"
                    )

        primary = type_def.get("primaryKey")
        if primary is None and not has_id:
            errors.append(f"{type_name}: no ID field and no primaryKey")
        for key in ([primary] if primary else []) + list(type_def.get("unique") or []):
            if not isinstance(key, list) or not key:
                errors.append(f"{type_name}: key must be a non-empty list of field names")
                continue
            for name in key:
                if name not in fields:
                    errors.append(f"{type_name}: key names unknown field '{name}'")
    return errors


def _primary_columns(type_def: dict[str, Any], types: dict[str, Any]) -> list[str]:
    fields = type_def["fields"]
    primary = type_def.get("primaryKey")
    if primary:
        return [_column_name(name, _field_spec(fields[name]), types) for name in primary]
    for field_name, raw in fields.items():
        spec = _field_spec(raw)
        if _type_name(spec)[0] == "ID":
            return [_column_name(field_name, spec, types)]
    return []


def build_document(data: dict[str, Any]) -> SchemaDocument:
    """Build SchemaInfo and SchemaConfig from a parsed document.

    Raises:
        ConfigurationError: If validate_document() reports problems
    """
    errors = validate_document(data)
    if errors:
        raise ConfigurationError(
            f"Invalid schema document: {len(errors)} problem(s)", errors=errors
        )

    types: dict[str, Any] = data["types"]
    table_names = {
        name: type_def.get("table") or to_snake_case(name) for name, type_def in types.items()
    }

    tables = []
    models = []
    for type_name, type_def in types.items():
        table_name = table_names[type_name]
        fields = type_def["fields"]
        primary = _primary_columns(type_def, types)

        columns = []
        constraints = []
        field_configs = []
        for field_name, raw in fields.items():
            spec = _field_spec(raw)
            name, not_null = _type_name(spec)
            col_name = _column_name(field_name, spec, types)

            if name in types:
                target = types[name]
                target_columns = _primary_columns(target, types)
                if len(target_columns) != 1:
                    raise ConfigurationError(
                        f"{type_name}.{field_name}: referenced type '{name}' "
                        f"has a composite primary key"
                    )
                col_type = "integer"
                for target_name, target_raw in target["fields"].items():
                    target_spec = _field_spec(target_raw)
                    if _column_name(target_name, target_spec, types) == target_columns[0]:
                        target_type = _type_name(target_spec)[0]
                        col_type = SCALAR_TYPES.get(target_type, "integer")
                columns.append(ColumnInfo(col_name, col_type, nullable=not not_null))
                constraints.append(
                    ConstraintInfo(
                        columns=(col_name,),
                        references=ReferenceInfo(table_names[name], (target_columns[0],)),
                    )
                )
                through = spec.get("throughField")
                field_configs.append(
                    FieldConfig(
                        column=col_name,
                        name=field_name,
                        related_name=spec.get("relatedName"),
                        through_field=(
                            _column_name(through, _field_spec(fields[through]), types)
                            if through
                            else None
                        ),
                    )
                )
                continue

            columns.append(
                ColumnInfo(
                    col_name,
                    SCALAR_TYPES[name],
                    size=spec.get("size"),
                    nullable=not not_null and col_name not in primary,
                    auto_increment=name == "ID" and primary == [col_name],
                    default=spec.get("default"),
                )
            )
            if to_camel_case(col_name) != field_name:
                field_configs.append(FieldConfig(column=col_name, name=field_name))

        constraints.insert(0, ConstraintInfo(columns=tuple(primary), primary_key=True))
        for key in type_def.get("unique") or []:
            cols = tuple(_column_name(n, _field_spec(fields[n]), types) for n in key)
            constraints.append(ConstraintInfo(columns=cols, unique=True))

        tables.append(TableInfo(table_name, tuple(columns), tuple(constraints)))

        model_name = type_name if to_pascal_case(table_name) != type_name else None
        plural_name = type_def.get("pluralName")
        if model_name or plural_name or field_configs:
            models.append(
                ModelConfig(
                    table=table_name,
                    name=model_name,
                    plural_name=plural_name,
                    fields=tuple(field_configs),
                )
            )

    config = SchemaConfig(
        models=tuple(models),
        plural_forms=dict(data.get("pluralForms") or data.get("plural_forms") or {}),
    )
    logger.debug(f"Schema document describes {len(tables)} table(s)")
    return SchemaDocument(info=SchemaInfo(tables=tuple(tables), name=data.get("name")), config=config)


def parse_yaml(text: str) -> SchemaDocument:
    """Parse a YAML schema document."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML: {e}") from e
    return build_document(data)


def parse_json(text: str) -> SchemaDocument:
    """Parse a JSON schema document."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON: {e}") from e
    return build_document(data)


def load_schema_document(path: str | Path) -> SchemaDocument:
    """Load a schema document; .json files are parsed as JSON, anything else as YAML."""
    path = Path(path)
    text = path.read_text()
    if path.suffix.lower() == ".json":
        return parse_json(text)
    return parse_yaml(text)
