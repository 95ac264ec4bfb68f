"""
Schema module for sqlgraph.

This module turns raw table metadata into the model graph the compilers
work on:
- Raw metadata (SchemaInfo, TableInfo, ColumnInfo, ConstraintInfo)
- Resolved models (Schema, Model, SimpleField, ForeignKeyField, RelatedField)
- Declarative YAML/JSON schema documents
- Introspection of a live SQLite database
- Word forms used to derive names

Invariants:
    - SchemaInfo is immutable; a Schema is built from it once
    - Model and field names are unique; conflicts raise ConfigurationError

How to change safely:
    - Add naming rules to forms.py with tests; generated names are part of
      the public document shape
"""

from .format import SchemaDocument, build_document, load_schema_document, validate_document
from .forms import pluralise, singularise, to_camel_case, to_pascal_case, to_snake_case
from .introspect import introspect
from .model import (
    Field,
    ForeignKeyField,
    Model,
    RelatedField,
    Schema,
    SimpleField,
    UniqueKey,
    build_schema,
)
from .types import (
    ColumnInfo,
    ConstraintInfo,
    ReferenceInfo,
    SchemaInfo,
    TableInfo,
    column,
    foreign_key,
    primary_key,
    table,
    unique,
)

__all__ = [
    # Metadata
    "ColumnInfo",
    "ConstraintInfo",
    "ReferenceInfo",
    "SchemaInfo",
    "TableInfo",
    "column",
    "foreign_key",
    "primary_key",
    "table",
    "unique",
    # Models
    "Schema",
    "Model",
    "Field",
    "SimpleField",
    "ForeignKeyField",
    "RelatedField",
    "UniqueKey",
    "build_schema",
    # Documents
    "SchemaDocument",
    "build_document",
    "load_schema_document",
    "validate_document",
    # Introspection
    "introspect",
    # Forms
    "pluralise",
    "singularise",
    "to_camel_case",
    "to_pascal_case",
    "to_snake_case",
]
