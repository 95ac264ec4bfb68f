"""
Raw schema metadata types for sqlgraph.

This module defines the immutable description of the backing store that
the model resolver consumes:
- ColumnInfo: One physical column
- ReferenceInfo: Target of a foreign key constraint
- ConstraintInfo: Primary key, unique or foreign key constraint
- TableInfo: A table with its columns and constraints
- SchemaInfo: Ordered list of tables

Invariants:
    - SchemaInfo is the source of truth and is never mutated after creation
    - Column names are unique within a table
    - Constraints only name columns of their own table
    - Table order is preserved; model and field order follow it

How to change safely:
    - Keep from_dict() accepting the camelCase document form
      (autoIncrement, primaryKey, indexes) alongside snake_case
    - Add new optional attributes with defaults

Example:
    >>> from sqlgraph.schema.types import SchemaInfo, column, table, primary_key
    >>> info = SchemaInfo(tables=(
    ...     table("user", [column("id", "int", auto_increment=True, nullable=False),
    ...                    column("email", "varchar", size=200)],
    ...           [primary_key("id")]),
    ... ))
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from ..errors import ConfigurationError

BOOLEAN_TYPE = re.compile(r"^bool", re.IGNORECASE)
NUMERIC_TYPE = re.compile(r"int|float|double|real|decimal|numeric|number", re.IGNORECASE)
DATETIME_TYPE = re.compile(r"date|time", re.IGNORECASE)
DATE_TYPE = re.compile(r"^date$", re.IGNORECASE)


def _get(data: dict[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in data:
            return data[name]
    return default


@dataclass(frozen=True)
class ColumnInfo:
    """Definition of one physical column.

    Attributes:
        name: Column name
        type: Database type name, e.g. "int", "varchar", "datetime"
        size: Declared size, if any
        nullable: Whether NULL is allowed
        auto_increment: Whether the database assigns the value on insert
        default: Declared default value
    """

    name: str
    type: str
    size: int | None = None
    nullable: bool = True
    auto_increment: bool = False
    default: Any = None

    def __post_init__(self) -> None:
        """Validate column definition."""
        if not self.name:
            raise ConfigurationError("Column name cannot be empty")
        if not self.type:
            raise ConfigurationError(f"Column '{self.name}' has no type")

    def is_boolean(self) -> bool:
        return bool(BOOLEAN_TYPE.search(self.type))

    def is_numeric(self) -> bool:
        return not self.is_boolean() and bool(NUMERIC_TYPE.search(self.type))

    def is_datetime(self) -> bool:
        return bool(DATETIME_TYPE.search(self.type))

    def is_date(self) -> bool:
        return bool(DATE_TYPE.search(self.type))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {"name": self.name, "type": self.type}
        if self.size is not None:
            result["size"] = self.size
        result["nullable"] = self.nullable
        if self.auto_increment:
            result["auto_increment"] = True
        if self.default is not None:
            result["default"] = self.default
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ColumnInfo:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            type=data["type"],
            size=data.get("size"),
            nullable=data.get("nullable", True),
            auto_increment=_get(data, "auto_increment", "autoIncrement", default=False),
            default=data.get("default"),
        )


@dataclass(frozen=True)
class ReferenceInfo:
    """Target of a foreign key constraint.

    Attributes:
        table: Referenced table name
        columns: Referenced column names
    """

    table: str
    columns: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {"table": self.table, "columns": list(self.columns)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReferenceInfo:
        """Create from dictionary representation."""
        return cls(table=data["table"], columns=tuple(data["columns"]))


@dataclass(frozen=True)
class ConstraintInfo:
    """Primary key, unique or foreign key constraint.

    A constraint may be both unique and a foreign key (one-to-one relation).

    Attributes:
        columns: Constrained column names, in key order
        primary_key: Whether this is the table's primary key
        unique: Whether the columns form a unique key
        references: Target of the foreign key, if this is one
        name: Constraint name, informational only
    """

    columns: tuple[str, ...]
    primary_key: bool = False
    unique: bool = False
    references: ReferenceInfo | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        """Validate constraint definition."""
        if not self.columns:
            raise ConfigurationError("Constraint must name at least one column")
        if self.references is not None and len(self.references.columns) != len(self.columns):
            raise ConfigurationError(
                f"Foreign key on {list(self.columns)} references "
                f"{len(self.references.columns)} column(s)"
            )

    @property
    def is_unique(self) -> bool:
        return self.primary_key or self.unique

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {"columns": list(self.columns)}
        if self.primary_key:
            result["primary_key"] = True
        if self.unique:
            result["unique"] = True
        if self.references is not None:
            result["references"] = self.references.to_dict()
        if self.name:
            result["name"] = self.name
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConstraintInfo:
        """Create from dictionary representation."""
        references = data.get("references")
        return cls(
            columns=tuple(data["columns"]),
            primary_key=_get(data, "primary_key", "primaryKey", default=False),
            unique=data.get("unique", False),
            references=ReferenceInfo.from_dict(references) if references else None,
            name=data.get("name"),
        )


@dataclass(frozen=True)
class TableInfo:
    """A table with its columns and constraints.

    Attributes:
        name: Table name
        columns: Columns in declaration order
        constraints: Keys and foreign keys in declaration order
    """

    name: str
    columns: tuple[ColumnInfo, ...]
    constraints: tuple[ConstraintInfo, ...] = ()

    def __post_init__(self) -> None:
        """Validate table definition."""
        if not self.name:
            raise ConfigurationError("Table name cannot be empty")
        names = set()
        for col in self.columns:
            if col.name in names:
                raise ConfigurationError(f"Duplicate column '{col.name}' in table '{self.name}'")
            names.add(col.name)
        for constraint in self.constraints:
            for name in constraint.columns:
                if name not in names:
                    raise ConfigurationError(
                        f"Constraint on table '{self.name}' names unknown column '{name}'"
                    )

    def column(self, name: str) -> ColumnInfo | None:
        """Get a column by name."""
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "columns": [c.to_dict() for c in self.columns],
            "constraints": [c.to_dict() for c in self.constraints],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TableInfo:
        """Create from dictionary representation."""
        constraints = _get(data, "constraints", "indexes", default=[])
        return cls(
            name=data["name"],
            columns=tuple(ColumnInfo.from_dict(c) for c in data["columns"]),
            constraints=tuple(ConstraintInfo.from_dict(c) for c in constraints),
        )


@dataclass(frozen=True)
class SchemaInfo:
    """Raw description of the backing store.

    Attributes:
        tables: Tables in declaration order
        name: Database name, informational only
    """

    tables: tuple[TableInfo, ...]
    name: str | None = None

    def __post_init__(self) -> None:
        """Validate schema definition."""
        names = set()
        for tbl in self.tables:
            if tbl.name in names:
                raise ConfigurationError(f"Duplicate table '{tbl.name}'")
            names.add(tbl.name)

    def table(self, name: str) -> TableInfo | None:
        """Get a table by name."""
        for tbl in self.tables:
            if tbl.name == name:
                return tbl
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {"tables": [t.to_dict() for t in self.tables]}
        if self.name:
            result["name"] = self.name
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SchemaInfo:
        """Create from dictionary representation."""
        return cls(
            tables=tuple(TableInfo.from_dict(t) for t in data["tables"]),
            name=data.get("name"),
        )


def column(
    name: str,
    type: str,
    *,
    size: int | None = None,
    nullable: bool = True,
    auto_increment: bool = False,
    default: Any = None,
) -> ColumnInfo:
    """Convenience function to create a ColumnInfo."""
    return ColumnInfo(
        name=name,
        type=type,
        size=size,
        nullable=nullable,
        auto_increment=auto_increment,
        default=default,
    )


def primary_key(*columns: str) -> ConstraintInfo:
    """Create a primary key constraint."""
    return ConstraintInfo(columns=tuple(columns), primary_key=True)


def unique(*columns: str) -> ConstraintInfo:
    """Create a unique constraint."""
    return ConstraintInfo(columns=tuple(columns), unique=True)


def foreign_key(col: str, table: str, referenced: str = "id") -> ConstraintInfo:
    """Create a single-column foreign key constraint."""
    return ConstraintInfo(columns=(col,), references=ReferenceInfo(table, (referenced,)))


def table(
    name: str,
    columns: list[ColumnInfo] | tuple[ColumnInfo, ...],
    constraints: list[ConstraintInfo] | tuple[ConstraintInfo, ...] = (),
) -> TableInfo:
    """Convenience function to create a TableInfo."""
    return TableInfo(name=name, columns=tuple(columns), constraints=tuple(constraints))
