"""
Schema configuration for sqlgraph.

Schema configuration customises how raw tables become models: model and
field names, plural names, related (reverse) field names and explicit
many-to-many through fields. Runtime settings (limits, logging, connection)
live in sqlgraph.settings.

Configuration documents may be written in YAML or JSON, with snake_case or
camelCase keys:

    models:
      - table: order_item
        fields:
          - column: order_id
            relatedName: items
      - table: delivery_address
        name: Address
        pluralName: addresses
    pluralForms:
      octopus: octopi

Invariants:
    - Configuration objects are immutable once loaded
    - Every FieldConfig names a column; every ModelConfig names a table
    - Unknown tables and columns are rejected when the schema is built

How to change safely:
    - Add new options as optional attributes with defaults
    - Keep from_dict() accepting both key spellings
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def _get(data: dict[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    if snake in data:
        return data[snake]
    return data.get(camel, default)


@dataclass(frozen=True)
class FieldConfig:
    """Configuration of one column's field.

    Attributes:
        column: Column the configuration applies to
        name: Field name, overriding the derived one
        related_name: Name of the reverse field created on the referenced model
        through_field: Column of the other foreign key when this foreign key
            is one side of a many-to-many junction
    """

    column: str
    name: str | None = None
    related_name: str | None = None
    through_field: str | None = None

    def __post_init__(self) -> None:
        """Validate field configuration."""
        if not self.column:
            raise ConfigurationError("Field configuration requires a column")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {"column": self.column}
        if self.name:
            result["name"] = self.name
        if self.related_name:
            result["related_name"] = self.related_name
        if self.through_field:
            result["through_field"] = self.through_field
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldConfig:
        """Create from dictionary representation."""
        if "column" not in data:
            raise ConfigurationError(f"Field configuration requires a column: {data}")
        return cls(
            column=data["column"],
            name=data.get("name"),
            related_name=_get(data, "related_name", "relatedName"),
            through_field=_get(data, "through_field", "throughField"),
        )


@dataclass(frozen=True)
class ModelConfig:
    """Configuration of one table's model.

    Attributes:
        table: Table the configuration applies to
        name: Model name, overriding PascalCase(table)
        plural_name: Plural name, overriding camelCase(pluralise(table))
        fields: Per-column field configuration
        auto_through: Override of SchemaConfig.auto_through for foreign keys
            declared on this table
    """

    table: str
    name: str | None = None
    plural_name: str | None = None
    fields: tuple[FieldConfig, ...] = ()
    auto_through: bool | None = None

    def __post_init__(self) -> None:
        """Validate model configuration."""
        if not self.table:
            raise ConfigurationError("Model configuration requires a table")
        columns = [f.column for f in self.fields]
        if len(columns) != len(set(columns)):
            raise ConfigurationError(
                f"Duplicate field configuration in table '{self.table}'",
                model_name=self.name,
            )

    def field(self, column: str) -> FieldConfig | None:
        """Get the configuration of a column."""
        for config in self.fields:
            if config.column == column:
                return config
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {"table": self.table}
        if self.name:
            result["name"] = self.name
        if self.plural_name:
            result["plural_name"] = self.plural_name
        if self.fields:
            result["fields"] = [f.to_dict() for f in self.fields]
        if self.auto_through is not None:
            result["auto_through"] = self.auto_through
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModelConfig:
        """Create from dictionary representation."""
        if "table" not in data:
            raise ConfigurationError(f"Model configuration requires a table: {data}")
        return cls(
            table=data["table"],
            name=data.get("name"),
            plural_name=_get(data, "plural_name", "pluralName"),
            fields=tuple(FieldConfig.from_dict(f) for f in data.get("fields") or []),
            auto_through=_get(data, "auto_through", "autoThrough"),
        )


@dataclass(frozen=True)
class SchemaConfig:
    """Configuration of a whole schema.

    Attributes:
        models: Per-table model configuration
        plural_forms: Irregular plural forms used for this schema only
        auto_through: Whether pure two-foreign-key junction tables become
            many-to-many relations without explicit through_field config
    """

    models: tuple[ModelConfig, ...] = ()
    plural_forms: dict[str, str] = field(default_factory=dict)
    auto_through: bool = True

    def __post_init__(self) -> None:
        """Validate schema configuration."""
        tables = [m.table for m in self.models]
        if len(tables) != len(set(tables)):
            raise ConfigurationError("Duplicate model configuration for the same table")

    def model(self, table: str) -> ModelConfig | None:
        """Get the configuration of a table."""
        for config in self.models:
            if config.table == table:
                return config
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {"models": [m.to_dict() for m in self.models]}
        if self.plural_forms:
            result["plural_forms"] = dict(self.plural_forms)
        if not self.auto_through:
            result["auto_through"] = False
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SchemaConfig:
        """Create from dictionary representation."""
        return cls(
            models=tuple(ModelConfig.from_dict(m) for m in data.get("models") or []),
            plural_forms=dict(_get(data, "plural_forms", "pluralForms", {}) or {}),
            auto_through=_get(data, "auto_through", "autoThrough", True),
        )


def parse_schema_config(text: str, fmt: str = "yaml") -> SchemaConfig:
    """Parse a schema configuration document.

    Args:
        text: Document text
        fmt: "yaml" or "json"

    Returns:
        Parsed SchemaConfig

    Raises:
        ConfigurationError: If the document is not a mapping or is malformed
    """
    try:
        data = json.loads(text) if fmt == "json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Invalid {fmt.upper()}: {e}") from e

    if data is None:
        return SchemaConfig()
    if not isinstance(data, dict):
        raise ConfigurationError("Schema configuration must be a mapping")
    return SchemaConfig.from_dict(data)


def load_schema_config(path: str | Path) -> SchemaConfig:
    """Load a schema configuration file; .json files are parsed as JSON."""
    path = Path(path)
    fmt = "json" if path.suffix.lower() == ".json" else "yaml"
    config = parse_schema_config(path.read_text(), fmt)
    logger.info(f"Loaded schema configuration for {len(config.models)} model(s) from {path}")
    return config
