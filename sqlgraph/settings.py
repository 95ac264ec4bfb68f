"""
Runtime settings for sqlgraph.

Settings are read from environment variables prefixed with ``SQLGRAPH_``,
e.g. ``SQLGRAPH_DEFAULT_LIMIT=100``. Schema-shaping configuration (model and
field names, through relations) lives in ``sqlgraph.config`` instead.

Invariants:
    - All settings have defaults usable for local development and tests
    - Library code never configures logging on import; applications call
      setup_logging() explicitly

How to change safely:
    - Add new settings with defaults that keep existing behaviour
    - Extend validate_settings() for every new constrained setting
"""

from __future__ import annotations

import logging

import json_log_formatter
from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

LOG_FORMATS = ("text", "json")


class Settings(BaseSettings):
    """sqlgraph runtime configuration."""

    # Query compilation
    default_limit: int = Field(default=50, description="LIMIT applied to selects without one")
    field_separator: str = Field(default="_", description="Separator between field name and operator")

    # Flush
    insert_retries: int = Field(
        default=3, description="Existence-check retries after a failed insert"
    )

    # SQLite reference connection
    database: str = Field(default=":memory:")
    busy_timeout_ms: int = Field(default=5000)
    foreign_keys: bool = Field(default=True)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text", description="text or json")

    model_config = {"env_prefix": "SQLGRAPH_"}

    def validate_settings(self) -> list[str]:
        """Check settings for values the library cannot work with.

        Returns:
            List of problems, empty when the settings are usable
        """
        errors = []
        if self.default_limit <= 0:
            errors.append("default_limit must be positive")
        if not self.field_separator:
            errors.append("field_separator must not be empty")
        if self.insert_retries < 0:
            errors.append("insert_retries must not be negative")
        if self.log_format not in LOG_FORMATS:
            errors.append(f"log_format must be one of {LOG_FORMATS}, got '{self.log_format}'")
        return errors


class JSONLogFormatter(json_log_formatter.JSONFormatter):
    """One JSON object per line with time, level, logger and message."""

    def json_record(self, message, extra, record):
        extra["level"] = record.levelname
        extra["logger"] = record.name
        return super().json_record(message, extra, record)


def setup_logging(settings: Settings) -> None:
    """Configure the root logger from settings.

    Args:
        settings: Runtime settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter = JSONLogFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    logger.debug(f"Logging configured at {logging.getLevelName(level)} ({settings.log_format})")
