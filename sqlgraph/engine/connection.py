"""
Connection abstraction for sqlgraph.

The compilers produce SQL text; a Connection runs it. This module defines:
- Dialect: value and identifier escaping
- ExecuteResult: outcome of a DML statement
- Connection: abstract async connection with transaction support

Invariants:
    - query() is only used for row-returning statements, execute() for DML
    - transaction(callback) commits when the callback returns and rolls back
      (then re-raises) when it raises
    - statement_counter counts every statement by its leading SQL verb

How to change safely:
    - Escaping rules are shared by every compiler; changes affect all SQL
    - New engines subclass Connection and override the abstract methods
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def format_datetime(value: date) -> str:
    """Render a date or datetime the way columns store it.

    Timezone-aware datetimes are converted to UTC; plain dates render as
    midnight.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return value.strftime("%Y-%m-%d 00:00:00")


class Dialect:
    """SQL escaping rules.

    The defaults produce standard SQL literals accepted by SQLite.
    """

    def escape(self, value: Any) -> str:
        """Render a value as a SQL literal."""
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return "TRUE" if value else "FALSE"
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        if isinstance(value, (bytes, bytearray)):
            return f"X'{bytes(value).hex()}'"
        if isinstance(value, date):
            return f"'{format_datetime(value)}'"
        return "'" + str(value).replace("'", "''") + "'"

    def escape_id(self, name: str) -> str:
        """Render an identifier, quoting it."""
        return '"' + name.replace('"', '""') + '"'

    def true(self) -> str:
        return "TRUE"

    def false(self) -> str:
        return "FALSE"


@dataclass(frozen=True)
class ExecuteResult:
    """Outcome of a DML statement.

    Attributes:
        last_insert_id: Row id assigned by the last INSERT, if any
        affected_rows: Number of rows changed
    """

    last_insert_id: int | None = None
    affected_rows: int = 0


class Connection(Dialect, ABC):
    """Abstract async connection.

    Subclasses implement the raw statement methods; transaction handling
    and statement accounting live here.

    Example:
        >>> async def work(conn):
        ...     await conn.execute("INSERT INTO user (email) VALUES ('a')")
        ...     return await conn.query("SELECT * FROM user")
        >>> rows = await connection.transaction(work)
    """

    def __init__(self) -> None:
        self.statement_counter: Counter[str] = Counter()

    def _count(self, sql: str) -> None:
        verb = sql.lstrip().split(None, 1)[0].upper() if sql.strip() else ""
        self.statement_counter[verb] += 1
        logger.debug(f"SQL: {sql}")

    @abstractmethod
    async def query(self, sql: str) -> list[dict[str, Any]]:
        """Run a row-returning statement."""

    @abstractmethod
    async def execute(self, sql: str) -> ExecuteResult:
        """Run a DML or DDL statement."""

    @abstractmethod
    async def transaction(self, callback: Callable[[Connection], Awaitable[T]]) -> T:
        """Run callback inside a transaction.

        Args:
            callback: Coroutine function receiving this connection

        Returns:
            Whatever the callback returns
        """

    @abstractmethod
    async def commit(self) -> None:
        """Commit the current transaction."""

    @abstractmethod
    async def rollback(self) -> None:
        """Roll back the current transaction."""

    @abstractmethod
    async def close(self) -> None:
        """Release the connection."""
