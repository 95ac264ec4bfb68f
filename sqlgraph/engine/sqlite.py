"""
SQLite connection for sqlgraph.

Runs statements on one stdlib sqlite3 connection behind the async
Connection interface.

Invariants:
    - The connection is in autocommit mode (isolation_level=None); every
      transaction starts with an explicit BEGIN IMMEDIATE
    - The outermost transaction holds an asyncio.Lock for its whole call
      chain, so no other operation interleaves writes
    - Nested transaction() calls within the same task use SAVEPOINTs
    - sqlite3.IntegrityError surfaces as sqlgraph.errors.IntegrityError

How to change safely:
    - Keep statements synchronous inside the async methods; sqlite3 calls
      are short and must not interleave with other tasks mid-statement
    - Test nested transaction rollback after changing the savepoint logic
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from typing import Any, TypeVar

from ..errors import IntegrityError
from ..settings import Settings
from .connection import Connection, ExecuteResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SQLiteConnection(Connection):
    """Connection backed by a single sqlite3 connection.

    Example:
        >>> conn = SQLiteConnection(":memory:")
        >>> await conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY)")
        >>> await conn.transaction(lambda c: c.execute("INSERT INTO t DEFAULT VALUES"))
    """

    def __init__(
        self,
        database: str = ":memory:",
        busy_timeout_ms: int = 5000,
        foreign_keys: bool = True,
    ) -> None:
        """Open the database.

        Args:
            database: Database file path, or ":memory:"
            busy_timeout_ms: SQLite busy timeout
            foreign_keys: Enforce foreign key constraints
        """
        super().__init__()
        self.database = database
        self.busy_timeout_ms = busy_timeout_ms
        self._conn = sqlite3.connect(
            database,
            timeout=busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")
        if foreign_keys:
            self._conn.execute("PRAGMA foreign_keys = ON")

        self._lock = asyncio.Lock()
        self._depth: ContextVar[int] = ContextVar(f"sqlgraph_tx_{id(self)}", default=0)
        self._savepoints = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> SQLiteConnection:
        """Create a connection from runtime settings."""
        return cls(
            database=settings.database,
            busy_timeout_ms=settings.busy_timeout_ms,
            foreign_keys=settings.foreign_keys,
        )

    def _run(self, sql: str) -> sqlite3.Cursor:
        self._count(sql)
        try:
            return self._conn.execute(sql)
        except sqlite3.IntegrityError as e:
            raise IntegrityError(str(e), sql=sql) from e

    async def query(self, sql: str) -> list[dict[str, Any]]:
        cursor = self._run(sql)
        return [dict(row) for row in cursor.fetchall()]

    async def execute(self, sql: str) -> ExecuteResult:
        cursor = self._run(sql)
        return ExecuteResult(last_insert_id=cursor.lastrowid, affected_rows=cursor.rowcount)

    async def executescript(self, script: str) -> None:
        """Run several statements at once, e.g. DDL."""
        self._count(script)
        self._conn.executescript(script)

    async def transaction(self, callback: Callable[[Connection], Awaitable[T]]) -> T:
        depth = self._depth.get()
        if depth > 0:
            return await self._savepoint(callback, depth)

        async with self._lock:
            token = self._depth.set(1)
            try:
                self._run("BEGIN IMMEDIATE")
                try:
                    result = await callback(self)
                except BaseException:
                    await self.rollback()
                    raise
                await self.commit()
                return result
            finally:
                self._depth.reset(token)

    async def _savepoint(self, callback: Callable[[Connection], Awaitable[T]], depth: int) -> T:
        self._savepoints += 1
        name = f"sp_{self._savepoints}"
        token = self._depth.set(depth + 1)
        try:
            self._run(f"SAVEPOINT {name}")
            try:
                result = await callback(self)
            except BaseException:
                self._run(f"ROLLBACK TO SAVEPOINT {name}")
                self._run(f"RELEASE SAVEPOINT {name}")
                raise
            self._run(f"RELEASE SAVEPOINT {name}")
            return result
        finally:
            self._depth.reset(token)

    async def commit(self) -> None:
        if self._conn.in_transaction:
            self._run("COMMIT")

    async def rollback(self) -> None:
        if self._conn.in_transaction:
            self._run("ROLLBACK")

    async def close(self) -> None:
        self._conn.close()
        logger.debug(f"Closed SQLite connection to {self.database}")
