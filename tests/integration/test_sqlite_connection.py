"""
Integration tests for SQLiteConnection.

Tests cover:
- Query and execute results
- Transactions: commit, rollback, nested savepoints
- Integrity errors
- Statement accounting
"""

import tempfile
from pathlib import Path

import pytest

from sqlgraph.engine import SQLiteConnection
from sqlgraph.errors import IntegrityError
from sqlgraph.settings import Settings


@pytest.fixture
async def conn():
    connection = SQLiteConnection(":memory:")
    await connection.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT UNIQUE)")
    yield connection
    await connection.close()


class TestStatements:
    """Tests for query and execute."""

    @pytest.mark.asyncio
    async def test_execute_and_query(self, conn):
        result = await conn.execute("INSERT INTO t (name) VALUES ('a')")
        assert result.last_insert_id == 1
        assert result.affected_rows == 1
        assert await conn.query("SELECT * FROM t") == [{"id": 1, "name": "a"}]

    @pytest.mark.asyncio
    async def test_integrity_error(self, conn):
        """Constraint violations surface as IntegrityError."""
        await conn.execute("INSERT INTO t (name) VALUES ('a')")
        with pytest.raises(IntegrityError) as exc_info:
            await conn.execute("INSERT INTO t (name) VALUES ('a')")
        assert exc_info.value.code == "INTEGRITY_ERROR"
        assert "INSERT" in exc_info.value.sql

    @pytest.mark.asyncio
    async def test_statement_counter(self, conn):
        """Statements are counted by verb."""
        conn.statement_counter.clear()
        await conn.execute("INSERT INTO t (name) VALUES ('a')")
        await conn.execute("UPDATE t SET name = 'b'")
        await conn.query("SELECT * FROM t")
        await conn.query("select * from t")
        assert conn.statement_counter["INSERT"] == 1
        assert conn.statement_counter["UPDATE"] == 1
        assert conn.statement_counter["SELECT"] == 2

    @pytest.mark.asyncio
    async def test_from_settings(self):
        """Connections can be opened from Settings."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = str(Path(tmpdir) / "shop.db")
            conn = SQLiteConnection.from_settings(Settings(database=path, busy_timeout_ms=100))
            assert conn.database == path
            assert conn.busy_timeout_ms == 100
            await conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY)")
            await conn.close()
            assert Path(path).exists()


class TestTransactions:
    """Tests for transaction handling."""

    @pytest.mark.asyncio
    async def test_commit(self, conn):
        async def work(c):
            await c.execute("INSERT INTO t (name) VALUES ('a')")
            return "done"

        assert await conn.transaction(work) == "done"
        assert len(await conn.query("SELECT * FROM t")) == 1

    @pytest.mark.asyncio
    async def test_rollback(self, conn):
        """A raising callback rolls everything back."""

        async def work(c):
            await c.execute("INSERT INTO t (name) VALUES ('a')")
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await conn.transaction(work)
        assert await conn.query("SELECT * FROM t") == []

    @pytest.mark.asyncio
    async def test_nested_rollback(self, conn):
        """A failing nested transaction only rolls back its savepoint."""

        async def inner(c):
            await c.execute("INSERT INTO t (name) VALUES ('b')")
            raise RuntimeError("inner")

        async def outer(c):
            await c.execute("INSERT INTO t (name) VALUES ('a')")
            with pytest.raises(RuntimeError):
                await c.transaction(inner)
            await c.execute("INSERT INTO t (name) VALUES ('c')")

        await conn.transaction(outer)
        rows = await conn.query("SELECT name FROM t ORDER BY name")
        assert [r["name"] for r in rows] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_nested_commit(self, conn):
        """A nested transaction commits with its outer transaction."""

        async def inner(c):
            await c.execute("INSERT INTO t (name) VALUES ('b')")

        async def outer(c):
            await c.transaction(inner)
            raise RuntimeError("outer")

        with pytest.raises(RuntimeError):
            await conn.transaction(outer)
        assert await conn.query("SELECT * FROM t") == []
        assert conn.statement_counter["SAVEPOINT"] == 1
        assert conn.statement_counter["ROLLBACK"] == 1
