"""
Integration tests for SQLite introspection.
"""

import pytest

from sqlgraph.engine import SQLiteConnection
from sqlgraph.schema import build_schema, introspect
from tests.fixtures import SHOP_INFO, create_database, shop_schema


@pytest.fixture
async def info():
    db = await create_database(seed=False)
    yield await introspect(db.connection)
    await db.connection.close()


class TestIntrospect:
    """Tests for introspect() on the shop schema."""

    @pytest.mark.asyncio
    async def test_tables_in_creation_order(self, info):
        assert [t.name for t in info.tables] == [t.name for t in SHOP_INFO.tables]

    @pytest.mark.asyncio
    async def test_columns(self, info):
        """Types are lower-cased with their size split off."""
        user = info.table("user")
        assert [c.name for c in user.columns] == [c.name for c in SHOP_INFO.table("user").columns]
        email = user.column("email")
        assert (email.type, email.size, email.nullable) == ("varchar", 200, False)
        assert user.column("status").default == "active"
        price = info.table("product").column("price")
        assert (price.type, price.size) == ("decimal", 10)

    @pytest.mark.asyncio
    async def test_auto_increment(self, info):
        """Only a single INTEGER primary key aliases the rowid."""
        assert info.table("user").column("id").auto_increment
        assert not info.table("user").column("id").nullable
        assert not info.table("order_shipping").column("order_id").auto_increment
        link = info.table("product_category")
        assert not any(c.auto_increment for c in link.columns)

    @pytest.mark.asyncio
    async def test_keys(self, info):
        """Primary keys keep their column order; unique indexes become unique keys."""
        link = info.table("product_category")
        primary = [c for c in link.constraints if c.primary_key]
        assert [c.columns for c in primary] == [("product_id", "category_id")]

        unique = [c.columns for c in info.table("order_item").constraints if c.unique]
        assert unique == [("order_id", "product_id")]

    @pytest.mark.asyncio
    async def test_foreign_keys(self, info):
        references = {
            (c.columns, c.references.table, c.references.columns)
            for c in info.table("order").constraints
            if c.references is not None
        }
        assert references == {
            (("user_id",), "user", ("id",)),
            (("delivery_address_id",), "delivery_address", ("id",)),
        }

    @pytest.mark.asyncio
    async def test_resolves_like_declared_schema(self, info):
        """The introspected schema yields the same models and fields."""
        schema = build_schema(info)
        expected = shop_schema()
        assert [m.name for m in schema.models] == [m.name for m in expected.models]
        for model in expected.models:
            names = {f.name for f in schema.model(model.name).fields}
            assert names == {f.name for f in model.fields}


class TestIntrospectEdgeCases:
    """Tests for less common DDL."""

    @pytest.mark.asyncio
    async def test_implicit_reference_and_expression_index(self):
        conn = SQLiteConnection(":memory:")
        await conn.executescript(
            """
            CREATE TABLE a (id INTEGER PRIMARY KEY, name TEXT);
            CREATE UNIQUE INDEX a_lower_name ON a (lower(name));
            CREATE INDEX a_name ON a (name);
            CREATE TABLE b (id INTEGER PRIMARY KEY, a_id INTEGER REFERENCES a);
            """
        )
        info = await introspect(conn)
        await conn.close()

        assert [c.columns for c in info.table("a").constraints] == [("id",)]
        fk = [c for c in info.table("b").constraints if c.references is not None]
        assert fk[0].references.columns == ("id",)
        assert info.table("a").column("name").type == "text"
