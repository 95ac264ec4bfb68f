"""
Integration tests for the Accessor operation surface.

Tests cover:
- Argument models with camelCase aliases
- Callbacks: observing, replacing and forbidding
- Cursor pages and their external form
- Transactions and loader cache invalidation around writes
"""

import pytest
from pydantic import ValidationError

from sqlgraph.accessor import Accessor, Callbacks, CursorArgs, Page, QueryArgs
from sqlgraph.errors import ForbiddenError, IntegrityError
from sqlgraph.settings import Settings
from tests.fixtures import create_database


@pytest.fixture
async def db():
    database = await create_database()
    yield database
    await database.connection.close()


@pytest.fixture
def accessor(db):
    return Accessor(db)


class TestArguments:
    """Tests for the pydantic argument models."""

    def test_aliases(self):
        args = QueryArgs.model_validate({"orderBy": "name", "limit": 5})
        assert args.order_by == "name"
        assert QueryArgs(order_by="name").order_by == "name"
        cursor = CursorArgs.model_validate({"withTotal": True, "first": 3})
        assert cursor.with_total and cursor.first == 3

    def test_first_not_negative(self):
        with pytest.raises(ValidationError):
            CursorArgs.model_validate({"first": -1})


class TestReads:
    """Tests for query / get / cursor_query / load."""

    @pytest.mark.asyncio
    async def test_query(self, accessor):
        rows = await accessor.query("product", {"orderBy": "-price", "limit": 2})
        assert [r["sku"] for r in rows] == ["durian", "elderberry"]

    @pytest.mark.asyncio
    async def test_default_limit(self, db):
        accessor = Accessor(db, settings=Settings(default_limit=3))
        assert len(await accessor.query("product")) == 3

    @pytest.mark.asyncio
    async def test_get(self, accessor):
        assert (await accessor.get("user", {"email": "bob@example.com"}))["id"] == 2

    @pytest.mark.asyncio
    async def test_cursor_query(self, accessor):
        page = await accessor.cursor_query(
            "product", {"orderBy": "price", "first": 2, "withTotal": True}
        )
        assert isinstance(page, Page)
        assert [n["sku"] for n in page.nodes] == ["banana", "apple"]
        assert page.page_info.end_cursor == page.edges[-1].cursor

        data = page.to_dict()
        assert set(data) == {"edges", "pageInfo", "totalCount"}
        assert data["totalCount"] == 5
        assert data["pageInfo"]["hasNextPage"] is True
        assert data["pageInfo"]["startCursor"] == page.edges[0].cursor

        rest = await accessor.cursor_query("product", CursorArgs(order_by="price", after=page.page_info.end_cursor))
        assert [n["sku"] for n in rest.nodes] == ["cherry", "elderberry", "durian"]
        assert rest.page_info.has_next_page is False

    @pytest.mark.asyncio
    async def test_empty_page(self, accessor):
        page = await accessor.cursor_query("product", {"where": {"id": 99}})
        assert page.to_dict()["pageInfo"] == {
            "startCursor": None,
            "endCursor": None,
            "hasNextPage": False,
        }

    @pytest.mark.asyncio
    async def test_load(self, db, accessor):
        email = db.schema.model("User").field("email")
        assert (await accessor.load(email, "carol@example.com"))["id"] == 3


class TestCallbacks:
    """Tests for on_query / on_result."""

    @pytest.mark.asyncio
    async def test_observed(self, db):
        calls = []

        def record(context, event, table, data):
            calls.append((context, event, table.model.name))

        accessor = Accessor(db, callbacks=Callbacks(context="ctx", on_query=record, on_result=record))
        await accessor.query("product")
        assert calls == [("ctx", "query", "Product"), ("ctx", "query", "Product")]

    @pytest.mark.asyncio
    async def test_replace_arguments(self, db):
        """Returning a document replaces the arguments."""

        def only_inactive(context, event, table, args):
            return {"where": {"active": False}}

        accessor = Accessor(db, callbacks=Callbacks(on_query=only_inactive))
        assert [r["sku"] for r in await accessor.query("product")] == ["durian"]

    @pytest.mark.asyncio
    async def test_async_result_callback(self, db):
        async def redact(context, event, table, rows):
            return [{"sku": r["sku"]} for r in rows]

        accessor = Accessor(db, callbacks=Callbacks(on_result=redact))
        rows = await accessor.query("product", {"where": {"id": 1}})
        assert rows == [{"sku": "apple"}]

    @pytest.mark.asyncio
    async def test_forbidden(self, db):
        def deny_writes(context, event, table, data):
            if event != "query":
                return False

        accessor = Accessor(db, callbacks=Callbacks(on_query=deny_writes))
        await accessor.query("user")
        with pytest.raises(ForbiddenError) as exc_info:
            await accessor.delete("user", {"id": 3})
        assert exc_info.value.event == "delete"
        assert exc_info.value.model_name == "User"
        assert await db.table("user").get({"id": 3}) is not None

    @pytest.mark.asyncio
    async def test_write_arguments(self, db):
        seen = {}

        def capture(context, event, table, data):
            seen[event] = data

        accessor = Accessor(db, callbacks=Callbacks(on_query=capture))
        await accessor.update("user", {"firstName": "Ali"}, {"id": 1})
        await accessor.upsert("product", {"sku": "fig", "name": "Fig"})
        assert seen["update"] == {"where": {"id": 1}, "data": {"firstName": "Ali"}}
        assert seen["upsert"] == {"create": {"sku": "fig", "name": "Fig"}, "update": None}


class TestWrites:
    """Tests for the write operations."""

    @pytest.mark.asyncio
    async def test_crud(self, accessor):
        user = await accessor.create("user", {"email": "dave@example.com"})
        updated = await accessor.update("user", {"firstName": "Dave"}, {"id": user["id"]})
        assert updated["firstName"] == "Dave"
        upserted = await accessor.upsert("user", {"email": "dave@example.com"}, {"lastName": "D"})
        assert upserted["lastName"] == "D"
        assert await accessor.update_many("user", {"status": "gone"}, {"lastName": "D"}) == 1
        deleted = await accessor.delete("user", {"email": "dave@example.com"})
        assert deleted["status"] == "gone"
        assert [r["id"] for r in await accessor.delete_many("order_item", {"order": 2})] == [3]

    @pytest.mark.asyncio
    async def test_failed_write_rolls_back(self, db, accessor):
        """Nested writes are all or nothing."""
        data = {
            "code": "Z-1",
            "user": 1,
            "orderItems": {"create": [{"product": 1}, {"product": 1}]},
        }
        with pytest.raises(IntegrityError):
            await accessor.create("order", data)
        assert await db.table("order").get({"code": "Z-1"}) is None
        assert await db.table("order_item").count() == 5

    @pytest.mark.asyncio
    async def test_writes_clear_loaders(self, db, accessor):
        email = db.schema.model("User").field("email")
        assert (await accessor.load(email, "alice@example.com"))["firstName"] == "Alice"
        await accessor.update("user", {"firstName": "Ali"}, {"id": 1})
        assert (await accessor.load(email, "alice@example.com"))["firstName"] == "Ali"
