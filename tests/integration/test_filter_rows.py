"""
Integration tests running compiled filters against the shop data.
"""

import pytest

from tests.fixtures import create_database


@pytest.fixture
async def db():
    database = await create_database()
    yield database
    await database.connection.close()


async def ids(db, model, where):
    rows = await db.table(model).select(["id"], where=where, order_by="id")
    return [r["id"] for r in rows]


class TestScalarFilters:
    """Filters on plain columns."""

    @pytest.mark.asyncio
    async def test_comparisons(self, db):
        assert await ids(db, "product", {"price_ge": 6, "price_le": 8}) == [3, 5]
        assert await ids(db, "product", {"stockQuantity_ne": 0, "price_gt": 5}) == [3, 5]

    @pytest.mark.asyncio
    async def test_like(self, db):
        assert await ids(db, "product", {"name_like": "%err%"}) == [3, 5]

    @pytest.mark.asyncio
    async def test_lists_and_nulls(self, db):
        assert await ids(db, "product", {"sku": ["apple", "durian", "kiwi"]}) == [1, 4]
        assert await ids(db, "user", {"createdAt": None}) == [3]
        assert await ids(db, "user", {"createdAt_null": False}) == [1, 2]
        assert await ids(db, "product", {"id": []}) == []

    @pytest.mark.asyncio
    async def test_datetime(self, db):
        """Date strings compare as stored."""
        assert await ids(db, "user", {"createdAt_ge": "2024-01-02"}) == [2]

    @pytest.mark.asyncio
    async def test_boolean(self, db):
        assert await ids(db, "product", {"active": False}) == [4]


class TestLogicalFilters:
    """AND / OR / NOT and lists."""

    @pytest.mark.asyncio
    async def test_or(self, db):
        assert await ids(db, "product", [{"sku": "apple"}, {"price_ge": 12}]) == [1, 4]
        assert await ids(db, "product", {"OR": [{}, {"id": 1}]}) == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_not(self, db):
        assert await ids(db, "product", {"NOT": [{"active": True}]}) == [4]
        assert await ids(db, "product", {"NOT": {}}) == []


class TestRelationFilters:
    """Filters traversing foreign keys and related fields."""

    @pytest.mark.asyncio
    async def test_foreign_key_document(self, db):
        assert await ids(db, "order", {"user": {"lastName": "Smith"}}) == [1, 2]
        assert await ids(db, "order", {"deliveryAddress": None}) == [2]
        assert await ids(db, "category", {"parent": {"name": "Fruit"}}) == [2, 3]

    @pytest.mark.asyncio
    async def test_foreign_key_in_logical(self, db):
        """Nested documents compile to subqueries."""
        where = {"OR": [{"user": {"email": "bob@example.com"}}, {"status": "open"}]}
        assert await ids(db, "order", where) == [2, 3]

    @pytest.mark.asyncio
    async def test_some_none(self, db):
        assert await ids(db, "user", {"orders_some": {"status": "paid"}}) == [1, 2]
        assert await ids(db, "user", {"orders": None}) == [3]
        assert await ids(db, "category", {"categories_some": {}}) == [1]

    @pytest.mark.asyncio
    async def test_through(self, db):
        assert await ids(db, "product", {"categories_some": {"name": "Fruit"}}) == [1, 2, 3]
        assert await ids(db, "product", {"categories_none": {"name": "Tropical"}}) == [1, 3, 5]
        assert await ids(db, "category", {"products_some": {"id": 4}}) == [2]

    @pytest.mark.asyncio
    async def test_deep(self, db):
        """Categories of the products ordered in B-1."""
        where = {"products_some": {"orderItems_some": {"order": {"code": "B-1"}}}}
        assert await ids(db, "category", where) == [1, 3]
