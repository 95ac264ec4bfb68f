"""
Shared test schema: a small shop.

The same schema is available as SchemaInfo (for unit tests that never
touch a database) and as SQLite DDL with seed data (for integration
tests).

Tables:
- user, delivery_address
- product, category, product_category (pure junction: many-to-many)
- order, order_item, order_shipping (one-to-one with order)
- seat (non-nullable self reference, for flush cycle tests)

NODE_INFO is a separate one-table schema whose self reference is a
nullable unique key.
"""

from __future__ import annotations

from sqlgraph.database import Database
from sqlgraph.engine import SQLiteConnection
from sqlgraph.schema import build_schema
from sqlgraph.schema.types import SchemaInfo, column, foreign_key, primary_key, table, unique
from sqlgraph.settings import Settings

SHOP_INFO = SchemaInfo(
    tables=(
        table(
            "user",
            [
                column("id", "integer", nullable=False, auto_increment=True),
                column("email", "varchar", size=200, nullable=False),
                column("first_name", "varchar", size=30),
                column("last_name", "varchar", size=100),
                column("status", "varchar", size=10, default="active"),
                column("created_at", "datetime"),
            ],
            [primary_key("id"), unique("email")],
        ),
        table(
            "product",
            [
                column("id", "integer", nullable=False, auto_increment=True),
                column("sku", "varchar", size=40, nullable=False),
                column("name", "varchar", size=200, nullable=False),
                column("price", "decimal", size=10, nullable=False, default=0),
                column("stock_quantity", "int", nullable=False, default=0),
                column("active", "boolean", nullable=False, default=1),
            ],
            [primary_key("id"), unique("sku")],
        ),
        table(
            "category",
            [
                column("id", "integer", nullable=False, auto_increment=True),
                column("name", "varchar", size=100, nullable=False),
                column("parent_id", "integer"),
            ],
            [primary_key("id"), unique("name"), foreign_key("parent_id", "category")],
        ),
        table(
            "product_category",
            [
                column("product_id", "integer", nullable=False),
                column("category_id", "integer", nullable=False),
            ],
            [
                primary_key("product_id", "category_id"),
                foreign_key("product_id", "product"),
                foreign_key("category_id", "category"),
            ],
        ),
        table(
            "order",
            [
                column("id", "integer", nullable=False, auto_increment=True),
                column("code", "varchar", size=40, nullable=False),
                column("user_id", "integer", nullable=False),
                column("delivery_address_id", "integer"),
                column("date_created", "datetime"),
                column("status", "varchar", size=20),
            ],
            [
                primary_key("id"),
                unique("code"),
                foreign_key("user_id", "user"),
                foreign_key("delivery_address_id", "delivery_address"),
            ],
        ),
        table(
            "order_item",
            [
                column("id", "integer", nullable=False, auto_increment=True),
                column("order_id", "integer", nullable=False),
                column("product_id", "integer", nullable=False),
                column("quantity", "integer", nullable=False, default=1),
            ],
            [
                primary_key("id"),
                unique("order_id", "product_id"),
                foreign_key("order_id", "order"),
                foreign_key("product_id", "product"),
            ],
        ),
        table(
            "order_shipping",
            [
                column("order_id", "int", nullable=False),
                column("status", "varchar", size=20),
            ],
            [primary_key("order_id"), foreign_key("order_id", "order")],
        ),
        table(
            "delivery_address",
            [
                column("id", "integer", nullable=False, auto_increment=True),
                column("user_id", "integer", nullable=False),
                column("address", "varchar", size=200, nullable=False),
                column("postcode", "varchar", size=10),
            ],
            [primary_key("id"), foreign_key("user_id", "user")],
        ),
        table(
            "seat",
            [
                column("id", "integer", nullable=False, auto_increment=True),
                column("label", "varchar", size=20, nullable=False),
                column("next_id", "integer", nullable=False),
            ],
            [primary_key("id"), foreign_key("next_id", "seat")],
        ),
    )
)

SHOP_DDL = """
CREATE TABLE "user" (
    id INTEGER PRIMARY KEY,
    email VARCHAR(200) NOT NULL UNIQUE,
    first_name VARCHAR(30),
    last_name VARCHAR(100),
    status VARCHAR(10) DEFAULT 'active',
    created_at DATETIME
);
CREATE TABLE product (
    id INTEGER PRIMARY KEY,
    sku VARCHAR(40) NOT NULL UNIQUE,
    name VARCHAR(200) NOT NULL,
    price DECIMAL(10,2) NOT NULL DEFAULT 0,
    stock_quantity INT NOT NULL DEFAULT 0,
    active BOOLEAN NOT NULL DEFAULT 1
);
CREATE TABLE category (
    id INTEGER PRIMARY KEY,
    name VARCHAR(100) NOT NULL UNIQUE,
    parent_id INTEGER REFERENCES category(id)
);
CREATE TABLE product_category (
    product_id INTEGER NOT NULL REFERENCES product(id),
    category_id INTEGER NOT NULL REFERENCES category(id),
    PRIMARY KEY (product_id, category_id)
);
CREATE TABLE "order" (
    id INTEGER PRIMARY KEY,
    code VARCHAR(40) NOT NULL UNIQUE,
    user_id INTEGER NOT NULL REFERENCES "user"(id),
    delivery_address_id INTEGER REFERENCES delivery_address(id),
    date_created DATETIME,
    status VARCHAR(20)
);
CREATE TABLE order_item (
    id INTEGER PRIMARY KEY,
    order_id INTEGER NOT NULL REFERENCES "order"(id),
    product_id INTEGER NOT NULL REFERENCES product(id),
    quantity INTEGER NOT NULL DEFAULT 1,
    UNIQUE (order_id, product_id)
);
CREATE TABLE order_shipping (
    order_id INT PRIMARY KEY REFERENCES "order"(id),
    status VARCHAR(20)
);
CREATE TABLE delivery_address (
    id INTEGER PRIMARY KEY,
    user_id INTEGER NOT NULL REFERENCES "user"(id),
    address VARCHAR(200) NOT NULL,
    postcode VARCHAR(10)
);
CREATE TABLE seat (
    id INTEGER PRIMARY KEY,
    label VARCHAR(20) NOT NULL,
    next_id INTEGER NOT NULL REFERENCES seat(id)
);
"""

SHOP_SEED = """
INSERT INTO "user" (id, email, first_name, last_name, status, created_at) VALUES
    (1, 'alice@example.com', 'Alice', 'Smith', 'active', '2024-01-01 09:00:00'),
    (2, 'bob@example.com', 'Bob', 'Jones', 'active', '2024-01-02 09:00:00'),
    (3, 'carol@example.com', 'Carol', 'Smith', 'inactive', NULL);
INSERT INTO product (id, sku, name, price, stock_quantity, active) VALUES
    (1, 'apple', 'Apple', 1.5, 100, 1),
    (2, 'banana', 'Banana', 0.5, 200, 1),
    (3, 'cherry', 'Cherry', 6.0, 50, 1),
    (4, 'durian', 'Durian', 12.0, 0, 0),
    (5, 'elderberry', 'Elderberry', 8.0, 20, 1);
INSERT INTO category (id, name, parent_id) VALUES
    (1, 'Fruit', NULL),
    (2, 'Tropical', 1),
    (3, 'Berries', 1);
INSERT INTO product_category (product_id, category_id) VALUES
    (1, 1), (2, 1), (2, 2), (3, 1), (3, 3), (4, 2), (5, 3);
INSERT INTO delivery_address (id, user_id, address, postcode) VALUES
    (1, 1, '1 Main Street', 'AB1'),
    (2, 2, '2 High Street', 'CD2');
INSERT INTO "order" (id, code, user_id, delivery_address_id, date_created, status) VALUES
    (1, 'A-1', 1, 1, '2024-01-01 10:00:00', 'paid'),
    (2, 'A-2', 1, NULL, '2024-02-01 10:00:00', 'open'),
    (3, 'B-1', 2, 2, '2024-03-01 10:00:00', 'paid');
INSERT INTO order_item (id, order_id, product_id, quantity) VALUES
    (1, 1, 1, 3),
    (2, 1, 2, 6),
    (3, 2, 3, 1),
    (4, 3, 1, 2),
    (5, 3, 5, 4);
INSERT INTO order_shipping (order_id, status) VALUES
    (1, 'shipped');
"""


def shop_schema():
    """Resolved Schema of the shop."""
    return build_schema(SHOP_INFO)


async def create_database(
    path: str = ":memory:",
    *,
    seed: bool = True,
    settings: Settings | None = None,
) -> Database:
    """Create the shop tables on a fresh SQLite database.

    Args:
        path: Database file, in memory by default
        seed: Insert the seed rows
        settings: Runtime settings for the Database

    Returns:
        Database over the new connection
    """
    connection = SQLiteConnection(path)
    await connection.executescript(SHOP_DDL + (SHOP_SEED if seed else ""))
    return Database(shop_schema(), connection, settings)


NODE_INFO = SchemaInfo(
    tables=(
        table(
            "node",
            [
                column("id", "integer", nullable=False, auto_increment=True),
                column("label", "varchar", size=20, nullable=False),
                column("ref_id", "integer"),
            ],
            [primary_key("id"), unique("ref_id"), foreign_key("ref_id", "node")],
        ),
    )
)

NODE_DDL = """
CREATE TABLE node (
    id INTEGER PRIMARY KEY,
    label VARCHAR(20) NOT NULL,
    ref_id INTEGER UNIQUE REFERENCES node(id)
);
"""


async def create_node_database(path: str = ":memory:") -> Database:
    """Create the node table: a nullable, unique self reference."""
    connection = SQLiteConnection(path)
    await connection.executescript(NODE_DDL)
    return Database(build_schema(NODE_INFO), connection)
