"""
Async Postgres: orders + order_items (the aggregate) and products + product_variants (catalog).
Each store transaction holds one pooled connection inside conn.transaction(); the order row is
locked with SELECT ... FOR UPDATE and stock counters only move through single conditional
UPDATEs, so concurrent transitions on orders sharing a variant never lose updates.
"""
from contextlib import asynccontextmanager
from decimal import Decimal

import asyncpg

from order_engine.config import settings
from order_engine.errors import InsufficientStockError, OrderNotFoundError, PersistenceError, VariantNotFoundError
from order_engine.models import Order, OrderItem, Product, ProductVariant
from order_engine.ports import CatalogGateway, OrderRepository, Store, StoreSession

_pool: asyncpg.Pool | None = None


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS products (
                id SERIAL PRIMARY KEY,
                name VARCHAR(255) NOT NULL,
                category_id INT,
                min_stock INT NOT NULL DEFAULT 0,
                created_at TIMESTAMPTZ DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_products_name ON products(name);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS product_variants (
                id SERIAL PRIMARY KEY,
                product_id INT NOT NULL REFERENCES products(id),
                color VARCHAR(100) NOT NULL DEFAULT '',
                size_id INT,
                stock INT NOT NULL DEFAULT 0,
                reserved_stock INT NOT NULL DEFAULT 0,
                unit_price NUMERIC(12, 2) NOT NULL DEFAULT 0,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                CHECK (reserved_stock >= 0 AND reserved_stock <= stock)
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_product_variants_product_id
            ON product_variants(product_id);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id SERIAL PRIMARY KEY,
                order_number VARCHAR(50) NOT NULL UNIQUE,
                customer_id INT,
                customer_name VARCHAR(255) NOT NULL,
                seller_id INT NOT NULL,
                type VARCHAR(20) NOT NULL,
                status VARCHAR(20),
                total_amount NUMERIC(12, 2) NOT NULL DEFAULT 0,
                discount NUMERIC(12, 2) NOT NULL DEFAULT 0,
                notes TEXT NOT NULL DEFAULT '',
                order_date TIMESTAMPTZ,
                estimated_delivery_date TIMESTAMPTZ,
                actual_delivery_date TIMESTAMPTZ,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW(),
                deleted_at TIMESTAMPTZ
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_items (
                id SERIAL PRIMARY KEY,
                order_id INT NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                product_variant_id INT REFERENCES product_variants(id),
                product_name VARCHAR(255) NOT NULL,
                category_id INT,
                color VARCHAR(100) NOT NULL DEFAULT '',
                size_id INT,
                quantity INT NOT NULL CHECK (quantity > 0),
                reserved_quantity INT NOT NULL DEFAULT 0 CHECK (reserved_quantity >= 0),
                unit_price NUMERIC(12, 2) NOT NULL DEFAULT 0
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_order_items_order_id ON order_items(order_id);
        """)


def _money(value: float) -> Decimal:
    return Decimal(str(value))


class PostgresOrderRepository(OrderRepository):
    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def get_by_id(self, order_id: int, for_update: bool = True) -> Order:
        query = "SELECT * FROM orders WHERE id = $1 AND deleted_at IS NULL"
        if for_update:
            query += " FOR UPDATE"
        row = await self.conn.fetchrow(query + ";", order_id)
        if row is None:
            raise OrderNotFoundError(order_id)
        items = await self.conn.fetch(
            "SELECT * FROM order_items WHERE order_id = $1 ORDER BY id;",
            order_id,
        )
        return Order(**dict(row), items=[OrderItem(**dict(i)) for i in items])

    async def create(self, order: Order) -> Order:
        order = order.model_copy(deep=True)
        row = await self.conn.fetchrow(
            """
            INSERT INTO orders (order_number, customer_id, customer_name, seller_id, type, status,
                                total_amount, discount, notes, order_date, estimated_delivery_date,
                                actual_delivery_date, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, COALESCE($13, NOW()), NOW())
            RETURNING id, created_at, updated_at;
            """,
            order.order_number,
            order.customer_id,
            order.customer_name,
            order.seller_id,
            order.type,
            order.status,
            _money(order.total_amount),
            _money(order.discount),
            order.notes,
            order.order_date,
            order.estimated_delivery_date,
            order.actual_delivery_date,
            order.created_at,
        )
        order.id = row["id"]
        order.created_at = row["created_at"]
        order.updated_at = row["updated_at"]
        for item in order.items:
            item.id = 0
            await self._save_item(order.id, item)
        return order

    async def update(self, order: Order) -> Order:
        row = await self.conn.fetchrow(
            """
            UPDATE orders
            SET status = $2, customer_id = $3, customer_name = $4, seller_id = $5,
                total_amount = $6, discount = $7, notes = $8, estimated_delivery_date = $9,
                actual_delivery_date = $10, updated_at = NOW()
            WHERE id = $1 AND deleted_at IS NULL
            RETURNING updated_at;
            """,
            order.id,
            order.status,
            order.customer_id,
            order.customer_name,
            order.seller_id,
            _money(order.total_amount),
            _money(order.discount),
            order.notes,
            order.estimated_delivery_date,
            order.actual_delivery_date,
        )
        if row is None:
            raise OrderNotFoundError(order.id)
        order.updated_at = row["updated_at"]
        for item in order.items:
            await self._save_item(order.id, item)
        await self.conn.execute(
            "DELETE FROM order_items WHERE order_id = $1 AND NOT (id = ANY($2::int[]));",
            order.id,
            [item.id for item in order.items],
        )
        return order

    async def _save_item(self, order_id: int, item: OrderItem) -> None:
        item.order_id = order_id
        values = (
            item.product_variant_id or None,
            item.product_name,
            item.category_id,
            item.color,
            item.size_id,
            item.quantity,
            item.reserved_quantity,
            _money(item.unit_price),
        )
        if item.id:
            await self.conn.execute(
                """
                UPDATE order_items
                SET product_variant_id = $3, product_name = $4, category_id = $5, color = $6,
                    size_id = $7, quantity = $8, reserved_quantity = $9, unit_price = $10
                WHERE id = $1 AND order_id = $2;
                """,
                item.id,
                order_id,
                *values,
            )
            return
        item.id = await self.conn.fetchval(
            """
            INSERT INTO order_items (order_id, product_variant_id, product_name, category_id, color,
                                     size_id, quantity, reserved_quantity, unit_price)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING id;
            """,
            order_id,
            *values,
        )


class PostgresCatalogGateway(CatalogGateway):
    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def get_variant_by_id(self, variant_id: int) -> ProductVariant | None:
        row = await self.conn.fetchrow("SELECT * FROM product_variants WHERE id = $1;", variant_id)
        return ProductVariant(**dict(row)) if row else None

    async def find_variant(self, product_id: int, color: str, size_id: int | None) -> ProductVariant | None:
        row = await self.conn.fetchrow(
            """
            SELECT * FROM product_variants
            WHERE product_id = $1 AND color = $2 AND size_id IS NOT DISTINCT FROM $3 AND is_active
            ORDER BY id LIMIT 1;
            """,
            product_id,
            color,
            size_id,
        )
        return ProductVariant(**dict(row)) if row else None

    async def create_variant(self, variant: ProductVariant) -> ProductVariant:
        row = await self.conn.fetchrow(
            """
            INSERT INTO product_variants (product_id, color, size_id, stock, reserved_stock, unit_price, is_active)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            RETURNING *;
            """,
            variant.product_id,
            variant.color,
            variant.size_id,
            variant.stock,
            variant.reserved_stock,
            _money(variant.unit_price),
            variant.is_active,
        )
        return ProductVariant(**dict(row))

    async def find_product_by_name(self, name: str) -> Product | None:
        row = await self.conn.fetchrow("SELECT * FROM products WHERE name = $1 ORDER BY id LIMIT 1;", name)
        return Product(**dict(row)) if row else None

    async def create_product(self, product: Product) -> Product:
        row = await self.conn.fetchrow(
            "INSERT INTO products (name, category_id, min_stock) VALUES ($1, $2, $3) RETURNING *;",
            product.name,
            product.category_id,
            product.min_stock,
        )
        return Product(**dict(row))

    async def reserve_stock(self, variant_id: int, quantity: int) -> None:
        reserved = await self.conn.fetchval(
            """
            UPDATE product_variants SET reserved_stock = reserved_stock + $2
            WHERE id = $1 AND stock - reserved_stock >= $2
            RETURNING id;
            """,
            variant_id,
            quantity,
        )
        if reserved is not None:
            return
        row = await self.conn.fetchrow(
            "SELECT stock, reserved_stock FROM product_variants WHERE id = $1;",
            variant_id,
        )
        if row is None:
            raise VariantNotFoundError(variant_id)
        raise InsufficientStockError(variant_id, quantity, row["stock"] - row["reserved_stock"])

    async def release_stock(self, variant_id: int, quantity: int) -> None:
        # Both SET expressions see the pre-update row, so LEAST caps them identically.
        await self._update_counters(
            """
            UPDATE product_variants
            SET stock = stock - LEAST($2, reserved_stock), reserved_stock = reserved_stock - LEAST($2, reserved_stock)
            WHERE id = $1 RETURNING id;
            """,
            variant_id,
            quantity,
        )

    async def release_reservation(self, variant_id: int, quantity: int) -> None:
        await self._update_counters(
            """
            UPDATE product_variants SET reserved_stock = GREATEST(reserved_stock - $2, 0)
            WHERE id = $1 RETURNING id;
            """,
            variant_id,
            quantity,
        )

    async def increment_stock(self, variant_id: int, quantity: int) -> None:
        await self._update_counters(
            "UPDATE product_variants SET stock = stock + $2 WHERE id = $1 RETURNING id;",
            variant_id,
            quantity,
        )

    async def _update_counters(self, query: str, variant_id: int, quantity: int) -> None:
        if await self.conn.fetchval(query, variant_id, quantity) is None:
            raise VariantNotFoundError(variant_id)


class PostgresSession(StoreSession):
    def __init__(self, conn: asyncpg.Connection):
        self.orders = PostgresOrderRepository(conn)
        self.catalog = PostgresCatalogGateway(conn)


class PostgresStore(Store):
    """One pooled connection and one database transaction per store transaction."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    @asynccontextmanager
    async def transaction(self):
        async with self.pool.acquire() as conn:
            try:
                async with conn.transaction():
                    yield PostgresSession(conn)
            except asyncpg.PostgresError as e:
                raise PersistenceError(f"database error: {e}") from e


async def build_store() -> PostgresStore:
    """Store on the shared pool for settings.database_url, with the schema in place."""
    pool = await get_pool()
    await init_schema(pool)
    return PostgresStore(pool)
