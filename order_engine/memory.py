"""In-memory store for development and tests.

Transactions are serialised with a lock and take a deep snapshot of every table on entry;
any exception (cancellation included) restores it, so hook side effects roll back with the
order row the same way they do in Postgres. Callers always get copies, never live rows.
"""

import asyncio
import copy
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from order_engine.errors import InsufficientStockError, OrderNotFoundError, PersistenceError, VariantNotFoundError
from order_engine.models import Order, Product, ProductVariant
from order_engine.ports import CatalogGateway, OrderRepository, Store, StoreSession


@dataclass
class _Tables:
    orders: dict[int, Order] = field(default_factory=dict)
    products: dict[int, Product] = field(default_factory=dict)
    variants: dict[int, ProductVariant] = field(default_factory=dict)
    # Last id handed out per table; part of the snapshot, so rolled back too
    last_ids: dict[str, int] = field(default_factory=dict)

    def next_id(self, name: str) -> int:
        self.last_ids[name] = self.last_ids.get(name, 0) + 1
        return self.last_ids[name]


class InMemoryOrderRepository(OrderRepository):
    def __init__(self, store: "InMemoryStore", tables: _Tables):
        self._store = store
        self._tables = tables

    async def get_by_id(self, order_id: int, for_update: bool = True) -> Order:
        # Transactions are already serialised, there is no row lock to take
        order = self._tables.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order.model_copy(deep=True)

    async def create(self, order: Order) -> Order:
        self._store.check_writable()
        order = order.model_copy(deep=True)
        order.id = self._tables.next_id("order")
        self._assign_item_ids(order)
        self._tables.orders[order.id] = order.model_copy(deep=True)
        return order.model_copy(deep=True)

    async def update(self, order: Order) -> Order:
        self._store.check_writable()
        if order.id not in self._tables.orders:
            raise OrderNotFoundError(order.id)
        order = order.model_copy(deep=True)
        self._assign_item_ids(order)
        self._tables.orders[order.id] = order.model_copy(deep=True)
        return order.model_copy(deep=True)

    def _assign_item_ids(self, order: Order) -> None:
        for item in order.items:
            if not item.id:
                item.id = self._tables.next_id("item")
            item.order_id = order.id


class InMemoryCatalog(CatalogGateway):
    def __init__(self, tables: _Tables):
        self._tables = tables

    def _variant(self, variant_id: int) -> ProductVariant:
        variant = self._tables.variants.get(variant_id)
        if variant is None:
            raise VariantNotFoundError(variant_id)
        return variant

    async def get_variant_by_id(self, variant_id: int) -> ProductVariant | None:
        variant = self._tables.variants.get(variant_id)
        return variant.model_copy() if variant else None

    async def find_variant(self, product_id: int, color: str, size_id: int | None) -> ProductVariant | None:
        for variant in self._tables.variants.values():
            if (
                variant.is_active
                and variant.product_id == product_id
                and variant.color == color
                and variant.size_id == size_id
            ):
                return variant.model_copy()
        return None

    async def create_variant(self, variant: ProductVariant) -> ProductVariant:
        if variant.product_id not in self._tables.products:
            raise PersistenceError(f"product {variant.product_id} does not exist")
        variant = variant.model_copy(update={"id": self._tables.next_id("variant")})
        self._tables.variants[variant.id] = variant
        return variant.model_copy()

    async def find_product_by_name(self, name: str) -> Product | None:
        for product in self._tables.products.values():
            if product.name == name:
                return product.model_copy()
        return None

    async def create_product(self, product: Product) -> Product:
        product = product.model_copy(update={"id": self._tables.next_id("product")})
        self._tables.products[product.id] = product
        return product.model_copy()

    async def reserve_stock(self, variant_id: int, quantity: int) -> None:
        variant = self._variant(variant_id)
        if not variant.can_reserve(quantity):
            raise InsufficientStockError(variant_id, quantity, variant.available_stock)
        variant.reserved_stock += quantity

    async def release_stock(self, variant_id: int, quantity: int) -> None:
        variant = self._variant(variant_id)
        quantity = min(quantity, variant.reserved_stock)
        variant.stock -= quantity
        variant.reserved_stock -= quantity

    async def release_reservation(self, variant_id: int, quantity: int) -> None:
        variant = self._variant(variant_id)
        variant.reserved_stock = max(variant.reserved_stock - quantity, 0)

    async def increment_stock(self, variant_id: int, quantity: int) -> None:
        self._variant(variant_id).stock += quantity


class InMemorySession(StoreSession):
    def __init__(self, store: "InMemoryStore", tables: _Tables):
        self.orders = InMemoryOrderRepository(store, tables)
        self.catalog = InMemoryCatalog(tables)


class InMemoryStore(Store):
    def __init__(self) -> None:
        self._tables = _Tables()
        self._lock = asyncio.Lock()
        # Set to make every order write fail, e.g. to exercise rollback
        self.write_error: Exception | None = None

    @asynccontextmanager
    async def transaction(self):
        async with self._lock:
            snapshot = copy.deepcopy(self._tables)
            try:
                yield InMemorySession(self, self._tables)
            except BaseException:
                self._tables = snapshot
                raise

    def check_writable(self) -> None:
        if self.write_error is not None:
            raise PersistenceError("order write failed") from self.write_error

    # Seeding and inspection, outside any transaction

    def add_product(self, name: str, category_id: int | None = None, min_stock: int = 0) -> Product:
        product = Product(id=self._tables.next_id("product"), name=name, category_id=category_id, min_stock=min_stock)
        self._tables.products[product.id] = product
        return product.model_copy()

    def add_variant(
        self,
        product_id: int,
        color: str = "",
        size_id: int | None = None,
        stock: int = 0,
        reserved_stock: int = 0,
        unit_price: float = 0.0,
    ) -> ProductVariant:
        variant = ProductVariant(
            id=self._tables.next_id("variant"),
            product_id=product_id,
            color=color,
            size_id=size_id,
            stock=stock,
            reserved_stock=reserved_stock,
            unit_price=unit_price,
        )
        self._tables.variants[variant.id] = variant
        return variant.model_copy()

    def put_order(self, order: Order) -> Order:
        """Store an order as-is (any status, legacy ones included), bypassing the engine."""
        if not order.id:
            order.id = self._tables.next_id("order")
        for item in order.items:
            if not item.id:
                item.id = self._tables.next_id("item")
            item.order_id = order.id
        self._tables.orders[order.id] = order.model_copy(deep=True)
        return order.model_copy(deep=True)

    def variant(self, variant_id: int) -> ProductVariant | None:
        variant = self._tables.variants.get(variant_id)
        return variant.model_copy() if variant else None

    def variants(self) -> list[ProductVariant]:
        return [v.model_copy() for v in self._tables.variants.values()]

    def products(self) -> list[Product]:
        return [p.model_copy() for p in self._tables.products.values()]

    def order(self, order_id: int) -> Order | None:
        order = self._tables.orders.get(order_id)
        return order.model_copy(deep=True) if order else None
