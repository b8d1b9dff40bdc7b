"""Collaborator contracts consumed by the lifecycle engine.

Adapters live in order_engine.memory (development/tests) and order_engine.db
(Postgres). A Store hands out sessions whose order repository and catalog gateway
share one transaction, so a transition's stock movements and its order row commit
or roll back together.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager

from order_engine.models import Order, Product, ProductVariant


class OrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: int, for_update: bool = True) -> Order:
        """Load an order with its items. Raises OrderNotFoundError.

        for_update locks the order row until the transaction ends; reads pass False.
        """
        ...

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """Insert the order and its items; returns it with ids assigned."""
        ...

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """Persist the order row and every item row (new items get ids, missing ones are deleted)."""
        ...


class CatalogGateway(ABC):
    """Products and variants. Stock counters only move through the atomic operations below."""

    @abstractmethod
    async def get_variant_by_id(self, variant_id: int) -> ProductVariant | None:
        ...

    @abstractmethod
    async def find_variant(self, product_id: int, color: str, size_id: int | None) -> ProductVariant | None:
        ...

    @abstractmethod
    async def create_variant(self, variant: ProductVariant) -> ProductVariant:
        ...

    @abstractmethod
    async def find_product_by_name(self, name: str) -> Product | None:
        ...

    @abstractmethod
    async def create_product(self, product: Product) -> Product:
        ...

    @abstractmethod
    async def reserve_stock(self, variant_id: int, quantity: int) -> None:
        """reserved += quantity, all or nothing. Raises InsufficientStockError / VariantNotFoundError."""
        ...

    @abstractmethod
    async def release_stock(self, variant_id: int, quantity: int) -> None:
        """Goods left the warehouse: stock -= quantity and reserved -= quantity."""
        ...

    @abstractmethod
    async def release_reservation(self, variant_id: int, quantity: int) -> None:
        """Drop a hold without shipping: reserved -= quantity (floored at 0), stock untouched."""
        ...

    @abstractmethod
    async def increment_stock(self, variant_id: int, quantity: int) -> None:
        ...


class StoreSession(ABC):
    orders: OrderRepository
    catalog: CatalogGateway


class Store(ABC):
    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[StoreSession]:
        """Commit on clean exit, roll back on any exception (cancellation included)."""
        ...


class EventSink(ABC):
    @abstractmethod
    async def publish(self, event) -> None:
        """Fire-and-forget delivery of one OrderEvent."""
        ...
