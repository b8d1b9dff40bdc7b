"""
Orders, line items and the catalog entities the engine reads. Pydantic models: field
constraints are checked on construction, cross-field rules by Order.ensure_valid().
"""
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, computed_field

from order_engine.errors import OrderValidationError


class OrderType(StrEnum):
    CUSTOM = "CUSTOM"  # made to order from a quote
    INVENTORY = "INVENTORY"  # produced for stock
    SALE = "SALE"  # sold from existing stock


class OrderStatus(StrEnum):
    QUOTE = "QUOTE"
    APPROVED = "APPROVED"
    MANUFACTURING = "MANUFACTURING"
    FINISHED = "FINISHED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    PLANNED = "PLANNED"
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    # Legacy rows only; no strategy maps it to a state.
    IN_PRODUCTION = "IN_PRODUCTION"


EDITABLE_STATUSES = frozenset({OrderStatus.QUOTE, OrderStatus.APPROVED})


class Product(BaseModel):
    id: int = 0
    name: str
    category_id: int | None = None
    min_stock: int = Field(default=0, ge=0)


class ProductVariant(BaseModel):
    """One color/size combination of a product, with its own stock counters."""

    id: int = 0
    product_id: int
    color: str = ""
    size_id: int | None = None
    stock: int = Field(default=0, ge=0)
    reserved_stock: int = Field(default=0, ge=0)
    unit_price: float = Field(default=0.0, ge=0)
    is_active: bool = True

    @property
    def available_stock(self) -> int:
        return self.stock - self.reserved_stock

    def can_reserve(self, quantity: int) -> bool:
        return self.available_stock >= quantity


class OrderItem(BaseModel):
    id: int = 0
    order_id: int = 0
    # None (or 0 from older rows) means the variant does not exist yet.
    product_variant_id: int | None = None
    # Snapshots, so historical orders survive catalog edits
    product_name: str = ""
    category_id: int | None = None
    color: str = ""
    size_id: int | None = None
    quantity: int = Field(default=1, gt=0)
    reserved_quantity: int = Field(default=0, ge=0)
    unit_price: float = Field(default=0.0, ge=0)

    @computed_field
    @property
    def subtotal(self) -> float:
        return self.quantity * self.unit_price

    def is_new_variant(self) -> bool:
        return not self.product_variant_id

    @property
    def manufacturing_gap(self) -> int:
        return max(self.quantity - self.reserved_quantity, 0)

    def needs_manufacturing(self) -> bool:
        if self.is_new_variant():
            return True
        return self.quantity > self.reserved_quantity

    def is_fully_covered_by_stock(self, variant: ProductVariant) -> bool:
        if self.is_new_variant() or variant.id != self.product_variant_id:
            return False
        return variant.reserved_stock >= self.quantity


class Order(BaseModel):
    id: int = 0
    order_number: str = ""
    customer_id: int | None = None  # internal customer, gets an accounting entry on delivery
    customer_name: str = ""
    seller_id: int = 0
    type: OrderType = Field(frozen=True)
    status: OrderStatus | None = None
    total_amount: float = 0.0
    discount: float = 0.0
    items: list[OrderItem] = Field(default_factory=list)
    notes: str = ""
    order_date: datetime | None = None
    estimated_delivery_date: datetime | None = None
    actual_delivery_date: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def ensure_valid(self) -> None:
        if not self.customer_name.strip():
            raise OrderValidationError("customer name is required")
        if self.seller_id <= 0:
            raise OrderValidationError("seller is required")
        if self.total_amount < 0:
            raise OrderValidationError("total amount cannot be negative")
        if self.discount < 0:
            raise OrderValidationError("discount cannot be negative")
        for item in self.items:
            ensure_item_valid(item)

    def calculate_total(self) -> float:
        return sum(item.subtotal for item in self.items) - self.discount

    def needs_manufacturing(self) -> bool:
        return any(item.needs_manufacturing() for item in self.items)

    def has_full_stock_coverage(self) -> bool:
        return not self.needs_manufacturing()

    def is_internal_customer(self) -> bool:
        return self.customer_id is not None and self.customer_id > 0

    def can_edit_items(self) -> bool:
        return self.status in EDITABLE_STATUSES

    def find_item(self, item_id: int) -> OrderItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None


def ensure_item_valid(item: OrderItem) -> None:
    # Quantity and price bounds are enforced by the model fields.
    if not item.product_name.strip():
        raise OrderValidationError("product name is required for all items")
