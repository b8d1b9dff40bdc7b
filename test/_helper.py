"""
Shared helpers for the engine tests: build orders the way callers send them.
"""
from order_engine.models import Order, OrderItem, OrderType


def make_item(
    name: str = "Polo Shirt",
    quantity: int = 5,
    color: str = "blue",
    size_id: int | None = 2,
    unit_price: float = 10.0,
    **fields,
) -> OrderItem:
    return OrderItem(
        product_name=name,
        quantity=quantity,
        color=color,
        size_id=size_id,
        unit_price=unit_price,
        **fields,
    )


def make_order(order_type: OrderType = OrderType.CUSTOM, items: list[OrderItem] | None = None, **fields) -> Order:
    fields.setdefault("customer_name", "ACME School")
    fields.setdefault("seller_id", 1)
    return Order(type=order_type, items=[make_item()] if items is None else items, **fields)
