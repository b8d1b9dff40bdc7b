"""
INVENTORY orders: production for free stock; nothing is reserved at any step.
"""
from _helper import make_item, make_order
from order_engine.models import OrderStatus, OrderType

S = OrderStatus


async def test_production_run_stocks_full_quantity_by_default(engine, store, bus):
    product = store.add_product("Apron")
    existing = store.add_variant(product.id, color="white", size_id=1, stock=2)
    order = await engine.create_order(
        make_order(
            OrderType.INVENTORY,
            items=[
                make_item("Apron", quantity=10, color="white", size_id=1),
                make_item("Apron", quantity=6, color="green", size_id=1),
            ],
        )
    )
    assert order.status == S.PLANNED
    assert bus.types() == ["inventory.planned"]
    await engine.change_status(order.id, S.MANUFACTURING)
    bus.clear()

    result = await engine.change_status(order.id, S.FINISHED)

    assert result.allowed_next_statuses == []
    white, green = result.order.items
    assert white.product_variant_id == existing.id
    assert store.variant(existing.id).stock == 12
    assert store.variant(existing.id).reserved_stock == 0
    created = store.variant(green.product_variant_id)
    assert created.product_id == product.id
    assert created.stock == 6
    assert created.reserved_stock == 0
    assert bus.types() == ["inventory.finished", "stock.updated"]
    assert bus.events[1].data["for_inventory"] is True


async def test_supplied_produced_quantities_win(engine, store):
    order = await engine.create_order(make_order(OrderType.INVENTORY, items=[make_item("Cap", quantity=10)]))
    item_id = order.items[0].id
    await engine.change_status(order.id, S.MANUFACTURING)

    result = await engine.change_status(order.id, S.FINISHED, {item_id: 7})

    assert store.variant(result.order.items[0].product_variant_id).stock == 7


async def test_planned_production_can_be_cancelled(engine, store, bus):
    order = await engine.create_order(make_order(OrderType.INVENTORY))
    bus.clear()

    result = await engine.change_status(order.id, S.CANCELLED)

    assert result.order.status == S.CANCELLED
    assert bus.types() == ["order.cancelled"]
    assert store.variants() == []
