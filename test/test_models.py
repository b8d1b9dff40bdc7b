"""
Order / item / variant rules: coverage, manufacturing gap, totals and validation.
"""
import pytest
from pydantic import ValidationError

from _helper import make_item, make_order
from order_engine.errors import OrderValidationError
from order_engine.models import OrderStatus, OrderType, ProductVariant


def test_subtotal_and_total():
    order = make_order(items=[make_item(quantity=2, unit_price=15.0), make_item(quantity=1, unit_price=5.0)], discount=5)
    assert order.items[0].subtotal == 30.0
    assert order.calculate_total() == 30.0


def test_item_without_variant_needs_manufacturing():
    item = make_item(quantity=3)
    assert item.is_new_variant()
    assert item.needs_manufacturing()
    assert item.manufacturing_gap == 3


def test_zero_variant_id_counts_as_new():
    assert make_item(product_variant_id=0).is_new_variant()


def test_partially_reserved_item_has_gap():
    item = make_item(quantity=5, product_variant_id=7, reserved_quantity=3)
    assert item.needs_manufacturing()
    assert item.manufacturing_gap == 2


def test_fully_reserved_order_has_coverage():
    order = make_order(items=[make_item(quantity=2, product_variant_id=1, reserved_quantity=2)])
    assert not order.needs_manufacturing()
    assert order.has_full_stock_coverage()


def test_fully_covered_by_variant_stock():
    item = make_item(quantity=4, product_variant_id=9)
    assert item.is_fully_covered_by_stock(ProductVariant(id=9, product_id=1, stock=10, reserved_stock=4))
    assert not item.is_fully_covered_by_stock(ProductVariant(id=9, product_id=1, stock=10, reserved_stock=3))
    assert not item.is_fully_covered_by_stock(ProductVariant(id=8, product_id=1, stock=10, reserved_stock=10))


def test_variant_available_stock():
    variant = ProductVariant(product_id=1, stock=10, reserved_stock=7)
    assert variant.available_stock == 3
    assert variant.can_reserve(3)
    assert not variant.can_reserve(4)


@pytest.mark.parametrize(
    "fields, message",
    [
        ({"customer_name": "  "}, "customer name"),
        ({"seller_id": 0}, "seller"),
        ({"discount": -1}, "discount"),
        ({"total_amount": -10}, "total amount"),
    ],
)
def test_order_validation(fields, message):
    with pytest.raises(OrderValidationError, match=message):
        make_order(**fields).ensure_valid()


def test_item_requires_product_name():
    with pytest.raises(OrderValidationError, match="product name"):
        make_order(items=[make_item(name="")]).ensure_valid()


def test_item_field_bounds():
    with pytest.raises(ValidationError):
        make_item(quantity=0)
    with pytest.raises(ValidationError):
        make_item(unit_price=-1)


def test_order_type_is_frozen():
    order = make_order()
    with pytest.raises(ValidationError):
        order.type = OrderType.SALE


def test_items_editable_only_in_quote_and_approved():
    assert make_order(status=OrderStatus.QUOTE).can_edit_items()
    assert make_order(status=OrderStatus.APPROVED).can_edit_items()
    assert not make_order(status=OrderStatus.MANUFACTURING).can_edit_items()
    assert not make_order(status=None).can_edit_items()


def test_internal_customer():
    assert make_order(customer_id=12).is_internal_customer()
    assert not make_order(customer_id=None).is_internal_customer()
    assert not make_order(customer_id=0).is_internal_customer()
