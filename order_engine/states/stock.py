"""
Stock movements shared by the per-type state tables. Every counter change goes through
the catalog gateway's atomic operations; these helpers only decide quantities and keep
the order items' reserved_quantity in step with what was actually moved.
"""
import logging
from collections.abc import Callable

from order_engine.errors import InsufficientStockError, InvalidProducedQuantityError, VariantNotFoundError
from order_engine.metrics import stock_units_moved_total
from order_engine.models import Order, OrderItem, Product, ProductVariant
from order_engine.order_state import TransitionContext
from order_engine.ports import CatalogGateway

logger = logging.getLogger(__name__)


async def reserve_available(order: Order, ctx: TransitionContext) -> list[dict]:
    """Reserve what existing stock can cover for each linked item; the rest is left to manufacture."""
    reserved = []
    for item in order.items:
        if item.is_new_variant():
            continue
        outstanding = item.quantity - item.reserved_quantity
        if outstanding <= 0:
            continue
        variant = await ctx.catalog.get_variant_by_id(item.product_variant_id)
        if variant is None:
            logger.warning(
                "Variant %s of order %s not found, it will be created when the order is finished",
                item.product_variant_id,
                order.id,
            )
            continue
        quantity = min(outstanding, variant.available_stock)
        if quantity <= 0:
            logger.info(
                "No available stock for variant %s (stock=%d, reserved=%d)",
                variant.id,
                variant.stock,
                variant.reserved_stock,
            )
            continue
        await ctx.catalog.reserve_stock(variant.id, quantity)
        item.reserved_quantity += quantity
        stock_units_moved_total.labels(movement="reserve").inc(quantity)
        logger.info(
            "Reserved %d of %d units on variant %s for order %s (to manufacture: %d)",
            quantity,
            item.quantity,
            variant.id,
            order.id,
            item.manufacturing_gap,
        )
        reserved.append({"item_id": item.id, "variant_id": variant.id, "quantity": quantity})
    return reserved


async def reserve_all(order: Order, ctx: TransitionContext) -> list[dict]:
    """Reserve every item in full from existing variants, or fail the transition."""
    reserved = []
    for item in order.items:
        if item.is_new_variant():
            raise VariantNotFoundError(None, f"item '{item.product_name}' has no catalog variant")
        variant = await ctx.catalog.get_variant_by_id(item.product_variant_id)
        if variant is None:
            raise VariantNotFoundError(item.product_variant_id)
        outstanding = item.quantity - item.reserved_quantity
        if outstanding <= 0:
            continue
        if not variant.can_reserve(outstanding):
            raise InsufficientStockError(variant.id, outstanding, variant.available_stock)
        await ctx.catalog.reserve_stock(variant.id, outstanding)
        item.reserved_quantity += outstanding
        stock_units_moved_total.labels(movement="reserve").inc(outstanding)
        reserved.append({"item_id": item.id, "variant_id": variant.id, "quantity": outstanding})
    return reserved


async def release_delivered(order: Order, ctx: TransitionContext) -> list[dict]:
    """Goods left inventory: drop the reserved units from both stock and reserved stock."""
    released = []
    for item in order.items:
        if item.is_new_variant() or item.reserved_quantity <= 0:
            continue
        await ctx.catalog.release_stock(item.product_variant_id, item.reserved_quantity)
        stock_units_moved_total.labels(movement="release").inc(item.reserved_quantity)
        released.append(
            {"item_id": item.id, "variant_id": item.product_variant_id, "quantity": item.reserved_quantity}
        )
        item.reserved_quantity = 0
    return released


async def release_reservations(order: Order, ctx: TransitionContext) -> list[dict]:
    """Nothing shipped: give the held units back to available stock."""
    released = []
    for item in order.items:
        if item.is_new_variant() or item.reserved_quantity <= 0:
            continue
        await ctx.catalog.release_reservation(item.product_variant_id, item.reserved_quantity)
        stock_units_moved_total.labels(movement="unreserve").inc(item.reserved_quantity)
        released.append(
            {"item_id": item.id, "variant_id": item.product_variant_id, "quantity": item.reserved_quantity}
        )
        item.reserved_quantity = 0
    return released


def produced_for(order: Order, produced: dict[int, int], default: Callable[[OrderItem], int]) -> dict[int, int]:
    unknown = set(produced) - {item.id for item in order.items}
    if unknown:
        raise InvalidProducedQuantityError(
            f"produced quantities reference items not in order {order.id}: {sorted(unknown)}"
        )
    result = {}
    for item in order.items:
        quantity = produced.get(item.id)
        if quantity is None:
            quantity = default(item)
        if quantity < 0:
            raise InvalidProducedQuantityError(f"produced quantity for item {item.id} cannot be negative")
        result[item.id] = quantity
    return result


async def find_or_create_variant(item: OrderItem, catalog: CatalogGateway) -> ProductVariant:
    """Variant for the item's snapshot (name, color, size), creating product and variant as needed."""
    product = await catalog.find_product_by_name(item.product_name)
    if product is None:
        product = await catalog.create_product(Product(name=item.product_name, category_id=item.category_id))
        logger.info("Created product %s '%s'", product.id, product.name)
    else:
        existing = await catalog.find_variant(product.id, item.color, item.size_id)
        if existing is not None:
            return existing
    variant = await catalog.create_variant(
        ProductVariant(
            product_id=product.id,
            color=item.color,
            size_id=item.size_id,
            unit_price=item.unit_price,
        )
    )
    logger.info("Created variant %s (%s / %s / size %s)", variant.id, product.name, item.color, item.size_id)
    return variant


async def stock_produced(
    order: Order,
    ctx: TransitionContext,
    default: Callable[[OrderItem], int],
    reserve_for_order: bool,
) -> dict:
    """
    Book finished production into the catalog. Missing variants are created first, so an
    increment never targets a variant that does not exist yet. With reserve_for_order the
    produced units that close the item's gap are held for this order.
    """
    produced = produced_for(order, ctx.produced_quantities, default)
    created, updated = [], []
    for item in order.items:
        variant = None
        if not item.is_new_variant():
            variant = await ctx.catalog.get_variant_by_id(item.product_variant_id)
            if variant is None:
                logger.warning("Variant %s of item %s disappeared, relinking", item.product_variant_id, item.id)
        if variant is None:
            variant = await find_or_create_variant(item, ctx.catalog)
            item.product_variant_id = variant.id
            created.append({"item_id": item.id, "variant_id": variant.id})

        quantity = produced[item.id]
        if quantity <= 0:
            continue
        await ctx.catalog.increment_stock(variant.id, quantity)
        stock_units_moved_total.labels(movement="increment").inc(quantity)
        held = 0
        if reserve_for_order:
            held = min(quantity, item.manufacturing_gap)
            if held > 0:
                await ctx.catalog.reserve_stock(variant.id, held)
                item.reserved_quantity += held
                stock_units_moved_total.labels(movement="reserve").inc(held)
        logger.info("Variant %s: stock +%d (reserved for order %s: %d)", variant.id, quantity, order.id, held)
        updated.append({"item_id": item.id, "variant_id": variant.id, "quantity": quantity, "reserved": held})
    return {"created_variants": created, "stock_increments": updated, "produced_quantities": produced}
