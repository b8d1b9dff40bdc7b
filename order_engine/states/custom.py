r"""
CUSTOM orders: made to order from a quote.

    QUOTE -> APPROVED -> MANUFACTURING -> FINISHED -> DELIVERED
       \         \ (full stock cover) ----^    \
        +---------+-------------+--------------+--> CANCELLED
"""
from datetime import UTC, datetime

from order_engine.events import OrderEventType
from order_engine.models import Order, OrderStatus
from order_engine.order_state import OrderState, TransitionContext
from order_engine.states import stock

S = OrderStatus


async def enter_quote(order: Order, ctx: TransitionContext) -> None:
    ctx.publish(OrderEventType.ORDER_STATUS_CHANGED, order)


async def enter_approved(order: Order, ctx: TransitionContext) -> None:
    reserved = await stock.reserve_available(order, ctx)
    ctx.publish(
        OrderEventType.ORDER_APPROVED,
        order,
        order_type=order.type,
        needs_manufacturing=order.needs_manufacturing(),
    )
    if reserved:
        ctx.publish(OrderEventType.STOCK_RESERVED, order, items=reserved)


def approved_guard(order: Order, target: OrderStatus) -> bool:
    # Fully stocked orders skip manufacturing; the others must go through it.
    if target == S.FINISHED:
        return order.has_full_stock_coverage()
    if target == S.MANUFACTURING:
        return order.needs_manufacturing()
    return True


def approved_next(order: Order) -> OrderStatus | None:
    if order.has_full_stock_coverage():
        return S.FINISHED
    return None


async def enter_manufacturing(order: Order, ctx: TransitionContext) -> None:
    gaps = {item.id: item.manufacturing_gap for item in order.items}
    ctx.publish(OrderEventType.ORDER_MANUFACTURING, order, to_manufacture=gaps)


async def enter_finished(order: Order, ctx: TransitionContext) -> None:
    summary = await stock.stock_produced(
        order,
        ctx,
        default=lambda item: item.manufacturing_gap,
        reserve_for_order=True,
    )
    ctx.publish(OrderEventType.ORDER_FINISHED, order, order_type=order.type, **summary)
    ctx.publish(OrderEventType.STOCK_UPDATED, order, items=summary["stock_increments"])


async def enter_delivered(order: Order, ctx: TransitionContext) -> None:
    released = await stock.release_delivered(order, ctx)
    order.actual_delivery_date = datetime.now(UTC)
    ctx.publish(OrderEventType.ORDER_DELIVERED, order, items=released)
    publish_sale_completed(order, ctx)


async def enter_cancelled(order: Order, ctx: TransitionContext) -> None:
    released = await stock.release_reservations(order, ctx)
    ctx.publish(OrderEventType.ORDER_CANCELLED, order)
    if released:
        ctx.publish(OrderEventType.STOCK_RELEASED, order, items=released)


def publish_sale_completed(order: Order, ctx: TransitionContext) -> None:
    ctx.publish(OrderEventType.SALE_COMPLETED, order, total_amount=order.total_amount, order_type=order.type)
    if order.is_internal_customer():
        ctx.publish(
            OrderEventType.INTERNAL_CUSTOMER_SALE_COMPLETED,
            order,
            customer_id=order.customer_id,
            total_amount=order.total_amount,
        )


STATES = {
    S.QUOTE: OrderState(S.QUOTE, (S.APPROVED, S.CANCELLED), on_enter=enter_quote),
    S.APPROVED: OrderState(
        S.APPROVED,
        (S.MANUFACTURING, S.FINISHED, S.CANCELLED),
        on_enter=enter_approved,
        next_state=approved_next,
        guard=approved_guard,
    ),
    S.MANUFACTURING: OrderState(S.MANUFACTURING, (S.FINISHED, S.CANCELLED), on_enter=enter_manufacturing),
    S.FINISHED: OrderState(S.FINISHED, (S.DELIVERED, S.CANCELLED), on_enter=enter_finished),
    S.DELIVERED: OrderState(S.DELIVERED, on_enter=enter_delivered),
    S.CANCELLED: OrderState(S.CANCELLED, on_enter=enter_cancelled),
}
