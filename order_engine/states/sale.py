r"""
SALE orders: direct sale from existing stock. The whole quantity is held on creation.

    PENDING -> CONFIRMED -> DELIVERED
        \          \
         +----------+--> CANCELLED
"""
from datetime import UTC, datetime

from order_engine.events import OrderEventType
from order_engine.models import Order, OrderStatus
from order_engine.order_state import OrderState, TransitionContext
from order_engine.states import stock
from order_engine.states.custom import enter_cancelled, publish_sale_completed

S = OrderStatus


async def enter_pending(order: Order, ctx: TransitionContext) -> None:
    reserved = await stock.reserve_all(order, ctx)
    ctx.publish(OrderEventType.SALE_PENDING, order)
    ctx.publish(OrderEventType.STOCK_RESERVED, order, items=reserved)


async def enter_confirmed(order: Order, ctx: TransitionContext) -> None:
    ctx.publish(OrderEventType.SALE_CONFIRMED, order)


async def enter_delivered(order: Order, ctx: TransitionContext) -> None:
    released = await stock.release_delivered(order, ctx)
    order.actual_delivery_date = datetime.now(UTC)
    ctx.publish(OrderEventType.SALE_DELIVERED, order, items=released)
    publish_sale_completed(order, ctx)


STATES = {
    S.PENDING: OrderState(S.PENDING, (S.CONFIRMED, S.CANCELLED), on_enter=enter_pending),
    S.CONFIRMED: OrderState(S.CONFIRMED, (S.DELIVERED, S.CANCELLED), on_enter=enter_confirmed),
    S.DELIVERED: OrderState(S.DELIVERED, on_enter=enter_delivered),
    S.CANCELLED: OrderState(S.CANCELLED, on_enter=enter_cancelled),
}
