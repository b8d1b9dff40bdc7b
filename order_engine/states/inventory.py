r"""
INVENTORY orders: production for stock. Finished goods go to free stock, nothing is held.

    PLANNED -> MANUFACTURING -> FINISHED
        \            \
         +------------+--> CANCELLED
"""
from order_engine.events import OrderEventType
from order_engine.models import Order, OrderStatus
from order_engine.order_state import OrderState, TransitionContext
from order_engine.states import stock
from order_engine.states.custom import enter_cancelled

S = OrderStatus


async def enter_planned(order: Order, ctx: TransitionContext) -> None:
    ctx.publish(OrderEventType.INVENTORY_PLANNED, order)


async def enter_manufacturing(order: Order, ctx: TransitionContext) -> None:
    ctx.publish(OrderEventType.INVENTORY_MANUFACTURING, order)


async def enter_finished(order: Order, ctx: TransitionContext) -> None:
    summary = await stock.stock_produced(
        order,
        ctx,
        default=lambda item: item.quantity,
        reserve_for_order=False,
    )
    ctx.publish(OrderEventType.INVENTORY_FINISHED, order, **summary)
    ctx.publish(OrderEventType.STOCK_UPDATED, order, for_inventory=True, items=summary["stock_increments"])


STATES = {
    S.PLANNED: OrderState(S.PLANNED, (S.MANUFACTURING, S.CANCELLED), on_enter=enter_planned),
    S.MANUFACTURING: OrderState(S.MANUFACTURING, (S.FINISHED, S.CANCELLED), on_enter=enter_manufacturing),
    S.FINISHED: OrderState(S.FINISHED, on_enter=enter_finished),
    S.CANCELLED: OrderState(S.CANCELLED, on_enter=enter_cancelled),
}
