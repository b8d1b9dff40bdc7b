"""
Order lifecycle states. One OrderState per (order type, status): its outbound edges,
entry/exit hooks and an optional auto-advance predicate. States hold no per-order data.
"""
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from order_engine.events import OrderEvent, OrderEventType
from order_engine.models import Order, OrderStatus
from order_engine.ports import CatalogGateway


@dataclass
class TransitionContext:
    """Per-transition data handed to hooks. Events are buffered and only sent after commit."""

    catalog: CatalogGateway
    produced_quantities: dict[int, int] = field(default_factory=dict)  # item id -> units produced
    previous_status: OrderStatus | None = None
    events: list[OrderEvent] = field(default_factory=list)

    def publish(self, event_type: OrderEventType, order: Order, **data: Any) -> None:
        self.events.append(OrderEvent.for_order(event_type, order, self.previous_status, **data))


Hook = Callable[[Order, TransitionContext], Awaitable[None]]


async def no_op(order: Order, ctx: TransitionContext) -> None:
    return None


def never_advance(order: Order) -> OrderStatus | None:
    return None


@dataclass(frozen=True)
class OrderState:
    status: OrderStatus
    transitions: tuple[OrderStatus, ...] = ()
    on_enter: Hook = no_op
    on_exit: Hook = no_op
    # Pure predicate: the status to move to automatically after entering, if any
    next_state: Callable[[Order], OrderStatus | None] = never_advance
    # Narrows `transitions` for a given order; must return a subset
    guard: Callable[[Order, OrderStatus], bool] | None = None

    @property
    def is_terminal(self) -> bool:
        return not self.transitions

    def allowed_transitions(self, order: Order | None = None) -> list[OrderStatus]:
        if order is None or self.guard is None:
            return list(self.transitions)
        return [status for status in self.transitions if self.guard(order, status)]

    def can_transition_to(self, status: OrderStatus, order: Order | None = None) -> bool:
        return status in self.allowed_transitions(order)

    def determine_next_state(self, order: Order) -> OrderStatus | None:
        return self.next_state(order)
