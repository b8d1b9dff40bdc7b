"""
One strategy per order type: its state table and initial status. The set of order types
is closed, so the registry is a read-only mapping built at import.
"""
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from order_engine.models import Order, OrderStatus, OrderType
from order_engine.order_state import OrderState
from order_engine.states import custom, inventory, sale


@dataclass(frozen=True)
class OrderStrategy:
    order_type: OrderType
    initial_status: OrderStatus
    states: Mapping[OrderStatus, OrderState]

    def get_state(self, status: OrderStatus | str | None) -> OrderState | None:
        """None means the status is not part of this type's graph; callers decide if that is an error."""
        if status is None:
            return None
        return self.states.get(status)

    @property
    def statuses(self) -> frozenset[OrderStatus]:
        return frozenset(self.states)

    def allowed_transitions(self, status: OrderStatus, order: Order | None = None) -> list[OrderStatus]:
        state = self.get_state(status)
        if state is None:
            return []
        return state.allowed_transitions(order)

    def can_transition(self, from_status: OrderStatus, to_status: OrderStatus, order: Order | None = None) -> bool:
        state = self.get_state(from_status)
        if state is None:
            return False
        return state.can_transition_to(to_status, order)


def _strategy(order_type: OrderType, initial_status: OrderStatus, states: dict) -> OrderStrategy:
    return OrderStrategy(order_type, initial_status, MappingProxyType(dict(states)))


STRATEGIES: Mapping[OrderType, OrderStrategy] = MappingProxyType(
    {
        OrderType.CUSTOM: _strategy(OrderType.CUSTOM, OrderStatus.QUOTE, custom.STATES),
        OrderType.INVENTORY: _strategy(OrderType.INVENTORY, OrderStatus.PLANNED, inventory.STATES),
        OrderType.SALE: _strategy(OrderType.SALE, OrderStatus.PENDING, sale.STATES),
    }
)


def get_strategy(order_type: OrderType | str) -> OrderStrategy | None:
    return STRATEGIES.get(order_type)
