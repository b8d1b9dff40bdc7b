"""
Order lifecycle engine: creates orders, validates and executes status transitions, and
follows automatic transitions (e.g. an approved order fully covered by stock goes straight
to FINISHED).

Each transition step runs in one store transaction: the exit/enter hooks' catalog writes
and the order row commit or roll back together. Hooks buffer lifecycle events on the
transition context; they are handed to the event sink only after the commit, with a
per-event timeout, and a failing sink is logged, never raised.
"""
import asyncio
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from order_engine.config import settings
from order_engine.errors import (
    AlreadyInStatusError,
    AutoTransitionLimitError,
    InvalidProducedQuantityError,
    InvalidTargetStatusError,
    InvalidTransitionError,
    ItemsLockedError,
    OrderItemNotFoundError,
    OrderLifecycleError,
    OrderValidationError,
    UnsupportedOrderTypeError,
)
from order_engine.events import OrderEvent
from order_engine.metrics import (
    lifecycle_events_failed_total,
    lifecycle_events_published_total,
    order_auto_transitions_total,
    order_transitions_rejected_total,
    order_transitions_total,
    orders_created_total,
    stock_units_moved_total,
)
from order_engine.models import Order, OrderItem, OrderStatus, OrderType, ensure_item_valid
from order_engine.order_state import OrderState, TransitionContext
from order_engine.ports import CatalogGateway, EventSink, Store
from order_engine.strategies import STRATEGIES, OrderStrategy

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    order: Order
    allowed_next_statuses: list[OrderStatus] = field(default_factory=list)


def generate_order_number(now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    return f"ORD-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def _whole_number(raw: Any) -> int:
    # bool is an int subclass and int() truncates floats; neither is a count
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise ValueError(f"not a whole number: {raw!r}")
    return int(raw)


def normalize_produced_quantities(produced: Mapping[Any, Any] | None) -> dict[int, int]:
    """Item id -> produced units. Keys and values arrive from callers, often as strings."""
    if not produced:
        return {}
    result = {}
    for key, value in produced.items():
        try:
            item_id, quantity = _whole_number(key), _whole_number(value)
        except (TypeError, ValueError):
            raise InvalidProducedQuantityError(f"invalid produced quantity {key!r}: {value!r}") from None
        if item_id in result:
            raise InvalidProducedQuantityError(f"produced quantity for item {item_id} given more than once")
        if quantity < 0:
            raise InvalidProducedQuantityError(f"produced quantity for item {item_id} cannot be negative")
        result[item_id] = quantity
    return result


class OrderLifecycleEngine:
    def __init__(
        self,
        store: Store,
        sink: EventSink,
        strategies: Mapping[OrderType, OrderStrategy] = STRATEGIES,
        max_auto_transitions: int | None = None,
        publish_timeout: float | None = None,
    ) -> None:
        self.store = store
        self.sink = sink
        self.strategies = strategies
        self.max_auto_transitions = (
            settings.max_auto_transitions if max_auto_transitions is None else max_auto_transitions
        )
        self.publish_timeout = (
            settings.event_publish_timeout_ms / 1000 if publish_timeout is None else publish_timeout
        )

    def _strategy_for(self, order: Order) -> OrderStrategy:
        strategy = self.strategies.get(order.type)
        if strategy is None:
            raise UnsupportedOrderTypeError(order.type)
        return strategy

    async def create_order(self, order: Order) -> Order:
        """
        Validate, link items to existing catalog variants, persist and enter the initial state.
        Works on a copy: the caller's order is left as it was, whatever the outcome.
        """
        order = order.model_copy(deep=True)
        try:
            strategy = self._strategy_for(order)
            order.ensure_valid()
            async with self.store.transaction() as tx:
                await self._link_items(order.items, tx.catalog)
                order.total_amount = self._checked_total(order)
                now = datetime.now(UTC)
                order.status = strategy.initial_status
                order.order_date = order.order_date or now
                order.order_number = order.order_number or generate_order_number(now)
                order.created_at = order.updated_at = now
                order = await tx.orders.create(order)

                state = strategy.get_state(order.status)
                ctx = TransitionContext(catalog=tx.catalog)
                await state.on_enter(order, ctx)
                order = await tx.orders.update(order)
        except OrderLifecycleError as e:
            self._rejected(e, order.id, target="<new>")
            raise

        orders_created_total.labels(order_type=order.type).inc()
        logger.info(
            "Created order %s (%s) type=%s status=%s total=%.2f",
            order.id,
            order.order_number,
            order.type,
            order.status,
            order.total_amount,
        )
        await self._dispatch(ctx.events)
        return order

    async def change_status(
        self,
        order_id: int,
        target_status: OrderStatus | str,
        produced_quantities: Mapping[Any, Any] | None = None,
    ) -> TransitionResult:
        """
        Move the order to target_status, then keep following automatic transitions until
        a state does not ask for one. Steps already committed stay committed if a later
        automatic step fails.
        """
        try:
            produced = normalize_produced_quantities(produced_quantities)
            order, state, events = await self._step(order_id, target_status, produced)
            await self._dispatch(events)

            hops = 0
            while (next_status := state.determine_next_state(order)) is not None:
                if hops >= self.max_auto_transitions:
                    raise AutoTransitionLimitError(order.id, self.max_auto_transitions, order.status)
                hops += 1
                logger.info("Order %s auto-advancing %s -> %s", order.id, order.status, next_status)
                order, state, events = await self._step(order.id, next_status, produced)
                order_auto_transitions_total.labels(order_type=order.type, to_status=next_status).inc()
                await self._dispatch(events)
        except OrderLifecycleError as e:
            self._rejected(e, order_id, target=target_status)
            raise

        return TransitionResult(order=order, allowed_next_statuses=state.allowed_transitions(order))

    async def _step(
        self,
        order_id: int,
        target_status: OrderStatus | str,
        produced: dict[int, int],
    ) -> tuple[Order, OrderState, list[OrderEvent]]:
        async with self.store.transaction() as tx:
            order = await tx.orders.get_by_id(order_id)
            strategy = self._strategy_for(order)
            if target_status == order.status:
                raise AlreadyInStatusError(order.id, order.status)

            try:
                target = OrderStatus(target_status)
            except ValueError:
                raise InvalidTargetStatusError(order.type, target_status) from None
            new_state = strategy.get_state(target)
            if new_state is None:
                raise InvalidTargetStatusError(order.type, target)

            # Legacy statuses have no state; nothing to validate against or exit from.
            current_state = strategy.get_state(order.status)
            if current_state is not None and not current_state.can_transition_to(target, order):
                raise InvalidTransitionError(order.status, target, current_state.allowed_transitions(order))

            old_status = order.status
            ctx = TransitionContext(catalog=tx.catalog, produced_quantities=produced, previous_status=old_status)
            if current_state is not None:
                await current_state.on_exit(order, ctx)
            order.status = target
            await new_state.on_enter(order, ctx)
            order.updated_at = datetime.now(UTC)
            order = await tx.orders.update(order)

        order_transitions_total.labels(
            order_type=order.type, from_status=old_status or "", to_status=target
        ).inc()
        logger.info("Order %s (%s) %s -> %s", order.id, order.type, old_status, target)
        return order, new_state, ctx.events

    async def get_allowed_next_statuses(self, order_id: int) -> list[OrderStatus]:
        async with self.store.transaction() as tx:
            order = await tx.orders.get_by_id(order_id, for_update=False)
        state = self._strategy_for(order).get_state(order.status)
        if state is None:
            raise InvalidTargetStatusError(order.type, order.status)
        return state.allowed_transitions(order)

    async def get_order(self, order_id: int) -> Order:
        async with self.store.transaction() as tx:
            return await tx.orders.get_by_id(order_id, for_update=False)

    async def add_item(self, order_id: int, item: OrderItem) -> Order:
        ensure_item_valid(item)
        item = item.model_copy()
        async with self.store.transaction() as tx:
            order = await tx.orders.get_by_id(order_id)
            if not order.can_edit_items():
                raise ItemsLockedError(order.id, order.status)
            item.id = 0
            item.order_id = order.id
            item.reserved_quantity = 0
            await self._link_items([item], tx.catalog)
            order.items.append(item)
            order.total_amount = self._checked_total(order)
            order.updated_at = datetime.now(UTC)
            order = await tx.orders.update(order)
        logger.info("Added item '%s' x%d to order %s", item.product_name, item.quantity, order.id)
        return order

    async def remove_item(self, order_id: int, item_id: int) -> Order:
        async with self.store.transaction() as tx:
            order = await tx.orders.get_by_id(order_id)
            if not order.can_edit_items():
                raise ItemsLockedError(order.id, order.status)
            item = order.find_item(item_id)
            if item is None:
                raise OrderItemNotFoundError(order.id, item_id)
            await self._unreserve(item, item.reserved_quantity, tx.catalog)
            order.items = [i for i in order.items if i.id != item_id]
            order.total_amount = self._checked_total(order)
            order.updated_at = datetime.now(UTC)
            order = await tx.orders.update(order)
        logger.info("Removed item %s from order %s", item_id, order.id)
        return order

    async def update_item(self, order_id: int, item: OrderItem) -> Order:
        """
        Replace quantity, price and product snapshot of item.id. Units held beyond the new
        quantity go back to available stock; a different product/color/size drops the
        whole hold and the item is linked to the catalog again.
        """
        ensure_item_valid(item)
        async with self.store.transaction() as tx:
            order = await tx.orders.get_by_id(order_id)
            if not order.can_edit_items():
                raise ItemsLockedError(order.id, order.status)
            current = order.find_item(item.id)
            if current is None:
                raise OrderItemNotFoundError(order.id, item.id)

            relink = (item.product_name, item.color, item.size_id) != (
                current.product_name,
                current.color,
                current.size_id,
            )
            if relink:
                await self._unreserve(current, current.reserved_quantity, tx.catalog)
                current.product_variant_id = None
            elif item.quantity < current.reserved_quantity:
                await self._unreserve(current, current.reserved_quantity - item.quantity, tx.catalog)

            current.product_name = item.product_name
            current.category_id = item.category_id
            current.color = item.color
            current.size_id = item.size_id
            current.quantity = item.quantity
            current.unit_price = item.unit_price
            if relink:
                await self._link_items([current], tx.catalog)
            order.total_amount = self._checked_total(order)
            order.updated_at = datetime.now(UTC)
            order = await tx.orders.update(order)
        logger.info("Updated item %s of order %s (relinked=%s)", item.id, order.id, relink)
        return order

    @staticmethod
    async def _unreserve(item: OrderItem, quantity: int, catalog: CatalogGateway) -> None:
        if quantity <= 0 or item.is_new_variant():
            return
        await catalog.release_reservation(item.product_variant_id, quantity)
        item.reserved_quantity -= quantity
        stock_units_moved_total.labels(movement="unreserve").inc(quantity)

    @staticmethod
    def _checked_total(order: Order) -> float:
        total = order.calculate_total()
        if total < 0:
            raise OrderValidationError("total amount cannot be negative")
        return total

    async def _link_items(self, items: list[OrderItem], catalog: CatalogGateway) -> None:
        """Point new items at an existing variant with the same product name, color and size."""
        for item in items:
            if not item.is_new_variant():
                continue
            product = await catalog.find_product_by_name(item.product_name)
            if product is None:
                continue
            variant = await catalog.find_variant(product.id, item.color, item.size_id)
            if variant is None:
                logger.info(
                    "No variant of '%s' in %s / size %s yet, it will be created when finished",
                    product.name,
                    item.color,
                    item.size_id,
                )
                continue
            item.product_variant_id = variant.id
            if item.category_id is None:
                item.category_id = product.category_id
            if not item.unit_price:
                item.unit_price = variant.unit_price

    async def _dispatch(self, events: list[OrderEvent]) -> None:
        for event in events:
            try:
                await asyncio.wait_for(self.sink.publish(event), timeout=self.publish_timeout)
            except Exception:
                lifecycle_events_failed_total.labels(event_type=event.type).inc()
                logger.exception("Failed to publish %s for order %s", event.type, event.order_id)
            else:
                lifecycle_events_published_total.labels(event_type=event.type).inc()

    @staticmethod
    def _rejected(error: OrderLifecycleError, order_id: int, target: Any) -> None:
        order_transitions_rejected_total.labels(kind=error.kind).inc()
        logger.warning("Order %s -> %s rejected [%s]: %s", order_id, target, error.kind, error)
