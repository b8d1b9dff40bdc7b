"""
Lifecycle events and their sinks. Backend: Redis (LPUSH) or AWS SQS when SQS_QUEUE_URL is set;
EventBus delivers in-process to subscribers (used by tests and by the relay worker).
"""
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from order_engine.config import settings
from order_engine.models import Order, OrderStatus, OrderType
from order_engine.ports import EventSink
from order_engine.redis_client import get_redis
from order_engine.sqs_client import send_message

logger = logging.getLogger(__name__)


class OrderEventType(StrEnum):
    ORDER_STATUS_CHANGED = "order.status.changed"
    ORDER_APPROVED = "order.approved"
    ORDER_MANUFACTURING = "order.manufacturing"
    ORDER_FINISHED = "order.finished"
    ORDER_DELIVERED = "order.delivered"
    ORDER_CANCELLED = "order.cancelled"

    INVENTORY_PLANNED = "inventory.planned"
    INVENTORY_MANUFACTURING = "inventory.manufacturing"
    INVENTORY_FINISHED = "inventory.finished"

    SALE_PENDING = "sale.pending"
    SALE_CONFIRMED = "sale.confirmed"
    SALE_DELIVERED = "sale.delivered"

    STOCK_UPDATED = "stock.updated"
    STOCK_RESERVED = "stock.reserved"
    STOCK_RELEASED = "stock.released"

    # Consumed by accounting
    SALE_COMPLETED = "sale.completed"
    INTERNAL_CUSTOMER_SALE_COMPLETED = "internal.customer.sale.completed"


class OrderEvent(BaseModel):
    type: OrderEventType
    order_id: int
    order_number: str = ""
    order_type: OrderType
    old_status: OrderStatus | None = None
    new_status: OrderStatus | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def for_order(
        cls,
        event_type: OrderEventType,
        order: Order,
        old_status: OrderStatus | None = None,
        **data: Any,
    ) -> "OrderEvent":
        return cls(
            type=event_type,
            order_id=order.id,
            order_number=order.order_number,
            order_type=order.type,
            old_status=old_status,
            new_status=order.status,
            data=data,
        )


EventHandler = Callable[[OrderEvent], Awaitable[None] | None]


class EventBus(EventSink):
    """In-process fan-out. A failing handler is logged and never affects the others."""

    def __init__(self) -> None:
        self._subscribers: list[tuple[EventHandler, frozenset[OrderEventType]]] = []

    def subscribe(self, handler: EventHandler, *event_types: OrderEventType) -> None:
        """Register handler for the given types, or for every event when none are given."""
        self._subscribers.append((handler, frozenset(event_types)))

    def unsubscribe(self, handler: EventHandler) -> None:
        self._subscribers = [(h, types) for h, types in self._subscribers if h != handler]

    async def publish(self, event: OrderEvent) -> None:
        for handler, types in list(self._subscribers):
            if types and event.type not in types:
                continue
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event handler %r failed for %s (order_id=%s)", handler, event.type, event.order_id)


def log_event(event: OrderEvent) -> None:
    logger.info(
        "[EVENT] type=%s order_id=%s status=%s -> %s at %s",
        event.type,
        event.order_id,
        event.old_status,
        event.new_status,
        event.timestamp.isoformat(),
    )


class RedisEventSink(EventSink):
    def __init__(self, queue_key: str | None = None) -> None:
        self.queue_key = queue_key or settings.events_queue_key

    async def publish(self, event: OrderEvent) -> None:
        r = await get_redis()
        await r.lpush(self.queue_key, event.model_dump_json())


class SqsEventSink(EventSink):
    async def publish(self, event: OrderEvent) -> None:
        await send_message(event.model_dump(mode="json"))


def build_event_sink() -> EventSink:
    if settings.sqs_queue_url:
        return SqsEventSink()
    return RedisEventSink()
