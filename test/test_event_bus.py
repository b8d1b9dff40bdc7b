"""
EventBus fan-out and the event sinks' wire format.
"""
import json
from unittest.mock import AsyncMock, patch

from _helper import make_order
from order_engine import events
from order_engine.events import EventBus, OrderEvent, OrderEventType, RedisEventSink, SqsEventSink
from order_engine.models import OrderStatus


def approved_event() -> OrderEvent:
    order = make_order(id=7, order_number="ORD-20260101-ABC123", status=OrderStatus.APPROVED)
    return OrderEvent.for_order(OrderEventType.ORDER_APPROVED, order, OrderStatus.QUOTE, needs_manufacturing=True)


def test_event_carries_order_snapshot():
    event = approved_event()
    assert event.order_id == 7
    assert event.order_type == "CUSTOM"
    assert (event.old_status, event.new_status) == (OrderStatus.QUOTE, OrderStatus.APPROVED)
    assert event.data == {"needs_manufacturing": True}
    assert event.timestamp.tzinfo is not None


async def test_subscribers_filter_by_type():
    bus = EventBus()
    everything, only_cancelled = [], []
    bus.subscribe(everything.append)
    bus.subscribe(only_cancelled.append, OrderEventType.ORDER_CANCELLED)

    await bus.publish(approved_event())

    assert len(everything) == 1
    assert only_cancelled == []


async def test_async_handlers_and_failing_handlers():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("boom")

    async def handler(event):
        received.append(event.type)

    bus.subscribe(broken)
    bus.subscribe(handler)

    await bus.publish(approved_event())

    assert received == [OrderEventType.ORDER_APPROVED]


async def test_unsubscribe():
    bus = EventBus()
    received = []
    bus.subscribe(received.append)
    bus.unsubscribe(received.append)
    await bus.publish(approved_event())
    assert received == []


async def test_redis_sink_pushes_json():
    fake_redis = AsyncMock()
    with patch.object(events, "get_redis", AsyncMock(return_value=fake_redis)):
        await RedisEventSink(queue_key="queue:test").publish(approved_event())

    key, raw = fake_redis.lpush.await_args.args
    assert key == "queue:test"
    pushed = OrderEvent.model_validate_json(raw)
    assert pushed.type == OrderEventType.ORDER_APPROVED
    assert pushed.order_id == 7
    assert pushed.data == {"needs_manufacturing": True}


async def test_sqs_sink_sends_json_body():
    send = AsyncMock()
    with patch.object(events, "send_message", send):
        await SqsEventSink().publish(approved_event())

    body = send.await_args.args[0]
    assert body["type"] == "order.approved"
    assert body["new_status"] == "APPROVED"
    json.dumps(body)


def test_sink_factory_follows_settings():
    with patch.object(events.settings, "sqs_queue_url", "https://sqs.example/queue"):
        assert isinstance(events.build_event_sink(), SqsEventSink)
    with patch.object(events.settings, "sqs_queue_url", None):
        assert isinstance(events.build_event_sink(), RedisEventSink)
