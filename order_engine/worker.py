"""
Event relay: drain lifecycle events the engine pushed to Redis and fan them out to
in-process subscribers (logging by default; accounting/audit consumers subscribe here).
- Malformed messages are logged and dropped; a failing subscriber never stops the loop.
- Prometheus /metrics on METRICS_PORT.
- Graceful shutdown on SIGTERM/SIGINT: in-flight deliveries get up to 30s to finish.
Run: python -m order_engine.worker
"""
import asyncio
import logging
import signal
import sys
import threading

from prometheus_client import start_http_server
from pydantic import ValidationError

from order_engine.config import settings
from order_engine.events import EventBus, OrderEvent, log_event
from order_engine.metrics import events_dropped_total, events_relayed_total
from order_engine.redis_client import close_redis, get_redis

logger = logging.getLogger(__name__)

BRPOP_TIMEOUT = 5
GRACEFUL_SHUTDOWN_WAIT_SEC = 30


def _start_metrics_server() -> None:
    start_http_server(settings.metrics_port)


def build_bus() -> EventBus:
    bus = EventBus()
    bus.subscribe(log_event)
    return bus


async def relay_one(bus: EventBus, raw: str) -> bool:
    """Deliver one queued message. Returns False when it was dropped."""
    try:
        event = OrderEvent.model_validate_json(raw)
    except ValidationError as e:
        events_dropped_total.inc()
        logger.warning("Dropping malformed event message: %s", e)
        return False
    await bus.publish(event)
    events_relayed_total.inc()
    return True


async def run_relay(shutdown_event: asyncio.Event, bus: EventBus | None = None) -> None:
    bus = bus or build_bus()
    r = await get_redis()
    logger.info("Relaying events from %s ...", settings.events_queue_key)
    tasks: set[asyncio.Task] = set()
    try:
        while not shutdown_event.is_set():
            result = await r.brpop(settings.events_queue_key, timeout=BRPOP_TIMEOUT)
            if result is None:
                continue
            _key, raw = result
            t = asyncio.create_task(relay_one(bus, raw))
            tasks.add(t)
            t.add_done_callback(tasks.discard)
    finally:
        if tasks:
            logger.info("Graceful shutdown: waiting for %d in-flight task(s) (max %ds) ...", len(tasks), GRACEFUL_SHUTDOWN_WAIT_SEC)
            _, pending = await asyncio.wait(tasks, timeout=GRACEFUL_SHUTDOWN_WAIT_SEC, return_when=asyncio.ALL_COMPLETED)
            for t in pending:
                t.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        await close_redis()
        logger.info("Relay stopped.")


def main() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )
    threading.Thread(target=_start_metrics_server, daemon=True).start()
    logger.info("Metrics server listening on port %s", settings.metrics_port)

    shutdown_event = asyncio.Event()

    def on_signal():
        shutdown_event.set()

    loop = asyncio.new_event_loop()
    try:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, on_signal)
    except NotImplementedError:
        signal.signal(signal.SIGTERM, lambda *a: shutdown_event.set())
        signal.signal(signal.SIGINT, lambda *a: shutdown_event.set())

    asyncio.set_event_loop(loop)
    try:
        loop.run_until_complete(run_relay(shutdown_event))
    finally:
        loop.close()


if __name__ == "__main__":
    main()
