"""
Shared fixtures: an in-memory store, an EventBus that records every event, and an engine
wired to both.
"""
import pytest

from order_engine.engine import OrderLifecycleEngine
from order_engine.events import EventBus
from order_engine.memory import InMemoryStore


class RecordingBus(EventBus):
    def __init__(self) -> None:
        super().__init__()
        self.events = []
        self.subscribe(self.events.append)

    def types(self) -> list[str]:
        return [str(e.type) for e in self.events]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def engine(store, bus) -> OrderLifecycleEngine:
    return OrderLifecycleEngine(store, bus, publish_timeout=0.2)
