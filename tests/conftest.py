"""Shared test fixtures for Dequeuer."""
import asyncio
from typing import Any, Awaitable, Callable, Optional

import pytest
import pytest_asyncio

from config.settings import QueueConfig
from job_queue.consumer import Consumer
from job_queue.dispatcher import Dispatcher
from job_queue.events import QueueObserver
from job_queue.item import QueueItem
from job_queue.storage import QueueStorage


class FakeConsumer(Consumer, QueueObserver):
    """
    In-memory consumer.

    ``handler`` decides the outcome of each attempt; by default every item
    succeeds with ``{"ok": item.id}``. Busy while any item is in flight.
    """

    def __init__(self, handler: Optional[Callable[[QueueItem], Awaitable[Any]]] = None,
                 ready: bool = True, secondary_types: tuple = ()):
        self.handler = handler
        self.ready = ready
        self.secondary_types = set(secondary_types)
        self.in_flight: list[QueueItem] = []
        self.started: list[str] = []
        self.attempts: dict[str, int] = {}

    def can_process_queue(self) -> bool:
        return self.ready and not self.in_flight

    def can_handle_next_queue(self, item: QueueItem) -> bool:
        return item.type in self.secondary_types and len(self.in_flight) < 2

    async def process_queue(self, item: QueueItem) -> Any:
        self.in_flight.append(item)
        self.started.append(item.id)
        self.attempts[item.id] = self.attempts.get(item.id, 0) + 1
        try:
            if self.handler is not None:
                return await self.handler(item)
            await asyncio.sleep(0)
            return {"ok": item.id}
        finally:
            if item in self.in_flight:
                self.in_flight.remove(item)

    def on_queue_timeout(self, item: QueueItem) -> None:
        if item in self.in_flight:
            self.in_flight.remove(item)


class EventRecorder(QueueObserver):
    def __init__(self):
        self.events: list[tuple[str, Optional[str]]] = []

    def on_queue_start(self, item):
        self.events.append(("queue-start", item.id))

    def on_queue_done(self, item):
        self.events.append(("queue-done", item.id))

    def on_queue_error(self, item):
        self.events.append(("queue-error", item.id))

    def on_queue_timeout(self, item):
        self.events.append(("queue-timeout", item.id))

    def on_idle(self):
        self.events.append(("idle", None))

    def of(self, name: str) -> list[Optional[str]]:
        return [item_id for event, item_id in self.events if event == name]


async def never_settles(item: QueueItem) -> Any:
    await asyncio.Event().wait()


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def queue_config(tmp_path) -> QueueConfig:
    return QueueConfig(
        timeout_ms=5000,
        max_retries=3,
        poll_interval_ms=10,
        queue_dir=str(tmp_path / "queue"),
        restore_on_start=True,
        save_on_shutdown=True,
    )


@pytest.fixture
def storage(queue_config) -> QueueStorage:
    return QueueStorage(queue_config.queue_dir)


@pytest.fixture
def consumer() -> FakeConsumer:
    return FakeConsumer()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest_asyncio.fixture
async def dispatcher(queue_config, storage, recorder):
    """Dispatcher without a consumer; tests attach one with set_consumer()."""
    d = Dispatcher(queue_config, storage=storage)
    d.add_observer(recorder)
    yield d
    await d.stop()
    for task in list(d._tasks):
        task.cancel()


@pytest.fixture
def work_item():
    def make(info: str = None, **data) -> QueueItem:
        return QueueItem.create_work_queue(data, info=info)
    return make
