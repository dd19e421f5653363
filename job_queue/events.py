"""
Lifecycle signals: a fixed set of dispatcher events and the observer interface.

Observers subclass QueueObserver and override the hooks they care about.
Exceptions raised by an observer are logged and never reach the dispatcher.
"""
from __future__ import annotations

import structlog
from typing import Optional

from job_queue.item import QueueItem
from models.schemas import QueueEvent

logger = structlog.get_logger()


class QueueObserver:
    """Receives dispatcher lifecycle signals. All hooks are no-ops by default."""

    def on_queue_start(self, item: QueueItem) -> None:
        pass

    def on_queue_done(self, item: QueueItem) -> None:
        pass

    def on_queue_error(self, item: QueueItem) -> None:
        pass

    def on_queue_timeout(self, item: QueueItem) -> None:
        pass

    def on_idle(self) -> None:
        pass


class ObserverRegistry:
    """Fan-out of signals to registered observers."""

    def __init__(self):
        self._observers: list[QueueObserver] = []

    def register(self, observer: QueueObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unregister(self, observer: QueueObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def emit(self, event: QueueEvent, item: Optional[QueueItem] = None) -> None:
        for observer in list(self._observers):
            try:
                if event == QueueEvent.QUEUE_START:
                    observer.on_queue_start(item)
                elif event == QueueEvent.QUEUE_DONE:
                    observer.on_queue_done(item)
                elif event == QueueEvent.QUEUE_ERROR:
                    observer.on_queue_error(item)
                elif event == QueueEvent.QUEUE_TIMEOUT:
                    observer.on_queue_timeout(item)
                elif event == QueueEvent.IDLE:
                    observer.on_idle()
            except Exception as e:
                logger.error("queue_observer_error",
                             event=event.value,
                             observer=type(observer).__name__,
                             error=str(e))
