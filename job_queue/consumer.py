"""
Consumer contract: the pluggable executor behind the dispatcher.

The dispatcher never drives the browser itself. It asks the consumer whether
it is ready, whether a second item may run next to the current one, and
hands it items to process.

  ┌────────────┐  add   ┌──────────────────┐  process_queue  ┌──────────┐
  │  callers   │───────▶│    Dispatcher    │────────────────▶│ Consumer │
  └────────────┘        │ (runner, policy) │◀── result/err ──└──────────┘
                        └──────────────────┘
"""
from __future__ import annotations

import abc
from typing import Any, Optional

from job_queue.item import QueueItem
from models.schemas import SavedQueueEntry


class RetryableError(Exception):
    """Raised by a consumer when processing failed transiently and may be retried."""
    pass


def restore_queue_item(entry: SavedQueueEntry) -> QueueItem:
    """Default saved-queue factory: rebuild the item and keep its saved id."""
    return QueueItem.create(entry.type, entry.data, entry.callback, id=entry.id)


class Consumer(abc.ABC):
    """Abstract base for queue consumers."""

    @abc.abstractmethod
    def can_process_queue(self) -> bool:
        """Global readiness gate, e.g. the browser session is idle and logged in."""
        ...

    def can_handle_next_queue(self, item: QueueItem) -> bool:
        """Whether ``item`` may start while the current primary item is in flight."""
        return False

    @abc.abstractmethod
    async def process_queue(self, item: QueueItem) -> Any:
        """
        Run the workflow for one item.

        Return the result on success. Raise RetryableError for transient
        failures, any other exception for permanent ones.
        """
        ...

    def restore_queue(self, entry: SavedQueueEntry) -> Optional[QueueItem]:
        """
        Rebuild an item from the saved-queue snapshot.

        The default keeps the saved id so callers can still correlate the
        item with earlier acknowledgements. Override and return an item with
        ``id=None`` to have the dispatcher assign a fresh one, or return None
        to drop the entry.
        """
        return restore_queue_item(entry)
