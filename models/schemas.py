"""
Core data models for the Dequeuer system.
These are the shared types used by the queue, the API and the scripts.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class QueueType(str, Enum):
    """Well-known queue item types. Any other string is accepted as a type."""
    WORK = "work"
    CALLBACK = "callback"


class QueueStatus(str, Enum):
    NEW = "new"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"
    TIMED_OUT = "timeout"
    SKIPPED = "skipped"


TERMINAL_STATUSES = frozenset({
    QueueStatus.DONE,
    QueueStatus.ERROR,
    QueueStatus.TIMED_OUT,
    QueueStatus.SKIPPED,
})

PENDING_STATUSES = frozenset({QueueStatus.NEW, QueueStatus.PROCESSING})


class QueueEvent(str, Enum):
    """Lifecycle signals emitted by the dispatcher."""
    QUEUE_START = "queue-start"
    QUEUE_DONE = "queue-done"
    QUEUE_ERROR = "queue-error"
    QUEUE_TIMEOUT = "queue-timeout"
    IDLE = "idle"


# ──────────────────────────────────────────────────────────────
#  Reports and persisted records
# ──────────────────────────────────────────────────────────────

class QueueLogEntry(BaseModel):
    """One line of the queue history, as reported and written to queue logs."""
    id: str
    type: str
    name: Optional[str] = None
    time: Optional[str] = None
    status: str
    result: Any = None

    def to_report(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class QueueStatusReport(BaseModel):
    """
    Snapshot consumed by operational tooling.

    Extra fields carry the dispatcher info values (name, version, ...).
    """
    model_config = ConfigDict(extra="allow")

    time: str
    total: int
    queue: int
    current: Optional[str] = None
    last: Optional[dict[str, Any]] = None


class SavedQueueEntry(BaseModel):
    """A never-started item as stored in the saved-queue snapshot."""
    type: str
    id: Optional[str] = None
    data: dict[str, Any] = {}
    callback: Optional[str] = None
