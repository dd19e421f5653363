"""
Queue Item: the unit of work handed to the consumer.

An item carries a typed payload, its processing status and last result,
retry bookkeeping and optional hooks used to settle an external caller.
Items are mutated only by the dispatcher and, through the hooks, by the
consumer.
"""
from __future__ import annotations

import json
import structlog
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from models.schemas import (
    QueueLogEntry, QueueStatus, QueueType, SavedQueueEntry, TERMINAL_STATUSES,
)
from utils.fields import get_nested_value, resolve_field

logger = structlog.get_logger()


@dataclass
class ItemHooks:
    """Optional continuations attached to an item at submission time."""
    resolve: Optional[Callable[[Any], None]] = None
    reject: Optional[Callable[[BaseException], None]] = None
    on_retry: Optional[Callable[[], Awaitable[Any]]] = None
    on_timeout: Optional[Callable[[], Awaitable[Any]]] = None


def describe_result(result: Any) -> str:
    """Human readable rendering of a success or failure value."""
    if isinstance(result, BaseException):
        message = str(result)
        return f"{type(result).__name__}: {message}" if message else type(result).__name__
    if isinstance(result, (dict, list)):
        return json.dumps(result, default=str, ensure_ascii=False)
    return str(result)


@dataclass(eq=False)
class QueueItem:
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    callback: Optional[str] = None
    id: Optional[str] = None
    maps: Optional[dict[str, Any]] = None
    info: Optional[str] = None
    retry: bool = False
    retry_count: int = 0
    status: QueueStatus = QueueStatus.NEW
    result: Any = None
    time: Optional[datetime] = None
    started_at: Optional[float] = None      # monotonic clock, for deadlines
    hooks: ItemHooks = field(default_factory=ItemHooks)

    # ── Factories ─────────────────────────────────────────

    @classmethod
    def create(cls, type: str, data: dict[str, Any], callback: Optional[str] = None,
               **kwargs: Any) -> QueueItem:
        return cls(type=type, data=data, callback=callback or None, **kwargs)

    @classmethod
    def create_work_queue(cls, data: dict[str, Any], callback: Optional[str] = None,
                          **kwargs: Any) -> QueueItem:
        return cls.create(QueueType.WORK.value, data, callback, **kwargs)

    @classmethod
    def create_callback_queue(cls, data: dict[str, Any], callback: Optional[str] = None,
                              **kwargs: Any) -> QueueItem:
        return cls.create(QueueType.CALLBACK.value, data, callback, **kwargs)

    # ── Setters ───────────────────────────────────────────

    @property
    def is_callback(self) -> bool:
        return self.type == QueueType.CALLBACK

    def set_id(self, id: str) -> None:
        if self.id is not None and self.id != id:
            raise ValueError(f"Queue item already has id {self.id!r}")
        self.id = id

    def set_status(self, status: QueueStatus) -> None:
        status = QueueStatus(status)
        if self.status != status:
            self.status = status
            logger.info("queue_status_changed", queue=self.get_info(), status=status.value)

    def set_result(self, result: Any) -> None:
        if self.result is not result and self.result != result:
            self.result = result
            logger.info("queue_result", queue=self.get_info(), result=describe_result(result))

    def set_time(self, time: Optional[datetime] = None) -> None:
        self.time = time or datetime.now()

    # ── Lifecycle ─────────────────────────────────────────

    def start(self) -> None:
        self.set_time()
        self.started_at = time.monotonic()
        self.set_status(QueueStatus.PROCESSING)

    def done(self, result: Any) -> None:
        self.set_status(QueueStatus.DONE)
        self.set_result(result)

    def error(self, error: Any) -> None:
        self.set_status(QueueStatus.ERROR)
        self.set_result(error)

    def skip(self) -> None:
        """Mark a not yet started item so the dispatcher bypasses it."""
        if self.status == QueueStatus.NEW:
            self.set_status(QueueStatus.SKIPPED)

    def finished(self) -> bool:
        return self.status in TERMINAL_STATUSES

    # ── Payload access ────────────────────────────────────

    def get_map(self, name: str) -> Any:
        if self.maps and isinstance(name, str):
            return get_nested_value(self.maps, name)
        return None

    def get_mapped_data(self, name: str) -> Any:
        key = self.get_map(name) if self.maps else name
        return self.get_data_value(key)

    def get_data_value(self, key: Any) -> Any:
        return resolve_field(self.data, key)

    # ── Reporting ─────────────────────────────────────────

    def get_type_text(self) -> str:
        return self.type.value if isinstance(self.type, QueueType) else str(self.type)

    def get_status_text(self) -> str:
        return self.status.value

    def get_info(self) -> str:
        label = self.info
        if not label and self.is_callback:
            label = self.callback
        if label:
            return f"{self.get_type_text()}:{self.id} ({label})"
        return f"{self.get_type_text()}:{self.id}"

    def to_log(self, raw: bool = False) -> QueueLogEntry:
        entry = QueueLogEntry(
            id=self.id or "",
            type=self.get_type_text(),
            name=self.get_info(),
            time=self.time.isoformat() if self.time else None,
            status=self.get_status_text(),
        )
        if self.result is not None:
            entry.result = self.result if raw else describe_result(self.result)
        return entry

    def to_saved(self) -> SavedQueueEntry:
        return SavedQueueEntry(
            type=self.get_type_text(),
            id=self.id,
            data=self.data,
            callback=self.callback,
        )
