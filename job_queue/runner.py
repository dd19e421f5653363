"""
Sequential Runner: ordered list of not yet started items.

The runner admits one item at a time. Admission happens only when no other
admission is in progress, the readiness predicate agrees and an item is
pending. The processor is called synchronously; its asynchronous completion
is the dispatcher's business, which calls advance() again when it is done.
"""
from __future__ import annotations

import structlog
from collections import deque
from typing import Callable, Deque, Optional

from job_queue.item import QueueItem

logger = structlog.get_logger()


class SequentialRunner:
    def __init__(
        self,
        processor: Callable[[QueueItem], None],
        ready: Optional[Callable[[], bool]] = None,
        on_idle: Optional[Callable[[], None]] = None,
    ):
        self._processor = processor
        self._ready = ready
        self._on_idle = on_idle
        self._pending: Deque[QueueItem] = deque()
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @property
    def pending(self) -> int:
        return len(self._pending)

    def items(self) -> list[QueueItem]:
        return list(self._pending)

    def enqueue(self, item: QueueItem, priority: bool = False) -> None:
        if priority:
            self._pending.appendleft(item)
        else:
            self._pending.append(item)

    def peek(self) -> Optional[QueueItem]:
        return self._pending[0] if self._pending else None

    def advance(self, gated: bool = True) -> bool:
        """
        Admit the head item if possible. Returns True when an item was admitted.

        With gated=False the readiness predicate is not consulted; the caller
        has already obtained the consumer's approval for this admission.
        """
        if self._active:
            return False
        if not self._pending:
            if self._on_idle is not None:
                self._on_idle()
            return False
        if gated and self._ready is not None and not self._ready():
            return False

        item = self._pending.popleft()
        self._active = True
        try:
            self._processor(item)
        finally:
            self._active = False
        return True
