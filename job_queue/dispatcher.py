"""
Dispatcher: serializes submitted queue items through a single consumer.

Lifecycle of an item:
  add() ─▶ runner (CALLBACK items at the head) ─▶ dispatch() ─▶ consumer
        ─▶ done / error / timeout ─▶ runner advances to the next item

The dispatcher owns the full item history, the retry and timeout policy and
a polling task that detects hung items. One primary item runs at a time;
the consumer may approve a second, lightweight item to run next to it.

Everything between two awaits is synchronous, so the bookkeeping needs no
locks. Create one Dispatcher at process start and pass it around.
"""
from __future__ import annotations

import asyncio
import hashlib
import itertools
import structlog
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from config.settings import QueueConfig, get_settings
from job_queue.consumer import Consumer, RetryableError, restore_queue_item
from job_queue.events import ObserverRegistry, QueueObserver
from job_queue.item import QueueItem, describe_result
from job_queue.runner import SequentialRunner
from job_queue.storage import QueueStorage
from models.schemas import (
    PENDING_STATUSES, QueueEvent, QueueStatus, QueueStatusReport, SavedQueueEntry,
)

logger = structlog.get_logger()

_id_seq = itertools.count(1)

# primary plus one consumer-approved secondary
MAX_IN_FLIGHT = 2


class Dispatcher:
    """
    Process-wide work queue.

    Usage:
        dispatcher = Dispatcher()
        dispatcher.set_consumer(consumer)        # starts the polling task
        ack = dispatcher.add(QueueItem.create_work_queue({"nama": "..."}))
        result = await dispatcher.submit(item)   # add and wait for the outcome
        await dispatcher.stop()
    """

    def __init__(
        self,
        config: QueueConfig = None,
        storage: QueueStorage = None,
        info: dict[str, Any] = None,
    ):
        self.config = config or get_settings().queue
        self.time = datetime.now()
        self.queues: list[QueueItem] = []
        self.consumer: Optional[Consumer] = None
        self.timeout = self.config.timeout_ms
        self.max_retries = self.config.max_retries
        self.poll_interval = self.config.poll_interval_ms / 1000
        self.last: Optional[QueueItem] = None
        self.info: dict[str, Any] = dict(info or {})
        self.storage = storage or QueueStorage(self.config.queue_dir)
        self._observers = ObserverRegistry()
        self._runner = SequentialRunner(
            processor=self.dispatch,
            ready=self.can_process,
            on_idle=self._on_idle,
        )
        self._ids: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._secondaries: set[QueueItem] = set()
        self._admitting_secondary = False
        self._bad_timeouts: set[str] = set()
        self._poll_task: Optional[asyncio.Task] = None

    # ── Setup ─────────────────────────────────────────────

    def set_consumer(self, consumer: Optional[Consumer]) -> Dispatcher:
        """
        Attach the consumer and start the polling task.

        Must be called from a running event loop. Attaching again replaces
        the consumer; the polling task is only started once.
        """
        self.consumer = consumer
        if consumer is not None:
            if self._poll_task is None or self._poll_task.done():
                self._poll_task = asyncio.get_running_loop().create_task(
                    self._poll_loop(), name="dispatcher_poll",
                )
            logger.info("queue_consumer_attached", consumer=type(consumer).__name__)
            if self._runner.pending:
                self.advance()
        return self

    def set_info(self, info: dict[str, Any]) -> Dispatcher:
        """Status fields; zero-argument callables are evaluated on every report."""
        self.info = dict(info)
        return self

    def add_observer(self, observer: QueueObserver) -> Dispatcher:
        self._observers.register(observer)
        return self

    def remove_observer(self, observer: QueueObserver) -> Dispatcher:
        self._observers.unregister(observer)
        return self

    async def stop(self) -> None:
        """Cancel the polling task. In-flight consumer calls are left alone."""
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        self._poll_task = None
        logger.info("dispatcher_stopped", pending=self._runner.pending)

    @property
    def running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    # ── Submission ────────────────────────────────────────

    def gen_id(self) -> str:
        """8 hex chars of SHA-1 over the millisecond clock and a process counter."""
        while True:
            seed = f"{int(time.time() * 1000)}:{next(_id_seq)}"
            id = hashlib.sha1(seed.encode()).hexdigest()[:8]
            if id not in self._ids:
                return id

    def add(self, item: QueueItem) -> dict[str, Any]:
        if not item.id:
            item.set_id(self.gen_id())
        self.queues.append(item)
        self._ids.add(item.id)
        self._runner.enqueue(item, priority=item.is_callback)
        logger.info("queue_added",
                    queue=item.get_info(),
                    pending=self._runner.pending)
        self.advance()
        return {"status": "queued", "id": item.id}

    async def submit(self, item: QueueItem) -> Any:
        """
        Add ``item`` and wait for its outcome.

        Returns the consumer result, raises the consumer failure, or raises
        TimeoutError when the item times out. A SKIPPED item never settles,
        so callers that skip items should not await them. Hooks already set
        on the item still run, after the awaiting caller has been settled.
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        hooks = item.hooks
        on_resolve, on_reject, on_timeout = hooks.resolve, hooks.reject, hooks.on_timeout

        def resolve(result: Any) -> None:
            if not future.done():
                future.set_result(result)
            if on_resolve is not None:
                on_resolve(result)

        def reject(error: BaseException) -> None:
            if not future.done():
                future.set_exception(error)
            if on_reject is not None:
                on_reject(error)

        async def timed_out() -> None:
            try:
                if on_timeout is not None:
                    await on_timeout()
            finally:
                if not future.done():
                    future.set_exception(TimeoutError(f"Queue {item.get_info()} timed out"))

        hooks.resolve = resolve
        hooks.reject = reject
        hooks.on_timeout = timed_out
        self.add(item)
        return await future

    def has_pending_queue(self, candidate: QueueItem) -> bool:
        """Best-effort duplicate check on type and info label."""
        for queue in self.queues:
            if queue is candidate:
                continue
            if (queue.type == candidate.type and queue.info == candidate.info
                    and queue.status in PENDING_STATUSES):
                return True
        return False

    # ── Dispatch ──────────────────────────────────────────

    def can_process(self) -> bool:
        """Runner gate: no primary item in flight and the consumer is ready."""
        if self.consumer is None or self._primary_in_flight():
            return False
        return self.consumer.can_process_queue()

    def _primary_in_flight(self) -> bool:
        return any(
            q.status == QueueStatus.PROCESSING and q not in self._secondaries
            for q in self.queues
        )

    def advance(self) -> bool:
        return self._runner.advance()

    def _schedule_advance(self) -> None:
        try:
            asyncio.get_running_loop().call_soon(self.advance)
        except RuntimeError:
            # no loop: the next poll tick or add() picks the queue up again
            pass

    def dispatch(self, item: QueueItem) -> None:
        """Runner processor. Never raises: faults are logged and the queue moves on."""
        try:
            if item.status == QueueStatus.SKIPPED:
                logger.info("queue_bypassed", queue=item.get_info())
                self._schedule_advance()
                return
            if self._admitting_secondary:
                self._secondaries.add(item)
            self._start(item)
            asyncio.get_running_loop().call_soon(self._admit_secondary)
        except Exception as e:
            logger.error("queue_dispatch_failed",
                         queue=item.get_info(),
                         error=str(e),
                         exc_info=True)
            self._abandon(item, e)
            self._schedule_advance()

    def _abandon(self, item: QueueItem, err: Exception) -> None:
        """Finalize an item whose dispatch faulted so it no longer counts as pending."""
        if item.finished():
            return
        try:
            item.error(err)
        except Exception as e:
            logger.error("queue_abandon_failed", queue=item.get_info(), error=str(e))
            item.status = QueueStatus.ERROR
            item.result = err
        self._secondaries.discard(item)
        self._set_last(item)
        if item.hooks.reject is not None:
            self._call_hook(item, "reject", item.hooks.reject, err)
        self._emit(QueueEvent.QUEUE_ERROR, item)

    def _start(self, item: QueueItem) -> None:
        item.start()
        self._emit(QueueEvent.QUEUE_START, item)
        task = asyncio.get_running_loop().create_task(self._process(item))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _admit_secondary(self) -> None:
        consumer = self.consumer
        queue = self._runner.peek()
        if consumer is None or queue is None or queue.is_callback:
            return
        if self._in_flight() >= MAX_IN_FLIGHT:
            return
        try:
            approved = consumer.can_handle_next_queue(queue)
        except Exception as e:
            logger.error("queue_secondary_check_failed", queue=queue.get_info(), error=str(e))
            return
        if approved:
            logger.info("queue_secondary_admitted", queue=queue.get_info())
            self._admitting_secondary = True
            try:
                self._runner.advance(gated=False)
            finally:
                self._admitting_secondary = False

    def _in_flight(self) -> int:
        return sum(1 for q in self.queues if q.status == QueueStatus.PROCESSING)

    async def _process(self, item: QueueItem) -> None:
        while True:
            try:
                result = await self.consumer.process_queue(item)
            except asyncio.CancelledError:
                raise
            except Exception as err:
                if item.status != QueueStatus.PROCESSING:
                    logger.warning("queue_late_failure_ignored",
                                   queue=item.get_info(),
                                   status=item.get_status_text(),
                                   error=describe_result(err))
                    return
                if await self._retry(item, err):
                    continue
                if item.status == QueueStatus.PROCESSING:
                    self._fail(item, err)
                return
            if item.status != QueueStatus.PROCESSING:
                logger.warning("queue_late_result_ignored",
                               queue=item.get_info(),
                               status=item.get_status_text())
                return
            self._succeed(item, result)
            return

    async def _retry(self, item: QueueItem, err: Exception) -> bool:
        """Prepare another attempt. Returns False when the failure is final."""
        if not (isinstance(err, RetryableError) and item.retry
                and item.retry_count < self.max_retries):
            return False
        item.retry_count += 1
        logger.warning("queue_retrying",
                       queue=item.get_info(),
                       retry=item.retry_count,
                       max_retries=self.max_retries,
                       error=describe_result(err))
        if item.hooks.on_retry is not None:
            try:
                await item.hooks.on_retry()
            except Exception as e:
                logger.error("queue_retry_hook_failed", queue=item.get_info(), error=str(e))
        if item.status != QueueStatus.PROCESSING:
            return False
        item.start()
        self._emit(QueueEvent.QUEUE_START, item)
        return True

    def _succeed(self, item: QueueItem, result: Any) -> None:
        item.done(result)
        self._secondaries.discard(item)
        self._set_last(item)
        if item.hooks.resolve is not None:
            self._call_hook(item, "resolve", item.hooks.resolve, result)
        self._emit(QueueEvent.QUEUE_DONE, item)
        self.advance()

    def _fail(self, item: QueueItem, err: Exception) -> None:
        if isinstance(err, RetryableError) and item.retry:
            logger.warning("queue_retries_exhausted", queue=item.get_info(), retries=item.retry_count)
        item.error(err)
        self._secondaries.discard(item)
        self._set_last(item)
        if item.hooks.reject is not None:
            self._call_hook(item, "reject", item.hooks.reject, err)
        self._emit(QueueEvent.QUEUE_ERROR, item)
        self.advance()

    def _call_hook(self, item: QueueItem, name: str, fn: Callable, value: Any) -> None:
        try:
            fn(value)
        except Exception as e:
            logger.error("queue_hook_failed", queue=item.get_info(), hook=name, error=str(e))

    def _set_last(self, item: QueueItem) -> None:
        if not item.is_callback:
            self.last = item

    # ── Signals ───────────────────────────────────────────

    def _emit(self, event: QueueEvent, item: QueueItem = None) -> None:
        self._observers.emit(event, item)

    def _on_idle(self) -> None:
        self._emit(QueueEvent.IDLE)

    # ── Polling ───────────────────────────────────────────

    async def _poll_loop(self) -> None:
        logger.info("dispatcher_polling_started", interval_ms=self.config.poll_interval_ms)
        while True:
            try:
                self.poll()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("dispatcher_poll_error", error=str(e), exc_info=True)
            await asyncio.sleep(self.poll_interval)

    def effective_timeout(self, item: QueueItem) -> float:
        """Per-item ``data["timeout"]`` in ms; unusable values fall back to the default."""
        value = item.data.get("timeout") if item.data else None
        if value is None:
            return self.timeout
        try:
            return float(value)
        except (TypeError, ValueError):
            if item.id not in self._bad_timeouts:
                self._bad_timeouts.add(item.id)
                logger.warning("queue_timeout_invalid",
                               queue=item.get_info(),
                               timeout=repr(value),
                               default_ms=self.timeout)
            return self.timeout

    def poll(self) -> None:
        """One polling tick: time out a hung item, else wake the runner."""
        if self.consumer is None:
            return
        item = self._earliest_processing()
        if item is not None and item.started_at is not None:
            timeout = self.effective_timeout(item)
            elapsed = (time.monotonic() - item.started_at) * 1000
            if timeout > 0 and elapsed > timeout:
                self._time_out(item, elapsed)
                return
        if self._runner.pending:
            self.advance()

    def _earliest_processing(self) -> Optional[QueueItem]:
        processing = [q for q in self.queues if q.status == QueueStatus.PROCESSING]
        if not processing:
            return None
        return min(processing, key=lambda q: q.started_at or 0.0)

    def _time_out(self, item: QueueItem, elapsed: float) -> None:
        logger.warning("queue_timed_out",
                       queue=item.get_info(),
                       elapsed_ms=int(elapsed),
                       timeout_ms=self.effective_timeout(item))
        item.set_status(QueueStatus.TIMED_OUT)
        self._secondaries.discard(item)
        self._emit(QueueEvent.QUEUE_TIMEOUT, item)
        if item.hooks.on_timeout is not None:
            task = asyncio.get_running_loop().create_task(self._run_timeout_hook(item))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            self.advance()

    async def _run_timeout_hook(self, item: QueueItem) -> None:
        try:
            await item.hooks.on_timeout()
        except Exception as e:
            logger.error("queue_timeout_hook_failed", queue=item.get_info(), error=str(e))
        self.advance()

    # ── Reporting ─────────────────────────────────────────

    def get_next(self) -> Optional[QueueItem]:
        return self._runner.peek()

    def get_last(self) -> Optional[QueueItem]:
        return self.last

    @property
    def pending(self) -> int:
        return self._runner.pending

    def build_info(self, info: dict[str, Any]) -> dict[str, Any]:
        return {k: (v() if callable(v) else v) for k, v in info.items()}

    def get_status(self) -> dict[str, Any]:
        fields = self.build_info(self.info)
        fields.update(
            time=self.time.isoformat(),
            total=len(self.queues),
            queue=self._runner.pending,
        )
        current = [q.get_info() for q in self.queues if q.status == QueueStatus.PROCESSING]
        if current:
            fields["current"] = "\n".join(current)
        if self.last is not None:
            fields["last"] = self.last.to_log().to_report()
        return QueueStatusReport.model_validate(fields).model_dump(exclude_none=True)

    def get_logs(self, raw: bool = False) -> list[dict[str, Any]]:
        return [q.to_log(raw).to_report() for q in self.queues]

    # ── Persistence ───────────────────────────────────────

    def save_logs(self) -> Optional[Path]:
        """
        Flush finished non-callback items to a new queue log file.

        Flushed items, and finished callback items, leave the history so it
        does not grow without bound in long-running processes.
        """
        finished = [q for q in self.queues if q.status not in PENDING_STATUSES]
        logged = [q for q in finished if not q.is_callback]
        path = self.storage.write_logs([
            q.to_log(raw=not isinstance(q.result, BaseException)) for q in logged
        ])
        if path is not None:
            flushed = {id(q) for q in finished}
            self.queues = [q for q in self.queues if id(q) not in flushed]
        return path

    def save_queue(self) -> Optional[Path]:
        """Snapshot never-started, non-callback items to saved.queue."""
        entries = [
            q.to_saved() for q in self.queues
            if q.status == QueueStatus.NEW and not q.is_callback
        ]
        return self.storage.write_saved_queue(entries)

    def load_queue(
        self,
        factory: Callable[[SavedQueueEntry], Optional[QueueItem]] = None,
    ) -> int:
        """
        Re-add items from saved.queue and delete the file.

        ``factory`` rebuilds an item from each entry; it defaults to the
        attached consumer's restore_queue(). Whether the saved id survives is
        the factory's decision. Returns the number of items added.
        """
        if factory is None:
            factory = self.consumer.restore_queue if self.consumer else restore_queue_item
        try:
            entries = self.storage.read_saved_queue()
        except (OSError, ValueError) as e:
            logger.error("queue_snapshot_unreadable",
                         path=str(self.storage.saved_queue_path),
                         error=str(e))
            return 0

        count = 0
        for entry in entries:
            item = factory(entry)
            if item is None:
                continue
            if item.id and item.id in self._ids:
                logger.warning("queue_snapshot_duplicate_id", id=item.id)
                item.id = None
            self.add(item)
            count += 1
        self.storage.remove_saved_queue()
        logger.info("queue_snapshot_loaded", count=count)
        return count
