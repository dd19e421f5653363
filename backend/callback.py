"""
Callback delivery and the base consumer for browser workers.

When a workflow finishes, the worker enqueues a CALLBACK item carrying the
outcome and the caller's callback URL. CALLBACK items jump the queue and
are delivered here with a plain HTTP POST, so they never need the browser.
"""
from __future__ import annotations

import abc
import structlog
from typing import Any, Optional

import httpx
from tenacity import (
    AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential,
)

from config.settings import CallbackConfig, get_settings
from job_queue.consumer import Consumer, RetryableError
from job_queue.events import QueueObserver
from job_queue.item import QueueItem

logger = structlog.get_logger()


class CallbackNotifier:
    """Posts CALLBACK item payloads to their callback URL."""

    def __init__(self, config: CallbackConfig = None, client: httpx.AsyncClient = None):
        self.config = config or get_settings().callback
        self.client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                headers=self.config.headers,
                timeout=self.config.timeout_s,
            )
        return self.client

    async def close(self) -> None:
        if self.client is not None and not self.client.is_closed:
            await self.client.aclose()

    async def notify(self, item: QueueItem) -> Any:
        """
        Deliver ``item.data`` to ``item.callback``.

        Transport errors are retried here; a 5xx answer raises RetryableError
        so the dispatcher may retry the whole item, a 4xx answer is final.
        """
        if not item.callback:
            raise ValueError(f"Queue {item.get_info()} has no callback URL")

        client = await self._get_client()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.config.max_attempts)),
            wait=wait_exponential(multiplier=0.5, max=5),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await client.post(item.callback, json=item.data)
        except httpx.TransportError as e:
            raise RetryableError(f"Callback {item.callback} unreachable: {e}") from e

        if response.status_code >= 500:
            raise RetryableError(f"Callback {item.callback} answered {response.status_code}")
        response.raise_for_status()
        logger.info("callback_delivered",
                    queue=item.get_info(),
                    url=item.callback,
                    status_code=response.status_code)
        try:
            return response.json()
        except ValueError:
            return response.text


class BrowserWorkerConsumer(Consumer, QueueObserver):
    """
    Base consumer for a single browser session.

    Subclasses implement process_work() for the workflow items. CALLBACK items
    are delivered by the notifier. While a primary item is in flight the
    session is busy; item types listed in ``secondary_types`` may still run
    next to it, one at a time.

    Register the consumer as a dispatcher observer so a timed out item
    releases the session.
    """

    secondary_types: frozenset[str] = frozenset()

    def __init__(self, notifier: CallbackNotifier = None, dispatcher=None):
        self.notifier = notifier or CallbackNotifier()
        self.dispatcher = dispatcher
        self._primary: Optional[QueueItem] = None
        self._secondary: Optional[QueueItem] = None

    @property
    def busy(self) -> bool:
        return self._primary is not None

    def is_ready(self) -> bool:
        """Extra readiness check, e.g. the browser is open and logged in."""
        return True

    def can_process_queue(self) -> bool:
        return not self.busy and self.is_ready()

    def can_handle_next_queue(self, item: QueueItem) -> bool:
        return self._secondary is None and item.type in self.secondary_types

    @abc.abstractmethod
    async def process_work(self, item: QueueItem) -> Any:
        """Run the browser workflow for one item."""
        ...

    async def process_queue(self, item: QueueItem) -> Any:
        secondary = self.busy and self._primary is not item
        if secondary:
            self._secondary = item
        else:
            self._primary = item
        try:
            if item.is_callback:
                return await self.notifier.notify(item)
            result = await self.process_work(item)
        finally:
            self.release(item)
        if item.callback and self.dispatcher is not None:
            self.dispatcher.add(QueueItem.create_callback_queue(
                self.callback_payload(item, result), item.callback, retry=True,
            ))
        return result

    def callback_payload(self, item: QueueItem, result: Any) -> dict[str, Any]:
        """Body posted to the caller once a workflow item succeeded."""
        return {"id": item.id, "result": result}

    def release(self, item: QueueItem) -> None:
        """Forget an abandoned item, e.g. after it timed out."""
        if self._primary is item:
            self._primary = None
        if self._secondary is item:
            self._secondary = None

    def on_queue_timeout(self, item: QueueItem) -> None:
        self.release(item)


class CallbackConsumer(BrowserWorkerConsumer):
    """Consumer used when no workflow is configured: delivers callbacks only."""

    async def process_work(self, item: QueueItem) -> Any:
        raise RuntimeError(f"No workflow consumer configured for {item.get_type_text()} items")
